from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union

from .util import decimal_to_str, short_address


class ActivityKind(str, Enum):
    LOCK = "lock"
    CLAIM = "claim"
    BUY = "buy"
    SELL = "sell"


class RefreshStatus(str, Enum):
    IDLE = "idle"
    FETCHING = "fetching"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass(frozen=True)
class QueryWindow:
    from_block: int
    to_block: int

    def __post_init__(self) -> None:
        if self.from_block < 0 or self.from_block > self.to_block:
            raise ValueError(f"invalid block window: [{self.from_block}, {self.to_block}]")

    @property
    def span(self) -> int:
        return self.to_block - self.from_block + 1

    def to_api(self) -> Dict[str, int]:
        return {"fromBlock": self.from_block, "toBlock": self.to_block}


@dataclass(frozen=True)
class LogMeta:
    contract: str
    block_number: int
    tx_hash: str
    log_index: Optional[int] = None


@dataclass(frozen=True)
class LockCreated:
    meta: LogMeta
    user: str
    lock_id: int
    amount: int
    unlock_time: int


@dataclass(frozen=True)
class LockClaimed:
    meta: LogMeta
    user: str
    lock_id: int
    payout: int


@dataclass(frozen=True)
class TokensPurchased:
    meta: LogMeta
    buyer: str
    amount_of_eth: int
    amount_of_tokens: int


@dataclass(frozen=True)
class TokensSold:
    meta: LogMeta
    seller: str
    amount_of_tokens: int
    amount_of_eth: int


RawLogRecord = Union[LockCreated, LockClaimed, TokensPurchased, TokensSold]


@dataclass(frozen=True)
class ActivityRecord:
    kind: ActivityKind
    subject: str
    amount: Decimal
    block_number: int
    tx_hash: str
    log_index: Optional[int] = None

    def __post_init__(self) -> None:
        if self.amount < 0:
            raise ValueError(f"negative activity amount: {self.amount}")

    @property
    def dedup_key(self) -> Tuple[str, ActivityKind]:
        return (self.tx_hash.lower(), self.kind)

    def to_api(self, explorer_tx_url: Optional[str] = None) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "type": self.kind.value,
            "user": self.subject,
            "userShort": short_address(self.subject),
            "amount": decimal_to_str(self.amount, 18),
            "blockNumber": self.block_number,
            "txHash": self.tx_hash,
        }
        if self.log_index is not None:
            out["logIndex"] = self.log_index
        if explorer_tx_url:
            out["explorerUrl"] = f"{explorer_tx_url}{self.tx_hash}"
        return out


@dataclass(frozen=True)
class Position:
    amount: int
    claimed: bool
    unlock_time: int = 0


@dataclass(frozen=True)
class AggregateStats:
    global_locked: Decimal
    global_paid_out: Decimal
    user_locked: Decimal = Decimal(0)
    user_paid_out: Decimal = Decimal(0)
    user_locked_available: bool = True
    user_paid_out_available: bool = True
    payout_window: Optional[QueryWindow] = None
    global_locked_available: bool = True
    global_paid_out_available: bool = True

    @classmethod
    def empty(cls) -> "AggregateStats":
        return cls(global_locked=Decimal(0), global_paid_out=Decimal(0))

    def without_user(self) -> "AggregateStats":
        return AggregateStats(
            global_locked=self.global_locked,
            global_paid_out=self.global_paid_out,
            user_locked_available=False,
            user_paid_out_available=False,
            global_locked_available=self.global_locked_available,
            global_paid_out_available=self.global_paid_out_available,
        )

    def to_api(self) -> Dict[str, Any]:
        return {
            "totalLocked": decimal_to_str(self.global_locked, 18),
            "totalPaidOut": decimal_to_str(self.global_paid_out, 18),
            "userLocked": decimal_to_str(self.user_locked, 18),
            "userPaidOut": decimal_to_str(self.user_paid_out, 18),
            "userLockedAvailable": self.user_locked_available,
            "userPaidOutAvailable": self.user_paid_out_available,
            "totalLockedAvailable": self.global_locked_available,
            "totalPaidOutAvailable": self.global_paid_out_available,
            "payoutWindow": self.payout_window.to_api() if self.payout_window else None,
        }


@dataclass(frozen=True)
class SessionContext:
    subject: Optional[str] = None


@dataclass(frozen=True)
class CycleResult:
    block_number: int
    feed: List[ActivityRecord]
    stats: AggregateStats
    stale_sources: List[str] = field(default_factory=list)
    dropped_records: int = 0


@dataclass(frozen=True)
class PublishedState:
    feed: List[ActivityRecord]
    stats: AggregateStats
    status: RefreshStatus = RefreshStatus.IDLE
    cycle: int = 0
    last_updated: Optional[float] = None
    block_number: Optional[int] = None
    stale_sources: List[str] = field(default_factory=list)
    error: Optional[str] = None

    @classmethod
    def initial(cls) -> "PublishedState":
        return cls(feed=[], stats=AggregateStats.empty())

    def is_stale(self, now: float, max_age_sec: float) -> bool:
        if self.last_updated is None:
            return True
        return self.status == RefreshStatus.FAILED or (now - self.last_updated) > max_age_sec

    def to_api(self, explorer_tx_url: Optional[str] = None) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "cycle": self.cycle,
            "lastUpdated": self.last_updated,
            "blockNumber": self.block_number,
            "staleSources": list(self.stale_sources),
            "error": self.error,
            "stats": self.stats.to_api(),
            "feed": [x.to_api(explorer_tx_url) for x in self.feed],
        }
