import asyncio
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence

from chest_activity.events import EVENT_TOPICS
from chest_activity.models import ActivityKind, ActivityRecord, Position, QueryWindow
from chest_activity.util import topic_address

ALICE = "0x1111111111111111111111111111111111111111"
BOB = "0x2222222222222222222222222222222222222222"
CHEST = "0x00000000000000000000000000000000000000c1"
SWAP = "0x00000000000000000000000000000000000000c2"
ONE = 10**18


def word(value: int) -> str:
    return format(value, "064x")


def uint_topic(value: int) -> str:
    return "0x" + word(value)


def make_log(
    event_name: str,
    who: str,
    data: Sequence[int],
    block: int,
    tx_hash: str,
    lock_id: Optional[int] = None,
    log_index: int = 0,
) -> Dict[str, Any]:
    topics = [EVENT_TOPICS[event_name], topic_address(who)]
    if lock_id is not None:
        topics.append(uint_topic(lock_id))
    return {
        "address": CHEST if event_name.startswith("Lock") else SWAP,
        "topics": topics,
        "data": "0x" + "".join(word(x) for x in data),
        "blockNumber": hex(block),
        "transactionHash": tx_hash,
        "logIndex": hex(log_index),
    }


def lock_created(who: str, amount: int, block: int, tx_hash: str, lock_id: int = 1) -> Dict[str, Any]:
    return make_log("LockCreated", who, [amount, 1_700_000_000], block, tx_hash, lock_id=lock_id)


def lock_claimed(who: str, payout: int, block: int, tx_hash: str, lock_id: int = 1) -> Dict[str, Any]:
    return make_log("LockClaimed", who, [payout], block, tx_hash, lock_id=lock_id)


def tokens_purchased(who: str, tokens: int, block: int, tx_hash: str) -> Dict[str, Any]:
    return make_log("TokensPurchased", who, [ONE // 100, tokens], block, tx_hash)


def tokens_sold(who: str, tokens: int, block: int, tx_hash: str) -> Dict[str, Any]:
    return make_log("TokensSold", who, [tokens, ONE // 100], block, tx_hash)


def record(
    block: int,
    tx_hash: str,
    kind: ActivityKind = ActivityKind.LOCK,
    subject: str = ALICE,
    amount: str = "1",
) -> ActivityRecord:
    return ActivityRecord(
        kind=kind,
        subject=subject,
        amount=Decimal(amount),
        block_number=block,
        tx_hash=tx_hash,
    )


class FakeChain:
    def __init__(self, height: int = 100_000, error: Optional[Exception] = None):
        self.height = height
        self.error = error
        self.calls = 0

    async def get_latest_block_number(self) -> int:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.height


class FakeLogSource:
    def __init__(self, logs: Optional[Dict[str, List[Dict[str, Any]]]] = None):
        self.logs = logs or {}
        self.errors: Dict[str, Exception] = {}
        self.calls: List[Dict[str, Any]] = []

    async def get_logs(
        self,
        contract_id: str,
        event_name: str,
        indexed_filter: Optional[str],
        window: QueryWindow,
    ) -> List[Dict[str, Any]]:
        self.calls.append(
            {
                "contract": contract_id,
                "event": event_name,
                "filter": indexed_filter,
                "window": window,
            }
        )
        await asyncio.sleep(0)
        if event_name in self.errors:
            raise self.errors[event_name]
        out = []
        for raw in self.logs.get(event_name, []):
            if indexed_filter and raw["topics"][1] != topic_address(indexed_filter):
                continue
            if not window.from_block <= int(raw["blockNumber"], 16) <= window.to_block:
                continue
            out.append(raw)
        return out


class FakeReader:
    def __init__(
        self,
        global_locked: int = 10 * ONE,
        global_paid_out: int = 5 * ONE,
        positions: Optional[Dict[str, List[Position]]] = None,
    ):
        self.global_locked = global_locked
        self.global_paid_out = global_paid_out
        self.positions = positions or {}
        self.positions_error: Optional[Exception] = None
        self.globals_error: Optional[Exception] = None

    async def get_global_locked(self) -> int:
        if self.globals_error is not None:
            raise self.globals_error
        return self.global_locked

    async def get_global_paid_out(self) -> int:
        if self.globals_error is not None:
            raise self.globals_error
        return self.global_paid_out

    async def get_positions(self, account: str) -> List[Position]:
        if self.positions_error is not None:
            raise self.positions_error
        return list(self.positions.get(account.lower(), []))
