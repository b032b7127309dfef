import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Protocol, Sequence, Tuple

from .aggregate import DEFAULT_FEED_LIMIT, aggregate
from .errors import CycleError, MalformedQueryError
from .events import TOKEN_DECIMALS, decode_log, normalize
from .models import ActivityRecord, CycleResult, Position, QueryWindow, SessionContext
from .planner import compute_window
from .stats import compute_stats

logger = logging.getLogger(__name__)

FEED_SOURCES: Tuple[Tuple[str, str], ...] = (
    ("chest", "LockCreated"),
    ("chest", "LockClaimed"),
    ("swap", "TokensPurchased"),
    ("swap", "TokensSold"),
)


class ChainClient(Protocol):
    async def get_latest_block_number(self) -> int: ...


class LogSource(Protocol):
    async def get_logs(
        self,
        contract_id: str,
        event_name: str,
        indexed_filter: Optional[str],
        window: QueryWindow,
    ) -> List[Dict[str, Any]]: ...


class ContractReader(Protocol):
    async def get_global_locked(self) -> int: ...

    async def get_global_paid_out(self) -> int: ...

    async def get_positions(self, account: str) -> List[Position]: ...


@dataclass
class PipelineSettings:
    feed_lookback_blocks: int = 1000
    payout_lookback_blocks: int = 50000
    feed_limit: int = DEFAULT_FEED_LIMIT
    token_decimals: int = TOKEN_DECIMALS


def normalize_batch(
    event_name: str, logs: Sequence[Dict[str, Any]], decimals: int
) -> Tuple[List[ActivityRecord], int]:
    records: List[ActivityRecord] = []
    dropped = 0
    for raw in logs:
        try:
            records.append(normalize(decode_log(event_name, raw), decimals))
        except ValueError as e:
            dropped += 1
            logger.warning("dropping malformed %s log: %s", event_name, e)
    return records, dropped


async def _none() -> None:
    return None


class ActivityPipeline:
    def __init__(
        self,
        chain: ChainClient,
        logs: LogSource,
        reader: ContractReader,
        settings: Optional[PipelineSettings] = None,
    ):
        self.chain = chain
        self.logs = logs
        self.reader = reader
        self.settings = settings or PipelineSettings()

    async def run_cycle(self, context: SessionContext) -> CycleResult:
        try:
            height = await self.chain.get_latest_block_number()
        except Exception as e:
            raise CycleError(f"chain height unavailable: {type(e).__name__}: {e}") from e

        s = self.settings
        feed_window = compute_window(height, s.feed_lookback_blocks)
        payout_window = compute_window(height, s.payout_lookback_blocks)
        subject = context.subject
        logger.debug(
            "cycle at block %d: feed window %s, subject %s", height, feed_window.to_api(), subject
        )

        feed_calls = [
            self.logs.get_logs(contract_id, event_name, None, feed_window)
            for contract_id, event_name in FEED_SOURCES
        ]
        if subject:
            positions_call = self.reader.get_positions(subject)
            claims_call = self.logs.get_logs("chest", "LockClaimed", subject, payout_window)
        else:
            positions_call = _none()
            claims_call = _none()

        results = await asyncio.gather(
            self.reader.get_global_locked(),
            self.reader.get_global_paid_out(),
            positions_call,
            claims_call,
            *feed_calls,
            return_exceptions=True,
        )
        global_locked, global_paid_out, positions, claim_logs = results[:4]
        feed_results = results[4:]

        stale_sources: List[str] = []
        if isinstance(global_locked, BaseException):
            self._log_source_failure("activeLocked", global_locked)
            stale_sources.append("activeLocked")
            global_locked = None
        if isinstance(global_paid_out, BaseException):
            self._log_source_failure("totalPaidOut", global_paid_out)
            stale_sources.append("totalPaidOut")
            global_paid_out = None

        dropped = 0
        batches: List[List[ActivityRecord]] = []
        for (_, event_name), value in zip(FEED_SOURCES, feed_results):
            if isinstance(value, BaseException):
                self._log_source_failure(event_name, value)
                stale_sources.append(event_name)
                batches.append([])
                continue
            records, n = normalize_batch(event_name, value, s.token_decimals)
            dropped += n
            batches.append(records)

        positions_available = True
        if isinstance(positions, BaseException):
            self._log_source_failure("getUserLocks", positions)
            stale_sources.append("getUserLocks")
            positions_available = False
            positions = None

        claims_available = True
        claim_records: List[ActivityRecord] = []
        if isinstance(claim_logs, BaseException):
            self._log_source_failure("LockClaimed(subject)", claim_logs)
            stale_sources.append("LockClaimed(subject)")
            claims_available = False
        elif claim_logs:
            claim_records, n = normalize_batch("LockClaimed", claim_logs, s.token_decimals)
            dropped += n

        stats = compute_stats(
            global_locked,
            global_paid_out,
            positions,
            claim_records,
            subject=subject,
            decimals=s.token_decimals,
            positions_available=positions_available,
            claims_available=claims_available,
            payout_window=payout_window if subject else None,
        )
        return CycleResult(
            block_number=height,
            feed=aggregate(batches, s.feed_limit),
            stats=stats,
            stale_sources=stale_sources,
            dropped_records=dropped,
        )

    def _log_source_failure(self, source: str, exc: BaseException) -> None:
        if isinstance(exc, MalformedQueryError):
            logger.error("%s query rejected by node: %s", source, exc)
        else:
            logger.warning("%s unavailable this cycle: %s: %s", source, type(exc).__name__, exc)
