from decimal import Decimal
from typing import Optional, Sequence

from .events import TOKEN_DECIMALS
from .models import ActivityKind, ActivityRecord, AggregateStats, Position, QueryWindow
from .util import raw_to_decimal


def sum_unclaimed(positions: Optional[Sequence[Position]]) -> int:
    if not positions:
        return 0
    return sum(int(p.amount) for p in positions if not p.claimed)


def sum_claims(claim_records: Sequence[ActivityRecord], subject: Optional[str]) -> Decimal:
    if not subject:
        return Decimal(0)
    subject = subject.lower()
    total = Decimal(0)
    for record in claim_records:
        if record.kind == ActivityKind.CLAIM and record.subject.lower() == subject:
            total += record.amount
    return total


def _global(raw: Optional[int], decimals: int) -> Decimal:
    if raw is None:
        return Decimal(0)
    return raw_to_decimal(int(raw), decimals)


def compute_stats(
    global_locked_raw: Optional[int],
    global_paid_out_raw: Optional[int],
    positions: Optional[Sequence[Position]],
    claim_records: Sequence[ActivityRecord],
    subject: Optional[str] = None,
    decimals: int = TOKEN_DECIMALS,
    positions_available: bool = True,
    claims_available: bool = True,
    payout_window: Optional[QueryWindow] = None,
) -> AggregateStats:
    user_locked = raw_to_decimal(sum_unclaimed(positions), decimals) if positions_available else Decimal(0)
    user_paid_out = sum_claims(claim_records, subject) if claims_available else Decimal(0)
    return AggregateStats(
        global_locked=_global(global_locked_raw, decimals),
        global_paid_out=_global(global_paid_out_raw, decimals),
        user_locked=user_locked,
        user_paid_out=user_paid_out,
        user_locked_available=positions_available,
        user_paid_out_available=claims_available,
        payout_window=payout_window,
        global_locked_available=global_locked_raw is not None,
        global_paid_out_available=global_paid_out_raw is not None,
    )
