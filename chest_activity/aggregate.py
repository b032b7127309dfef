from typing import Iterable, List, Sequence, Set, Tuple

from .models import ActivityKind, ActivityRecord

DEFAULT_FEED_LIMIT = 50


def dedupe(records: Iterable[ActivityRecord]) -> List[ActivityRecord]:
    seen: Set[Tuple[str, ActivityKind]] = set()
    out: List[ActivityRecord] = []
    for record in records:
        key = record.dedup_key
        if key in seen:
            continue
        seen.add(key)
        out.append(record)
    return out


def aggregate(
    batches: Sequence[Sequence[ActivityRecord]], limit: int = DEFAULT_FEED_LIMIT
) -> List[ActivityRecord]:
    if limit <= 0:
        return []
    merged = dedupe(record for batch in batches for record in batch)
    # sorted() is stable, so same-block records keep their input order
    merged = sorted(merged, key=lambda r: r.block_number, reverse=True)
    return merged[:limit]
