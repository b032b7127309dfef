from typing import List

from .models import QueryWindow


def compute_window(current_height: int, lookback: int) -> QueryWindow:
    current_height = max(0, int(current_height))
    lookback = max(0, int(lookback))
    return QueryWindow(from_block=max(0, current_height - lookback), to_block=current_height)


def split_window(window: QueryWindow, max_span: int) -> List[QueryWindow]:
    if max_span <= 0 or window.span <= max_span:
        return [window]
    chunks: List[QueryWindow] = []
    cursor = window.from_block
    while cursor <= window.to_block:
        to_block = min(window.to_block, cursor + max_span - 1)
        chunks.append(QueryWindow(from_block=cursor, to_block=to_block))
        cursor = to_block + 1
    return chunks
