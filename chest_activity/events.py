from typing import Any, Callable, Dict, List, Tuple

from eth_utils import keccak

from .errors import MalformedEventError
from .models import (
    ActivityKind,
    ActivityRecord,
    LockClaimed,
    LockCreated,
    LogMeta,
    RawLogRecord,
    TokensPurchased,
    TokensSold,
)
from .util import decode_topic_address, parse_hex_int, raw_to_decimal

TOKEN_DECIMALS = 18

EVENT_SIGNATURES: Dict[str, str] = {
    "LockCreated": "LockCreated(address,uint256,uint256,uint256)",
    "LockClaimed": "LockClaimed(address,uint256,uint256)",
    "TokensPurchased": "TokensPurchased(address,uint256,uint256)",
    "TokensSold": "TokensSold(address,uint256,uint256)",
}

EVENT_CONTRACTS: Dict[str, str] = {
    "LockCreated": "chest",
    "LockClaimed": "chest",
    "TokensPurchased": "swap",
    "TokensSold": "swap",
}


def signature_topic(signature: str) -> str:
    return "0x" + keccak(text=signature).hex()


EVENT_TOPICS: Dict[str, str] = {name: signature_topic(sig) for name, sig in EVENT_SIGNATURES.items()}


def _strip_hex(value: Any, what: str) -> str:
    if not isinstance(value, str) or not value.startswith("0x"):
        raise MalformedEventError(f"{what} is not a hex string: {value!r}")
    body = value[2:].lower()
    try:
        if body:
            int(body, 16)
    except ValueError as e:
        raise MalformedEventError(f"{what} is not valid hex: {value!r}") from e
    return body


def _data_words(raw: Dict[str, Any], count: int) -> List[int]:
    body = _strip_hex(raw.get("data", "0x"), "data")
    if len(body) < 64 * count:
        raise MalformedEventError(f"data too short: need {count} words, got {len(body) // 64}")
    return [int(body[i * 64 : (i + 1) * 64], 16) for i in range(count)]


def _topics(raw: Dict[str, Any], event_name: str, count: int) -> List[str]:
    topics = raw.get("topics")
    if not isinstance(topics, list) or len(topics) < count:
        raise MalformedEventError(f"{event_name}: expected {count} topics, got {topics!r}")
    out = []
    for t in topics:
        body = _strip_hex(t, "topic")
        if len(body) != 64:
            raise MalformedEventError(f"{event_name}: topic is not 32 bytes: {t!r}")
        out.append("0x" + body)
    if out[0] != EVENT_TOPICS[event_name]:
        raise MalformedEventError(f"{event_name}: unexpected topic0 {out[0]}")
    return out


def _meta(raw: Dict[str, Any], contract: str) -> LogMeta:
    tx_hash = raw.get("transactionHash")
    if not isinstance(tx_hash, str) or not tx_hash:
        raise MalformedEventError("log without transactionHash")
    if raw.get("blockNumber") is None:
        raise MalformedEventError("log without blockNumber")
    try:
        block_number = parse_hex_int(raw.get("blockNumber"))
        log_index = raw.get("logIndex")
        log_index_i = parse_hex_int(log_index) if log_index is not None else None
    except (TypeError, ValueError) as e:
        raise MalformedEventError(f"bad log position fields: {e}") from e
    return LogMeta(
        contract=contract,
        block_number=block_number,
        tx_hash=tx_hash.lower(),
        log_index=log_index_i,
    )


def _decode_lock_created(raw: Dict[str, Any]) -> LockCreated:
    topics = _topics(raw, "LockCreated", 3)
    amount, unlock_time = _data_words(raw, 2)
    return LockCreated(
        meta=_meta(raw, "chest"),
        user=decode_topic_address(topics[1]),
        lock_id=int(topics[2][2:], 16),
        amount=amount,
        unlock_time=unlock_time,
    )


def _decode_lock_claimed(raw: Dict[str, Any]) -> LockClaimed:
    topics = _topics(raw, "LockClaimed", 3)
    (payout,) = _data_words(raw, 1)
    return LockClaimed(
        meta=_meta(raw, "chest"),
        user=decode_topic_address(topics[1]),
        lock_id=int(topics[2][2:], 16),
        payout=payout,
    )


def _decode_tokens_purchased(raw: Dict[str, Any]) -> TokensPurchased:
    topics = _topics(raw, "TokensPurchased", 2)
    amount_of_eth, amount_of_tokens = _data_words(raw, 2)
    return TokensPurchased(
        meta=_meta(raw, "swap"),
        buyer=decode_topic_address(topics[1]),
        amount_of_eth=amount_of_eth,
        amount_of_tokens=amount_of_tokens,
    )


def _decode_tokens_sold(raw: Dict[str, Any]) -> TokensSold:
    topics = _topics(raw, "TokensSold", 2)
    amount_of_tokens, amount_of_eth = _data_words(raw, 2)
    return TokensSold(
        meta=_meta(raw, "swap"),
        seller=decode_topic_address(topics[1]),
        amount_of_tokens=amount_of_tokens,
        amount_of_eth=amount_of_eth,
    )


DECODERS: Dict[str, Callable[[Dict[str, Any]], RawLogRecord]] = {
    "LockCreated": _decode_lock_created,
    "LockClaimed": _decode_lock_claimed,
    "TokensPurchased": _decode_tokens_purchased,
    "TokensSold": _decode_tokens_sold,
}


def decode_log(event_name: str, raw: Dict[str, Any]) -> RawLogRecord:
    decoder = DECODERS[event_name]
    if not isinstance(raw, dict):
        raise MalformedEventError(f"{event_name}: log is not an object: {raw!r}")
    return decoder(raw)


def _fields(record: RawLogRecord) -> Tuple[ActivityKind, str, int]:
    if isinstance(record, LockCreated):
        return ActivityKind.LOCK, record.user, record.amount
    if isinstance(record, LockClaimed):
        return ActivityKind.CLAIM, record.user, record.payout
    if isinstance(record, TokensPurchased):
        return ActivityKind.BUY, record.buyer, record.amount_of_tokens
    if isinstance(record, TokensSold):
        return ActivityKind.SELL, record.seller, record.amount_of_tokens
    raise TypeError(f"unsupported log record: {type(record).__name__}")


def normalize(record: RawLogRecord, decimals: int = TOKEN_DECIMALS) -> ActivityRecord:
    kind, subject, amount = _fields(record)
    return ActivityRecord(
        kind=kind,
        subject=subject.lower(),
        amount=raw_to_decimal(amount, decimals),
        block_number=record.meta.block_number,
        tx_hash=record.meta.tx_hash,
        log_index=record.meta.log_index,
    )
