from decimal import Decimal

import pytest

from chest_activity.errors import MalformedEventError
from chest_activity.events import EVENT_TOPICS, decode_log, normalize, signature_topic
from chest_activity.models import ActivityKind, LockCreated, LogMeta, TokensSold

from helpers import ALICE, BOB, ONE, lock_claimed, lock_created, tokens_purchased, tokens_sold


def test_transfer_topic_matches_known_hash():
    assert (
        signature_topic("Transfer(address,address,uint256)")
        == "0xddf252ad1be2c89b69c2b068fc378daa952ba7f163c4a11628f55a4df523b3ef"
    )


def test_event_topics_are_distinct():
    assert len(set(EVENT_TOPICS.values())) == 4


def test_lock_created_one_token():
    raw = lock_created(ALICE, ONE, block=10, tx_hash="0xABC", lock_id=7)
    decoded = decode_log("LockCreated", raw)
    assert isinstance(decoded, LockCreated)
    assert decoded.user == ALICE
    assert decoded.lock_id == 7
    assert decoded.meta.tx_hash == "0xabc"

    rec = normalize(decoded)
    assert rec.kind == ActivityKind.LOCK
    assert rec.amount == Decimal("1.0")
    assert rec.block_number == 10
    assert rec.subject == ALICE


@pytest.mark.parametrize(
    "event_name,raw,kind,subject,amount",
    [
        ("LockClaimed", lock_claimed(ALICE, 3 * ONE // 2, 11, "0x01"), ActivityKind.CLAIM, ALICE, "1.5"),
        ("TokensPurchased", tokens_purchased(BOB, 250 * ONE, 12, "0x02"), ActivityKind.BUY, BOB, "250"),
        ("TokensSold", tokens_sold(BOB, ONE // 4, 13, "0x03"), ActivityKind.SELL, BOB, "0.25"),
    ],
)
def test_mapping_table(event_name, raw, kind, subject, amount):
    rec = normalize(decode_log(event_name, raw))
    assert rec.kind == kind
    assert rec.subject == subject
    assert rec.amount == Decimal(amount)


def test_sell_amount_uses_token_field_not_eth():
    raw = tokens_sold(BOB, 42 * ONE, 13, "0x03")
    decoded = decode_log("TokensSold", raw)
    assert isinstance(decoded, TokensSold)
    assert decoded.amount_of_eth == ONE // 100
    assert normalize(decoded).amount == Decimal(42)


def test_normalize_respects_decimals():
    raw = tokens_purchased(BOB, 1_500_000, 12, "0x02")
    assert normalize(decode_log("TokensPurchased", raw), decimals=6).amount == Decimal("1.5")


def test_short_indexed_topic_is_malformed():
    raw = lock_created(ALICE, ONE, 10, "0xabc")
    raw["topics"][1] = "0x01"
    with pytest.raises(MalformedEventError):
        decode_log("LockCreated", raw)


def test_short_data_is_malformed():
    raw = lock_created(ALICE, ONE, 10, "0xabc")
    raw["data"] = raw["data"][:66]
    with pytest.raises(MalformedEventError):
        decode_log("LockCreated", raw)


def test_missing_topics_is_malformed():
    raw = lock_claimed(ALICE, ONE, 10, "0xabc")
    raw["topics"] = raw["topics"][:1]
    with pytest.raises(MalformedEventError):
        decode_log("LockClaimed", raw)


def test_wrong_topic0_is_malformed():
    raw = lock_claimed(ALICE, ONE, 10, "0xabc")
    with pytest.raises(MalformedEventError):
        decode_log("LockCreated", raw)


def test_missing_position_fields_are_malformed():
    raw = tokens_sold(BOB, ONE, 13, "0x03")
    del raw["blockNumber"]
    with pytest.raises(MalformedEventError):
        decode_log("TokensSold", raw)

    raw = tokens_sold(BOB, ONE, 13, "0x03")
    raw["transactionHash"] = None
    with pytest.raises(MalformedEventError):
        decode_log("TokensSold", raw)


def test_non_hex_data_is_malformed():
    raw = tokens_sold(BOB, ONE, 13, "0x03")
    raw["data"] = "0xzz" + raw["data"][4:]
    with pytest.raises(MalformedEventError):
        decode_log("TokensSold", raw)


def test_unknown_event_name_is_a_programming_error():
    with pytest.raises(KeyError):
        decode_log("Transfer", {})


def test_normalize_rejects_unknown_record_type():
    with pytest.raises(TypeError):
        normalize(LogMeta(contract="chest", block_number=1, tx_hash="0x1"))
