from chest_activity.aggregate import aggregate
from chest_activity.models import ActivityKind

from helpers import record


def test_empty_batches():
    assert aggregate([]) == []
    assert aggregate([[], []]) == []


def test_duplicate_across_overlapping_batches():
    batch = [record(10, "0xabc")]
    out = aggregate([batch, list(batch)])
    assert len(out) == 1
    assert out[0].tx_hash == "0xabc"


def test_same_tx_different_kind_is_kept():
    out = aggregate([[record(10, "0xabc", ActivityKind.LOCK)], [record(10, "0xabc", ActivityKind.CLAIM)]])
    assert [r.kind for r in out] == [ActivityKind.LOCK, ActivityKind.CLAIM]


def test_dedup_ignores_hash_case():
    out = aggregate([[record(10, "0xABC")], [record(10, "0xabc")]])
    assert len(out) == 1


def test_descending_with_stable_ties():
    first_nine = record(9, "0x1")
    second_nine = record(9, "0x2")
    out = aggregate([[record(5, "0x0"), first_nine], [second_nine, record(3, "0x3")]])
    assert [r.block_number for r in out] == [9, 9, 5, 3]
    assert out[0] is first_nine
    assert out[1] is second_nine


def test_ordering_property_across_kinds():
    batches = [
        [record(b, f"0xl{b}", ActivityKind.LOCK) for b in (1, 50, 7)],
        [record(b, f"0xc{b}", ActivityKind.CLAIM) for b in (20, 2)],
        [record(b, f"0xb{b}", ActivityKind.BUY) for b in (99, 3)],
        [record(b, f"0xs{b}", ActivityKind.SELL) for b in (50,)],
    ]
    out = aggregate(batches)
    assert all(a.block_number >= b.block_number for a, b in zip(out, out[1:]))


def test_truncation():
    batch = [record(i, f"0x{i:x}") for i in range(120)]
    out = aggregate([batch])
    assert len(out) == 50
    assert out[0].block_number == 119
    assert len(aggregate([batch], limit=5)) == 5
    assert aggregate([batch], limit=0) == []


def test_idempotent():
    batches = [[record(3, "0xa"), record(8, "0xb")], [record(8, "0xc"), record(3, "0xa")]]
    assert aggregate(batches, 3) == aggregate(batches, 3)
    assert [r.block_number for r in batches[0]] == [3, 8]
