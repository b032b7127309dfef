import json

import pytest

from chest_activity.config import load_config, parse_config

from helpers import ALICE, CHEST, SWAP


def _raw(**overrides):
    raw = {
        "HTTP_RPC_URL": "http://127.0.0.1:8545",
        "CHEST_CONTRACT_ADDR": CHEST.upper().replace("0X", "0x"),
        "SWAP_CONTRACT_ADDR": SWAP,
    }
    raw.update(overrides)
    return raw


def test_defaults():
    cfg = parse_config(_raw())
    assert cfg.chest_contract_addr == CHEST
    assert cfg.contracts == {"chest": CHEST, "swap": SWAP}
    assert cfg.token_decimals == 18
    assert cfg.feed_lookback_blocks == 1000
    assert cfg.payout_lookback_blocks == 50000
    assert cfg.feed_limit == 50
    assert cfg.refresh_interval_sec == 30
    assert cfg.subject_account is None
    assert cfg.log_level == "info"


def test_load_from_file(tmp_path):
    path = tmp_path / "config.json"
    path.write_text(
        json.dumps(_raw(SUBJECT_ACCOUNT=ALICE, CORS_ALLOW_ORIGINS="http://a.example/, http://b.example")),
        encoding="utf-8",
    )
    cfg = load_config(str(path))
    assert cfg.subject_account == ALICE
    assert cfg.cors_allow_origins == ["http://a.example", "http://b.example"]


@pytest.mark.parametrize(
    "overrides",
    [
        {"CHEST_CONTRACT_ADDR": "0x1234"},
        {"FEED_LIMIT": 0},
        {"REFRESH_INTERVAL_SEC": 0},
        {"FEED_LOOKBACK_BLOCKS": -1},
        {"LOG_LEVEL": "verbose"},
        {"HTTP_RPC_URL": "  "},
    ],
)
def test_invalid_values(overrides):
    with pytest.raises(ValueError):
        parse_config(_raw(**overrides))


def test_missing_required_key():
    raw = _raw()
    del raw["SWAP_CONTRACT_ADDR"]
    with pytest.raises(KeyError):
        parse_config(raw)
