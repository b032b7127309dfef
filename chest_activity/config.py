import json
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from .util import normalize_address

DEFAULT_EXPLORER_TX_URL = "https://sepolia.etherscan.io/tx/"
LOG_LEVELS = {"debug", "info", "warning", "error", "critical"}


@dataclass
class AppConfig:
    chain_id: int
    http_rpc_url: str
    chest_contract_addr: str
    swap_contract_addr: str
    token_decimals: int
    feed_lookback_blocks: int
    payout_lookback_blocks: int
    feed_limit: int
    max_log_block_range: int
    refresh_interval_sec: int
    max_rpc_retries: int
    rpc_timeout_sec: int
    subject_account: Optional[str]
    log_level: str
    api_host: str
    api_port: int
    cors_allow_origins: List[str]
    explorer_tx_url: str

    @property
    def contracts(self) -> Dict[str, str]:
        return {"chest": self.chest_contract_addr, "swap": self.swap_contract_addr}


def _non_negative_int(raw: Dict[str, Any], key: str, default: int) -> int:
    value = int(raw.get(key, default))
    if value < 0:
        raise ValueError(f"{key} must be >= 0")
    return value


def _parse_origins(value: Any) -> List[str]:
    if isinstance(value, str):
        return [x.strip().rstrip("/") for x in value.split(",") if x and x.strip()]
    if isinstance(value, list):
        return [str(x).strip().rstrip("/") for x in value if str(x).strip()]
    return []


def parse_config(raw: Dict[str, Any]) -> AppConfig:
    http_rpc_url = str(raw["HTTP_RPC_URL"]).strip()
    if not http_rpc_url:
        raise ValueError("HTTP_RPC_URL cannot be empty")
    chest_contract_addr = normalize_address(raw["CHEST_CONTRACT_ADDR"])
    swap_contract_addr = normalize_address(raw["SWAP_CONTRACT_ADDR"])

    token_decimals = int(raw.get("TOKEN_DECIMALS", 18))
    if token_decimals < 0 or token_decimals > 77:
        raise ValueError("TOKEN_DECIMALS must be in [0,77]")

    feed_limit = int(raw.get("FEED_LIMIT", 50))
    if feed_limit <= 0:
        raise ValueError("FEED_LIMIT must be >= 1")
    refresh_interval_sec = int(raw.get("REFRESH_INTERVAL_SEC", 30))
    if refresh_interval_sec <= 0:
        raise ValueError("REFRESH_INTERVAL_SEC must be >= 1")
    max_rpc_retries = int(raw.get("MAX_RPC_RETRIES", 3))
    if max_rpc_retries <= 0:
        raise ValueError("MAX_RPC_RETRIES must be >= 1")

    subject_raw = raw.get("SUBJECT_ACCOUNT")
    subject_account = normalize_address(subject_raw) if subject_raw else None

    log_level = str(raw.get("LOG_LEVEL", "info")).lower()
    if log_level not in LOG_LEVELS:
        raise ValueError(f"LOG_LEVEL must be one of {', '.join(sorted(LOG_LEVELS))}")

    return AppConfig(
        chain_id=int(raw.get("CHAIN_ID", 11155111)),
        http_rpc_url=http_rpc_url,
        chest_contract_addr=chest_contract_addr,
        swap_contract_addr=swap_contract_addr,
        token_decimals=token_decimals,
        feed_lookback_blocks=_non_negative_int(raw, "FEED_LOOKBACK_BLOCKS", 1000),
        payout_lookback_blocks=_non_negative_int(raw, "PAYOUT_LOOKBACK_BLOCKS", 50000),
        feed_limit=feed_limit,
        max_log_block_range=_non_negative_int(raw, "MAX_LOG_BLOCK_RANGE", 10000),
        refresh_interval_sec=refresh_interval_sec,
        max_rpc_retries=max_rpc_retries,
        rpc_timeout_sec=max(1, int(raw.get("RPC_TIMEOUT_SEC", 12))),
        subject_account=subject_account,
        log_level=log_level,
        api_host=str(raw.get("API_HOST", "127.0.0.1")),
        api_port=int(raw.get("API_PORT", 8080)),
        cors_allow_origins=_parse_origins(raw.get("CORS_ALLOW_ORIGINS", [])),
        explorer_tx_url=str(raw.get("EXPLORER_TX_URL", DEFAULT_EXPLORER_TX_URL)),
    )


def load_config(path: str) -> AppConfig:
    with open(path, "r", encoding="utf-8") as f:
        raw = json.load(f)
    return parse_config(raw)
