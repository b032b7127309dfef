import asyncio
import logging
from typing import Any, Dict, List, Optional

import aiohttp
from eth_utils import keccak

from .errors import MalformedQueryError, RPCError, TransientRPCError
from .events import EVENT_CONTRACTS, EVENT_TOPICS
from .models import Position, QueryWindow
from .planner import split_window
from .util import normalize_address, topic_address

logger = logging.getLogger(__name__)

# parse error, invalid request, method not found, invalid params
MALFORMED_QUERY_CODES = {-32700, -32600, -32601, -32602}


def function_selector(signature: str) -> str:
    return "0x" + keccak(text=signature)[:4].hex()


ACTIVE_LOCKED_SELECTOR = function_selector("activeLocked()")
TOTAL_PAID_OUT_SELECTOR = function_selector("totalPaidOut()")
GET_USER_LOCKS_SELECTOR = function_selector("getUserLocks(address)")

# getUserLocks returns a dynamic array of this static struct
LOCK_STRUCT_FIELDS = ("amount", "unlock_time", "guaranteed_bps", "risk_bps", "claimed")


class RPCClient:
    def __init__(
        self,
        url: str,
        max_retries: int = 3,
        timeout_sec: int = 12,
        backoff_sec: float = 0.5,
    ):
        self.url = url
        self.max_retries = max(1, max_retries)
        self.timeout = aiohttp.ClientTimeout(total=timeout_sec)
        self.backoff_sec = backoff_sec
        self._session: Optional[aiohttp.ClientSession] = None
        self._id = 1

    async def __aenter__(self) -> "RPCClient":
        self._session = aiohttp.ClientSession(timeout=self.timeout)
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if self._session:
            await self._session.close()
            self._session = None

    async def _post(self, method: str, payload: Dict[str, Any]) -> Any:
        if not self._session:
            raise RuntimeError("RPC session is not initialized")
        try:
            async with self._session.post(self.url, json=payload) as resp:
                if resp.status == 429 or resp.status >= 500:
                    raise TransientRPCError(f"{method}: HTTP {resp.status} from RPC endpoint")
                data = await resp.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            raise TransientRPCError(f"{method}: {type(e).__name__}: {e}") from e

        if not isinstance(data, dict):
            raise TransientRPCError(f"{method}: unexpected RPC response: {data!r}")
        if "error" in data:
            err = data["error"] if isinstance(data["error"], dict) else {"message": str(data["error"])}
            code = err.get("code")
            message = f"{method}: RPC error {code}: {err.get('message')}"
            if code in MALFORMED_QUERY_CODES:
                raise MalformedQueryError(message, code=code)
            raise TransientRPCError(message, code=code)
        return data.get("result")

    async def call(self, method: str, params: List[Any]) -> Any:
        payload = {"jsonrpc": "2.0", "id": self._id, "method": method, "params": params}
        self._id += 1

        backoff = self.backoff_sec
        for attempt in range(1, self.max_retries + 1):
            try:
                return await self._post(method, payload)
            except TransientRPCError as e:
                if attempt >= self.max_retries:
                    raise
                logger.debug("retrying %s (attempt %d/%d): %s", method, attempt, self.max_retries, e)
                await asyncio.sleep(backoff)
                backoff *= 2

    async def get_latest_block_number(self) -> int:
        result = await self.call("eth_blockNumber", [])
        try:
            return int(result, 16)
        except (TypeError, ValueError) as e:
            raise TransientRPCError(f"eth_blockNumber: bad result {result!r}") from e

    async def get_logs(
        self,
        from_block: int,
        to_block: int,
        address: Optional[str] = None,
        topics: Optional[List[Any]] = None,
    ) -> List[Dict[str, Any]]:
        f: Dict[str, Any] = {"fromBlock": hex(from_block), "toBlock": hex(to_block)}
        if address:
            f["address"] = address
        if topics:
            f["topics"] = topics
        result = await self.call("eth_getLogs", [f])
        return result or []

    async def eth_call(self, to: str, data: str) -> str:
        result = await self.call("eth_call", [{"to": to, "data": data}, "latest"])
        return result


class EventLogSource:
    def __init__(self, rpc: RPCClient, contracts: Dict[str, str], max_block_range: int = 10000):
        self.rpc = rpc
        self.contracts = {k: normalize_address(v) for k, v in contracts.items()}
        self.max_block_range = max_block_range

    async def get_logs(
        self,
        contract_id: str,
        event_name: str,
        indexed_filter: Optional[str],
        window: QueryWindow,
    ) -> List[Dict[str, Any]]:
        if EVENT_CONTRACTS[event_name] != contract_id:
            raise ValueError(f"{event_name} is not emitted by contract {contract_id}")
        address = self.contracts[contract_id]
        topics: List[Any] = [EVENT_TOPICS[event_name]]
        if indexed_filter:
            topics.append(topic_address(indexed_filter))

        logs: List[Dict[str, Any]] = []
        for chunk in split_window(window, self.max_block_range):
            logs.extend(
                await self.rpc.get_logs(
                    from_block=chunk.from_block,
                    to_block=chunk.to_block,
                    address=address,
                    topics=topics,
                )
            )
        return logs


def _words(hex_data: Optional[str]) -> List[int]:
    if not hex_data or not isinstance(hex_data, str) or not hex_data.startswith("0x"):
        raise RPCError(f"unexpected eth_call result: {hex_data!r}")
    body = hex_data[2:]
    return [int(body[i : i + 64], 16) for i in range(0, len(body) - len(body) % 64, 64)]


def decode_uint(hex_data: Optional[str]) -> int:
    words = _words(hex_data)
    if not words:
        raise RPCError(f"empty eth_call result: {hex_data!r}")
    return words[0]


def decode_positions(hex_data: Optional[str]) -> List[Position]:
    words = _words(hex_data)
    if len(words) < 2:
        raise RPCError(f"short getUserLocks result: {hex_data!r}")
    head = words[0] // 32
    if head >= len(words):
        raise RPCError(f"bad getUserLocks offset: {words[0]}")
    length = words[head]
    width = len(LOCK_STRUCT_FIELDS)
    body = words[head + 1 :]
    if len(body) < length * width:
        raise RPCError(f"getUserLocks result truncated: {length} locks, {len(body)} words")

    positions: List[Position] = []
    for i in range(length):
        item = dict(zip(LOCK_STRUCT_FIELDS, body[i * width : (i + 1) * width]))
        positions.append(
            Position(
                amount=item["amount"],
                claimed=bool(item["claimed"]),
                unlock_time=item["unlock_time"],
            )
        )
    return positions


class ChestReader:
    def __init__(self, rpc: RPCClient, chest_addr: str):
        self.rpc = rpc
        self.chest_addr = normalize_address(chest_addr)

    async def get_global_locked(self) -> int:
        return decode_uint(await self.rpc.eth_call(self.chest_addr, ACTIVE_LOCKED_SELECTOR))

    async def get_global_paid_out(self) -> int:
        return decode_uint(await self.rpc.eth_call(self.chest_addr, TOTAL_PAID_OUT_SELECTOR))

    async def get_positions(self, account: str) -> List[Position]:
        data = GET_USER_LOCKS_SELECTOR + topic_address(account)[2:]
        return decode_positions(await self.rpc.eth_call(self.chest_addr, data))
