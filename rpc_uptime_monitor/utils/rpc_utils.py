"""
Thin async JSON-RPC client for EVM-style chain endpoints.
"""
from __future__ import annotations

import itertools
from typing import Any, Dict, List, Optional

import httpx
from loguru import logger


class RpcError(Exception):
    """Base class for failures reported by an RPC endpoint."""


class RpcHttpError(RpcError):
    def __init__(self, status_code: int, url: str = "") -> None:
        super().__init__(f"HTTP {status_code} from {url or 'endpoint'}")
        self.status_code = status_code
        self.url = url


class RpcResponseError(RpcError):
    def __init__(self, code: Any, message: str) -> None:
        super().__init__(f"RPC error {code}: {message}")
        self.code = code
        self.message = message


class RpcProtocolError(RpcError):
    """The endpoint answered, but not with a JSON-RPC 2.0 result."""


class NetworkNotDetectedError(RpcError):
    """Raised while the client cannot yet identify the chain behind the URL."""


class JsonRpcClient:
    """
    One long-lived httpx client per endpoint. Redirects are not followed, so a
    moved endpoint surfaces as a 3xx status instead of silently answering from
    somewhere else.
    """

    def __init__(
        self,
        url: str,
        *,
        timeout: float = 5.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.url = url
        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(timeout, connect=timeout),
            follow_redirects=False,
            transport=transport,
        )
        self._ids = itertools.count(1)
        self.chain_id: Optional[int] = None

    async def call(self, method: str, params: Optional[List[Any]] = None) -> Any:
        body = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params or []}
        r = await self._client.post(self.url, json=body, headers={"Content-Type": "application/json"})
        if not r.is_success:
            raise RpcHttpError(r.status_code, self.url)
        try:
            payload = r.json()
        except ValueError as e:
            raise RpcProtocolError(f"Non-JSON body from {self.url}") from e
        if not isinstance(payload, dict):
            raise RpcProtocolError(f"Unexpected payload type {type(payload).__name__}")
        if payload.get("error") is not None:
            err = payload["error"]
            if isinstance(err, dict):
                raise RpcResponseError(err.get("code"), str(err.get("message", "")))
            raise RpcResponseError(None, str(err))
        if "result" not in payload:
            raise RpcProtocolError("Response carries neither result nor error")
        return payload["result"]

    async def detect_network(self) -> int:
        """
        Resolve the chain id once per client. Until it succeeds every data call
        fails with NetworkNotDetectedError.
        """
        if self.chain_id is not None:
            return self.chain_id
        try:
            self.chain_id = _hex_to_int(await self.call("eth_chainId"))
        except Exception as e:
            raise NetworkNotDetectedError(f"failed to detect network at {self.url}") from e
        logger.debug("Detected chain id {} at {}", self.chain_id, self.url)
        return self.chain_id

    async def get_block_number(self) -> int:
        await self.detect_network()
        return _hex_to_int(await self.call("eth_blockNumber"))

    async def get_block(self, number: int) -> Optional[Dict[str, Any]]:
        """
        Fetch a block header by number (transaction hashes only). Returns None
        when the node does not know the block.
        """
        await self.detect_network()
        block = await self.call("eth_getBlockByNumber", [hex(number), False])
        if block is None:
            return None
        if not isinstance(block, dict):
            raise RpcProtocolError(f"Unexpected block payload type {type(block).__name__}")
        return block

    async def aclose(self) -> None:
        await self._client.aclose()


def _hex_to_int(value: Any) -> int:
    """
    Decode a JSON-RPC quantity ("0x1a"). Plain integers are accepted as some
    gateways return them undecorated.
    """
    if isinstance(value, bool):
        raise RpcProtocolError(f"Invalid quantity: {value!r}")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value, 16) if value.lower().startswith("0x") else int(value)
        except ValueError as e:
            raise RpcProtocolError(f"Invalid quantity: {value!r}") from e
    raise RpcProtocolError(f"Invalid quantity: {value!r}")


def block_timestamp(block: Dict[str, Any]) -> int:
    """Return the block's unix timestamp in seconds."""
    if "timestamp" not in block:
        raise RpcProtocolError("Block has no timestamp")
    return _hex_to_int(block["timestamp"])
