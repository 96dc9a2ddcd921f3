"""
Endpoint liveness and freshness checks.
"""
from __future__ import annotations

import socket
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Optional

import httpx
from loguru import logger
from pydantic import BaseModel, ConfigDict

from ..utils.rpc_utils import (
    JsonRpcClient,
    NetworkNotDetectedError,
    RpcHttpError,
    RpcProtocolError,
    RpcResponseError,
    block_timestamp,
)

STALE_AFTER = timedelta(minutes=5)

_DNS_MARKERS = (
    "name or service not known",
    "nodename nor servname",
    "getaddrinfo failed",
    "temporary failure in name resolution",
    "no address associated with hostname",
)
_REDIRECT_CODES = (301, 302, 307, 308)


class EndpointConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    url: str
    icon: str = "🎉"


@dataclass
class HealthVerdict:
    is_up: bool
    block_number: Optional[int] = None
    block_timestamp: Optional[datetime] = None
    reason: str = ""


@dataclass
class EndpointState:
    was_down: bool = True
    last_notified_block: Optional[int] = None
    # One-shot flag for the "network detection failed" diagnostic
    network_warning_shown: bool = False


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class HealthCheckExecutor:
    def __init__(
        self,
        *,
        request_timeout: float = 5.0,
        clock: Callable[[], datetime] = _utcnow,
        client_factory: Optional[Callable[[str], JsonRpcClient]] = None,
    ) -> None:
        self.request_timeout = request_timeout
        self._clock = clock
        self._client_factory = client_factory or (lambda url: JsonRpcClient(url, timeout=self.request_timeout))
        self._clients: Dict[str, JsonRpcClient] = {}

    def client_for(self, endpoint: EndpointConfig) -> JsonRpcClient:
        client = self._clients.get(endpoint.url)
        if client is None:
            client = self._client_factory(endpoint.url)
            self._clients[endpoint.url] = client
        return client

    async def check(self, endpoint: EndpointConfig, state: EndpointState) -> HealthVerdict:
        """
        Query the head block and verify it is recent. Never raises: every
        failure becomes a down verdict with a diagnostic reason.
        """
        try:
            client = self.client_for(endpoint)
            block_number = await client.get_block_number()
            block = await client.get_block(block_number)
            if not block:
                logger.info("{}: Block #{} not found", endpoint.name, block_number)
                return HealthVerdict(is_up=False, reason="Block not found")

            ts = datetime.fromtimestamp(block_timestamp(block), tz=timezone.utc)
            # The endpoint answered, so the next detection failure is news again
            state.network_warning_shown = False
            age = self._clock() - ts
            if age > STALE_AFTER:
                reason = f"Chain appears stale (last block: {int(age.total_seconds() // 60)} minutes old)"
                logger.info("{}: {}", endpoint.name, reason)
                return HealthVerdict(is_up=False, block_number=block_number, block_timestamp=ts, reason=reason)

            logger.info("{}: Block #{}", endpoint.name, block_number)
            return HealthVerdict(is_up=True, block_number=block_number, block_timestamp=ts)
        except Exception as e:
            reason = describe_error(e, state)
            if reason:
                logger.info("{}: {}", endpoint.name, reason)
            logger.debug("{}: check failed: {!r}", endpoint.name, e)
            return HealthVerdict(is_up=False, reason=reason)

    async def aclose(self) -> None:
        for client in self._clients.values():
            try:
                await client.aclose()
            except Exception as e:
                logger.debug("Failed to close client for {}: {}", client.url, e)
        self._clients.clear()


def describe_error(error: BaseException, state: EndpointState) -> str:
    """
    Map a check failure to a short diagnostic. Returns "" when the message is
    suppressed (repeated network detection failures).
    """
    if isinstance(error, NetworkNotDetectedError):
        cause = error.__cause__
        specific = _describe_specific(cause) if cause is not None else None
        if specific:
            return specific
        if not state.network_warning_shown:
            state.network_warning_shown = True
            return "Network detection failed - will keep retrying"
        return ""
    return _describe_specific(error) or _describe_generic(error)


def _describe_specific(error: BaseException) -> Optional[str]:
    if _is_dns_failure(error):
        return "DNS lookup failed"
    if isinstance(error, RpcHttpError):
        code = error.status_code
        if code == 502:
            return "502 Bad Gateway"
        if code in _REDIRECT_CODES:
            return "URL has moved - needs updated RPC path"
        if code >= 500:
            return f"Server error (HTTP {code})"
        return f"HTTP error {code}"
    return None


def _describe_generic(error: BaseException) -> str:
    if isinstance(error, httpx.TimeoutException):
        return "Request timed out"
    if isinstance(error, RpcResponseError):
        return f"RPC error: {error.message}"
    if isinstance(error, RpcProtocolError):
        return "Malformed RPC response"
    return "Connection failed"


def _is_dns_failure(error: BaseException) -> bool:
    seen = set()
    current: Optional[BaseException] = error
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        if isinstance(current, socket.gaierror):
            return True
        if isinstance(current, (httpx.ConnectError, OSError)):
            text = str(current).lower()
            if any(marker in text for marker in _DNS_MARKERS):
                return True
        current = current.__cause__ or current.__context__
    return False
