"""
RPC uptime monitor controller.

Runs every configured endpoint check concurrently once per tick, then walks the
verdicts in configuration order and notifies on DOWN -> UP edges (and, when
enabled, UP -> DOWN edges).
"""
from __future__ import annotations

import asyncio
from typing import Dict, List, Optional

from loguru import logger
from pydantic import BaseModel, field_validator

from ..executors.health_check_executor import (
    EndpointConfig,
    EndpointState,
    HealthCheckExecutor,
    HealthVerdict,
)
from ..executors.notification_executor import NotificationExecutor

START_MESSAGE = "🚀 Starting RPC monitoring..."
STOP_MESSAGE = "⏹️ RPC monitoring stopped"


def default_endpoints() -> List[EndpointConfig]:
    return [
        EndpointConfig(name="Leaked RPC", url="https://abstract.leakedrpc.com", icon="🎉"),
        EndpointConfig(name="Official RPC", url="https://api.abs.xyz", icon="🌟"),
        EndpointConfig(name="Mainnet RPC", url="https://api.mainnet.abs.xyz", icon="⭐"),
        EndpointConfig(name="Root RPC", url="https://abs.xyz", icon="💫"),
        EndpointConfig(name="Blast RPC", url="https://abstract-mainnet.public.blastapi.io", icon="⚡"),
    ]


class MonitorConfig(BaseModel):
    endpoints: List[EndpointConfig] = default_endpoints()
    notify_url: str = "https://ntfy.sh/abs"
    check_interval: float = 1.0
    notify_on_down: bool = False
    request_timeout: float = 5.0
    dry_run: bool = False

    @field_validator("endpoints")
    @classmethod
    def _unique_names(cls, v: List[EndpointConfig]) -> List[EndpointConfig]:
        names = [e.name for e in v]
        dupes = sorted({n for n in names if names.count(n) > 1})
        if dupes:
            raise ValueError(f"duplicate endpoint names: {dupes}")
        return v

    @field_validator("check_interval", "request_timeout")
    @classmethod
    def _positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("must be positive")
        return v


class MonitorController:
    """Owns per-endpoint state and drives the check/notify loop."""

    def __init__(
        self,
        config: MonitorConfig,
        *,
        checker: Optional[HealthCheckExecutor] = None,
        notifier: Optional[NotificationExecutor] = None,
    ) -> None:
        self.config = config
        self.checker = checker or HealthCheckExecutor(request_timeout=config.request_timeout)
        self.notifier = notifier or NotificationExecutor(
            topic_url=config.notify_url,
            timeout=config.request_timeout,
            dry_run=config.dry_run,
        )
        self.states: Dict[str, EndpointState] = {e.name: EndpointState() for e in config.endpoints}
        self._tick_count = 0

    async def start(self) -> None:
        logger.info(START_MESSAGE)
        await self.notifier.send(START_MESSAGE)
        logger.info("Monitoring RPCs:")
        for e in self.config.endpoints:
            logger.info("- {}: {}", e.name, e.url)
        logger.info(
            "interval={}s notify_on_down={} dry_run={}",
            self.config.check_interval,
            self.config.notify_on_down,
            self.config.dry_run,
        )

    async def stop(self) -> None:
        """Best-effort stop notification. Never raises."""
        logger.info("Shutting down monitor...")
        try:
            await self.notifier.send(STOP_MESSAGE)
        except Exception as e:
            logger.warning("Stop notification failed: {}", e)

    async def aclose(self) -> None:
        await self.checker.aclose()
        await self.notifier.aclose()

    async def on_tick(self) -> List[str]:
        """
        Single monitor tick. All checks settle before any transition is
        evaluated. Returns the notification messages emitted this tick.
        """
        self._tick_count += 1
        endpoints = self.config.endpoints
        results = await asyncio.gather(
            *(self.checker.check(e, self.states[e.name]) for e in endpoints),
            return_exceptions=True,
        )

        sent: List[str] = []
        for endpoint, result in zip(endpoints, results):
            if isinstance(result, BaseException):
                logger.opt(exception=result).error("{}: check raised unexpectedly", endpoint.name)
                result = HealthVerdict(is_up=False, reason="Check failed")
            message = self.apply_verdict(endpoint, result)
            if message is not None:
                logger.info("{}", message)
                await self.notifier.send(message)
                sent.append(message)
        return sent

    def apply_verdict(self, endpoint: EndpointConfig, verdict: HealthVerdict) -> Optional[str]:
        """
        Advance one endpoint's DOWN/UP state. Returns the notification to send
        for this transition, or None.
        """
        state = self.states[endpoint.name]
        if verdict.is_up and state.was_down:
            state.was_down = False
            state.last_notified_block = verdict.block_number
            return f"{endpoint.icon} {endpoint.name} is back online! Block: {verdict.block_number}"
        if not verdict.is_up and not state.was_down:
            state.was_down = True
            logger.debug("{}: UP -> DOWN ({})", endpoint.name, verdict.reason or "no reason")
            if self.config.notify_on_down:
                suffix = f" ({verdict.reason})" if verdict.reason else ""
                return f"🔻 {endpoint.name} is down{suffix}"
        return None

    async def run_forever(self) -> None:
        await self.start()
        while True:
            await self.on_tick()
            await asyncio.sleep(self.config.check_interval)
