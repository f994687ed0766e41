from __future__ import annotations

"""Common runtime helpers for asyncio entry points."""

import asyncio
import signal
from dataclasses import dataclass
from typing import Protocol

from policy_tracker.config.logging_config import get_logger, setup_logging
from policy_tracker.config.settings import Settings

logger = get_logger(__name__)


class ShutdownSignal(Protocol):
    def is_set(self) -> bool: ...

    async def wait(self, timeout: float) -> bool: ...


@dataclass
class _ShutdownController:
    """Shutdown flag shared by signal handlers and the monitor loop."""

    _event: asyncio.Event

    def is_set(self) -> bool:
        return self._event.is_set()

    async def wait(self, timeout: float) -> bool:
        """Wait up to ``timeout`` seconds; True once shutdown was requested."""

        try:
            await asyncio.wait_for(self._event.wait(), timeout=max(0.0, timeout))
        except TimeoutError:
            return False
        return True

    def request(self, signum: int) -> None:
        sig_name = signal.Signals(signum).name
        logger.info("shutdown_signal_received", signal=sig_name)
        self._event.set()


def create_shutdown_controller() -> _ShutdownController:
    return _ShutdownController(asyncio.Event())


def install_signal_handlers(controller: _ShutdownController) -> None:
    """Register SIGTERM/SIGINT handlers on the running event loop."""

    loop = asyncio.get_running_loop()
    for signum in (signal.SIGTERM, signal.SIGINT):
        try:
            loop.add_signal_handler(signum, controller.request, signum)
        except NotImplementedError:
            # Event loops without add_signal_handler (Windows).
            signal.signal(
                signum,
                lambda received, _frame: loop.call_soon_threadsafe(
                    controller.request, received
                ),
            )


def initialize_logging(settings: Settings, *, json_logs: bool = False) -> None:
    """Initialize structlog-based logging for scripts."""

    setup_logging(log_level=settings.log_level, json_logs=json_logs)
    logger.info("logging_initialized", level=settings.log_level, json_logs=json_logs)


__all__ = [
    "ShutdownSignal",
    "create_shutdown_controller",
    "initialize_logging",
    "install_signal_handlers",
]
