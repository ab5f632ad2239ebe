from __future__ import annotations

import asyncio
import logging
import signal

from hiretrack.core.config import get_settings
from hiretrack.core.telemetry import configure_logging, setup_telemetry, shutdown_telemetry
from hiretrack.services.orchestrator import build_orchestrator
from hiretrack.services.repository import get_repository

logger = logging.getLogger(__name__)


async def run_tracker(stop_event: asyncio.Event | None = None) -> None:
    """Run the scheduler headless until SIGINT/SIGTERM or ``stop_event`` is set."""
    settings = get_settings()
    configure_logging()
    telemetry_runtime = setup_telemetry(settings, role="worker")
    repository = get_repository()
    orchestrator = build_orchestrator(settings, repository)
    stop_event = stop_event or asyncio.Event()

    loop = asyncio.get_running_loop()
    for signum in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(signum, stop_event.set)
        except (NotImplementedError, RuntimeError):
            logger.debug("signal handler for %s unavailable", signum)

    logger.info(
        "Tracker worker starting (environment=%s tracing=%s)",
        settings.environment,
        "on" if telemetry_runtime.enabled else "off",
    )
    try:
        await orchestrator.start()
        await stop_event.wait()
    finally:
        await orchestrator.stop()
        await repository.close()
        get_repository.cache_clear()
        shutdown_telemetry(telemetry_runtime)


def main() -> None:
    asyncio.run(run_tracker())


if __name__ == "__main__":
    main()
