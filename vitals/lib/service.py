"""Service runner utility for event-driven services."""

import asyncio
import signal
from collections.abc import Awaitable, Callable
from contextlib import suppress

from vitals.logging import configure, get_logger


def run_service(
    main: Callable[[], Awaitable[None]],
    *,
    name: str = "service",
) -> None:
    """Run an async service until it returns or a stop signal arrives.

    Configures logging, installs SIGTERM/SIGINT handlers that cancel the
    main task so its cleanup code runs, then drives it to completion.

    Args:
        main: Async function to run (typically named ``run``).
        name: Service name for logging.
    """
    logger = get_logger(f"{name}.service")

    configure()

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    task = loop.create_task(main())

    def _stop() -> None:
        logger.info("Stopping %s service", name)
        task.cancel()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, _stop)

    with suppress(KeyboardInterrupt, asyncio.CancelledError):
        loop.run_until_complete(task)
    loop.close()
