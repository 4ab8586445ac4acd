"""
modbot entry point.

Brings up the backend communication layer: settings, logging, API client and
the persistent state store, then keeps running until interrupted.
"""

import asyncio
from datetime import datetime

from loguru import logger

from modbot.context import ServiceContext
from modbot.logging_setup import configure_logging
from modbot.settings import load_settings


async def record_startup(context: ServiceContext) -> int:
    """Bump the durable start counter and return it."""
    starts = (await context.state.get("bot:start_count") or 0) + 1
    await context.state.set("bot:start_count", starts)
    await context.state.set("bot:last_start", datetime.now().isoformat())
    return starts


async def main() -> None:
    settings = load_settings()
    configure_logging(settings.log_level, audit_file=settings.audit_log_file)
    logger.info("Starting modbot...")

    context = ServiceContext(settings)
    try:
        logger.info("Initializing state store...")
        result = await context.initialize_state()
        if not result.success:
            raise RuntimeError(f"State store initialization failed: {result.error}")

        starts = await record_startup(context)
        logger.info(f"modbot is running (start #{starts}). Press Ctrl+C to stop.")

        while True:
            await asyncio.sleep(60)
            logger.debug(f"Health: {context.get_health_status()['api']}")

    except (KeyboardInterrupt, asyncio.CancelledError):
        logger.info("Received interrupt signal, shutting down...")
    except Exception as e:
        logger.error(f"Error in main loop: {e}")
        raise
    finally:
        if context.state.is_initialized:
            await context.state.set("bot:last_stop", datetime.now().isoformat())
        await context.close()
        logger.info("modbot stopped")


if __name__ == "__main__":
    asyncio.run(main())
