"""
main.py — Single entry point.

Runs the discovery HTTP API in one asyncio event loop — no threads, no
subprocesses. On SIGINT/SIGTERM every live job is flagged for cancellation so
in-flight searches return their partial results before the server stops.
"""
import asyncio
import logging
import signal
import sys

import config

# Log file lives in DATA_DIR next to the category cache so that a single
# Docker volume mount (./data:/app/data) captures both.
config.DATA_DIR.mkdir(parents=True, exist_ok=True)

logging.basicConfig(
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    level=logging.INFO,
    handlers=[
        logging.StreamHandler(sys.stdout),
        logging.FileHandler(str(config.DATA_DIR / "discovery.log"), encoding="utf-8"),
    ],
)
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)
logging.getLogger("aiohttp.access").setLevel(logging.WARNING)

logger = logging.getLogger(__name__)


async def run() -> None:
    from web_server import build_pipeline, start_server

    try:
        pipeline = build_pipeline()
    except RuntimeError as exc:
        logger.critical("FATAL: %s", exc)
        raise

    runner = await start_server(pipeline)

    stop_event = asyncio.Event()

    def _stop(*_):
        logger.info("Shutdown signal received.")
        stop_event.set()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _stop)
        except (NotImplementedError, RuntimeError):
            # Windows doesn't support add_signal_handler for all signals
            pass

    logger.info("✅ Discovery service is running. Press Ctrl+C to stop.")

    try:
        await stop_event.wait()
    except (KeyboardInterrupt, SystemExit):
        pass

    # Graceful shutdown
    cancelled = pipeline.registry.cancel_all()
    if cancelled:
        logger.info("Cancelled %d running job(s).", cancelled)
    await runner.cleanup()
    logger.info("Goodbye.")


def main() -> None:
    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
