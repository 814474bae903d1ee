import asyncio
import logging
import signal

import uvicorn

logger = logging.getLogger(__name__)


def main():
    uvicorn.run(
        "contentops.main:app",
        host="127.0.0.1",
        port=8000,
        reload=True
    )


def worker():
    """Run a claim/poll worker until SIGINT or SIGTERM."""
    from dotenv import load_dotenv
    load_dotenv()

    from contentops.logging_config import configure_logging
    from contentops.tracing import configure_tracing
    from contentops.services.worker import Worker

    configure_logging()
    configure_tracing("contentops-worker")

    w = Worker()

    async def _run():
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, w.stop)
        await w.run_forever()

    asyncio.run(_run())
