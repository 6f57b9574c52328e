"""
Verification results worker.

- Long-polls the verification results queue
- Matches extracted identity fields against the stored client profile
- Activates verified clients and publishes audit records
- Supervises the poller: health checks and restarts with backoff

Usage:
    python -m scripts.worker
"""

import asyncio
import logging
import signal
from typing import Callable

from client_verification.audit import QueueAuditLog
from client_verification.config import get_settings
from client_verification.db import dispose_engine, is_database_configured
from client_verification.handler import VerificationResultHandler
from client_verification.logging_utils import setup_logging
from client_verification.metrics import start_metrics_server
from client_verification.poller import Poller
from client_verification.rabbit import RabbitQueueClient
from client_verification.store import SqlClientStore
from client_verification.supervisor import PollingSupervisor
from client_verification.tracing import start_tracing

logger = logging.getLogger("scripts.worker")


async def main() -> None:
    """Entrypoint for running the verification worker as a script."""
    settings = get_settings()
    setup_logging(settings.log_level)

    try:
        start_metrics_server(settings.metrics_port)
        logger.info("Metrics server listening on :%d /metrics", settings.metrics_port)
    except OSError:
        # Already started in this process
        pass
    start_tracing("client-verification-worker")

    if not is_database_configured():
        logger.error("DATABASE_URL is not set; the worker cannot look up client profiles")
        return

    audit_log = QueueAuditLog(settings)
    audit_log.start()
    handler = VerificationResultHandler(SqlClientStore(), audit_log)

    async def create_poller(on_poll: Callable[[], None]) -> Poller:
        queue = RabbitQueueClient(settings.verification_results_queue, settings)
        await queue.open()
        return Poller(
            queue,
            handler,
            max_messages=settings.max_messages,
            wait_time_seconds=settings.wait_time_seconds,
            concurrency=settings.worker_concurrency,
            on_poll=on_poll,
        )

    supervisor = PollingSupervisor(create_poller, settings)
    stopping = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stopping.set)

    await supervisor.start()
    try:
        await stopping.wait()
    finally:
        await supervisor.stop()
        await audit_log.shutdown()
        await dispose_engine()


if __name__ == "__main__":
    asyncio.run(main())
