"""
Declare the queues used by client verification.

- ``verification.requests.q`` and ``audit.logs.q``: durable classic queues
- ``verification.results.q``: quorum queue that dead-letters to
  ``verification.results.q.dlq`` after ``RESULTS_DELIVERY_LIMIT`` deliveries
- ``verification.results.q.retry``: holds retained results for
  ``VERIFICATION_RETAIN_DELAY_SECONDS``, then dead-letters them back to the
  results queue

Pass ``--best-effort`` (or set ``INIT_TOPOLOGY_BEST_EFFORT=1``) to exit
cleanly when the broker is unreachable, e.g. in CI without RabbitMQ.

Examples:
    python -m scripts.init_topology
    python -m scripts.init_topology --best-effort
"""

import argparse
import asyncio
import logging
import os

from client_verification.config import Settings, get_settings
from client_verification.logging_utils import setup_logging
from client_verification.rabbit import connect, declare_verification_topology

logger = logging.getLogger("scripts.init_topology")


async def declare_all(settings: Settings) -> None:
    connection = await connect(settings=settings)
    async with connection:
        channel = await connection.channel()
        await declare_verification_topology(channel, settings)
    logger.info(
        "Declared %s, %s (+ .retry, .dlq) and %s",
        settings.verification_request_queue,
        settings.verification_results_queue,
        settings.audit_log_queue,
    )


async def main(best_effort: bool) -> None:
    settings = get_settings()
    setup_logging(settings.log_level)
    try:
        await declare_all(settings)
    except Exception as exc:  # noqa: BLE001
        if not best_effort:
            raise
        logger.warning("Skipping topology declaration: %s", exc)


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Declare RabbitMQ queues for client verification")
    parser.add_argument("--best-effort", action="store_true", help="Do not fail if RabbitMQ is unreachable")
    args = parser.parse_args()

    env_best_effort = os.getenv("INIT_TOPOLOGY_BEST_EFFORT", "").lower() in {"1", "true", "yes"}
    asyncio.run(main(args.best_effort or env_best_effort))
