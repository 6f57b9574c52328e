"""
Send a verification request for one client.

- Builds a ``VerificationRequest`` stamped with the current time
- Publishes it to the verification request queue with trace headers

Usage:
    python -m scripts.producer --client-id 6f1c9c1e-... --client-email c@example.com \
        --agent-id agent-1 --agent-email agent@example.com
"""

import argparse
import asyncio
import uuid

from client_verification.config import get_settings
from client_verification.logging_utils import setup_logging
from client_verification.rabbit import connect, publish_verification_request
from client_verification.tracing import get_tracer, inject_headers, start_tracing


async def main(client_id: uuid.UUID, client_email: str, agent_id: str, agent_email: str) -> None:
    """Publish one verification request to the request queue."""
    settings = get_settings()
    setup_logging(settings.log_level)
    start_tracing("client-verification-producer")
    tracer = get_tracer("client-verification-producer")

    connection = await connect(settings=settings)
    async with connection:
        channel = await connection.channel(publisher_confirms=True)
        with tracer.start_as_current_span("publish_verification_request") as span:
            span.set_attribute("client_id", str(client_id))
            request = await publish_verification_request(
                channel,
                settings.verification_request_queue,
                client_id=str(client_id),
                client_email=client_email,
                agent_id=agent_id,
                agent_email=agent_email,
                headers=inject_headers(),
            )
    print(request.model_dump_json(by_alias=True))


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Send a client verification request")
    parser.add_argument("--client-id", type=uuid.UUID, required=True)
    parser.add_argument("--client-email", required=True)
    parser.add_argument("--agent-id", required=True)
    parser.add_argument("--agent-email", required=True)
    args = parser.parse_args()
    asyncio.run(main(args.client_id, args.client_email, args.agent_id, args.agent_email))
