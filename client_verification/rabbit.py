"""RabbitMQ helpers for connections, topology, publishing and pull-mode consumption.

This module wraps ``aio_pika`` to provide:
- Robust connections with optional TLS/mTLS support and bounded retry
- Declaration of the verification request, results and audit log queues
- ``RabbitQueueClient``, the ``QueueClient`` used by the poller: a long-poll
  style ``receive`` over ``basic.get`` plus ``delete`` / ``release``
- JSON publishing to a named queue, including verification requests
"""

import asyncio
import json
import logging
import ssl
from typing import Any, Dict, Mapping, Optional
from urllib.parse import urlsplit

import aio_pika
from aio_pika import DeliveryMode, Message
from aio_pika.abc import (
    AbstractChannel,
    AbstractIncomingMessage,
    AbstractQueue,
    AbstractRobustConnection,
    HeadersType,
)

from client_verification.config import Settings
from client_verification.constants import (
    DEAD_LETTER_QUEUE_SUFFIX,
    LONG_POLL_INTERVAL_SECONDS,
    RETAINED_COUNT_HEADER,
    RETRY_QUEUE_SUFFIX,
)
from client_verification.exceptions import UnknownReceiptHandleError
from client_verification.models import RawMessage, VerificationRequest
from client_verification.validation import now_iso

logger = logging.getLogger(__name__)


def _tls_requested(settings: Settings) -> bool:
    if urlsplit(settings.rabbitmq_url).scheme.lower() == "amqps":
        return True
    return bool(settings.rabbitmq_ssl_ca_path or settings.rabbitmq_ssl_cert_path or settings.rabbitmq_ssl_key_path)


def _build_ssl_context(settings: Settings) -> Optional[ssl.SSLContext]:
    """Return the TLS context for an ``amqps://`` URL or any ``RABBITMQ_SSL_*`` path, else ``None``.

    A client certificate is loaded only when both the cert and key paths are
    set. ``RABBITMQ_SSL_VERIFY=false`` turns off both certificate and
    hostname checks (local brokers with self-signed certs).
    """
    if not _tls_requested(settings):
        return None

    tls = ssl.create_default_context(cafile=settings.rabbitmq_ssl_ca_path or None)
    if settings.rabbitmq_ssl_cert_path and settings.rabbitmq_ssl_key_path:
        tls.load_cert_chain(certfile=settings.rabbitmq_ssl_cert_path, keyfile=settings.rabbitmq_ssl_key_path)

    verify = settings.rabbitmq_ssl_verify
    if not verify and settings.is_prod():
        logger.warning("RABBITMQ_SSL_VERIFY is off in production; broker certificates are not checked")
    tls.check_hostname = verify and settings.rabbitmq_ssl_check_hostname
    tls.verify_mode = ssl.CERT_REQUIRED if verify else ssl.CERT_NONE
    return tls


def _connect_delay_seconds(attempt: int, settings: Settings) -> float:
    """Exponential backoff after failed attempt ``attempt`` (1-based), capped."""
    delay_ms = settings.rabbitmq_connect_base_delay_ms * (2 ** (attempt - 1))
    return min(delay_ms, settings.rabbitmq_connect_max_delay_ms) / 1000.0


async def connect(amqp_url: str | None = None, settings: Settings | None = None) -> AbstractRobustConnection:
    """Open a robust connection to the broker, retrying with exponential backoff.

    Gives up after ``settings.rabbitmq_connect_attempts`` tries and re-raises
    the last connection error.

    Example:
        >>> connection = await connect(settings=Settings())
        >>> async with connection:
        ...     channel = await connection.channel()
    """
    settings = settings or Settings()
    url = amqp_url or settings.rabbitmq_url
    ssl_context = _build_ssl_context(settings)
    tls_kwargs: Dict[str, Any] = {"ssl": True, "ssl_context": ssl_context} if ssl_context is not None else {}

    attempts = max(1, settings.rabbitmq_connect_attempts)
    attempt = 0
    while True:
        attempt += 1
        try:
            return await aio_pika.connect_robust(url, **tls_kwargs)
        except Exception as exc:  # noqa: BLE001
            if attempt >= attempts:
                logger.error("Giving up on RabbitMQ after %d connect attempts", attempts)
                raise
            delay = _connect_delay_seconds(attempt, settings)
            logger.warning(
                "RabbitMQ connect attempt %d/%d failed (%s); retrying in %.1fs", attempt, attempts, exc, delay
            )
            await asyncio.sleep(delay)


def retry_queue_name(results_queue: str) -> str:
    return f"{results_queue}{RETRY_QUEUE_SUFFIX}"


def dead_letter_queue_name(results_queue: str) -> str:
    return f"{results_queue}{DEAD_LETTER_QUEUE_SUFFIX}"


async def declare_verification_topology(channel: AbstractChannel, settings: Settings) -> None:
    """Declare the request, results and audit log queues.

    - Requests and audit logs: plain durable queues on the default exchange
    - Results: a quorum queue with ``x-delivery-limit``; messages the broker
      keeps redelivering (consumer crashes) are dead-lettered to ``<results>.dlq``
    - ``<results>.retry``: holds retained messages for ``retain_delay_seconds``
      (``x-message-ttl``), then dead-letters them back to the results queue
    """
    results = settings.verification_results_queue
    await channel.declare_queue(settings.verification_request_queue, durable=True)
    await channel.declare_queue(settings.audit_log_queue, durable=True)

    await channel.declare_queue(dead_letter_queue_name(results), durable=True)
    await channel.declare_queue(
        retry_queue_name(results),
        durable=True,
        arguments={
            "x-message-ttl": settings.retain_delay_seconds * 1000,
            "x-dead-letter-exchange": "",
            "x-dead-letter-routing-key": results,
        },
    )
    await channel.declare_queue(
        results,
        durable=True,
        arguments={
            "x-queue-type": "quorum",
            "x-delivery-limit": settings.results_delivery_limit,
            "x-dead-letter-exchange": "",
            "x-dead-letter-routing-key": dead_letter_queue_name(results),
        },
    )


async def publish_json(
    channel: AbstractChannel,
    queue_name: str,
    payload: Mapping[str, Any],
    headers: Optional[HeadersType] = None,
    persistent: bool = True,
) -> None:
    """Publish a JSON payload to ``queue_name`` through the default exchange."""
    body = json.dumps(payload, separators=(",", ":"), default=str).encode("utf-8")
    hdrs: Dict[str, Any] = dict(headers) if headers else {}
    amqp_message = Message(
        body=body,
        content_type="application/json",
        delivery_mode=DeliveryMode.PERSISTENT if persistent else DeliveryMode.NOT_PERSISTENT,
        headers=hdrs,
    )
    await channel.default_exchange.publish(amqp_message, routing_key=queue_name)


async def publish_verification_request(
    channel: AbstractChannel,
    queue_name: str,
    *,
    client_id: str,
    client_email: str,
    agent_id: str,
    agent_email: str,
    headers: Optional[HeadersType] = None,
) -> VerificationRequest:
    """Build a ``VerificationRequest`` stamped with the current time and publish it.

    Publish failures are logged and re-raised so the caller can report them.
    """
    request = VerificationRequest(
        client_id=client_id,
        client_email=client_email,
        agent_id=agent_id,
        agent_email=agent_email,
        timestamp=now_iso(),
    )
    try:
        await publish_json(channel, queue_name, request.model_dump(by_alias=True), headers=headers)
    except Exception:
        logger.exception("Failed to send verification request for client %s", client_id)
        raise
    logger.info("Sent verification request for client %s to %s", client_id, queue_name)
    return request


class RabbitQueueClient:
    """Pull-mode client over a single RabbitMQ queue.

    ``receive`` emulates a long-poll on top of ``basic.get``: it waits (in
    short sleeps) until at least one message is available or
    ``wait_time_seconds`` elapse, then drains up to ``max_messages`` without
    waiting further. Received messages stay unacknowledged until ``delete``
    or ``release`` is called with their receipt handle, or until ``close``
    hands them back to the broker.

    ``release`` does not requeue in place: it republishes the message to
    ``<queue>.retry`` with ``x-retained-count`` incremented and acks the
    original, so the broker redelivers it after ``retain_delay_seconds``.
    Once the count passes ``results_delivery_limit`` the message goes to
    ``<queue>.dlq`` instead.

    Receipt handles are ``<channel generation>.<delivery tag>``. Delivery tags
    are only valid on the channel that issued them, so handles from before a
    channel reopen are dropped and rejected as unknown.

    Example:
        >>> client = RabbitQueueClient("verification.results.q")
        >>> await client.open()
        >>> for message in await client.receive(10, 20):
        ...     await client.delete(message.receipt_handle)
        >>> await client.close()
    """

    def __init__(
        self,
        queue_name: str,
        settings: Settings | None = None,
        poll_interval_seconds: float = LONG_POLL_INTERVAL_SECONDS,
    ) -> None:
        self.queue_name = queue_name
        self._settings = settings or Settings()
        self._poll_interval = poll_interval_seconds
        self._connection: AbstractRobustConnection | None = None
        self._channel: AbstractChannel | None = None
        self._queue: AbstractQueue | None = None
        self._generation = 0
        self._in_flight: dict[str, AbstractIncomingMessage] = {}

    async def open(self) -> None:
        self._connection = await connect(settings=self._settings)
        self._channel = await self._connection.channel()
        reopen_callbacks = getattr(self._channel, "reopen_callbacks", None)
        if reopen_callbacks is not None:
            reopen_callbacks.add(self._on_channel_reopen)
        self._queue = await self._channel.get_queue(self.queue_name)
        logger.info("Queue client opened for %s", self.queue_name)

    def _on_channel_reopen(self, *_args: Any) -> None:
        if self._in_flight:
            logger.warning(
                "Channel for %s reopened; dropping %d stale receipt handle(s)",
                self.queue_name,
                len(self._in_flight),
            )
        self._generation += 1
        self._in_flight.clear()

    async def receive(self, max_messages: int, wait_time_seconds: float) -> list[RawMessage]:
        if self._queue is None:
            raise RuntimeError("Queue client is not open")
        loop = asyncio.get_running_loop()
        deadline = loop.time() + wait_time_seconds
        batch: list[RawMessage] = []
        while len(batch) < max_messages:
            incoming = await self._queue.get(no_ack=False, fail=False)
            if incoming is None:
                remaining = deadline - loop.time()
                if batch or remaining <= 0:
                    break
                await asyncio.sleep(min(self._poll_interval, remaining))
                continue
            handle = f"{self._generation}.{incoming.delivery_tag}"
            self._in_flight[handle] = incoming
            batch.append(
                RawMessage(
                    receipt_handle=handle,
                    body=incoming.body,
                    headers=dict(incoming.headers or {}),
                    message_id=incoming.message_id,
                )
            )
        return batch

    async def delete(self, receipt_handle: str) -> None:
        await self._pop(receipt_handle).ack()

    async def release(self, receipt_handle: str) -> None:
        incoming = self._pop(receipt_handle)
        if self._channel is None:
            raise RuntimeError("Queue client is not open")
        headers: Dict[str, Any] = dict(incoming.headers or {})
        retained = int(headers.get(RETAINED_COUNT_HEADER, 0)) + 1
        headers[RETAINED_COUNT_HEADER] = retained
        if retained > self._settings.results_delivery_limit:
            target = dead_letter_queue_name(self.queue_name)
            logger.warning(
                "Message %s retained %d times; moving it to %s", incoming.message_id, retained, target
            )
        else:
            target = retry_queue_name(self.queue_name)
        amqp_message = Message(
            body=incoming.body,
            content_type=incoming.content_type or "application/json",
            delivery_mode=DeliveryMode.PERSISTENT,
            message_id=incoming.message_id,
            headers=headers,
        )
        # Publish before ack: a crash in between duplicates the message rather than losing it
        await self._channel.default_exchange.publish(amqp_message, routing_key=target)
        await incoming.ack()

    async def close(self) -> None:
        # Unacknowledged messages go back to the queue when the channel closes
        self._in_flight.clear()
        if self._connection is not None and not self._connection.is_closed:
            await self._connection.close()
        self._connection = None
        self._channel = None
        self._queue = None

    def _pop(self, receipt_handle: str) -> AbstractIncomingMessage:
        try:
            return self._in_flight.pop(receipt_handle)
        except KeyError:
            raise UnknownReceiptHandleError(receipt_handle) from None
