"""
Publishes session alerts and summaries to RabbitMQ.

Both message kinds go to the `proctoring.exchange` topic exchange; a
downstream dashboard / persistence service binds its own queues.

Alert message:
{
    "sessionId":      "hex-string",
    "alert":          {id, timestamp, type, severity, message, source, confidence},
    "suspicionScore": 72
}

Summary message: SessionSummary.to_dict()

Publishing never raises: a broker outage must not break a session's tick
loop.  Each publish is retried once on a fresh connection, and every socket
operation is bounded by `broker_timeout_s`.

BackgroundPublisher moves the broker round-trip off the tick thread: ticks
only enqueue, and a single worker thread owns the connection.
"""
from __future__ import annotations

import json
import logging
import queue
import threading
from typing import Any

import pika

from smartproctor.config import get_settings
from smartproctor.ml.risk_aggregator import Alert
from smartproctor.session.controller import SessionSummary

logger = logging.getLogger(__name__)

# Thread-local storage: each publishing thread gets its own connection
_local = threading.local()


def _connection_parameters(settings) -> pika.ConnectionParameters:
    return pika.ConnectionParameters(
        host                       = settings.rabbitmq_host,
        port                       = settings.rabbitmq_port,
        virtual_host               = settings.rabbitmq_vhost,
        credentials                = pika.PlainCredentials(settings.rabbitmq_user,
                                                           settings.rabbitmq_password),
        heartbeat                  = 60,
        socket_timeout             = settings.broker_timeout_s,
        blocked_connection_timeout = settings.broker_timeout_s,
        connection_attempts        = 1,
    )


def _get_channel():
    """
    Per-thread channel on the result exchange.  A BlockingConnection is not
    thread-safe, so every publishing thread opens its own and reopens it after
    the broker drops it.
    """
    channel = getattr(_local, "channel", None)
    connection = getattr(_local, "connection", None)
    if connection is not None and connection.is_open and channel is not None and channel.is_open:
        return channel

    settings = get_settings()
    connection = pika.BlockingConnection(_connection_parameters(settings))
    channel = connection.channel()
    channel.exchange_declare(exchange=settings.exchange_name, exchange_type="topic", durable=True)

    _local.connection, _local.channel = connection, channel
    logger.info("Publisher: opened RabbitMQ channel for thread %s", threading.current_thread().name)
    return channel


def publish_alert(session_id: str, alert: Alert, suspicion_score: int | None = None) -> bool:
    """Publish one alert.  Returns True when the broker accepted it."""
    body = {
        "sessionId":      session_id,
        "alert":          alert.to_dict(),
        "suspicionScore": suspicion_score,
    }
    return _publish_with_retry(body, get_settings().alerts_routing_key)


def publish_summary(summary: SessionSummary) -> bool:
    """Publish the final summary of a stopped session."""
    return _publish_with_retry(summary.to_dict(), get_settings().summaries_routing_key)


def _drop_connection() -> None:
    connection = getattr(_local, "connection", None)
    _local.connection = _local.channel = None
    if connection is not None and connection.is_open:
        try:
            connection.close()
        except Exception as exc:
            logger.debug("Publisher: closing stale connection failed: %s", exc)


def _publish_with_retry(body: dict[str, Any], routing_key: str, attempts: int = 2) -> bool:
    exchange = get_settings().exchange_name
    payload = json.dumps(body, default=str).encode()
    properties = pika.BasicProperties(
        content_type  = "application/json",
        delivery_mode = pika.DeliveryMode.Persistent,
    )

    for attempt in range(1, attempts + 1):
        try:
            _get_channel().basic_publish(exchange, routing_key, payload, properties)
        except Exception as exc:
            logger.warning("Publish to %s failed (attempt %d/%d): %s",
                           routing_key, attempt, attempts, exc)
            _drop_connection()
            continue
        logger.debug("Published %s for session %s", routing_key, body.get("sessionId"))
        return True

    logger.error("Dropping %s message for session %s after %d attempts",
                 routing_key, body.get("sessionId"), attempts)
    return False


# ── Background publishing ──────────────────────────────────────────────────────

_STOP = object()


class BackgroundPublisher:
    """
    Queue-backed publisher for the session callbacks.

    submit_alert / submit_summary never touch the network: they enqueue and
    return at once, so a slow or unreachable broker cannot stall a tick (or
    hold a session's tick lock).  One daemon worker drains the queue through
    publish_alert / publish_summary and so owns the only broker connection.
    When the queue is full new messages are dropped and counted.
    """

    def __init__(self, maxsize: int | None = None) -> None:
        if maxsize is None:
            maxsize = get_settings().publish_queue_size
        self._queue: queue.Queue = queue.Queue(maxsize=maxsize)
        self._lock    = threading.Lock()
        self._closed  = False
        self._dropped = 0
        self._thread  = threading.Thread(target=self._run, name="result-publisher", daemon=True)
        self._thread.start()

    @property
    def dropped(self) -> int:
        return self._dropped

    def submit_alert(self, session_id: str, alert: Alert, suspicion_score: int | None = None) -> bool:
        return self._submit(publish_alert, session_id, alert, suspicion_score)

    def submit_summary(self, summary: SessionSummary) -> bool:
        return self._submit(publish_summary, summary)

    def _submit(self, publish, *args) -> bool:
        with self._lock:
            if self._closed:
                logger.warning("Publisher closed; dropping %s", publish.__name__)
                return False
            try:
                self._queue.put_nowait((publish, args))
            except queue.Full:
                self._dropped += 1
                logger.warning("Publish queue full; dropping %s (%d dropped so far)",
                               publish.__name__, self._dropped)
                return False
        return True

    def close(self, timeout: float | None = 10.0) -> bool:
        """
        Stop accepting messages, drain what is queued, then close the broker
        connection.  Returns False if the worker did not finish in time.
        """
        with self._lock:
            already_closed = self._closed
            self._closed = True
        if not already_closed:
            try:
                self._queue.put(_STOP, timeout=timeout)
            except queue.Full:
                logger.error("Publisher: queue still full after %ss; abandoning it", timeout)
                return False
        self._thread.join(timeout)
        if self._thread.is_alive():
            logger.warning("Publisher: %d messages still pending at close", self._queue.qsize())
            return False
        return True

    def _run(self) -> None:
        while True:
            item = self._queue.get()
            try:
                if item is _STOP:
                    _drop_connection()
                    return
                publish, args = item
                publish(*args)
            except Exception:
                logger.exception("Publisher worker: unexpected failure")
            finally:
                self._queue.task_done()
