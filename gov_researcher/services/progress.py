# =============================================================================
# Progress Events: Advisory Per-connection Telemetry
# =============================================================================
#
# Callers may pass a connection id with a research request and listen on
# /ws/{connection_id} for coarse progress. The pipeline publishes through a
# ProgressReporter; the hub fans events into one bounded queue per id.
#
# Event shape: {"type": ..., "timestamp": ISO-8601, "data": {...}}
#   state_transition  {"from": "search", "to": "query", ...}
#   sub_state_log     {"state": "resource_eval", "message": "...", ...}
#   error             {"message": "...", "stage": "..."}
#   info              {"message": "...", ...}
#
# DESIGN DECISION: Publishing never blocks and never raises. Events for an
# id nobody listens on are dropped, and so are events that would overflow
# a slow listener's queue. Correctness never depends on this channel.
#
# One listener per id: a new registration replaces the old queue, and the
# old listener's unregister leaves the replacement in place.
# =============================================================================

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)

_QUEUE_MAXSIZE = 256


class ProgressEventType(str, Enum):
    STATE_TRANSITION = "state_transition"
    SUB_STATE_LOG = "sub_state_log"
    ERROR = "error"
    INFO = "info"


class ProgressHub:
    """Registry of listener queues keyed by connection id."""

    def __init__(self) -> None:
        self._queues: dict[str, asyncio.Queue[dict[str, Any]]] = {}

    def register(self, connection_id: str) -> asyncio.Queue[dict[str, Any]]:
        queue: asyncio.Queue[dict[str, Any]] = asyncio.Queue(maxsize=_QUEUE_MAXSIZE)
        self._queues[connection_id] = queue
        logger.debug("Progress listener registered: %s", connection_id)
        return queue

    def unregister(self, connection_id: str, queue: asyncio.Queue[dict[str, Any]] | None = None) -> None:
        """Drop the listener; with `queue`, only if it is still the registered one."""
        if queue is not None and self._queues.get(connection_id) is not queue:
            return
        self._queues.pop(connection_id, None)

    def is_listening(self, connection_id: str) -> bool:
        return connection_id in self._queues

    def publish(self, connection_id: str | None, event: dict[str, Any]) -> None:
        if not connection_id:
            return
        queue = self._queues.get(connection_id)
        if queue is None:
            return
        try:
            queue.put_nowait(event)
        except asyncio.QueueFull:
            logger.debug("Progress queue full for %s, dropping event", connection_id)


hub = ProgressHub()


class ProgressReporter:
    """Publishes typed events for one request's connection id."""

    def __init__(self, connection_id: str | None = None, progress_hub: ProgressHub | None = None):
        self.connection_id = connection_id
        self._hub = progress_hub or hub

    def emit(self, event_type: ProgressEventType, **data: Any) -> None:
        self._hub.publish(self.connection_id, {
            "type": event_type.value,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "data": data,
        })

    def transition(self, from_state: str, to_state: str, **data: Any) -> None:
        logger.info("[state] %s → %s", from_state, to_state)
        self.emit(ProgressEventType.STATE_TRANSITION, **{"from": from_state, "to": to_state}, **data)

    def log(self, state: str, message: str, **data: Any) -> None:
        self.emit(ProgressEventType.SUB_STATE_LOG, state=state, message=message, **data)

    def info(self, message: str, **data: Any) -> None:
        self.emit(ProgressEventType.INFO, message=message, **data)

    def error(self, message: str, stage: str) -> None:
        self.emit(ProgressEventType.ERROR, message=message, stage=stage)
