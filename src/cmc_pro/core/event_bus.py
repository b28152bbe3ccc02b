"""Fire-and-forget notification bus for credit, rate-limit and API events.

Components publish named notifications; in-process listeners (logging and
metrics, see :mod:`cmc_pro.monitoring.listeners`) and, when a Redis URL is
configured, external consumers subscribed to the pub/sub channel receive
them.

Channel naming convention::

    {channel_prefix}:{notification}      e.g. coinmarketcap:events:credit.consumed

Message shape (every notification)::

    {
        "event": "credit.warning_threshold_exceeded",
        "timestamp": "2026-10-19T08:15:00+00:00",
        "usage_percentage": 0.81,
        "warning_threshold": 0.8,
        "used_credits": 8100,
        "total_credits": 10000,
        "remaining_credits": 1900
    }

Publishing never raises.  A failing listener or an unreachable Redis is
logged at WARNING and the caller's control flow continues.

Usage::

    from cmc_pro.core.event_bus import CREDIT_CONSUMED, EventBus

    bus = EventBus(options=config.events)
    bus.subscribe(CREDIT_CONSUMED, lambda name, message: print(message))
    bus.publish(CREDIT_CONSUMED, {"endpoint": "cryptocurrency/info", "credits": 1})
"""

from __future__ import annotations

import json
import logging
from collections import defaultdict
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from cmc_pro.config.options import EventOptions

logger = logging.getLogger(__name__)

Handler = Callable[[str, dict[str, Any]], None]

# ---------------------------------------------------------------------------
# Notification names
# ---------------------------------------------------------------------------

API_CALL_MADE = "api.call_made"
API_ERROR = "api.error"
API_RETRY_ATTEMPT = "api.retry_attempt"
CREDIT_CONSUMED = "credit.consumed"
CREDIT_WARNING = "credit.warning_threshold_exceeded"
RATE_LIMIT_DAILY = "rate_limit.daily_exceeded"
RATE_LIMIT_MINUTE = "rate_limit.minute_exceeded"
STRATEGY_CHANGED = "cache.strategy_changed"

WILDCARD = "*"

_DISPATCH_GROUPS: dict[str, str] = {
    API_CALL_MADE: "api_call_made",
    API_ERROR: "api_error",
    API_RETRY_ATTEMPT: "api_error",
    CREDIT_CONSUMED: "credit_consumed",
    CREDIT_WARNING: "credit_warning",
    RATE_LIMIT_DAILY: "rate_limit_hit",
    RATE_LIMIT_MINUTE: "rate_limit_hit",
}
"""Notification -> dispatch flag in :class:`EventOptions`.  Unlisted names
are gated only by the master switch."""


class EventBus:
    """In-process listener registry with optional Redis pub/sub forwarding.

    Args:
        options: Master switch and per-group dispatch flags.
        redis_url: When set, every published message is also sent to
            ``{channel_prefix}:{name}`` on this Redis server.
        channel_prefix: Pub/sub channel prefix.
    """

    def __init__(
        self,
        options: Optional[EventOptions] = None,
        redis_url: Optional[str] = None,
        channel_prefix: str = "coinmarketcap:events",
    ) -> None:
        self._options = options or EventOptions()
        self._redis_url = redis_url
        self._channel_prefix = channel_prefix
        self._handlers: dict[str, list[Handler]] = defaultdict(list)

    def subscribe(self, name: str, handler: Handler) -> None:
        """Register *handler* for notification *name* (``"*"`` for all)."""
        self._handlers[name].append(handler)

    def unsubscribe(self, name: str, handler: Handler) -> None:
        if handler in self._handlers.get(name, []):
            self._handlers[name].remove(handler)

    def enabled_for(self, name: str) -> bool:
        group = _DISPATCH_GROUPS.get(name)
        if group is None:
            return self._options.enabled
        return self._options.allows(group)

    def publish(self, name: str, payload: dict[str, Any]) -> None:
        """Deliver a notification to listeners and the pub/sub channel.

        Args:
            name: Notification name, e.g. :data:`CREDIT_CONSUMED`.
            payload: JSON-serialisable fields.  ``event`` and ``timestamp``
                are added when absent.
        """
        if not self.enabled_for(name):
            return

        message: dict[str, Any] = {
            "event": name,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            **payload,
        }

        for handler in [*self._handlers.get(name, []), *self._handlers.get(WILDCARD, [])]:
            try:
                handler(name, message)
            except Exception as exc:  # noqa: BLE001
                logger.warning(
                    "event_bus: listener %r failed for %s: %s",
                    getattr(handler, "__name__", handler),
                    name,
                    exc,
                )

        if self._redis_url:
            self._publish_remote(name, message)

    def _publish_remote(self, name: str, message: dict[str, Any]) -> None:
        try:
            import redis as redis_lib  # noqa: PLC0415

            channel = f"{self._channel_prefix}:{name}"
            r = redis_lib.from_url(self._redis_url, decode_responses=True)
            try:
                r.publish(channel, json.dumps(message, default=str))
                logger.debug("event_bus: published %s on %s", name, channel)
            finally:
                r.close()
        except Exception as exc:  # noqa: BLE001
            logger.warning("event_bus: failed to publish %s: %s", name, exc)
