"""Unit tests for the EventBus notification dispatcher."""

from __future__ import annotations

import json
from types import MappingProxyType
from typing import Any
from unittest.mock import MagicMock, patch

from cmc_pro.config.options import EventOptions
from cmc_pro.core.event_bus import (
    API_CALL_MADE,
    API_RETRY_ATTEMPT,
    CREDIT_CONSUMED,
    RATE_LIMIT_MINUTE,
    STRATEGY_CHANGED,
    EventBus,
)


def _collect(bus: EventBus, name: str) -> list[dict[str, Any]]:
    received: list[dict[str, Any]] = []
    bus.subscribe(name, lambda _name, message: received.append(message))
    return received


class TestPublish:
    def test_listener_receives_payload_with_envelope(self) -> None:
        """Messages carry the event name and a timestamp next to the payload."""
        bus = EventBus()
        received = _collect(bus, CREDIT_CONSUMED)
        bus.publish(CREDIT_CONSUMED, {"endpoint": "cryptocurrency/info", "credits": 1})
        assert received[0]["event"] == CREDIT_CONSUMED
        assert received[0]["credits"] == 1
        assert "timestamp" in received[0]

    def test_wildcard_listener_receives_everything(self) -> None:
        """'*' subscribers see every notification."""
        bus = EventBus()
        received = _collect(bus, "*")
        bus.publish(CREDIT_CONSUMED, {})
        bus.publish(STRATEGY_CHANGED, {})
        assert [m["event"] for m in received] == [CREDIT_CONSUMED, STRATEGY_CHANGED]

    def test_other_names_are_not_delivered(self) -> None:
        """Listeners only receive the name they subscribed to."""
        bus = EventBus()
        received = _collect(bus, API_CALL_MADE)
        bus.publish(CREDIT_CONSUMED, {})
        assert received == []

    def test_failing_listener_does_not_stop_others(self) -> None:
        """A raising listener is logged and skipped."""
        bus = EventBus()

        def broken(name: str, message: dict[str, Any]) -> None:
            raise RuntimeError("listener bug")

        bus.subscribe(CREDIT_CONSUMED, broken)
        received = _collect(bus, CREDIT_CONSUMED)
        bus.publish(CREDIT_CONSUMED, {"credits": 2})
        assert len(received) == 1

    def test_unsubscribe(self) -> None:
        """An unsubscribed handler is no longer called."""
        bus = EventBus()
        handler = MagicMock()
        bus.subscribe(CREDIT_CONSUMED, handler)
        bus.unsubscribe(CREDIT_CONSUMED, handler)
        bus.unsubscribe(CREDIT_CONSUMED, handler)
        bus.publish(CREDIT_CONSUMED, {})
        handler.assert_not_called()


class TestDispatchFlags:
    def test_master_switch_silences_everything(self) -> None:
        """enabled=False drops every notification."""
        bus = EventBus(options=EventOptions(enabled=False))
        received = _collect(bus, "*")
        bus.publish(CREDIT_CONSUMED, {})
        bus.publish(STRATEGY_CHANGED, {})
        assert received == []

    def test_group_flag_silences_its_notifications(self) -> None:
        """Turning off rate_limit_hit drops rate-limit notifications only."""
        dispatch = MappingProxyType({"rate_limit_hit": False})
        bus = EventBus(options=EventOptions(dispatch=dispatch))
        received = _collect(bus, "*")
        bus.publish(RATE_LIMIT_MINUTE, {})
        bus.publish(CREDIT_CONSUMED, {})
        assert [m["event"] for m in received] == [CREDIT_CONSUMED]

    def test_retry_attempts_follow_api_error_flag(self) -> None:
        """Retry notifications share the api_error switch."""
        bus = EventBus(options=EventOptions(dispatch=MappingProxyType({"api_error": False})))
        assert bus.enabled_for(API_RETRY_ATTEMPT) is False
        assert bus.enabled_for(API_CALL_MADE) is True

    def test_ungrouped_names_follow_master_switch(self) -> None:
        """Names without a group are only gated by enabled."""
        assert EventBus().enabled_for(STRATEGY_CHANGED) is True


class TestRemotePublish:
    def test_messages_are_forwarded_to_redis_channel(self) -> None:
        """With a Redis URL the message is published on {prefix}:{name}."""
        client = MagicMock()
        bus = EventBus(redis_url="redis://localhost:6379/0", channel_prefix="coinmarketcap:events")
        with patch("redis.from_url", return_value=client):
            bus.publish(CREDIT_CONSUMED, {"credits": 3})
        channel, body = client.publish.call_args.args
        assert channel == "coinmarketcap:events:credit.consumed"
        assert json.loads(body)["credits"] == 3
        client.close.assert_called_once()

    def test_unreachable_redis_never_raises(self) -> None:
        """Remote failures are logged and local delivery still happens."""
        bus = EventBus(redis_url="redis://localhost:6379/0")
        received = _collect(bus, CREDIT_CONSUMED)
        with patch("redis.from_url", side_effect=ConnectionError("refused")):
            bus.publish(CREDIT_CONSUMED, {})
        assert len(received) == 1

    def test_no_redis_url_means_local_only(self) -> None:
        """Nothing is sent anywhere without a URL."""
        with patch("redis.from_url") as from_url:
            EventBus().publish(CREDIT_CONSUMED, {})
        from_url.assert_not_called()
