"""Credit accounting against the monthly quota and the per-day/per-minute call caps.

Usage is kept in the store as independent integer counters so that every
update is a single atomic store operation::

    credits:{period}:total                          credits consumed this period
    credits:{period}:endpoint:{endpoint}:calls      calls per normalized endpoint
    credits:{period}:endpoint:{endpoint}:credits    credits per normalized endpoint
    credits:{period}:endpoints                      index of endpoints seen
    credits:{period}:warning_sent                   set-if-absent warning flag
    credits:periods                                 index of periods seen
    calls:daily:{YYYY-MM-DD}                        TTL 24 h
    calls:minute:{YYYY-MM-DD_HH:MM}                 TTL 120 s

``{period}`` is the UTC ``YYYY-MM`` of the billing month.  A new month starts
a new set of counters; old ones are dropped by :meth:`prune_expired_periods`
once they fall outside the retention window.

Metered calls go through a reservation:

  1. ``reserve_credits()`` adds the estimated cost to the period total with an
     increment-with-ceiling and claims one daily and one minute call slot the
     same way.  Any refusal rolls the earlier claims back and returns ``None``.
  2. ``settle()`` reconciles the estimate against ``status.credit_count`` from
     the response, records the per-endpoint breakdown and emits notifications.
  3. ``release()`` refunds everything the reservation claimed when the call
     failed before any credits were charged.

``track_usage()`` records an already-made call directly without a
reservation.
"""

from __future__ import annotations

import logging
import math
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from cmc_pro.config.endpoints import normalize_endpoint
from cmc_pro.config.options import CreditOptions
from cmc_pro.core.event_bus import (
    CREDIT_CONSUMED,
    CREDIT_WARNING,
    RATE_LIMIT_DAILY,
    RATE_LIMIT_MINUTE,
    EventBus,
)
from cmc_pro.core.exceptions import CreditReservationError, StoreError
from cmc_pro.core.store import CacheStore
from cmc_pro.credit.plan_manager import PlanManager

logger = logging.getLogger(__name__)

_DAILY_TTL = 86_400
_MINUTE_TTL = 120
_PERIODS_KEY = "credits:periods"


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


@dataclass(frozen=True)
class CreditReservation:
    """Credits and call slots claimed ahead of a metered call.

    Attributes:
        endpoint: Normalized endpoint the call is for.
        credits: Estimated credits added to the period total.
        period: Billing period the credits were charged to.
        day: Daily counter key suffix the call slot was claimed in.
        minute: Minute counter key suffix the call slot was claimed in.
        committed: False when nothing was written to the store (tracking
            disabled or the store unavailable); settling such a reservation
            only records what it can.
        reservation_id: Unique identifier, used to reject double settlement.
    """

    endpoint: str
    credits: int
    period: str
    day: str
    minute: str
    committed: bool = True
    reservation_id: str = field(default_factory=lambda: uuid.uuid4().hex)


class CreditManager:
    """Tracks consumed credits and call counts for the current billing period.

    Args:
        store: Store holding the usage counters.
        plan_manager: Supplies the quota and call caps.
        options: Tracking switch, warning threshold, cost table, retention.
        events: Notification bus.  Optional.
        clock: Returns the current UTC datetime.  Injected in tests.
    """

    def __init__(
        self,
        store: CacheStore,
        plan_manager: PlanManager,
        options: Optional[CreditOptions] = None,
        events: Optional[EventBus] = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._store = store
        self._plan = plan_manager
        self._options = options or CreditOptions()
        self._events = events
        self._clock = clock
        self._open: set[str] = set()
        self._open_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Keys
    # ------------------------------------------------------------------

    def current_period(self) -> str:
        return self._clock().strftime("%Y-%m")

    def _day(self) -> str:
        return self._clock().strftime("%Y-%m-%d")

    def _minute(self) -> str:
        return self._clock().strftime("%Y-%m-%d_%H:%M")

    @staticmethod
    def _total_key(period: str) -> str:
        return f"credits:{period}:total"

    @staticmethod
    def _endpoint_key(period: str, endpoint: str, field_name: str) -> str:
        return f"credits:{period}:endpoint:{endpoint}:{field_name}"

    @staticmethod
    def _index_key(period: str) -> str:
        return f"credits:{period}:endpoints"

    @staticmethod
    def _warning_key(period: str) -> str:
        return f"credits:{period}:warning_sent"

    @staticmethod
    def _daily_key(day: str) -> str:
        return f"calls:daily:{day}"

    @staticmethod
    def _minute_key(minute: str) -> str:
        return f"calls:minute:{minute}"

    # ------------------------------------------------------------------
    # Store access (failures degrade to "no data")
    # ------------------------------------------------------------------

    def _read_int(self, key: str) -> int:
        try:
            value = self._store.get(key)
        except StoreError as exc:
            logger.warning("credit_manager: read failed", extra={"key": key, "error": str(exc)})
            return 0
        try:
            return int(value or 0)
        except (TypeError, ValueError):
            return 0

    def _read_list(self, key: str) -> list[str]:
        try:
            value = self._store.get(key)
        except StoreError as exc:
            logger.warning("credit_manager: read failed", extra={"key": key, "error": str(exc)})
            return []
        return list(value) if isinstance(value, list) else []

    def _increment(self, key: str, amount: int, ttl: Optional[int] = None) -> None:
        try:
            self._store.increment(key, amount, ttl)
        except StoreError as exc:
            logger.warning("credit_manager: increment failed", extra={"key": key, "error": str(exc)})

    def _forget(self, key: str) -> None:
        try:
            self._store.forget(key)
        except StoreError as exc:
            logger.warning("credit_manager: forget failed", extra={"key": key, "error": str(exc)})

    def _register(self, marker: str, index_key: str, member: str) -> None:
        """Append *member* to the list at *index_key* the first time *marker* is set."""
        try:
            if not self._store.add(marker, 1):
                return
            members = self._read_list(index_key)
            if member not in members:
                members.append(member)
                self._store.put(index_key, members)
        except StoreError as exc:
            logger.warning(
                "credit_manager: index update failed", extra={"key": index_key, "error": str(exc)}
            )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def tracking_enabled(self) -> bool:
        return self._options.tracking_enabled

    @property
    def warning_threshold(self) -> float:
        return self._options.warning_threshold

    def get_used_credits(self) -> int:
        if not self.tracking_enabled:
            return 0
        return self._read_int(self._total_key(self.current_period()))

    def get_remaining_credits(self) -> int:
        return max(0, self._plan.get_monthly_credits() - self.get_used_credits())

    def get_usage_percentage(self) -> float:
        """Return consumed / quota in ``[0, 1]``."""
        return min(1.0, self.get_used_credits() / self._plan.get_monthly_credits())

    def has_exceeded_warning_threshold(self) -> bool:
        return self.get_usage_percentage() >= self.warning_threshold

    def get_daily_call_count(self) -> int:
        return self._read_int(self._daily_key(self._day()))

    def get_minute_call_count(self) -> int:
        return self._read_int(self._minute_key(self._minute()))

    def has_credits_for(self, credits: int) -> bool:
        return self.get_remaining_credits() >= credits

    def can_make_daily_call(self) -> bool:
        return self.get_daily_call_count() < self._plan.get_daily_call_limit()

    def can_make_minute_call(self) -> bool:
        return self.get_minute_call_count() < self._plan.get_minute_call_limit()

    def can_make_call(self, endpoint: str, credits: Optional[int] = None) -> bool:
        """Return True when the quota and both call caps allow one more call.

        Advisory only: use :meth:`reserve_credits` to actually claim budget.

        Args:
            endpoint: Endpoint the call is for.
            credits: Credits the call needs.  Defaults to :meth:`estimate_cost`.
        """
        needed = self.estimate_cost(endpoint) if credits is None else credits
        if not self.has_credits_for(needed):
            return False
        if not self.can_make_daily_call():
            return False
        return self.can_make_minute_call()

    def get_endpoint_usage(self, endpoint: str) -> dict[str, Any]:
        key = normalize_endpoint(endpoint)
        period = self.current_period()
        calls = self._read_int(self._endpoint_key(period, key, "calls"))
        credits = self._read_int(self._endpoint_key(period, key, "credits"))
        return {
            "endpoint": key,
            "calls": calls,
            "credits": credits,
            "cost_per_call": self._options.costs.get(key, 1),
            "average_cost": credits / calls if calls > 0 else 0,
        }

    def estimate_cost(self, endpoint: str) -> int:
        """Return the expected credits for one call to *endpoint*.

        The static cost table is the estimate until a call to the endpoint
        has been recorded this period; after that the ceiling of the
        observed average cost is used instead.
        """
        key = normalize_endpoint(endpoint)
        static = self._options.costs.get(key, 1)
        if not self.tracking_enabled:
            return static
        usage = self.get_endpoint_usage(key)
        if usage["calls"] > 0:
            return max(1, math.ceil(usage["credits"] / usage["calls"]))
        return static

    def get_usage_stats(self) -> dict[str, Any]:
        period = self.current_period()
        endpoints = {
            endpoint: {
                "calls": self._read_int(self._endpoint_key(period, endpoint, "calls")),
                "credits": self._read_int(self._endpoint_key(period, endpoint, "credits")),
            }
            for endpoint in self._read_list(self._index_key(period))
        }
        return {
            "period": period,
            "total_credits": self.get_used_credits(),
            "remaining_credits": self.get_remaining_credits(),
            "monthly_limit": self._plan.get_monthly_credits(),
            "usage_percentage": self.get_usage_percentage(),
            "warning_threshold": self.warning_threshold,
            "has_exceeded_warning": self.has_exceeded_warning_threshold(),
            "endpoints": endpoints,
            "daily_calls": self.get_daily_call_count(),
            "daily_limit": self._plan.get_daily_call_limit(),
            "minute_calls": self.get_minute_call_count(),
            "minute_limit": self._plan.get_minute_call_limit(),
            "plan_type": self._plan.get_plan_type(),
        }

    # ------------------------------------------------------------------
    # Reservation lifecycle
    # ------------------------------------------------------------------

    def reserve_credits(self, endpoint: str, credits: Optional[int] = None) -> Optional[CreditReservation]:
        """Atomically claim credits and call slots for one metered call.

        Args:
            endpoint: Endpoint about to be called.
            credits: Credits to reserve.  Defaults to :meth:`estimate_cost`.

        Returns:
            A :class:`CreditReservation`, or ``None`` when the quota or a
            call cap would be exceeded.
        """
        key = normalize_endpoint(endpoint)
        amount = self.estimate_cost(key) if credits is None else credits
        period, day, minute = self.current_period(), self._day(), self._minute()

        if not self.tracking_enabled:
            return self._open_reservation(
                CreditReservation(key, amount, period, day, minute, committed=False)
            )

        claims = (
            (self._total_key(period), amount, self._plan.get_monthly_credits(), None),
            (self._daily_key(day), 1, self._plan.get_daily_call_limit(), _DAILY_TTL),
            (self._minute_key(minute), 1, self._plan.get_minute_call_limit(), _MINUTE_TTL),
        )

        claimed: list[tuple[str, int]] = []
        try:
            for store_key, value, ceiling, ttl in claims:
                if self._store.reserve(store_key, value, ceiling, ttl) is None:
                    for done_key, done_value in claimed:
                        self._store.increment(done_key, -done_value)
                    logger.info(
                        "credit_manager: reservation refused",
                        extra={"endpoint": key, "credits": amount, "counter": store_key},
                    )
                    return None
                claimed.append((store_key, value))
        except StoreError as exc:
            logger.warning(
                "credit_manager: reservation not recorded, store unavailable",
                extra={"endpoint": key, "error": str(exc)},
            )
            return self._open_reservation(
                CreditReservation(key, amount, period, day, minute, committed=False)
            )

        self._register(f"credits:{period}:registered", _PERIODS_KEY, period)
        logger.debug("credit_manager: credits reserved", extra={"endpoint": key, "credits": amount})
        return self._open_reservation(CreditReservation(key, amount, period, day, minute))

    def settle(self, reservation: CreditReservation, actual_credits: Optional[int] = None) -> int:
        """Record the outcome of a reserved call.

        Args:
            reservation: Value returned by :meth:`reserve_credits`.
            actual_credits: ``status.credit_count`` from the response.  When
                ``None`` the reserved estimate is taken as final.

        Returns:
            The credits recorded for the call.

        Raises:
            CreditReservationError: When the reservation was already settled
                or released.
        """
        self._close_reservation(reservation)
        actual = reservation.credits if actual_credits is None else int(actual_credits)

        if not self.tracking_enabled:
            return actual

        if reservation.committed:
            delta = actual - reservation.credits
            if delta:
                self._increment(self._total_key(reservation.period), delta)
                logger.info(
                    "credit_manager: actual cost differs from estimate",
                    extra={
                        "endpoint": reservation.endpoint,
                        "estimated": reservation.credits,
                        "actual": actual,
                    },
                )
        else:
            self._increment(self._total_key(reservation.period), actual)
            self._increment(self._daily_key(reservation.day), 1, _DAILY_TTL)
            self._increment(self._minute_key(reservation.minute), 1, _MINUTE_TTL)

        self._record_endpoint(reservation.period, reservation.endpoint, actual)
        self._after_consumption(reservation.endpoint, actual)
        return actual

    def release(self, reservation: CreditReservation) -> None:
        """Refund a reservation whose call failed without being charged.

        Raises:
            CreditReservationError: When the reservation was already settled
                or released.
        """
        self._close_reservation(reservation)
        if not reservation.committed:
            return
        self._increment(self._total_key(reservation.period), -reservation.credits)
        self._increment(self._daily_key(reservation.day), -1)
        self._increment(self._minute_key(reservation.minute), -1)
        logger.debug(
            "credit_manager: reservation released",
            extra={"endpoint": reservation.endpoint, "credits": reservation.credits},
        )

    def _open_reservation(self, reservation: CreditReservation) -> CreditReservation:
        with self._open_lock:
            self._open.add(reservation.reservation_id)
        return reservation

    def _close_reservation(self, reservation: CreditReservation) -> None:
        with self._open_lock:
            if reservation.reservation_id not in self._open:
                raise CreditReservationError(
                    f"Reservation {reservation.reservation_id} is not open"
                )
            self._open.discard(reservation.reservation_id)

    # ------------------------------------------------------------------
    # Direct tracking
    # ------------------------------------------------------------------

    def track_usage(self, endpoint: str, credits: int) -> None:
        """Record a call that was made without a reservation.  No-op when tracking is off."""
        if not self.tracking_enabled:
            return
        key = normalize_endpoint(endpoint)
        period = self.current_period()
        self._increment(self._total_key(period), credits)
        self._increment(self._daily_key(self._day()), 1, _DAILY_TTL)
        self._increment(self._minute_key(self._minute()), 1, _MINUTE_TTL)
        self._register(f"credits:{period}:registered", _PERIODS_KEY, period)
        self._record_endpoint(period, key, credits)
        self._after_consumption(key, credits)

    def _record_endpoint(self, period: str, endpoint: str, credits: int) -> None:
        self._increment(self._endpoint_key(period, endpoint, "calls"), 1)
        self._increment(self._endpoint_key(period, endpoint, "credits"), credits)
        self._register(
            self._endpoint_key(period, endpoint, "registered"), self._index_key(period), endpoint
        )

    # ------------------------------------------------------------------
    # Notifications
    # ------------------------------------------------------------------

    def _publish(self, name: str, payload: dict[str, Any]) -> None:
        if self._events is not None:
            self._events.publish(name, payload)

    def _after_consumption(self, endpoint: str, credits: int) -> None:
        self._publish(
            CREDIT_CONSUMED,
            {
                "endpoint": endpoint,
                "credits": credits,
                "total_used": self.get_used_credits(),
                "remaining": self.get_remaining_credits(),
                "usage_percentage": self.get_usage_percentage(),
            },
        )
        if not self.can_make_daily_call():
            self._publish(
                RATE_LIMIT_DAILY,
                {
                    "daily_calls": self.get_daily_call_count(),
                    "daily_limit": self._plan.get_daily_call_limit(),
                },
            )
        if not self.can_make_minute_call():
            self._publish(
                RATE_LIMIT_MINUTE,
                {
                    "minute_calls": self.get_minute_call_count(),
                    "minute_limit": self._plan.get_minute_call_limit(),
                },
            )
        self._check_warning_threshold()

    def _check_warning_threshold(self) -> None:
        """Fire the warning notification at most once per billing period."""
        if self._events is None or not self._events.enabled_for(CREDIT_WARNING):
            return
        if not self.has_exceeded_warning_threshold():
            return
        try:
            first = self._store.add(self._warning_key(self.current_period()), self._clock().isoformat())
        except StoreError as exc:
            logger.warning("credit_manager: warning flag unavailable", extra={"error": str(exc)})
            return
        if not first:
            return

        usage = self.get_usage_percentage()
        logger.warning(
            "credit_manager: warning threshold exceeded",
            extra={"usage_percentage": usage, "warning_threshold": self.warning_threshold},
        )
        self._publish(
            CREDIT_WARNING,
            {
                "usage_percentage": usage,
                "warning_threshold": self.warning_threshold,
                "used_credits": self.get_used_credits(),
                "total_credits": self._plan.get_monthly_credits(),
                "remaining_credits": self.get_remaining_credits(),
            },
        )

    # ------------------------------------------------------------------
    # Period maintenance
    # ------------------------------------------------------------------

    def _forget_period(self, period: str) -> None:
        for endpoint in self._read_list(self._index_key(period)):
            for field_name in ("calls", "credits", "registered"):
                self._forget(self._endpoint_key(period, endpoint, field_name))
        for key in (
            self._total_key(period),
            self._index_key(period),
            self._warning_key(period),
            f"credits:{period}:registered",
        ):
            self._forget(key)

    def _drop_from_index(self, periods: list[str]) -> None:
        remaining = [p for p in self._read_list(_PERIODS_KEY) if p not in periods]
        try:
            self._store.put(_PERIODS_KEY, remaining)
        except StoreError as exc:
            logger.warning("credit_manager: period index update failed", extra={"error": str(exc)})

    def reset_period(self) -> None:
        """Clear the current period's usage and warning flag, then prune old periods."""
        period = self.current_period()
        self._forget_period(period)
        self._drop_from_index([period])
        logger.info("credit_manager: period reset", extra={"period": period})
        self.prune_expired_periods()

    def prune_expired_periods(self) -> list[str]:
        """Drop periods that fell outside the retention window.

        A period is kept while it is fewer than ``retention_months`` months
        older than the current one.  Unparseable entries are dropped.

        Returns:
            The pruned period identifiers.
        """
        now = self._clock()
        current_index = now.year * 12 + now.month - 1
        pruned: list[str] = []
        for period in self._read_list(_PERIODS_KEY):
            try:
                parsed = datetime.strptime(period, "%Y-%m")
            except ValueError:
                pruned.append(period)
                continue
            if current_index - (parsed.year * 12 + parsed.month - 1) >= self._options.retention_months:
                pruned.append(period)

        for period in pruned:
            self._forget_period(period)
        if pruned:
            self._drop_from_index(pruned)
            logger.info("credit_manager: pruned periods", extra={"periods": pruned})
        return pruned
