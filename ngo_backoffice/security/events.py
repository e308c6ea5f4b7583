"""Security layer — Security event aggregation for the dashboard."""

from __future__ import annotations

import time
from typing import Any, Callable

from ngo_backoffice.exceptions import ValidationError
from ngo_backoffice.security.audit_records import SECURITY_ACTIONS, AuditAction, Severity
from ngo_backoffice.store.audit import AuditStore

PERIODS: dict[str, float] = {
    "24h": 24 * 3600.0,
    "7d": 7 * 86_400.0,
    "30d": 30 * 86_400.0,
}

_ELEVATED = (Severity.WARNING, Severity.ERROR, Severity.CRITICAL)
_LOGIN_ACTIONS = (AuditAction.LOGIN, AuditAction.LOGIN_FAILED)
_HOURLY_WINDOW = 24 * 3600.0


class SecurityEventAggregator:
    """Summarises recent security-relevant audit records.

    The hourly login trend always covers the last 24 hours regardless of the
    requested period.
    """

    def __init__(
        self,
        store: AuditStore,
        *,
        events_limit: int = 100,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._events_limit = events_limit
        self._clock = clock

    async def summarize(self, period: str = "24h") -> dict[str, Any]:
        window = PERIODS.get(period)
        if window is None:
            raise ValidationError.for_field(
                "period", f"Period must be one of: {', '.join(PERIODS)}"
            )
        now = self._clock()
        since = now - window

        events = await self._store.security_events(
            since, SECURITY_ACTIONS, _ELEVATED, limit=self._events_limit
        )
        return {
            "events": [e.to_dict() for e in events],
            "stats": await self._store.security_stats(since),
            "severityDistribution": await self._store.severity_distribution(since),
            "hourlyLogins": await self._store.hourly_counts(now - _HOURLY_WINDOW, _LOGIN_ACTIONS),
            "period": period,
        }
