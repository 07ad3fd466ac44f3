import asyncio
import logging
from datetime import timedelta
from typing import Callable, Optional

from modules.auth.store import UserDirectory
from modules.incidents.store import GroupSpec, IncidentFilter, IncidentStore, SortField, SortSpec
from modules.incidents.utils import with_people
from modules.shared.config import Settings, get_settings
from modules.shared.utils import to_int, utcnow
from . import utils

logger = logging.getLogger("analytics.manager")

DEFAULT_SERIES_DAYS = 30
MAX_SERIES_DAYS = 3650
DEFAULT_TOP_LIMIT = 10


class AnalyticsEngine:
    """Read-only reporting over the incident store. Empty stores yield zeros."""

    def __init__(
        self,
        store: IncidentStore,
        users: UserDirectory,
        settings: Optional[Settings] = None,
        clock: Callable = utcnow,
    ):
        self.store = store
        self.users = users
        self.settings = settings or get_settings()
        self.clock = clock

    def _limit(self, raw, default: int) -> int:
        limit = to_int(raw)
        if limit is None or limit < 1:
            return default
        return min(limit, self.settings.MAX_PAGE_LIMIT)

    async def overall(self) -> dict:
        since = self.clock() - timedelta(days=self.settings.RECENT_WINDOW_DAYS)
        rows, recent, users_total, users_active = await asyncio.gather(
            self.store.aggregate(GroupSpec(keys=("status",))),
            self.store.count(IncidentFilter(start_date=since)),
            self.users.count(),
            self.users.count(active_only=True),
        )
        incidents = utils.status_totals(rows)
        incidents["recent"] = recent
        return {"incidents": incidents, "users": {"total": users_total, "active": users_active}}

    async def by_type(self) -> dict:
        rows = await self.store.aggregate(GroupSpec(keys=("type",)))
        return {"byType": utils.by_type_breakdown(rows)}

    async def by_status(self) -> dict:
        rows = await self.store.aggregate(GroupSpec(keys=("status",)))
        return {"byStatus": utils.by_status_breakdown(rows)}

    async def over_time(self, period=None, days=None) -> dict:
        bucket = utils.parse_period(period or utils.Period.DAY.value)
        window = to_int(days)
        if window is None or window < 1:
            window = DEFAULT_SERIES_DAYS
        window = min(window, MAX_SERIES_DAYS)
        since = self.clock() - timedelta(days=window)
        spec = GroupSpec(keys=utils.PERIOD_KEYS[bucket], filter=IncidentFilter(start_date=since))
        rows = await self.store.aggregate(spec)
        return {"overTime": utils.time_series(rows, bucket), "period": bucket.value, "days": window}

    async def top_reporters(self, limit=None) -> dict:
        limit = self._limit(limit, DEFAULT_TOP_LIMIT)
        rows = await self.store.aggregate(GroupSpec(keys=("reported_by",)))
        ranked = utils.rank_reporters(rows, limit)
        people = await self.users.get_many(r["userId"] for r in ranked)
        reporters = []
        for entry in ranked:
            user = people.get(entry["userId"])
            if user is None:
                logger.debug(f"Dropping reporter {entry['userId']} with no user record")
                continue
            reporters.append({**entry, "name": user.name, "email": user.email})
        return {"topReporters": reporters}

    async def recent_activity(self, limit=None) -> dict:
        limit = self._limit(limit, DEFAULT_TOP_LIMIT)
        incidents, users = await asyncio.gather(
            self.store.find(IncidentFilter(), SortSpec(SortField.UPDATED_AT, descending=True), 0, limit),
            self.users.recent(limit),
        )
        return {
            "recentIncidents": await with_people(incidents, self.users),
            "recentUsers": [u.public() for u in users],
        }

    async def verification_stats(self) -> dict:
        rows, latency = await asyncio.gather(
            self.store.aggregate(GroupSpec(keys=("status",))),
            self.store.verification_latency(),
        )
        totals = utils.status_totals(rows)
        return {
            "verified": totals["verified"],
            "rejected": totals["rejected"],
            "pending": totals["reported"],
            "averageVerificationTimeHours": utils.average_latency_hours(latency.total_seconds, latency.count),
        }
