from typing import Optional

from fastapi import APIRouter, Depends, Query

from modules.auth.manager import require_moderator
from modules.auth.models import Identity
from modules.shared.deps import get_analytics_engine
from modules.shared.response import success_response
from .manager import AnalyticsEngine

# Every analytics view is moderator/admin only
router = APIRouter(dependencies=[Depends(require_moderator)])


@router.get("/overall")
async def overall(engine: AnalyticsEngine = Depends(get_analytics_engine)):
    return success_response(await engine.overall(), "Overall statistics retrieved")


@router.get("/by-type")
async def by_type(engine: AnalyticsEngine = Depends(get_analytics_engine)):
    return success_response(await engine.by_type(), "Incidents by type retrieved")


@router.get("/by-status")
async def by_status(engine: AnalyticsEngine = Depends(get_analytics_engine)):
    return success_response(await engine.by_status(), "Incidents by status retrieved")


@router.get("/over-time")
async def over_time(
    period: str = Query("day"),
    days: Optional[str] = Query(None),
    engine: AnalyticsEngine = Depends(get_analytics_engine),
):
    return success_response(await engine.over_time(period, days), "Incidents over time retrieved")


@router.get("/top-reporters")
async def top_reporters(
    limit: Optional[str] = Query(None),
    engine: AnalyticsEngine = Depends(get_analytics_engine),
):
    return success_response(await engine.top_reporters(limit), "Top reporters retrieved")


@router.get("/recent-activity")
async def recent_activity(
    limit: Optional[str] = Query(None),
    engine: AnalyticsEngine = Depends(get_analytics_engine),
):
    return success_response(await engine.recent_activity(limit), "Recent activity retrieved")


@router.get("/verification-stats")
async def verification_stats(engine: AnalyticsEngine = Depends(get_analytics_engine)):
    return success_response(await engine.verification_stats(), "Verification statistics retrieved")
