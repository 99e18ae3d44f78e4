"""
Engagement Analytics API Routes

Admin dashboard numbers derived from the append-only analytics_events log:
- Overview: totals, tracked counts, total views, engagement and completion rates
- Per-proposal / per-questionnaire view counts and last-seen timestamps
- Event detail for a single tracked entity

GET /api/admin/analytics?period=30d
GET /api/admin/analytics/{entity_type}/{entity_id}
"""
from fastapi import APIRouter, Query
from datetime import datetime, timezone, timedelta
from collections import Counter
from typing import Optional, Tuple
import logging

from database import database
from models import TrackedEntityType
from services import analytics_aggregator
from services.lifecycle_status import effective_proposal_status
from services.template_engine import effective_status
from services.engagement_store import list_events, list_proposals, list_questionnaires, to_doc
from utils.dates import ensure_utc

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/admin/analytics", tags=["admin-analytics"])

PERIOD_DAYS = {"7d": 7, "30d": 30, "90d": 90}


# ============================================================================
# HELPER FUNCTIONS
# ============================================================================

def get_date_range(period: str) -> Tuple[Optional[datetime], datetime]:
    """Start (None for all time) and end of a reporting period."""
    now = datetime.now(timezone.utc)
    if period == "today":
        return now.replace(hour=0, minute=0, second=0, microsecond=0), now
    if period in PERIOD_DAYS:
        return now - timedelta(days=PERIOD_DAYS[period]), now
    if period == "ytd":
        return now.replace(month=1, day=1, hour=0, minute=0, second=0, microsecond=0), now
    return None, now


def events_in_range(events, start: Optional[datetime], end: datetime):
    return [
        e for e in events
        if (start is None or ensure_utc(e.timestamp) >= start) and ensure_utc(e.timestamp) <= end
    ]


def _entity_row(entity_id: str, title: str, client_name: str, status: str, stats: dict) -> dict:
    row = stats.get(entity_id, {})
    last = row.get("last_viewed")
    return {
        "id": entity_id,
        "title": title,
        "client_name": client_name,
        "status": status,
        "view_count": row.get("view_count", 0),
        "last_viewed": last.isoformat() if last else None,
    }


# ============================================================================
# ENDPOINTS
# ============================================================================

@router.get("")
async def analytics_overview(period: str = Query("all")):
    start, end = get_date_range(period)
    events = events_in_range(await list_events(), start, end)
    proposals = await list_proposals()
    questionnaires = await list_questionnaires()

    stats = analytics_aggregator.entity_stats(events)
    overview = analytics_aggregator.portal_overview(events, proposals, questionnaires)
    overview["period"] = period

    proposal_rows = [
        _entity_row(p.proposal_id, f"Proposal for {p.client.name}", p.client.name, effective_proposal_status(p, end).value, stats) for p in proposals
    ]
    questionnaire_rows = [
        _entity_row(q.questionnaire_id, q.title, q.client.name, effective_status(q, end).value, stats) for q in questionnaires
    ]
    sort_key = lambda r: (r["view_count"], r["last_viewed"] or "")
    return {
        "overview": overview,
        "proposals": sorted(proposal_rows, key=sort_key, reverse=True),
        "questionnaires": sorted(questionnaire_rows, key=sort_key, reverse=True),
    }


@router.get("/{entity_type}/{entity_id}")
async def analytics_detail(entity_type: TrackedEntityType, entity_id: str):
    events = await list_events({"entity_type": entity_type.value, "entity_id": entity_id})
    last = analytics_aggregator.last_viewed(events, entity_id)
    ordered = sorted(events, key=lambda e: ensure_utc(e.timestamp), reverse=True)
    return {
        "entity_type": entity_type.value,
        "entity_id": entity_id,
        "view_count": analytics_aggregator.view_count(events, entity_id),
        "last_viewed": last.isoformat() if last else None,
        "events_by_type": dict(Counter(e.event for e in events)),
        "sections": dict(Counter(e.section for e in events if e.section)),
        "events": [to_doc(e) for e in ordered],
    }
