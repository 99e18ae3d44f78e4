"""Analytics Aggregator - folds open events into engagement numbers.

Events are append-only; every open counts (no dedup, no rate limiting). All
functions here are pure folds over an event sequence so the order in which
events were written never changes a result.
"""
import math
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from models import AnalyticsEvent, Proposal, Questionnaire, TrackedEntityType
from services.template_engine import is_submitted
from utils.dates import ensure_utc, utcnow


def _percent(part: int, total: int) -> int:
    """Percentage rounded half-up to an integer; 0 when total is 0."""
    if total <= 0:
        return 0
    return int(math.floor(part / total * 100 + 0.5))


def record_open(
    events: Sequence[AnalyticsEvent],
    entity_id: str,
    timestamp: Optional[datetime] = None,
    entity_type: TrackedEntityType = TrackedEntityType.PROPOSAL,
    event: str = "open",
    section: Optional[str] = None,
) -> Tuple[AnalyticsEvent, ...]:
    """Return a new event sequence with one more open appended."""
    new_event = AnalyticsEvent(
        entity_type=entity_type,
        entity_id=entity_id,
        event=event,
        section=section,
        timestamp=timestamp or utcnow(),
    )
    return tuple(events) + (new_event,)


def view_count(events: Iterable[AnalyticsEvent], entity_id: str) -> int:
    return sum(1 for e in events if e.entity_id == entity_id)


def last_viewed(events: Iterable[AnalyticsEvent], entity_id: str) -> Optional[datetime]:
    timestamps = [ensure_utc(e.timestamp) for e in events if e.entity_id == entity_id]
    return max(timestamps) if timestamps else None


def entity_stats(events: Iterable[AnalyticsEvent]) -> Dict[str, Dict[str, Any]]:
    """Per-entity {entity_type, view_count, last_viewed} in one pass."""
    stats: Dict[str, Dict[str, Any]] = {}
    for e in events:
        ts = ensure_utc(e.timestamp)
        row = stats.setdefault(e.entity_id, {
            "entity_type": TrackedEntityType(e.entity_type).value,
            "view_count": 0,
            "last_viewed": None,
        })
        row["view_count"] += 1
        if row["last_viewed"] is None or ts > row["last_viewed"]:
            row["last_viewed"] = ts
    return stats


def engagement_rate(events: Iterable[AnalyticsEvent], entity_ids: Iterable[str]) -> int:
    """Share of the given entities opened at least once."""
    entity_ids = set(entity_ids)
    viewed = {e.entity_id for e in events if e.entity_id in entity_ids}
    return _percent(len(viewed), len(entity_ids))


def completion_rate(questionnaires: Iterable[Questionnaire]) -> int:
    """Share of questionnaires submitted; one that expired after submission still counts."""
    questionnaires = list(questionnaires)
    completed = sum(1 for q in questionnaires if is_submitted(q))
    return _percent(completed, len(questionnaires))


def last_portal_access(events: Iterable[AnalyticsEvent], client_id: str) -> Optional[datetime]:
    portal_events = [
        e for e in events
        if TrackedEntityType(e.entity_type) == TrackedEntityType.PORTAL and e.entity_id == client_id
    ]
    return last_viewed(portal_events, client_id)


def portal_overview(
    events: Iterable[AnalyticsEvent],
    proposals: List[Proposal],
    questionnaires: List[Questionnaire],
) -> Dict[str, Any]:
    """Admin analytics dashboard summary."""
    events = list(events)
    stats = entity_stats(events)
    proposal_ids = [p.proposal_id for p in proposals]
    questionnaire_ids = [q.questionnaire_id for q in questionnaires]

    latest = max((row["last_viewed"] for row in stats.values()), default=None)

    return {
        "total_proposals": len(proposals),
        "total_questionnaires": len(questionnaires),
        "proposals_tracked": sum(1 for pid in proposal_ids if pid in stats),
        "questionnaires_tracked": sum(1 for qid in questionnaire_ids if qid in stats),
        "total_views": len(events),
        "latest_view": latest.isoformat() if latest else None,
        "engagement_rate": engagement_rate(events, proposal_ids + questionnaire_ids),
        "completion_rate": completion_rate(questionnaires),
    }
