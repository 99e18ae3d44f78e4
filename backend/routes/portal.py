"""Client portal endpoints.

GET /api/portal/content?client_id=&category=  - Content catalog visible to the client
GET /api/portal/activity?client_id=&limit=    - "What's new" feed (reports, resources, training)
GET /api/portal/{portal_id}                   - Portal dashboard: proposals, forms, content

Restricted content is filtered server-side; a client never receives an item
whose client_ids excludes it.
"""
import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, HTTPException, Query, status

from database import database
from models import ContentCategory, ContentType
from services import template_engine
from services.engagement_store import (
    list_content_items,
    list_proposals,
    list_questionnaires,
    load_template_engine,
    resolve_portal,
    to_doc,
)
from services.errors import TemplateNotFound
from services.lifecycle_status import effective_proposal_status
from services.visibility_resolver import DEFAULT_ACTIVITY_LIMIT, catalog_for, recent_activity

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/portal", tags=["portal"])

ACTIVITY_TITLES = {
    ContentCategory.REPORTS: "New Report",
    ContentCategory.RESOURCES: "New Resource",
    ContentCategory.TRAINING: "New Training",
}
TYPE_SUFFIXES = {
    ContentType.LINK: "Available",
    ContentType.FILE: "Document",
    ContentType.VIDEO: "Video",
}


def _activity_entry(item) -> dict:
    category = ContentCategory(item.category)
    return {
        "id": f"activity_{item.content_id}",
        "type": "content_added",
        "title": f"{ACTIVITY_TITLES[category]} {TYPE_SUFFIXES[ContentType(item.type)]}",
        "description": item.title,
        "category": category.value,
        "date": item.created_at.isoformat(),
        "content_id": item.content_id,
    }


@router.get("/content")
async def get_portal_content(
    client_id: str = Query("", description="Requesting client; empty returns shared items only"),
    category: Optional[ContentCategory] = Query(None),
):
    catalog = catalog_for(await list_content_items(), client_id, category)
    serialized = {key: [to_doc(i) for i in items] for key, items in catalog.items()}
    if category:
        return {"category": category.value, "items": serialized[category.value]}
    return {"catalog": serialized}


@router.get("/activity")
async def get_portal_activity(
    client_id: str = Query(""),
    limit: int = Query(DEFAULT_ACTIVITY_LIMIT, ge=1, le=100),
):
    feed = recent_activity(await list_content_items(), client_id, limit)
    return {"activities": [_activity_entry(i) for i in feed]}


@router.get("/{portal_id}")
async def get_portal_dashboard(portal_id: str):
    portal = await resolve_portal(portal_id)
    if not portal.is_active:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Portal is inactive")

    client_id = portal.client_id
    now = datetime.now(timezone.utc)
    engine = await load_template_engine()

    proposals = []
    for p in sorted(await list_proposals(client_id), key=lambda p: p.created_at, reverse=True):
        row = to_doc(p)
        row["status"] = effective_proposal_status(p, now).value
        proposals.append(row)

    forms = []
    for q in sorted(await list_questionnaires(client_id), key=lambda q: q.created_at, reverse=True):
        row = to_doc(q)
        row["status"] = template_engine.effective_status(q, now).value
        try:
            row["completion"] = template_engine.completion(engine.resolve_questions(q.template_id), q.answers)
        except TemplateNotFound:
            row["completion"] = 0.0
        forms.append(row)

    content = await list_content_items()
    catalog = catalog_for(content, client_id)
    return {
        "portal": to_doc(portal),
        "proposals": proposals,
        "questionnaires": forms,
        "content_counts": {key: len(items) for key, items in catalog.items()},
        "activities": [_activity_entry(i) for i in recent_activity(content, client_id)],
    }
