"""Tracking pixel.

GET /api/pixel?type=proposal|questionnaire|portal&id=...&event=open&section=...

Always answers with a 1x1 transparent GIF. Each request appends one
AnalyticsEvent; storage failures are logged and never break the page.
Portal opens also refresh the client's last_activity.
"""
import base64
import logging
from typing import Optional

from fastapi import APIRouter, Query, Response

from database import database
from models import AnalyticsEvent, TrackedEntityType
from services.engagement_store import to_doc

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api", tags=["tracking"])

PIXEL_GIF = base64.b64decode("R0lGODlhAQABAIAAAAAAAP///yH5BAEAAAAALAAAAAABAAEAAAIBRAA7")
NO_CACHE_HEADERS = {
    "Cache-Control": "no-cache, no-store, must-revalidate",
    "Pragma": "no-cache",
    "Expires": "0",
}


def pixel_response() -> Response:
    return Response(content=PIXEL_GIF, media_type="image/gif", headers=NO_CACHE_HEADERS)


@router.get("/pixel")
async def tracking_pixel(
    type: Optional[str] = Query(None),
    id: Optional[str] = Query(None),
    event: str = Query("open"),
    section: Optional[str] = Query(None),
):
    if not type or not id:
        return pixel_response()
    try:
        entity_type = TrackedEntityType(type)
    except ValueError:
        logger.warning(f"Ignoring pixel for unknown entity type: {type}")
        return pixel_response()

    record = AnalyticsEvent(entity_type=entity_type, entity_id=id, event=event, section=section)
    try:
        db = database.get_db()
        await db.analytics_events.insert_one(to_doc(record))
        if entity_type == TrackedEntityType.PORTAL:
            await db.clients.update_one(
                {"client_id": id},
                {"$set": {"last_activity": record.timestamp.isoformat()}}
            )
    except Exception as e:
        logger.warning(f"Failed to record {entity_type.value} event for {id}: {e}")
    return pixel_response()
