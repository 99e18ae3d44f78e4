"""Admin portal-content endpoints.

GET    /api/admin/content               - All items grouped by category (unfiltered)
POST   /api/admin/content               - Add an item
PUT    /api/admin/content/{content_id}  - Edit an item
DELETE /api/admin/content/{content_id}  - Delete an item

An empty client_ids list shares the item with every client.
"""
import logging
from datetime import datetime, timezone
from typing import List, Optional

from fastapi import APIRouter, status
from pydantic import BaseModel, Field

from database import database
from models import AuditAction, ContentCategory, ContentItem, ContentType
from services.engagement_store import list_content_items, to_doc
from services.errors import NotFoundError
from utils.audit import create_audit_log

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/admin/content", tags=["content"])


class ContentIn(BaseModel):
    title: str = Field(min_length=1)
    description: Optional[str] = None
    url: Optional[str] = None
    category: ContentCategory
    type: ContentType = ContentType.LINK
    client_ids: List[str] = Field(default_factory=list)


@router.get("")
async def list_content():
    grouped = {c.value: [] for c in ContentCategory}
    items = sorted(await list_content_items(), key=lambda i: i.created_at, reverse=True)
    for item in items:
        grouped[ContentCategory(item.category).value].append(to_doc(item))
    return grouped


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_content(body: ContentIn):
    item = ContentItem(**{**body.model_dump(), "client_ids": sorted(set(body.client_ids))})
    db = database.get_db()
    await db.content_items.insert_one(to_doc(item))
    await create_audit_log(
        action=AuditAction.CONTENT_SAVED,
        resource_type="content",
        resource_id=item.content_id,
        after_state=to_doc(item),
    )
    logger.info(f"Content added: {item.content_id} ({item.category.value}, shared={not item.client_ids})")
    return {"success": True, "item": to_doc(item)}


@router.put("/{content_id}")
async def update_content(content_id: str, body: ContentIn):
    db = database.get_db()
    existing = await db.content_items.find_one({"content_id": content_id}, {"_id": 0})
    if not existing:
        raise NotFoundError("Content", content_id)

    item = ContentItem(
        **{**body.model_dump(), "client_ids": sorted(set(body.client_ids))},
        content_id=content_id,
        created_at=existing["created_at"],
        updated_at=datetime.now(timezone.utc),
    )
    await db.content_items.replace_one({"content_id": content_id}, to_doc(item))
    await create_audit_log(
        action=AuditAction.CONTENT_SAVED,
        resource_type="content",
        resource_id=content_id,
        before_state=existing,
        after_state=to_doc(item),
    )
    return {"success": True, "item": to_doc(item)}


@router.delete("/{content_id}")
async def delete_content(content_id: str):
    db = database.get_db()
    result = await db.content_items.delete_one({"content_id": content_id})
    if result.deleted_count == 0:
        raise NotFoundError("Content", content_id)
    await create_audit_log(
        action=AuditAction.CONTENT_DELETED,
        resource_type="content",
        resource_id=content_id,
    )
    return {"success": True, "content_id": content_id}
