"""Visibility Resolver - which portal content a client may see.

An item with no client_ids is shared with every client. An item with client_ids
is visible only to those clients; everything else is filtered out before it
reaches the portal.
"""
from typing import Dict, Iterable, List, Optional

from models import ContentCategory, ContentItem
from utils.dates import ensure_utc

ACTIVITY_CATEGORIES = (ContentCategory.REPORTS, ContentCategory.RESOURCES, ContentCategory.TRAINING)
DEFAULT_ACTIVITY_LIMIT = 10


def visible_to(item: ContentItem, client_id: str) -> bool:
    return not item.client_ids or client_id in item.client_ids


def catalog_for(
    items: Iterable[ContentItem],
    client_id: str,
    category: Optional[ContentCategory] = None,
) -> Dict[str, List[ContentItem]]:
    """Visible items grouped by category, newest first within each group.

    Every category key is present so the portal can render empty sections.
    """
    categories = [ContentCategory(category)] if category else list(ContentCategory)
    catalog: Dict[str, List[ContentItem]] = {c.value: [] for c in categories}

    for item in items:
        item_category = ContentCategory(item.category)
        if item_category not in categories:
            continue
        if visible_to(item, client_id):
            catalog[item_category.value].append(item)

    for group in catalog.values():
        group.sort(key=lambda i: ensure_utc(i.created_at), reverse=True)
    return catalog


def recent_activity(
    items: Iterable[ContentItem],
    client_id: str,
    limit: int = DEFAULT_ACTIVITY_LIMIT,
) -> List[ContentItem]:
    """Portal "what's new" feed: visible reports, resources and training, newest first."""
    if limit <= 0:
        return []
    feed = [
        item for item in items
        if ContentCategory(item.category) in ACTIVITY_CATEGORIES and visible_to(item, client_id)
    ]
    feed.sort(key=lambda i: ensure_utc(i.created_at), reverse=True)
    return feed[:limit]
