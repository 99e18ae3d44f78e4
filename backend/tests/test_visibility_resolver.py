"""Portal content visibility: shared items reach everyone, restricted items only their clients."""
from datetime import datetime, timezone, timedelta

from models import ContentCategory, ContentItem, ContentType
from services.visibility_resolver import catalog_for, recent_activity, visible_to

BASE = datetime(2026, 2, 1, tzinfo=timezone.utc)


def _item(content_id, category=ContentCategory.REPORTS, client_ids=None, days=0):
    return ContentItem(
        content_id=content_id,
        title=f"Item {content_id}",
        category=category,
        type=ContentType.FILE,
        client_ids=client_ids or [],
        created_at=BASE + timedelta(days=days),
    )


def test_shared_item_visible_to_every_client():
    item = _item("shared")
    assert visible_to(item, "c1")
    assert visible_to(item, "anyone")
    assert visible_to(item, "")


def test_restricted_item_visible_only_to_listed_clients():
    """Scenario: item restricted to c1 shows up for c1 and never for c2."""
    items = [_item("private", client_ids=["c1"]), _item("shared")]
    c1 = catalog_for(items, "c1")["reports"]
    c2 = catalog_for(items, "c2")["reports"]
    assert {i.content_id for i in c1} == {"private", "shared"}
    assert [i.content_id for i in c2] == ["shared"]


def test_catalog_has_every_category_even_when_empty():
    catalog = catalog_for([], "c1")
    assert set(catalog) == {c.value for c in ContentCategory}
    assert all(group == [] for group in catalog.values())


def test_catalog_single_category_newest_first():
    items = [
        _item("old", ContentCategory.TRAINING, days=1),
        _item("new", ContentCategory.TRAINING, days=5),
        _item("report", ContentCategory.REPORTS, days=9),
    ]
    catalog = catalog_for(items, "c1", ContentCategory.TRAINING)
    assert list(catalog) == ["training"]
    assert [i.content_id for i in catalog["training"]] == ["new", "old"]


def test_recent_activity_skips_links_and_foreign_items():
    items = [
        _item("link", ContentCategory.LINKS, days=10),
        _item("theirs", ContentCategory.RESOURCES, client_ids=["c2"], days=8),
        _item("mine", ContentCategory.RESOURCES, client_ids=["c1"], days=3),
        _item("shared", ContentCategory.TRAINING, days=5),
    ]
    feed = recent_activity(items, "c1")
    assert [i.content_id for i in feed] == ["shared", "mine"]


def test_recent_activity_respects_limit():
    items = [_item(str(n), days=n) for n in range(15)]
    assert [i.content_id for i in recent_activity(items, "c1", limit=3)] == ["14", "13", "12"]
    assert len(recent_activity(items, "c1")) == 10
    assert recent_activity(items, "c1", limit=0) == []
