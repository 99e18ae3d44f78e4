"""Engagement Store - MongoDB reads and id generation shared by the routers.

Documents are stored as `model_dump(mode="json")` (ISO datetimes, enum values)
and always read back with `{"_id": 0}` into the pydantic models.
"""
import re
import secrets
import string
import logging
from typing import Any, Dict, List, Optional

from database import database
from models import (
    AnalyticsEvent,
    Client,
    ContentItem,
    Portal,
    Proposal,
    Questionnaire,
    QuestionnaireTemplate,
)
from services.errors import NotFoundError
from services.questionnaire_templates import merge_templates
from services.template_engine import TemplateEngine

logger = logging.getLogger(__name__)

_SUFFIX_ALPHABET = string.ascii_lowercase + string.digits


# ============================================================================
# IDS
# ============================================================================

def slugify(value: str) -> str:
    slug = re.sub(r"[^a-z0-9]", "-", (value or "").lower())
    slug = re.sub(r"-+", "-", slug)
    return slug.strip("-")


def random_suffix(length: int = 6) -> str:
    return "".join(secrets.choice(_SUFFIX_ALPHABET) for _ in range(length))


def new_proposal_id(client_name: str) -> str:
    return f"{slugify(client_name) or 'proposal'}-{random_suffix()}"


def new_questionnaire_id(client_name: str) -> str:
    return f"{slugify(client_name) or 'questionnaire'}-{random_suffix()}"


def new_portal_id(client_name: str, client_email: str) -> str:
    name_slug = slugify(client_name) or "client"
    email_slug = re.sub(r"[^a-z0-9]", "", client_email.split("@")[0].lower())
    return f"{name_slug}-{email_slug}-{random_suffix()}"


def to_doc(model) -> Dict[str, Any]:
    return model.model_dump(mode="json")


# ============================================================================
# READS
# ============================================================================

async def find_all(collection: str, query: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
    db = database.get_db()
    return await db[collection].find(query or {}, {"_id": 0}).to_list(None)


async def get_client(client_id: str) -> Client:
    db = database.get_db()
    doc = await db.clients.find_one({"client_id": client_id}, {"_id": 0})
    if not doc:
        raise NotFoundError("Client", client_id)
    return Client(**doc)


async def find_client_by_email(email: str) -> Optional[Client]:
    db = database.get_db()
    doc = await db.clients.find_one({"email": email.strip().lower()}, {"_id": 0})
    return Client(**doc) if doc else None


async def get_proposal(proposal_id: str) -> Proposal:
    db = database.get_db()
    doc = await db.proposals.find_one({"proposal_id": proposal_id}, {"_id": 0})
    if not doc:
        raise NotFoundError("Proposal", proposal_id)
    return Proposal(**doc)


async def get_questionnaire(questionnaire_id: str) -> Questionnaire:
    db = database.get_db()
    doc = await db.questionnaires.find_one({"questionnaire_id": questionnaire_id}, {"_id": 0})
    if not doc:
        raise NotFoundError("Questionnaire", questionnaire_id)
    return Questionnaire(**doc)


async def list_proposals(client_id: Optional[str] = None) -> List[Proposal]:
    query = {"client_id": client_id} if client_id else {}
    return [Proposal(**d) for d in await find_all("proposals", query)]


async def list_questionnaires(client_id: Optional[str] = None) -> List[Questionnaire]:
    query = {"client_id": client_id} if client_id else {}
    return [Questionnaire(**d) for d in await find_all("questionnaires", query)]


async def list_content_items() -> List[ContentItem]:
    return [ContentItem(**d) for d in await find_all("content_items")]


async def list_events(query: Optional[Dict[str, Any]] = None) -> List[AnalyticsEvent]:
    return [AnalyticsEvent(**d) for d in await find_all("analytics_events", query)]


async def load_template_engine() -> TemplateEngine:
    """Engine over built-in templates overlaid with the stored ones."""
    stored = [QuestionnaireTemplate(**d) for d in await find_all("questionnaire_templates")]
    return TemplateEngine(merge_templates(stored))


async def resolve_portal(identifier: str) -> Portal:
    """Portal by portal_id, falling back to the owning client_id."""
    db = database.get_db()
    doc = await db.portals.find_one({"portal_id": identifier}, {"_id": 0})
    if not doc:
        doc = await db.portals.find_one({"client_id": identifier}, {"_id": 0})
    if not doc:
        raise NotFoundError("Portal", identifier)
    return Portal(**doc)
