"""Admin client endpoints.

GET    /api/admin/clients                          - Client rows (stored status + suggestion hint)
POST   /api/admin/clients                          - Create a client (optionally with a portal)
GET    /api/admin/clients/{client_id}              - One client with its proposals and questionnaires
PATCH  /api/admin/clients/{client_id}              - Edit contact details or the stored status
DELETE /api/admin/clients/{client_id}              - Delete client, cascading to proposals, questionnaires, portal
POST   /api/admin/clients/{client_id}/convert-to-portal - Give an existing client a portal
GET    /api/admin/clients/{client_id}/history      - Audit trail for the client record

Filtering and sorting always use the stored status; the suggested status is
only returned as `assessment` for the UI hint.
"""
from collections import defaultdict
from datetime import datetime, timezone
from typing import Optional
import logging

from fastapi import APIRouter, HTTPException, Query, status
from pydantic import BaseModel, EmailStr

from database import database
from models import AuditAction, Client, ClientStatus, Portal, TrackedEntityType
from services import analytics_aggregator, lifecycle_status
from services.engagement_store import (
    find_all,
    find_client_by_email,
    get_client,
    list_events,
    list_proposals,
    list_questionnaires,
    new_portal_id,
    to_doc,
)
from utils.audit import create_audit_log, get_audit_logs_for_resource

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/admin/clients", tags=["clients"])


class ClientCreate(BaseModel):
    name: str
    email: EmailStr
    company: Optional[str] = None
    phone: Optional[str] = None
    notes: Optional[str] = None
    status: ClientStatus = ClientStatus.PROSPECT
    create_portal: bool = False


class ClientUpdate(BaseModel):
    name: Optional[str] = None
    email: Optional[EmailStr] = None
    company: Optional[str] = None
    phone: Optional[str] = None
    notes: Optional[str] = None
    status: Optional[ClientStatus] = None


def _client_row(client, proposals, questionnaires, events, now):
    row = lifecycle_status.summarize_client(client, proposals, questionnaires, now)
    portal_events = [
        e for e in events
        if e.entity_id == client.client_id and TrackedEntityType(e.entity_type) == TrackedEntityType.PORTAL
    ]
    last_access = analytics_aggregator.last_portal_access(portal_events, client.client_id)
    row["total_portal_views"] = len(portal_events)
    row["last_portal_access"] = last_access.isoformat() if last_access else None
    return row


async def _create_portal(client: Client) -> Portal:
    db = database.get_db()
    portal = Portal(
        portal_id=new_portal_id(client.name, client.email),
        client_id=client.client_id,
        client_email=client.email,
        client_name=client.name,
        client_company=client.company,
    )
    await db.portals.insert_one(to_doc(portal))
    await db.clients.update_one(
        {"client_id": client.client_id},
        {"$set": {"portal_id": portal.portal_id, "updated_at": datetime.now(timezone.utc).isoformat()}}
    )
    await create_audit_log(
        action=AuditAction.PORTAL_CREATED,
        client_id=client.client_id,
        resource_type="portal",
        resource_id=portal.portal_id,
    )
    logger.info(f"Portal {portal.portal_id} created for client {client.client_id}")
    return portal


@router.get("")
async def list_clients(
    status_filter: Optional[str] = Query(None, alias="status"),
    sort: str = Query("created_at"),
):
    clients = [Client(**d) for d in await find_all("clients")]
    proposals_by_client = defaultdict(list)
    for p in await list_proposals():
        proposals_by_client[p.client_id].append(p)
    questionnaires_by_client = defaultdict(list)
    for q in await list_questionnaires():
        questionnaires_by_client[q.client_id].append(q)
    events = await list_events({"entity_type": TrackedEntityType.PORTAL.value})

    now = datetime.now(timezone.utc)
    rows = [
        _client_row(c, proposals_by_client[c.client_id], questionnaires_by_client[c.client_id], events, now)
        for c in clients
    ]
    try:
        filtered = lifecycle_status.filter_by_status(rows, status_filter)
    except ValueError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Unknown status: {status_filter}")

    return {
        "clients": lifecycle_status.sort_clients(filtered, sort),
        "counts": lifecycle_status.status_counts(rows),
    }


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_client(body: ClientCreate):
    db = database.get_db()
    email = str(body.email).strip().lower()
    if await find_client_by_email(email):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="A client with this email already exists")

    client = Client(
        name=body.name.strip(),
        email=email,
        company=body.company,
        phone=body.phone,
        notes=body.notes,
        stored_status=body.status,
    )
    await db.clients.insert_one(to_doc(client))
    await create_audit_log(
        action=AuditAction.CLIENT_CREATED,
        client_id=client.client_id,
        resource_type="client",
        resource_id=client.client_id,
        after_state=to_doc(client),
    )
    logger.info(f"Client created: {client.client_id}")

    portal = await _create_portal(client) if body.create_portal else None
    result = to_doc(client)
    if portal:
        result["portal_id"] = portal.portal_id
    return result


@router.get("/{client_id}")
async def get_client_detail(client_id: str):
    client = await get_client(client_id)
    proposals = await list_proposals(client_id)
    questionnaires = await list_questionnaires(client_id)
    events = await list_events({"entity_id": client_id})
    row = _client_row(client, proposals, questionnaires, events, datetime.now(timezone.utc))
    row["proposals"] = [to_doc(p) for p in proposals]
    row["questionnaires"] = [to_doc(q) for q in questionnaires]
    return row


@router.patch("/{client_id}")
async def update_client(client_id: str, body: ClientUpdate):
    db = database.get_db()
    client = await get_client(client_id)
    before = to_doc(client)

    changes = body.model_dump(exclude_unset=True, exclude_none=True)
    new_status = changes.pop("status", None)
    if "email" in changes:
        changes["email"] = str(changes["email"]).strip().lower()
        other = await find_client_by_email(changes["email"])
        if other and other.client_id != client_id:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="A client with this email already exists")
    if new_status is not None:
        changes["stored_status"] = ClientStatus(new_status)

    updated = client.model_copy(update={**changes, "updated_at": datetime.now(timezone.utc)})
    after = to_doc(updated)
    await db.clients.update_one({"client_id": client_id}, {"$set": after})

    status_changed = before["stored_status"] != after["stored_status"]
    await create_audit_log(
        action=AuditAction.CLIENT_STATUS_CHANGED if status_changed else AuditAction.CLIENT_UPDATED,
        client_id=client_id,
        resource_type="client",
        resource_id=client_id,
        before_state=before,
        after_state=after,
    )
    if status_changed:
        logger.info(f"Client {client_id} stored status {before['stored_status']} -> {after['stored_status']}")
    return after


@router.delete("/{client_id}")
async def delete_client(client_id: str):
    db = database.get_db()
    client = await get_client(client_id)

    proposals = await db.proposals.delete_many({"client_id": client_id})
    questionnaires = await db.questionnaires.delete_many({"client_id": client_id})
    await db.portals.delete_many({"client_id": client_id})
    await db.clients.delete_one({"client_id": client_id})

    await create_audit_log(
        action=AuditAction.CLIENT_DELETED,
        client_id=client_id,
        resource_type="client",
        resource_id=client_id,
        before_state=to_doc(client),
        metadata={
            "proposals_deleted": proposals.deleted_count,
            "questionnaires_deleted": questionnaires.deleted_count,
        },
    )
    logger.info(f"Client {client_id} deleted with {proposals.deleted_count} proposals")
    return {"success": True, "client_id": client_id}


@router.post("/{client_id}/convert-to-portal", status_code=status.HTTP_201_CREATED)
async def convert_to_portal(client_id: str):
    client = await get_client(client_id)
    if client.portal_id:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Client already has a portal")
    portal = await _create_portal(client)
    return {"success": True, "portal_id": portal.portal_id, "portal_url": f"/portal/{portal.portal_id}"}


@router.get("/{client_id}/history")
async def client_history(client_id: str, limit: int = Query(50, ge=1, le=200)):
    await get_client(client_id)
    return {"entries": await get_audit_logs_for_resource("client", client_id, limit)}
