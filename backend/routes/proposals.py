"""Proposal endpoints.

POST   /api/proposals                       - Create a proposal and its checkout session
GET    /api/proposals                       - Admin list (checkout URLs omitted)
GET    /api/proposals/{proposal_id}         - Public proposal view with payment schedule
GET    /api/proposals/{proposal_id}/schedule - Payment schedule, optionally anchored to a start date
POST   /api/proposals/{proposal_id}/checkout - Retry checkout-session creation
DELETE /api/proposals/{proposal_id}         - Delete a proposal
GET    /api/services                        - Service catalog

A failed checkout session never loses the proposal: it is saved with
checkout_error and the response carries retry_url.
"""
import os
import logging
from datetime import date, datetime, timezone
from typing import List, Optional

from fastapi import APIRouter, Query, status
from pydantic import BaseModel, EmailStr, Field

from database import database
from models import AuditAction, Client, CustomService, PaymentType, Proposal, ProposalStatus
from services.engagement_store import (
    find_client_by_email,
    get_client,
    get_proposal,
    list_proposals,
    new_proposal_id,
    to_doc,
)
from services.errors import ExternalServiceError, NotFoundError, ValidationError
from services.lifecycle_status import effective_proposal_status
from services.pricing_engine import (
    PaymentSchedule,
    build_checkout_request,
    build_payment_schedule,
    schedule_for_proposal,
    services_total,
)
from services.service_catalog import list_services, resolve_services
from services.stripe_service import stripe_service
from utils.audit import create_audit_log

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/proposals", tags=["proposals"])
services_router = APIRouter(prefix="/api/services", tags=["proposals"])

PROPOSAL_DEFAULT_EXPIRES_IN_DAYS = int(os.getenv("PROPOSAL_DEFAULT_EXPIRES_IN_DAYS", "30"))


class CustomServiceIn(BaseModel):
    title: str
    description: str = ""
    price: Optional[int] = None
    features: List[str] = Field(default_factory=list)


class ProposalCreate(BaseModel):
    client_id: Optional[str] = None
    client_name: Optional[str] = None
    client_email: Optional[EmailStr] = None
    client_company: Optional[str] = None
    client_phone: Optional[str] = None
    selected_services: List[str] = Field(default_factory=list)
    custom_services: List[CustomServiceIn] = Field(default_factory=list)
    cost: Optional[int] = None
    payment_type: PaymentType = PaymentType.FULL
    is_recurring: bool = False
    down_payment: Optional[int] = None
    installment_count: Optional[int] = None
    remainder_due_days: Optional[int] = None
    expires_in_days: int = Field(default=PROPOSAL_DEFAULT_EXPIRES_IN_DAYS, ge=1)
    notes: Optional[str] = None


def schedule_to_dict(schedule: PaymentSchedule) -> dict:
    data = schedule.model_dump(mode="json")
    data["total"] = schedule.total
    data["recurrence"]["description"] = schedule.recurrence.describe()
    return data


def proposal_to_dict(proposal: Proposal, now: Optional[datetime] = None) -> dict:
    data = to_doc(proposal)
    data["status"] = effective_proposal_status(proposal, now).value
    data["expires_at"] = proposal.expires_at.isoformat()
    return data


async def _resolve_client(body: ProposalCreate) -> Client:
    if body.client_id:
        return await get_client(body.client_id)
    if not body.client_email or not body.client_name:
        raise ValidationError("client_id or client_name and client_email are required", field="client_id")

    email = str(body.client_email).strip().lower()
    existing = await find_client_by_email(email)
    if existing:
        return existing

    client = Client(name=body.client_name.strip(), email=email, company=body.client_company, phone=body.client_phone)
    db = database.get_db()
    await db.clients.insert_one(to_doc(client))
    await create_audit_log(
        action=AuditAction.CLIENT_CREATED,
        client_id=client.client_id,
        resource_type="client",
        resource_id=client.client_id,
        after_state=to_doc(client),
        metadata={"source": "proposal"},
    )
    return client


async def _attempt_checkout(proposal: Proposal, schedule: PaymentSchedule) -> Proposal:
    """Try to create the checkout session; a failure is recorded on the proposal, not raised."""
    try:
        session = await stripe_service.create_checkout_session(
            build_checkout_request(proposal, schedule), proposal.proposal_id
        )
    except ExternalServiceError as e:
        logger.warning(f"Checkout session failed for proposal {proposal.proposal_id}: {e.message}")
        await create_audit_log(
            action=AuditAction.CHECKOUT_SESSION_FAILED,
            client_id=proposal.client_id,
            resource_type="proposal",
            resource_id=proposal.proposal_id,
            metadata={"error": e.message},
        )
        return proposal.model_copy(update={"checkout_url": None, "checkout_error": e.message})
    return proposal.model_copy(update={"checkout_url": session["checkout_url"], "checkout_error": None})


def _checkout_response(proposal: Proposal) -> dict:
    return {
        "checkout_url": proposal.checkout_url,
        "checkout_error": proposal.checkout_error,
        "retryable": bool(proposal.checkout_error),
        "retry_url": f"/api/proposals/{proposal.proposal_id}/checkout" if proposal.checkout_error else None,
    }


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_proposal(body: ProposalCreate):
    try:
        services = resolve_services(body.selected_services)
    except NotFoundError as e:
        raise ValidationError(f"Unknown service: {e.resource_id}", field="selected_services")

    custom_services = [CustomService(**c.model_dump()) for c in body.custom_services]
    cost = body.cost if body.cost is not None else services_total(services, custom_services)

    # Validates payment terms before anything is written
    schedule = build_payment_schedule(
        cost=cost,
        payment_type=body.payment_type,
        down_payment=body.down_payment,
        installment_count=body.installment_count,
        is_recurring=body.is_recurring,
        remainder_due_days=body.remainder_due_days,
    )

    client = await _resolve_client(body)
    proposal = Proposal(
        proposal_id=new_proposal_id(client.name),
        client_id=client.client_id,
        client=client.contact(),
        selected_services=[s.service_id for s in services],
        custom_services=custom_services,
        cost=cost,
        payment_type=body.payment_type,
        is_recurring=body.is_recurring,
        down_payment=body.down_payment,
        installment_count=body.installment_count,
        remainder_due_days=body.remainder_due_days,
        expires_in_days=body.expires_in_days,
        notes=body.notes,
    )
    proposal = await _attempt_checkout(proposal, schedule)

    db = database.get_db()
    await db.proposals.insert_one(to_doc(proposal))
    await db.clients.update_one(
        {"client_id": client.client_id},
        {"$set": {"last_activity": proposal.created_at.isoformat()}}
    )
    await create_audit_log(
        action=AuditAction.PROPOSAL_CREATED,
        client_id=client.client_id,
        resource_type="proposal",
        resource_id=proposal.proposal_id,
        metadata={"cost": cost, "payment_type": proposal.payment_type.value},
    )
    logger.info(f"Proposal created: {proposal.proposal_id} ({proposal.payment_type.value}, {cost})")

    return {
        "success": True,
        "proposal_id": proposal.proposal_id,
        "client_id": client.client_id,
        "url": f"/proposal/{proposal.proposal_id}",
        "schedule": schedule_to_dict(schedule),
        **_checkout_response(proposal),
    }


@router.get("")
async def list_all_proposals(client_id: Optional[str] = Query(None)):
    now = datetime.now(timezone.utc)
    proposals = sorted(await list_proposals(client_id), key=lambda p: p.created_at, reverse=True)
    rows = []
    for proposal in proposals:
        row = proposal_to_dict(proposal, now)
        row.pop("checkout_url", None)
        rows.append(row)
    return {"proposals": rows}


@router.get("/{proposal_id}")
async def get_proposal_detail(proposal_id: str):
    proposal = await get_proposal(proposal_id)
    data = proposal_to_dict(proposal)
    data["services"] = [s.model_dump() for s in resolve_services(proposal.selected_services)]
    data["suggested_cost"] = services_total(resolve_services(proposal.selected_services), proposal.custom_services)
    data["schedule"] = schedule_to_dict(schedule_for_proposal(proposal))
    return data


@router.get("/{proposal_id}/schedule")
async def get_proposal_schedule(proposal_id: str, start_date: Optional[date] = Query(None)):
    proposal = await get_proposal(proposal_id)
    return schedule_to_dict(schedule_for_proposal(proposal, start_date))


@router.post("/{proposal_id}/checkout")
async def retry_checkout(proposal_id: str):
    """Re-create the checkout session. ExternalServiceError propagates as a retryable 502."""
    proposal = await get_proposal(proposal_id)
    current = effective_proposal_status(proposal)
    if current != ProposalStatus.PENDING:
        raise ValidationError(f"Proposal is {current.value}", field="status")

    db = database.get_db()
    schedule = schedule_for_proposal(proposal)
    try:
        session = await stripe_service.create_checkout_session(
            build_checkout_request(proposal, schedule), proposal_id
        )
    except ExternalServiceError as e:
        await db.proposals.update_one({"proposal_id": proposal_id}, {"$set": {"checkout_error": e.message}})
        raise

    await db.proposals.update_one(
        {"proposal_id": proposal_id},
        {"$set": {"checkout_url": session["checkout_url"], "checkout_error": None}}
    )
    logger.info(f"Checkout session recreated for proposal {proposal_id}")
    return {"success": True, "checkout_url": session["checkout_url"]}


@router.delete("/{proposal_id}")
async def delete_proposal(proposal_id: str):
    proposal = await get_proposal(proposal_id)
    db = database.get_db()
    await db.proposals.delete_one({"proposal_id": proposal_id})
    await create_audit_log(
        action=AuditAction.PROPOSAL_DELETED,
        client_id=proposal.client_id,
        resource_type="proposal",
        resource_id=proposal_id,
        before_state=to_doc(proposal),
    )
    return {"success": True, "proposal_id": proposal_id}


@services_router.get("")
async def get_services():
    return {"services": [s.model_dump() for s in list_services()]}
