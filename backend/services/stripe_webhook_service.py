"""Stripe Webhook Service - Proposal acceptance from payment events.

Key Principles:
1. Idempotency: every Stripe event id is processed at most once (stripe_events)
2. Signature verification whenever STRIPE_WEBHOOK_SECRET is set
3. Audit logging of every acceptance and every failed event
4. Stripe always gets a 200 once the event is recorded; failures are kept
   on the event record instead of triggering Stripe retries

Events Handled (all carry metadata.proposal_id):
- checkout.session.completed
- customer.subscription.created
- invoice.payment_succeeded (also counts installment payments)

Installment subscriptions bill floor(cost / n) monthly. The remainder is added
as an invoice item to the last cycle, and a non-recurring plan is set to cancel
at period end once n invoices are paid.
"""
import json
import stripe
import os
import logging
from datetime import datetime, timezone
from typing import Dict, Any, Optional, Tuple

from pymongo import ReturnDocument

from database import database
from models import AuditAction, PaymentType, Proposal, ProposalStatus
from services.pricing_engine import schedule_for_proposal
from services.stripe_service import STRIPE_CURRENCY, to_cents
from utils.audit import create_audit_log

logger = logging.getLogger(__name__)

ACCEPTING_EVENTS = {
    "checkout.session.completed",
    "customer.subscription.created",
    "invoice.payment_succeeded",
}


def _get_webhook_secret() -> str:
    return (os.getenv("STRIPE_WEBHOOK_SECRET") or "").strip()


def extract_proposal_id(obj: Dict[str, Any]) -> Optional[str]:
    """proposal_id from the object metadata (older sessions used proposalId).

    Invoices carry the subscription's metadata under subscription_details
    (parent.subscription_details on newer API versions).
    """
    candidates = [obj.get("metadata") or {}]
    candidates.append((obj.get("subscription_details") or {}).get("metadata") or {})
    candidates.append(((obj.get("parent") or {}).get("subscription_details") or {}).get("metadata") or {})
    for metadata in candidates:
        proposal_id = metadata.get("proposal_id") or metadata.get("proposalId")
        if proposal_id:
            return proposal_id
    return None


def _invoice_subscription_id(invoice: Dict[str, Any]) -> Optional[str]:
    subscription = invoice.get("subscription")
    if not subscription:
        details = (invoice.get("parent") or {}).get("subscription_details") or {}
        subscription = details.get("subscription")
    if isinstance(subscription, dict):
        subscription = subscription.get("id")
    return subscription


class StripeWebhookService:
    """Stripe webhook handler with idempotency."""

    # =========================================================================
    # Event Processing Entry Point
    # =========================================================================

    async def process_webhook(
        self,
        payload: bytes,
        signature: Optional[str]
    ) -> Tuple[bool, str, Optional[Dict]]:
        """
        Main webhook entry point.

        Returns:
            (success, message, details)
        """
        webhook_secret = _get_webhook_secret()
        try:
            if webhook_secret:
                event = stripe.Webhook.construct_event(payload, signature, webhook_secret)
            else:
                # Development mode - parse without verification
                event = stripe.Event.construct_from(json.loads(payload), stripe.api_key)
                logger.warning("STRIPE_WEBHOOK_SECRET not set - skipping signature verification")
        except stripe.SignatureVerificationError as e:
            logger.error(f"Webhook signature verification failed: {e}")
            return False, "Invalid signature", {"error": str(e)}
        except Exception as e:
            logger.error(f"Webhook parse error: {e}")
            return False, "Invalid payload", {"error": str(e)}

        event_id = event.get("id")
        event_type = event.get("type")
        logger.info(f"WEBHOOK_RECEIVED event_id={event_id} event_type={event_type}")

        db = database.get_db()
        existing = await db.stripe_events.find_one({"event_id": event_id})
        if existing and existing.get("status") == "PROCESSED":
            logger.info(f"Event {event_id} already processed - skipping")
            return True, "Already processed", {"event_id": event_id}

        event_record = {
            "event_id": event_id,
            "type": event_type,
            "created": datetime.now(timezone.utc),
            "processed_at": None,
            "status": "PROCESSING",
            "error": None,
            "related_proposal_id": None,
        }
        if existing:
            await db.stripe_events.update_one({"event_id": event_id}, {"$set": event_record})
        else:
            try:
                await db.stripe_events.insert_one(event_record)
            except Exception as insert_err:
                if "duplicate key" in str(insert_err).lower() or "E11000" in str(insert_err):
                    logger.info(f"Event {event_id} duplicate insert (race) - skipping")
                    return True, "Already processed", {"event_id": event_id}
                raise

        try:
            result = await self._handle_event(event)
            await db.stripe_events.update_one(
                {"event_id": event_id},
                {"$set": {
                    "status": "PROCESSED",
                    "processed_at": datetime.now(timezone.utc),
                    "related_proposal_id": result.get("proposal_id"),
                }}
            )
            logger.info(f"WEBHOOK_PROCESSED_OK event_id={event_id} event_type={event_type}")
            return True, "Processed", result

        except Exception as e:
            logger.error(f"WEBHOOK_PROCESSING_FAILED event_id={event_id} event_type={event_type} error={e}")
            await db.stripe_events.update_one(
                {"event_id": event_id},
                {"$set": {
                    "status": "FAILED",
                    "processed_at": datetime.now(timezone.utc),
                    "error": str(e),
                }}
            )
            await create_audit_log(
                action=AuditAction.STRIPE_EVENT_FAILED,
                actor_id="SYSTEM",
                metadata={"event_id": event_id, "event_type": event_type, "error": str(e)},
            )
            # Return 200 to prevent Stripe retries (we've logged the failure)
            return True, "Event logged with error", {"error": str(e), "event_id": event_id}

    # =========================================================================
    # Event Handlers
    # =========================================================================

    async def _handle_event(self, event: Dict) -> Dict:
        event_type = event.get("type")
        if event_type not in ACCEPTING_EVENTS:
            logger.info(f"Ignoring unhandled event type: {event_type}")
            return {"handled": False, "event_type": event_type}

        obj = event.get("data", {}).get("object", {}) or {}
        proposal_id = extract_proposal_id(obj)
        if not proposal_id:
            logger.warning(f"No proposal_id in {event_type} metadata")
            return {"handled": False, "event_type": event_type}

        result = await self.mark_proposal_accepted(proposal_id, event_type)
        if event_type == "invoice.payment_succeeded":
            installments = await self.record_installment_payment(proposal_id, obj)
            if installments:
                result["installments"] = installments
        return result

    async def record_installment_payment(self, proposal_id: str, invoice: Dict[str, Any]) -> Optional[Dict]:
        """Count a paid installment invoice and steer the subscription to its end.

        Returns None for proposals not paid in installments.
        """
        db = database.get_db()
        doc = await db.proposals.find_one_and_update(
            {"proposal_id": proposal_id, "payment_type": PaymentType.INSTALLMENTS.value},
            {"$inc": {"installments_paid": 1}},
            projection={"_id": 0},
            return_document=ReturnDocument.AFTER,
        )
        if not doc:
            return None

        proposal = Proposal(**doc)
        schedule = schedule_for_proposal(proposal)
        count = len(schedule.entries)
        paid = proposal.installments_paid
        subscription_id = _invoice_subscription_id(invoice)
        info: Dict[str, Any] = {"paid": paid, "count": count, "subscription_id": subscription_id}
        if not subscription_id:
            logger.warning(f"Installment invoice for proposal {proposal_id} has no subscription id")
            return info

        # Next invoice is the last one; it carries the rounding remainder
        remainder = schedule.entries[-1].amount - schedule.entries[0].amount
        if paid == count - 1 and remainder > 0:
            item = stripe.InvoiceItem.create(
                customer=invoice.get("customer"),
                subscription=subscription_id,
                amount=to_cents(remainder),
                currency=STRIPE_CURRENCY,
                description=f"Installment {count} of {count} - remainder",
                metadata={"proposal_id": proposal_id},
            )
            info["remainder_invoice_item"] = item.get("id")
            logger.info(f"Remainder {remainder} added to final installment of proposal {proposal_id}")

        if paid >= count and not proposal.is_recurring:
            stripe.Subscription.modify(subscription_id, cancel_at_period_end=True)
            info["cancel_at_period_end"] = True
            await create_audit_log(
                action=AuditAction.INSTALLMENTS_COMPLETED,
                actor_id="SYSTEM",
                client_id=proposal.client_id,
                resource_type="proposal",
                resource_id=proposal_id,
                metadata={"subscription_id": subscription_id, "installments_paid": paid},
            )
            logger.info(f"All {count} installments paid for proposal {proposal_id}; subscription {subscription_id} ends")
        return info

    async def mark_proposal_accepted(self, proposal_id: str, source: str) -> Dict:
        """Accept a proposal and bump the client's last activity. Re-acceptance is a no-op."""
        db = database.get_db()
        proposal = await db.proposals.find_one({"proposal_id": proposal_id}, {"_id": 0})
        if not proposal:
            raise ValueError(f"Proposal not found: {proposal_id}")

        if proposal.get("status") == ProposalStatus.ACCEPTED.value:
            return {"handled": True, "proposal_id": proposal_id, "already_accepted": True}

        now = datetime.now(timezone.utc)
        await db.proposals.update_one(
            {"proposal_id": proposal_id},
            {"$set": {"status": ProposalStatus.ACCEPTED.value, "accepted_at": now.isoformat()}}
        )
        await db.clients.update_one(
            {"client_id": proposal.get("client_id")},
            {"$set": {"last_activity": now.isoformat(), "updated_at": now.isoformat()}}
        )
        await create_audit_log(
            action=AuditAction.PROPOSAL_ACCEPTED,
            actor_id="SYSTEM",
            client_id=proposal.get("client_id"),
            resource_type="proposal",
            resource_id=proposal_id,
            before_state={"status": proposal.get("status")},
            after_state={"status": ProposalStatus.ACCEPTED.value},
            metadata={"source": source},
        )
        logger.info(f"Proposal {proposal_id} marked as accepted via {source}")
        return {"handled": True, "proposal_id": proposal_id}


stripe_webhook_service = StripeWebhookService()
