"""Pricing Engine - Turns a proposal's payment choice into a payment schedule.

Payment types:
- full:         one charge of the full cost, due immediately
- partial:      down payment now, remainder after `remainder_due_days`
- installments: N charges 30 days apart; the last one absorbs the rounding
                remainder so the schedule always sums exactly to the cost

Recurring billing appends a monthly recurrence descriptor that continues
indefinitely after the scheduled charges. A partial proposal accepts the
recurring flag but its schedule carries no recurrence.

All amounts are whole currency units; Stripe conversion to cents happens in
stripe_service.
"""
import os
import logging
from datetime import date, timedelta
from typing import Iterable, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

from models import PaymentType, Proposal, Service
from services.errors import ValidationError

logger = logging.getLogger(__name__)

BILLING_CYCLE_DAYS = 30
MIN_INSTALLMENTS = 2

# Policy for the partial-payment remainder when the operator does not set one
PARTIAL_REMAINDER_DUE_DAYS = int(os.getenv("PARTIAL_REMAINDER_DUE_DAYS", "30"))


# ============================================================================
# SCHEDULE MODELS
# ============================================================================

class PaymentScheduleEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    amount: int
    due_offset_days: int
    label: str
    due_date: Optional[date] = None


class Recurrence(BaseModel):
    """`none`, or `monthly` charges of `amount` every `interval_days` from `start_offset_days`."""
    model_config = ConfigDict(frozen=True)

    kind: str = "none"
    amount: Optional[int] = None
    interval_days: int = BILLING_CYCLE_DAYS
    start_offset_days: Optional[int] = None
    starts_on: Optional[date] = None

    @property
    def is_recurring(self) -> bool:
        return self.kind != "none"

    def describe(self) -> str:
        if not self.is_recurring:
            return "none"
        if self.starts_on:
            return f"monthly starting at {self.starts_on.isoformat()}"
        return f"monthly starting at day {self.start_offset_days}"


class PaymentSchedule(BaseModel):
    model_config = ConfigDict(frozen=True)

    payment_type: PaymentType
    cost: int
    entries: Tuple[PaymentScheduleEntry, ...]
    recurrence: Recurrence = Field(default_factory=Recurrence)

    @property
    def total(self) -> int:
        return schedule_total(self)


class CheckoutRequest(BaseModel):
    """Fields handed to the checkout-session creator for the first charge."""
    model_config = ConfigDict(frozen=True)

    amount: int
    description: str
    customer_email: Optional[str] = None
    is_subscription: bool = False
    subscription_interval: Optional[str] = None  # "month" when is_subscription
    installment_count: Optional[int] = None


# ============================================================================
# VALIDATION
# ============================================================================

def validate_payment_terms(
    cost: int,
    payment_type: PaymentType,
    down_payment: Optional[int] = None,
    installment_count: Optional[int] = None,
) -> None:
    """Raise ValidationError for any invalid combination. Nothing is clamped."""
    if cost is None or cost <= 0:
        raise ValidationError("Cost must be greater than zero", field="cost")

    if payment_type == PaymentType.PARTIAL:
        if down_payment is None:
            raise ValidationError("Down payment is required for partial payment", field="down_payment")
        if down_payment < 0:
            raise ValidationError("Down payment cannot be negative", field="down_payment")
        if down_payment > cost:
            raise ValidationError(
                f"Down payment ({down_payment}) cannot exceed cost ({cost})", field="down_payment"
            )

    if payment_type == PaymentType.INSTALLMENTS:
        if installment_count is None or installment_count < MIN_INSTALLMENTS:
            raise ValidationError(
                f"Installment count must be at least {MIN_INSTALLMENTS}", field="installment_count"
            )


# ============================================================================
# SCHEDULE BUILDING
# ============================================================================

def _due(start_date: Optional[date], offset: int) -> Optional[date]:
    return start_date + timedelta(days=offset) if start_date else None


def _monthly(amount: int, start_offset: int, start_date: Optional[date]) -> Recurrence:
    return Recurrence(
        kind="monthly",
        amount=amount,
        interval_days=BILLING_CYCLE_DAYS,
        start_offset_days=start_offset,
        starts_on=_due(start_date, start_offset),
    )


def build_payment_schedule(
    cost: int,
    payment_type: PaymentType,
    down_payment: Optional[int] = None,
    installment_count: Optional[int] = None,
    is_recurring: bool = False,
    start_date: Optional[date] = None,
    remainder_due_days: Optional[int] = None,
) -> PaymentSchedule:
    """Build the immutable payment schedule for a proposal.

    Args:
        cost: Authoritative proposal total
        payment_type: full | partial | installments
        down_payment: Required for partial
        installment_count: Required for installments (>= 2)
        is_recurring: Append a monthly recurrence (ignored for partial)
        start_date: Optional anchor; when given every entry also carries a due_date
        remainder_due_days: Partial remainder offset, defaults to PARTIAL_REMAINDER_DUE_DAYS

    Raises:
        ValidationError: on invalid payment terms
    """
    payment_type = PaymentType(payment_type)
    validate_payment_terms(cost, payment_type, down_payment, installment_count)

    entries: List[PaymentScheduleEntry] = []
    recurrence = Recurrence()

    if payment_type == PaymentType.FULL:
        entries.append(PaymentScheduleEntry(
            amount=cost, due_offset_days=0, label="Payment in full", due_date=_due(start_date, 0)
        ))
        if is_recurring:
            recurrence = _monthly(cost, BILLING_CYCLE_DAYS, start_date)

    elif payment_type == PaymentType.PARTIAL:
        offset = PARTIAL_REMAINDER_DUE_DAYS if remainder_due_days is None else remainder_due_days
        if offset < 0:
            raise ValidationError("Remainder due days cannot be negative", field="remainder_due_days")
        entries.append(PaymentScheduleEntry(
            amount=down_payment, due_offset_days=0, label="Down payment", due_date=_due(start_date, 0)
        ))
        entries.append(PaymentScheduleEntry(
            amount=cost - down_payment,
            due_offset_days=offset,
            label="Remaining balance",
            due_date=_due(start_date, offset),
        ))

    else:
        per_installment = cost // installment_count
        running = 0
        for i in range(installment_count):
            amount = per_installment if i < installment_count - 1 else cost - running
            running += amount
            offset = i * BILLING_CYCLE_DAYS
            entries.append(PaymentScheduleEntry(
                amount=amount,
                due_offset_days=offset,
                label=f"Installment {i + 1} of {installment_count}",
                due_date=_due(start_date, offset),
            ))
        if is_recurring:
            recurrence = _monthly(per_installment, installment_count * BILLING_CYCLE_DAYS, start_date)

    schedule = PaymentSchedule(
        payment_type=payment_type, cost=cost, entries=tuple(entries), recurrence=recurrence
    )
    logger.debug(
        f"Built {payment_type.value} schedule: {[e.amount for e in entries]} recurrence={recurrence.describe()}"
    )
    return schedule


def schedule_for_proposal(proposal: Proposal, start_date: Optional[date] = None) -> PaymentSchedule:
    return build_payment_schedule(
        cost=proposal.cost,
        payment_type=proposal.payment_type,
        down_payment=proposal.down_payment,
        installment_count=proposal.installment_count,
        is_recurring=proposal.is_recurring,
        start_date=start_date,
        remainder_due_days=proposal.remainder_due_days,
    )


def schedule_total(schedule: PaymentSchedule) -> int:
    return sum(entry.amount for entry in schedule.entries)


def services_total(services: Iterable[Service], custom_services: Iterable[Service] = ()) -> int:
    """Suggested cost from service prices. Advisory; the operator's cost wins."""
    total = 0
    for service in list(services) + list(custom_services):
        total += service.price or 0
    return total


# ============================================================================
# CHECKOUT
# ============================================================================

def build_checkout_request(proposal: Proposal, schedule: PaymentSchedule) -> CheckoutRequest:
    """Describe the first charge of a schedule for the checkout-session creator."""
    first = schedule.entries[0]
    client_name = proposal.client.name
    email = str(proposal.client.email) if proposal.client.email else None

    if schedule.payment_type == PaymentType.FULL:
        return CheckoutRequest(
            amount=first.amount,
            description=f"Service package - {client_name}",
            customer_email=email,
            is_subscription=schedule.recurrence.is_recurring,
            subscription_interval="month" if schedule.recurrence.is_recurring else None,
        )

    if schedule.payment_type == PaymentType.PARTIAL:
        percent = round(first.amount / schedule.cost * 100)
        return CheckoutRequest(
            amount=first.amount,
            description=f"Down payment - {client_name} ({percent}% of total)",
            customer_email=email,
        )

    count = len(schedule.entries)
    return CheckoutRequest(
        amount=first.amount,
        description=f"{client_name} - {count} monthly payments",
        customer_email=email,
        is_subscription=True,
        subscription_interval="month",
        installment_count=count,
    )
