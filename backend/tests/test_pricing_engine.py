"""
Pricing engine: payment schedules for full, partial and installment proposals.
Amounts are whole currency units; every schedule must sum exactly to the cost.
"""
import pytest
from datetime import date

from models import ClientContact, CustomService, PaymentType, Proposal, Service
from services.errors import ValidationError
from services.pricing_engine import (
    BILLING_CYCLE_DAYS,
    build_checkout_request,
    build_payment_schedule,
    schedule_for_proposal,
    schedule_total,
    services_total,
    validate_payment_terms,
)


def _proposal(**overrides):
    data = {
        "proposal_id": "acme-abc123",
        "client_id": "c1",
        "client": ClientContact(name="Acme Realty", email="owner@acme.com"),
        "cost": 1000,
    }
    data.update(overrides)
    return Proposal(**data)


class TestFullPayment:
    def test_single_entry_due_now(self):
        schedule = build_payment_schedule(1200, PaymentType.FULL)
        assert [(e.amount, e.due_offset_days) for e in schedule.entries] == [(1200, 0)]
        assert schedule.recurrence.kind == "none"
        assert schedule.recurrence.describe() == "none"

    def test_recurring_full_starts_after_one_cycle(self):
        schedule = build_payment_schedule(500, PaymentType.FULL, is_recurring=True)
        assert schedule.recurrence.kind == "monthly"
        assert schedule.recurrence.amount == 500
        assert schedule.recurrence.start_offset_days == BILLING_CYCLE_DAYS
        assert schedule.recurrence.describe() == "monthly starting at day 30"


class TestPartialPayment:
    def test_down_payment_and_remainder(self):
        schedule = build_payment_schedule(1000, PaymentType.PARTIAL, down_payment=250)
        assert [(e.amount, e.due_offset_days) for e in schedule.entries] == [(250, 0), (750, 30)]
        assert schedule.total == 1000

    def test_remainder_due_days_override(self):
        schedule = build_payment_schedule(
            1000, PaymentType.PARTIAL, down_payment=400, remainder_due_days=14
        )
        assert schedule.entries[1].due_offset_days == 14

    def test_down_payment_equal_to_cost_leaves_zero_remainder(self):
        schedule = build_payment_schedule(800, PaymentType.PARTIAL, down_payment=800)
        assert [e.amount for e in schedule.entries] == [800, 0]

    def test_down_payment_above_cost_rejected(self):
        with pytest.raises(ValidationError) as exc:
            build_payment_schedule(1000, PaymentType.PARTIAL, down_payment=1200)
        assert exc.value.field == "down_payment"

    def test_missing_down_payment_rejected(self):
        with pytest.raises(ValidationError):
            build_payment_schedule(1000, PaymentType.PARTIAL)

    def test_recurring_partial_accepted_without_recurrence(self):
        schedule = build_payment_schedule(1000, PaymentType.PARTIAL, down_payment=200, is_recurring=True)
        assert [(e.amount, e.due_offset_days) for e in schedule.entries] == [(200, 0), (800, 30)]
        assert schedule.recurrence.kind == "none"
        assert schedule.total == 1000

    @pytest.mark.parametrize("cost,down", [(1000, 0), (999, 333), (7, 3), (100000, 99999)])
    def test_partial_always_sums_to_cost(self, cost, down):
        schedule = build_payment_schedule(cost, PaymentType.PARTIAL, down_payment=down)
        assert schedule_total(schedule) == cost


class TestInstallments:
    def test_last_installment_absorbs_remainder(self):
        schedule = build_payment_schedule(1000, PaymentType.INSTALLMENTS, installment_count=3)
        assert [e.amount for e in schedule.entries] == [333, 333, 334]
        assert [e.due_offset_days for e in schedule.entries] == [0, 30, 60]
        assert schedule.total == 1000

    def test_even_split_without_recurrence(self):
        schedule = build_payment_schedule(1500, PaymentType.INSTALLMENTS, installment_count=4)
        assert [e.amount for e in schedule.entries] == [375, 375, 375, 375]
        assert [e.due_offset_days for e in schedule.entries] == [0, 30, 60, 90]
        assert schedule.recurrence.kind == "none"
        assert schedule.entries[-1].label == "Installment 4 of 4"

    def test_recurring_installments_continue_after_last_entry(self):
        schedule = build_payment_schedule(
            1500, PaymentType.INSTALLMENTS, installment_count=4, is_recurring=True
        )
        assert schedule.recurrence.start_offset_days == 120
        assert schedule.recurrence.amount == 375

    @pytest.mark.parametrize("count", [None, 0, 1])
    def test_fewer_than_two_installments_rejected(self, count):
        with pytest.raises(ValidationError) as exc:
            build_payment_schedule(1000, PaymentType.INSTALLMENTS, installment_count=count)
        assert exc.value.field == "installment_count"

    @pytest.mark.parametrize("cost,count", [(1000, 3), (10, 7), (99999, 12), (2, 2)])
    def test_installments_always_sum_to_cost(self, cost, count):
        schedule = build_payment_schedule(cost, PaymentType.INSTALLMENTS, installment_count=count)
        assert schedule_total(schedule) == cost
        assert len(schedule.entries) == count


class TestDatesAndValidation:
    def test_start_date_sets_due_dates(self):
        schedule = build_payment_schedule(
            900, PaymentType.INSTALLMENTS, installment_count=3, is_recurring=True,
            start_date=date(2026, 1, 1),
        )
        assert [e.due_date for e in schedule.entries] == [
            date(2026, 1, 1), date(2026, 1, 31), date(2026, 3, 2)
        ]
        assert schedule.recurrence.starts_on == date(2026, 4, 1)
        assert schedule.recurrence.describe() == "monthly starting at 2026-04-01"

    @pytest.mark.parametrize("cost", [0, -5, None])
    def test_non_positive_cost_rejected(self, cost):
        with pytest.raises(ValidationError) as exc:
            validate_payment_terms(cost, PaymentType.FULL)
        assert exc.value.field == "cost"

    def test_schedule_is_immutable(self):
        schedule = build_payment_schedule(100, PaymentType.FULL)
        with pytest.raises(Exception):
            schedule.cost = 200

    def test_schedule_for_proposal_uses_stored_terms(self):
        proposal = _proposal(cost=1000, payment_type=PaymentType.INSTALLMENTS, installment_count=3)
        assert [e.amount for e in schedule_for_proposal(proposal).entries] == [333, 333, 334]


class TestServicesAndCheckout:
    def test_services_total_ignores_unpriced(self):
        services = [Service(title="A", price=300), Service(title="B")]
        custom = [CustomService(title="Extra", price=150)]
        assert services_total(services, custom) == 450

    def test_checkout_for_partial_charges_down_payment(self):
        proposal = _proposal(payment_type=PaymentType.PARTIAL, down_payment=250)
        request = build_checkout_request(proposal, schedule_for_proposal(proposal))
        assert request.amount == 250
        assert request.is_subscription is False
        assert request.description == "Down payment - Acme Realty (25% of total)"
        assert request.customer_email == "owner@acme.com"

    def test_checkout_for_installments_is_monthly_subscription(self):
        proposal = _proposal(cost=1500, payment_type=PaymentType.INSTALLMENTS, installment_count=4)
        request = build_checkout_request(proposal, schedule_for_proposal(proposal))
        assert request.amount == 375
        assert request.is_subscription is True
        assert request.subscription_interval == "month"
        assert request.installment_count == 4

    def test_checkout_for_recurring_full_is_subscription(self):
        proposal = _proposal(cost=700, is_recurring=True)
        request = build_checkout_request(proposal, schedule_for_proposal(proposal))
        assert request.amount == 700
        assert request.is_subscription is True
