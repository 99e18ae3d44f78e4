"""
Proposal API: creation with payment schedule, checkout failure recovery
(proposal kept, retry affordance) and the admin list.
Tests use mocked stripe_service and database so no live Stripe or DB required.
"""
import pytest
from datetime import datetime, timezone, timedelta
from unittest.mock import AsyncMock, MagicMock, patch

from models import Client, ClientContact, PaymentType, Proposal, ProposalStatus
from services.errors import ExternalServiceError

CLIENT = Client(client_id="c1", name="Acme Realty", email="owner@acme.com")


def _proposal_doc(**overrides):
    data = {
        "proposal_id": "acme-realty-abc123",
        "client_id": "c1",
        "client": ClientContact(name="Acme Realty", email="owner@acme.com"),
        "cost": 1500,
        "payment_type": PaymentType.INSTALLMENTS,
        "installment_count": 4,
        "checkout_url": "https://checkout.stripe.com/c/pay/cs_test_1",
    }
    data.update(overrides)
    return Proposal(**data).model_dump(mode="json")


def _make_db(client_doc=None, proposal_doc=None, proposals=None):
    db = MagicMock()
    db.__getitem__.side_effect = lambda name: getattr(db, name)
    db.clients.find_one = AsyncMock(return_value=client_doc)
    db.clients.insert_one = AsyncMock()
    db.clients.update_one = AsyncMock()
    db.proposals.find_one = AsyncMock(return_value=proposal_doc)
    db.proposals.insert_one = AsyncMock()
    db.proposals.update_one = AsyncMock()
    db.proposals.delete_one = AsyncMock()
    db.proposals.find = MagicMock(return_value=MagicMock(to_list=AsyncMock(return_value=proposals or [])))
    db.audit_logs.insert_one = AsyncMock()
    return db


@pytest.fixture
def mock_stripe():
    with patch("routes.proposals.stripe_service") as stripe_mock:
        stripe_mock.create_checkout_session = AsyncMock(return_value={
            "checkout_url": "https://checkout.stripe.com/c/pay/cs_test_1",
            "session_id": "cs_test_1",
        })
        yield stripe_mock


def test_create_installment_proposal_returns_schedule_and_checkout(client, mock_stripe):
    db = _make_db(client_doc=CLIENT.model_dump(mode="json"))
    with patch("routes.proposals.database.get_db", return_value=db):
        response = client.post("/api/proposals", json={
            "client_id": "c1",
            "cost": 1000,
            "payment_type": "installments",
            "installment_count": 3,
        })

    assert response.status_code == 201
    data = response.json()
    assert [e["amount"] for e in data["schedule"]["entries"]] == [333, 333, 334]
    assert data["schedule"]["total"] == 1000
    assert data["checkout_url"] == "https://checkout.stripe.com/c/pay/cs_test_1"
    assert data["retryable"] is False
    assert data["proposal_id"].startswith("acme-realty-")

    request = mock_stripe.create_checkout_session.call_args.args[0]
    assert request.amount == 333
    assert request.is_subscription is True
    db.proposals.insert_one.assert_awaited_once()


def test_checkout_failure_keeps_proposal_with_retry(client, mock_stripe):
    mock_stripe.create_checkout_session = AsyncMock(
        side_effect=ExternalServiceError("stripe", "Failed to create checkout session: boom")
    )
    db = _make_db(client_doc=CLIENT.model_dump(mode="json"))
    with patch("routes.proposals.database.get_db", return_value=db):
        response = client.post("/api/proposals", json={"client_id": "c1", "cost": 800})

    assert response.status_code == 201
    data = response.json()
    assert data["checkout_url"] is None
    assert data["retryable"] is True
    assert data["retry_url"] == f"/api/proposals/{data['proposal_id']}/checkout"

    stored = db.proposals.insert_one.call_args.args[0]
    assert stored["checkout_error"] == "Failed to create checkout session: boom"
    actions = [c.args[0]["action"] for c in db.audit_logs.insert_one.call_args_list]
    assert "CHECKOUT_SESSION_FAILED" in actions
    assert "PROPOSAL_CREATED" in actions


def test_invalid_payment_terms_rejected_before_any_write(client, mock_stripe):
    db = _make_db(client_doc=CLIENT.model_dump(mode="json"))
    with patch("routes.proposals.database.get_db", return_value=db):
        response = client.post("/api/proposals", json={
            "client_id": "c1",
            "cost": 1000,
            "payment_type": "partial",
            "down_payment": 1500,
        })

    assert response.status_code == 400
    assert response.json()["field"] == "down_payment"
    db.proposals.insert_one.assert_not_called()
    mock_stripe.create_checkout_session.assert_not_called()


def test_unknown_service_rejected(client, mock_stripe):
    db = _make_db(client_doc=CLIENT.model_dump(mode="json"))
    with patch("routes.proposals.database.get_db", return_value=db):
        response = client.post("/api/proposals", json={"client_id": "c1", "selected_services": ["made-up"]})
    assert response.status_code == 400
    assert response.json()["field"] == "selected_services"


def test_new_client_created_from_email(client, mock_stripe):
    db = _make_db(client_doc=None)
    with patch("routes.proposals.database.get_db", return_value=db):
        response = client.post("/api/proposals", json={
            "client_name": "New Team",
            "client_email": "Lead@NewTeam.com",
            "cost": 500,
        })
    assert response.status_code == 201
    created = db.clients.insert_one.call_args.args[0]
    assert created["email"] == "lead@newteam.com"
    assert created["stored_status"] == "prospect"


def test_missing_client_reported_as_not_found(client, mock_stripe):
    db = _make_db(client_doc=None)
    with patch("routes.proposals.database.get_db", return_value=db):
        response = client.post("/api/proposals", json={"client_id": "ghost", "cost": 500})
    assert response.status_code == 404


def test_retry_checkout_failure_is_retryable_502(client, mock_stripe):
    mock_stripe.create_checkout_session = AsyncMock(side_effect=ExternalServiceError("stripe", "down"))
    db = _make_db(proposal_doc=_proposal_doc(checkout_url=None))
    with patch("routes.proposals.database.get_db", return_value=db):
        response = client.post("/api/proposals/acme-realty-abc123/checkout")

    assert response.status_code == 502
    assert response.json() == {"detail": "down", "service": "stripe", "retryable": True}
    db.proposals.update_one.assert_awaited_once_with(
        {"proposal_id": "acme-realty-abc123"}, {"$set": {"checkout_error": "down"}}
    )


def test_retry_checkout_refused_for_accepted_proposal(client, mock_stripe):
    db = _make_db(proposal_doc=_proposal_doc(status=ProposalStatus.ACCEPTED))
    with patch("routes.proposals.database.get_db", return_value=db):
        response = client.post("/api/proposals/acme-realty-abc123/checkout")
    assert response.status_code == 400
    mock_stripe.create_checkout_session.assert_not_called()


def test_admin_list_hides_checkout_url_and_expires_stale(client):
    old = _proposal_doc(
        proposal_id="old-1",
        created_at=datetime.now(timezone.utc) - timedelta(days=45),
    )
    db = _make_db(proposals=[old, _proposal_doc()])
    with patch("routes.proposals.database.get_db", return_value=db):
        response = client.get("/api/proposals")

    assert response.status_code == 200
    rows = {r["proposal_id"]: r for r in response.json()["proposals"]}
    assert rows["old-1"]["status"] == "expired"
    assert rows["acme-realty-abc123"]["status"] == "pending"
    assert all("checkout_url" not in r for r in rows.values())


def test_schedule_anchored_to_start_date(client):
    db = _make_db(proposal_doc=_proposal_doc())
    with patch("routes.proposals.database.get_db", return_value=db):
        response = client.get("/api/proposals/acme-realty-abc123/schedule", params={"start_date": "2026-01-01"})
    assert response.status_code == 200
    entries = response.json()["entries"]
    assert [e["amount"] for e in entries] == [375, 375, 375, 375]
    assert [e["due_date"] for e in entries] == ["2026-01-01", "2026-01-31", "2026-03-02", "2026-04-01"]


def test_service_catalog(client):
    response = client.get("/api/services")
    assert response.status_code == 200
    ids = [s["service_id"] for s in response.json()["services"]]
    assert "account-engineers" in ids
