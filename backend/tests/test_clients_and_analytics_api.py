"""
Admin client list (stored status authoritative, suggestion as a hint) and the
engagement analytics dashboard.
"""
from datetime import datetime, timezone, timedelta
from unittest.mock import AsyncMock, MagicMock, patch

from models import (
    AnalyticsEvent,
    Client,
    ClientContact,
    ClientStatus,
    Proposal,
    ProposalStatus,
    Questionnaire,
    QuestionnaireStatus,
    TrackedEntityType,
)

NOW = datetime.now(timezone.utc)
CONTACT = ClientContact(name="Acme", email="a@acme.com")


def _dump(model):
    return model.model_dump(mode="json")


def _make_db(clients=None, proposals=None, questionnaires=None, events=None, client_doc=None):
    db = MagicMock()
    db.__getitem__.side_effect = lambda name: getattr(db, name)

    def _finder(rows):
        return MagicMock(return_value=MagicMock(to_list=AsyncMock(return_value=rows or [])))

    db.clients.find = _finder(clients)
    db.proposals.find = _finder(proposals)
    db.questionnaires.find = _finder(questionnaires)
    db.analytics_events.find = _finder(events)
    db.questionnaire_templates.find = _finder([])
    db.clients.find_one = AsyncMock(return_value=client_doc)
    db.clients.insert_one = AsyncMock()
    db.clients.update_one = AsyncMock()
    db.portals.insert_one = AsyncMock()
    db.audit_logs.insert_one = AsyncMock()
    return db


ACME = Client(client_id="c1", name="Acme", email="a@acme.com", stored_status=ClientStatus.PROSPECT,
              created_at=NOW - timedelta(days=10))
BETA = Client(client_id="c2", name="Beta", email="b@beta.com", stored_status=ClientStatus.ACTIVE,
              created_at=NOW - timedelta(days=5))
ACCEPTED = Proposal(proposal_id="p1", client_id="c1", client=CONTACT, cost=4000, status=ProposalStatus.ACCEPTED)


class TestClientList:
    def test_rows_keep_stored_status_and_show_suggestion(self, client):
        db = _make_db(clients=[_dump(ACME), _dump(BETA)], proposals=[_dump(ACCEPTED)])
        with patch("routes.clients.database.get_db", return_value=db):
            data = client.get("/api/admin/clients").json()

        rows = {r["client_id"]: r for r in data["clients"]}
        assert rows["c1"]["status"] == "prospect"
        assert rows["c1"]["assessment"] == {"stored": "prospect", "suggested": "active", "differs": True}
        assert rows["c1"]["total_value"] == 4000
        assert data["counts"]["all"] == 2
        assert [r["client_id"] for r in data["clients"]] == ["c2", "c1"]

    def test_filter_uses_stored_status_not_suggestion(self, client):
        db = _make_db(clients=[_dump(ACME), _dump(BETA)], proposals=[_dump(ACCEPTED)])
        with patch("routes.clients.database.get_db", return_value=db):
            data = client.get("/api/admin/clients", params={"status": "active"}).json()
        assert [r["client_id"] for r in data["clients"]] == ["c2"]

    def test_unknown_status_filter_is_400(self, client):
        db = _make_db()
        with patch("routes.clients.database.get_db", return_value=db):
            response = client.get("/api/admin/clients", params={"status": "zombie"})
        assert response.status_code == 400

    def test_portal_views_counted(self, client):
        events = [
            _dump(AnalyticsEvent(entity_type=TrackedEntityType.PORTAL, entity_id="c1", timestamp=NOW - timedelta(hours=2))),
            _dump(AnalyticsEvent(entity_type=TrackedEntityType.PORTAL, entity_id="c1", timestamp=NOW - timedelta(hours=1))),
        ]
        db = _make_db(clients=[_dump(ACME)], events=events)
        with patch("routes.clients.database.get_db", return_value=db):
            row = client.get("/api/admin/clients").json()["clients"][0]
        assert row["total_portal_views"] == 2
        assert row["last_portal_access"] == (NOW - timedelta(hours=1)).isoformat()


class TestClientWrites:
    def test_duplicate_email_conflicts(self, client):
        db = _make_db(client_doc=_dump(ACME))
        with patch("routes.clients.database.get_db", return_value=db):
            response = client.post("/api/admin/clients", json={"name": "Acme 2", "email": "A@acme.com"})
        assert response.status_code == 409
        db.clients.insert_one.assert_not_called()

    def test_create_with_portal(self, client):
        db = _make_db(client_doc=None)
        with patch("routes.clients.database.get_db", return_value=db):
            response = client.post("/api/admin/clients", json={
                "name": "Gamma Homes", "email": "info@gamma.com", "status": "active", "create_portal": True,
            })
        assert response.status_code == 201
        data = response.json()
        assert data["stored_status"] == "active"
        assert data["portal_id"].startswith("gamma-homes-info-")
        db.portals.insert_one.assert_awaited_once()

    def test_status_change_is_audited(self, client):
        db = _make_db(client_doc=_dump(ACME))
        with patch("routes.clients.database.get_db", return_value=db):
            response = client.patch("/api/admin/clients/c1", json={"status": "churned"})
        assert response.status_code == 200
        assert response.json()["stored_status"] == "churned"
        audit = db.audit_logs.insert_one.call_args.args[0]
        assert audit["action"] == "CLIENT_STATUS_CHANGED"
        assert audit["metadata"]["diff"]["changed"]["stored_status"] == {"from": "prospect", "to": "churned"}

    def test_convert_existing_portal_conflicts(self, client):
        with_portal = ACME.model_copy(update={"portal_id": "acme-a-x1"})
        db = _make_db(client_doc=_dump(with_portal))
        with patch("routes.clients.database.get_db", return_value=db):
            response = client.post("/api/admin/clients/c1/convert-to-portal")
        assert response.status_code == 409


class TestAnalyticsDashboard:
    def test_overview_and_rows(self, client):
        proposals = [
            _dump(Proposal(proposal_id="p1", client_id="c1", client=CONTACT, cost=100)),
            _dump(Proposal(proposal_id="p2", client_id="c1", client=CONTACT, cost=100)),
        ]
        forms = [_dump(Questionnaire(questionnaire_id="q1", client_id="c1", client=CONTACT, template_id="t",
                                     title="Setup", status=QuestionnaireStatus.COMPLETED))]
        events = [
            _dump(AnalyticsEvent(entity_id="p1", timestamp=NOW - timedelta(minutes=3))),
            _dump(AnalyticsEvent(entity_id="p1", timestamp=NOW - timedelta(minutes=2))),
            _dump(AnalyticsEvent(entity_type=TrackedEntityType.QUESTIONNAIRE, entity_id="q1",
                                 timestamp=NOW - timedelta(minutes=1))),
        ]
        db = _make_db(proposals=proposals, questionnaires=forms, events=events)
        with patch("routes.analytics.database.get_db", return_value=db):
            data = client.get("/api/admin/analytics", params={"period": "7d"}).json()

        overview = data["overview"]
        assert overview["total_views"] == 3
        assert overview["proposals_tracked"] == 1
        assert overview["engagement_rate"] == 67
        assert overview["completion_rate"] == 100
        assert overview["period"] == "7d"
        assert [r["id"] for r in data["proposals"]] == ["p1", "p2"]
        assert data["proposals"][0]["view_count"] == 2
        assert data["proposals"][1]["last_viewed"] is None

    def test_empty_system_rates_are_zero(self, client):
        db = _make_db()
        with patch("routes.analytics.database.get_db", return_value=db):
            overview = client.get("/api/admin/analytics").json()["overview"]
        assert overview["engagement_rate"] == 0
        assert overview["completion_rate"] == 0

    def test_entity_detail(self, client):
        events = [
            _dump(AnalyticsEvent(entity_id="p1", section="pricing", timestamp=NOW - timedelta(minutes=5))),
            _dump(AnalyticsEvent(entity_id="p1", timestamp=NOW - timedelta(minutes=1))),
        ]
        db = _make_db(events=events)
        with patch("routes.analytics.database.get_db", return_value=db):
            data = client.get("/api/admin/analytics/proposal/p1").json()
        assert data["view_count"] == 2
        assert data["sections"] == {"pricing": 1}
        assert [e["section"] for e in data["events"]] == [None, "pricing"]
