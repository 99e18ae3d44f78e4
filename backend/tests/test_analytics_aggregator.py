"""Engagement analytics folds over the append-only open-event log."""
import pytest
from datetime import datetime, timezone, timedelta

from models import (
    AnalyticsEvent,
    ClientContact,
    Proposal,
    Questionnaire,
    QuestionnaireStatus,
    TrackedEntityType,
)
from services import analytics_aggregator as agg

T0 = datetime(2026, 4, 1, 9, 0, tzinfo=timezone.utc)
CONTACT = ClientContact(name="Acme", email="a@acme.com")


def _event(entity_id, minutes=0, entity_type=TrackedEntityType.PROPOSAL):
    return AnalyticsEvent(entity_type=entity_type, entity_id=entity_id, timestamp=T0 + timedelta(minutes=minutes))


def _proposal(pid):
    return Proposal(proposal_id=pid, client_id="c1", client=CONTACT, cost=100)


def _form(qid, status=QuestionnaireStatus.SENT):
    return Questionnaire(questionnaire_id=qid, client_id="c1", client=CONTACT, template_id="t", title="T", status=status)


def test_record_open_appends_without_mutating():
    events = ()
    first = agg.record_open(events, "p1", timestamp=T0)
    second = agg.record_open(first, "p1", timestamp=T0 + timedelta(minutes=5))
    assert events == ()
    assert len(first) == 1
    assert agg.view_count(second, "p1") == 2
    assert agg.last_viewed(second, "p1") == T0 + timedelta(minutes=5)


def test_every_open_counts():
    events = [_event("p1"), _event("p1"), _event("p1"), _event("p2")]
    assert agg.view_count(events, "p1") == 3
    assert agg.view_count(events, "missing") == 0
    assert agg.last_viewed(events, "missing") is None


def test_counts_do_not_depend_on_event_order():
    events = [_event("p1", 30), _event("p2", 10), _event("p1", 5)]
    assert agg.entity_stats(events) == agg.entity_stats(list(reversed(events)))
    assert agg.last_viewed(events, "p1") == T0 + timedelta(minutes=30)


def test_entity_stats_single_pass():
    stats = agg.entity_stats([_event("p1"), _event("q1", 3, TrackedEntityType.QUESTIONNAIRE)])
    assert stats["q1"] == {"entity_type": "questionnaire", "view_count": 1, "last_viewed": T0 + timedelta(minutes=3)}


@pytest.mark.parametrize("part,total,expected", [(0, 0, 0), (1, 3, 33), (2, 3, 67), (1, 8, 13), (1, 2, 50)])
def test_percent_rounds_half_up(part, total, expected):
    assert agg._percent(part, total) == expected


def test_rates_are_zero_without_entities():
    assert agg.engagement_rate([_event("p1")], []) == 0
    assert agg.completion_rate([]) == 0


def test_engagement_and_completion_rates():
    events = [_event("p1"), _event("p1"), _event("q1", entity_type=TrackedEntityType.QUESTIONNAIRE)]
    assert agg.engagement_rate(events, ["p1", "p2", "q1", "q2"]) == 50
    forms = [_form("q1", QuestionnaireStatus.COMPLETED), _form("q2"), _form("q3")]
    assert agg.completion_rate(forms) == 33


def test_form_expired_after_submission_still_counts_as_completed():
    submitted = _form("q1", QuestionnaireStatus.EXPIRED).model_copy(update={"completed_at": T0})
    never_answered = _form("q2", QuestionnaireStatus.EXPIRED)
    assert agg.completion_rate([submitted, never_answered]) == 50


def test_last_portal_access_ignores_other_entities():
    events = [
        _event("c1", 5, TrackedEntityType.PORTAL),
        _event("c1", 50, TrackedEntityType.PROPOSAL),
        _event("c1", 20, TrackedEntityType.PORTAL),
    ]
    assert agg.last_portal_access(events, "c1") == T0 + timedelta(minutes=20)
    assert agg.last_portal_access(events, "c2") is None


def test_portal_overview():
    events = [
        _event("p1", 1),
        _event("p1", 2),
        _event("q1", 9, TrackedEntityType.QUESTIONNAIRE),
    ]
    overview = agg.portal_overview(
        events,
        [_proposal("p1"), _proposal("p2")],
        [_form("q1", QuestionnaireStatus.COMPLETED)],
    )
    assert overview == {
        "total_proposals": 2,
        "total_questionnaires": 1,
        "proposals_tracked": 1,
        "questionnaires_tracked": 1,
        "total_views": 3,
        "latest_view": (T0 + timedelta(minutes=9)).isoformat(),
        "engagement_rate": 67,
        "completion_rate": 100,
    }


def test_overview_of_empty_system():
    overview = agg.portal_overview([], [], [])
    assert overview["engagement_rate"] == 0
    assert overview["completion_rate"] == 0
    assert overview["latest_view"] is None
