"""Lifecycle Status Engine - stored vs. suggested client status.

The stored status is set by the operator and is the only value used for
display, filtering and sorting. The engine derives an advisory suggestion from
proposal and activity signals; the admin UI shows it as a hint when it differs.
Nothing in this module writes a client's stored status.

Default policy (thresholds from the environment):
1. Any accepted proposal -> active, or churned when the last activity is older
   than LIFECYCLE_CHURN_AFTER_DAYS
2. Any pending proposal -> prospect
3. Any proposal with recent (or unknown) activity -> prospect
4. Otherwise -> inactive

When the signals are missing there is no suggestion.
"""
import os
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional

from models import Client, ClientStatus, Proposal, ProposalStatus, Questionnaire
from services.template_engine import is_submitted
from utils.dates import ensure_utc, utcnow

logger = logging.getLogger(__name__)

LIFECYCLE_INACTIVE_AFTER_DAYS = int(os.getenv("LIFECYCLE_INACTIVE_AFTER_DAYS", "90"))
LIFECYCLE_CHURN_AFTER_DAYS = int(os.getenv("LIFECYCLE_CHURN_AFTER_DAYS", "180"))

# Display order for the admin filter tabs
STATUS_ORDER = [ClientStatus.ACTIVE, ClientStatus.PROSPECT, ClientStatus.INACTIVE, ClientStatus.CHURNED]


@dataclass(frozen=True)
class LifecyclePolicy:
    inactive_after_days: int = LIFECYCLE_INACTIVE_AFTER_DAYS
    churn_after_days: int = LIFECYCLE_CHURN_AFTER_DAYS


DEFAULT_POLICY = LifecyclePolicy()


@dataclass(frozen=True)
class LifecycleSignals:
    accepted_count: Optional[int] = None
    pending_count: Optional[int] = None
    proposal_count: Optional[int] = None
    last_activity: Optional[datetime] = None

    @property
    def is_empty(self) -> bool:
        return self.accepted_count is None and self.pending_count is None and self.proposal_count is None


@dataclass(frozen=True)
class StatusAssessment:
    """Authoritative stored status paired with the advisory suggestion."""
    stored: ClientStatus
    suggested: Optional[ClientStatus] = None

    @property
    def differs(self) -> bool:
        return self.suggested is not None and self.suggested != self.stored

    def to_dict(self) -> Dict[str, Any]:
        return {
            "stored": self.stored.value,
            "suggested": self.suggested.value if self.suggested else None,
            "differs": self.differs,
        }


# ============================================================================
# SUGGESTION
# ============================================================================

def suggest_status(
    signals: LifecycleSignals,
    now: Optional[datetime] = None,
    policy: LifecyclePolicy = DEFAULT_POLICY,
) -> Optional[ClientStatus]:
    if signals.is_empty:
        return None

    now = ensure_utc(now or utcnow())
    last_activity = ensure_utc(signals.last_activity)
    idle_days = (now - last_activity).days if last_activity else None

    if (signals.accepted_count or 0) > 0:
        if idle_days is not None and idle_days > policy.churn_after_days:
            return ClientStatus.CHURNED
        return ClientStatus.ACTIVE

    if (signals.pending_count or 0) > 0:
        return ClientStatus.PROSPECT

    if (signals.proposal_count or 0) > 0:
        if idle_days is None or idle_days <= policy.inactive_after_days:
            return ClientStatus.PROSPECT

    return ClientStatus.INACTIVE


def assess(
    stored_status: ClientStatus,
    signals: LifecycleSignals,
    now: Optional[datetime] = None,
    policy: LifecyclePolicy = DEFAULT_POLICY,
) -> StatusAssessment:
    return StatusAssessment(
        stored=ClientStatus(stored_status),
        suggested=suggest_status(signals, now, policy),
    )


def effective_proposal_status(proposal: Proposal, now: Optional[datetime] = None) -> ProposalStatus:
    """Pending proposals past expires_at read as expired."""
    status = ProposalStatus(proposal.status)
    if status == ProposalStatus.PENDING:
        now = ensure_utc(now or utcnow())
        if now > ensure_utc(proposal.created_at) + timedelta(days=proposal.expires_in_days):
            return ProposalStatus.EXPIRED
    return status


def signals_for(
    proposals: Iterable[Proposal],
    last_activity: Optional[datetime] = None,
    now: Optional[datetime] = None,
) -> LifecycleSignals:
    statuses = [effective_proposal_status(p, now) for p in proposals]
    return LifecycleSignals(
        accepted_count=statuses.count(ProposalStatus.ACCEPTED),
        pending_count=statuses.count(ProposalStatus.PENDING),
        proposal_count=len(statuses),
        last_activity=last_activity,
    )


# ============================================================================
# ADMIN CLIENT ROWS
# ============================================================================

def summarize_client(
    client: Client,
    proposals: List[Proposal],
    questionnaires: List[Questionnaire],
    now: Optional[datetime] = None,
    policy: LifecyclePolicy = DEFAULT_POLICY,
) -> Dict[str, Any]:
    """One row of the admin client table."""
    now = now or utcnow()
    accepted = [p for p in proposals if effective_proposal_status(p, now) == ProposalStatus.ACCEPTED]
    completed_forms = [q for q in questionnaires if is_submitted(q)]
    assessment = assess(client.stored_status, signals_for(proposals, client.last_activity, now), now, policy)

    row = client.model_dump(mode="json")
    row.update({
        "status": assessment.stored.value,
        "assessment": assessment.to_dict(),
        "proposal_count": len(proposals),
        "questionnaire_count": len(questionnaires),
        "accepted_proposals": len(accepted),
        "completed_forms": len(completed_forms),
        "total_value": sum(p.cost for p in accepted),
    })
    return row


def filter_by_status(rows: List[Dict[str, Any]], status: Optional[str]) -> List[Dict[str, Any]]:
    """Filter on the stored status only; `all` or empty returns every row."""
    if not status or status == "all":
        return list(rows)
    wanted = ClientStatus(status).value
    return [r for r in rows if r["status"] == wanted]


def sort_clients(rows: List[Dict[str, Any]], sort: str = "created_at") -> List[Dict[str, Any]]:
    """Sort admin rows. `status` orders by the stored status, never the suggestion."""
    if sort == "name":
        return sorted(rows, key=lambda r: (r.get("name") or "").lower())
    if sort == "status":
        rank = {s.value: i for i, s in enumerate(STATUS_ORDER)}
        return sorted(rows, key=lambda r: (rank.get(r["status"], len(rank)), (r.get("name") or "").lower()))
    if sort == "total_value":
        return sorted(rows, key=lambda r: r.get("total_value", 0), reverse=True)
    return sorted(rows, key=lambda r: r.get("created_at") or "", reverse=True)


def status_counts(rows: List[Dict[str, Any]]) -> Dict[str, int]:
    counts = {"all": len(rows)}
    for status in STATUS_ORDER:
        counts[status.value] = sum(1 for r in rows if r["status"] == status.value)
    return counts
