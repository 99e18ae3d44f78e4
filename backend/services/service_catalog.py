"""Service catalog - the agency's standard service packages offered in proposals.

Catalog prices are optional; a proposal's cost is always entered by the
operator and may differ from the sum of service prices.
"""
from typing import Dict, List

from models import Service
from services.errors import NotFoundError

AVAILABLE_SERVICES: Dict[str, Service] = {
    s.service_id: s for s in (
        Service(
            service_id="account-management",
            title="Account Management Overview",
            description="Comprehensive account oversight and strategic guidance for your real estate business growth and optimization.",
            features=[
                "Dedicated account manager as your single point of contact",
                "Regular performance reviews and optimization recommendations",
                "Strategic planning sessions to align with your business goals",
                "Priority support and escalation management",
            ],
        ),
        Service(
            service_id="account-engineers",
            title="Account Engineers",
            description="Technical implementation and ongoing optimization of your lead generation and management systems.",
            features=[
                "CRM integration and custom workflow development",
                "Lead routing optimization for maximum conversion",
                "Advanced reporting and analytics setup",
                "Marketing automation and drip campaign development",
                "A/B testing implementation for continuous improvement",
                "Technical troubleshooting and system maintenance",
            ],
            highlighted=True,
        ),
        Service(
            service_id="leads-manager",
            title="Leads Manager",
            description="Dedicated lead management and nurturing to maximize your conversion potential.",
            features=[
                "Lead qualification and scoring implementation",
                "Database segmentation for targeted campaigns",
                "Lead nurturing sequences and follow-up automation",
                "Conversion tracking and performance analytics",
                "Lead source optimization and ROI analysis",
            ],
        ),
        Service(
            service_id="account-manager",
            title="Account Manager",
            description="Strategic oversight and relationship management for sustainable business growth.",
            features=[
                "Monthly strategy sessions and performance reviews",
                "Goal setting and KPI tracking",
                "Market analysis and competitive positioning",
                "Growth opportunity identification",
                "Cross-team coordination and project management",
                "Quarterly business reviews and planning sessions",
            ],
        ),
    )
}


def list_services() -> List[Service]:
    return list(AVAILABLE_SERVICES.values())


def resolve_services(service_ids: List[str]) -> List[Service]:
    """Catalog entries for the given ids, in order. Unknown ids raise NotFoundError."""
    services = []
    for service_id in service_ids:
        service = AVAILABLE_SERVICES.get(service_id)
        if service is None:
            raise NotFoundError("Service", service_id)
        services.append(service)
    return services
