"""
Questionnaire Template Registry - Built-in onboarding questionnaires.

Templates defined here ship with the application and are always available.
Operator-authored templates live in the `questionnaire_templates` collection and
are merged on top of these (a stored template with the same id wins).

Each question has:
- question_id: Unique within the template
- type: text, email, textarea, radio, checkbox, select
- required: Whether an answer is mandatory on submission
- options: For radio/checkbox/select; an option with allow_custom accepts
  an extra free-text answer ("Others - ____")
"""
from typing import Dict, List, Optional
import logging

from models import (
    QuestionnaireTemplate,
    TextQuestion,
    ChoiceQuestion,
    MultiChoiceQuestion,
    QuestionOption,
)

logger = logging.getLogger(__name__)


def _opt(option_id: str, text: str, allow_custom: bool = False) -> QuestionOption:
    return QuestionOption(option_id=option_id, text=text, allow_custom=allow_custom)


# ============================================================================
# ISA SETUP
# ============================================================================

ISA_SETUP = QuestionnaireTemplate(
    template_id="isa-setup",
    name="ISA Setup - Pre-Install Client Questionnaire",
    description="Necessary information before going LIVE with ISA services",
    is_builtin=True,
    questions=[
        ChoiceQuestion(
            question_id="isa-credentials",
            type="radio",
            title="ISA Credentials",
            description="Do you already have a dedicated ISA user seat in Follow Up Boss?",
            required=True,
            options=[
                _opt("yes-clientcare", "Yes - clientcare@ email already set up"),
                _opt("yes-other", "Yes - other email setup"),
                _opt("no-need-setup", "No - need to create ISA seat"),
            ],
        ),
        MultiChoiceQuestion(
            question_id="eligible-lead-sources",
            title="Eligible Lead Sources",
            description="Which lead sources are eligible for ISA outreach?",
            required=True,
            options=[
                _opt("zbuyer", "ZBuyer"),
                _opt("ylopo-ppc", "Ylopo PPC"),
                _opt("luxury-presence", "Luxury Presence"),
                _opt("all-sources", "All lead sources"),
                _opt("others", "Others", allow_custom=True),
            ],
        ),
        MultiChoiceQuestion(
            question_id="excluded-lead-sources",
            title="Lead Source Exclusions",
            description="Which lead sources should be excluded from ISA outreach?",
            options=[
                _opt("zillow-flex", "Zillow Flex"),
                _opt("soi-sphere", "SOI/Sphere"),
                _opt("past-clients", "Past Clients"),
                _opt("closed-leads", "Closed Leads"),
                _opt("others", "Others", allow_custom=True),
            ],
        ),
        TextQuestion(
            question_id="handoff-agents",
            type="textarea",
            title="Eligible ISA Handoff Agents",
            description="List all agent names/emails who are eligible to receive handoffs",
            required=True,
            placeholder="Agent Name - email@example.com\nAgent Name 2 - email2@example.com",
        ),
        ChoiceQuestion(
            question_id="lead-flow-type",
            type="radio",
            title="Lead Flow Preference",
            description="Should the ISA work from:",
            required=True,
            options=[
                _opt("new-only", "New Leads only"),
                _opt("new-pond", "New + Pond leads"),
                _opt("custom", "Custom setup", allow_custom=True),
            ],
        ),
        MultiChoiceQuestion(
            question_id="handoff-method",
            title="Preferred Handoff Method",
            description="How should agents be notified of handoffs?",
            required=True,
            options=[
                _opt("email", "Email Notification"),
                _opt("sms", "SMS/Text"),
                _opt("fub-notification", "FUB System Notification"),
            ],
        ),
        ChoiceQuestion(
            question_id="reassignment-timeframe",
            type="radio",
            title="Agent Response Timeframe",
            description="How long does an agent have to reach out to a lead after handoff before it gets reassigned?",
            required=True,
            options=[
                _opt("30min", "30 minutes"),
                _opt("6hrs", "6 hours"),
                _opt("24hrs", "24 hours"),
                _opt("custom", "Custom timeframe", allow_custom=True),
            ],
        ),
        ChoiceQuestion(
            question_id="unresponsive-reassignment",
            type="radio",
            title="Unresponsive Lead Reassignment",
            description="Should unresponsive leads be reassigned to:",
            required=True,
            options=[
                _opt("pond", "POND"),
                _opt("agent", "Different Agent"),
                _opt("other", "Other", allow_custom=True),
            ],
        ),
        MultiChoiceQuestion(
            question_id="excluded-stages",
            title="Stages to Exclude",
            description="Which stages should be excluded from ISA outreach?",
            options=[
                _opt("past-clients", "Past Clients"),
                _opt("closed", "Closed"),
                _opt("under-contract", "Under Contract"),
                _opt("others", "Others", allow_custom=True),
            ],
        ),
        TextQuestion(
            question_id="introduction-script",
            type="textarea",
            title="Introduction Script",
            description="Preferred introduction script for ISA calls (optional)",
            placeholder="Hi [Name], this is [ISA Name] from [Company]...",
        ),
        TextQuestion(
            question_id="additional-notes",
            type="textarea",
            title="Additional Notes or Questions",
            description="Any additional requirements, questions, or special instructions",
        ),
    ],
)


# ============================================================================
# AS SYSTEM SETUP
# ============================================================================

AS_SYSTEM_SETUP = QuestionnaireTemplate(
    template_id="as-system-setup",
    name="AS System Setup Questionnaire",
    description="Information needed for Follow Up Boss AS System implementation",
    is_builtin=True,
    questions=[
        ChoiceQuestion(
            question_id="fub-admin-access",
            type="radio",
            title="Follow Up Boss Admin Access",
            description="Do you have admin access to provide us with system setup permissions?",
            required=True,
            options=[
                _opt("yes-admin", "Yes - I have admin access"),
                _opt("can-get", "Yes - I can get admin access"),
                _opt("no-admin", "No - Need to coordinate with admin"),
            ],
        ),
        TextQuestion(
            question_id="team-size",
            title="Team Size",
            description="How many agents/team members will be using the system?",
            required=True,
            placeholder="e.g., 15 agents",
        ),
        TextQuestion(
            question_id="contact-email",
            type="email",
            title="Primary Contact Email",
            description="Who should we coordinate the implementation with?",
            placeholder="you@example.com",
        ),
        MultiChoiceQuestion(
            question_id="lead-sources",
            title="Current Lead Sources",
            description="What lead sources are you currently using?",
            required=True,
            options=[
                _opt("zillow", "Zillow"),
                _opt("realtor-com", "Realtor.com"),
                _opt("ylopo", "Ylopo"),
                _opt("luxury-presence", "Luxury Presence"),
                _opt("facebook", "Facebook Ads"),
                _opt("google", "Google Ads"),
                _opt("others", "Others", allow_custom=True),
            ],
        ),
        MultiChoiceQuestion(
            question_id="current-challenges",
            title="Current Follow Up Boss Challenges",
            description="What challenges are you facing with your current FUB setup?",
            options=[
                _opt("lead-routing", "Lead routing issues"),
                _opt("agent-adoption", "Low agent adoption"),
                _opt("follow-up", "Inconsistent follow-up"),
                _opt("reporting", "Poor reporting/visibility"),
                _opt("automation", "Lack of automation"),
                _opt("training", "Need better training"),
                _opt("others", "Others", allow_custom=True),
            ],
        ),
        ChoiceQuestion(
            question_id="timeline",
            type="select",
            title="Implementation Timeline",
            description="What's your preferred timeline for implementation?",
            required=True,
            options=[
                _opt("asap", "ASAP - Urgent"),
                _opt("1-2weeks", "1-2 weeks"),
                _opt("3-4weeks", "3-4 weeks"),
                _opt("flexible", "Flexible timing"),
            ],
        ),
        TextQuestion(
            question_id="additional-requirements",
            type="textarea",
            title="Additional Requirements",
            description="Any specific requirements, integrations, or special considerations?",
        ),
    ],
)


BUILTIN_TEMPLATES: Dict[str, QuestionnaireTemplate] = {
    t.template_id: t for t in (ISA_SETUP, AS_SYSTEM_SETUP)
}


def get_builtin_template(template_id: str) -> Optional[QuestionnaireTemplate]:
    return BUILTIN_TEMPLATES.get(template_id)


def merge_templates(stored: List[QuestionnaireTemplate]) -> Dict[str, QuestionnaireTemplate]:
    """Built-ins overlaid with operator-authored templates (stored wins on id clash)."""
    registry = dict(BUILTIN_TEMPLATES)
    for template in stored:
        if template.template_id in BUILTIN_TEMPLATES:
            logger.info(f"Stored template overrides built-in: {template.template_id}")
        registry[template.template_id] = template
    return registry
