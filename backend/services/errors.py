"""Error taxonomy for the engagement core.

- ValidationError: malformed payment parameters, incomplete or malformed answers.
  Always surfaced to the caller, never silently corrected.
- NotFoundError: unknown template/entity id. Surfaced, not retried.
- ExternalServiceError: checkout-session creation failure. Surfaced with a retry
  affordance; never fatal to the proposal record.

Nothing here is retried internally.
"""
from typing import List, Optional


class EngagementError(Exception):
    """Base exception for business-rule failures."""
    pass


class ValidationError(EngagementError):
    """Input violates a business rule."""
    def __init__(self, message: str, field: Optional[str] = None):
        self.message = message
        self.field = field
        super().__init__(message)


class IncompleteRequired(ValidationError):
    """Final submission is missing answers for required questions."""
    def __init__(self, question_ids: List[str]):
        self.question_ids = list(question_ids)
        super().__init__(
            f"{len(self.question_ids)} required question(s) unanswered: {', '.join(self.question_ids)}"
        )


class QuestionnaireClosed(ValidationError):
    """Answers were sent to an expired or already completed questionnaire."""
    def __init__(self, questionnaire_id: str, status: str):
        self.questionnaire_id = questionnaire_id
        self.status = status
        super().__init__(f"Questionnaire {questionnaire_id} is {status}")


class NotFoundError(EngagementError):
    def __init__(self, resource_type: str, resource_id: str):
        self.resource_type = resource_type
        self.resource_id = resource_id
        self.message = f"{resource_type} not found: {resource_id}"
        super().__init__(self.message)


class TemplateNotFound(NotFoundError):
    def __init__(self, template_id: str):
        super().__init__("Template", template_id)


class ExternalServiceError(EngagementError):
    """An external collaborator (payment gateway) failed. Safe to retry from the UI."""
    def __init__(self, service: str, message: str):
        self.service = service
        self.message = message
        super().__init__(f"{service}: {message}")
