"""Template Engine - Questionnaire rendering, answer validation and progress.

Responsibilities:
1. Resolve a template id into its ordered question list
2. Decide whether a question is answered (navigation gate + submit check)
3. Position progress for the one-question-at-a-time wizard
4. Final submission validation (required answers, then answer shape)
5. Questionnaire lifecycle: sent -> in-progress -> completed, with lazy expiry

Answers are structured per question kind (TextAnswer, ChoiceAnswer,
MultiChoiceAnswer). The legacy flat wire shape with `{question_id}_custom` and
`{question_id}_{option_id}_custom` sidecar keys is only understood at the
boundary by answers_from_responses / answers_to_responses.
"""
import re
import logging
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Union

from models import (
    Answer,
    ChoiceAnswer,
    ChoiceQuestion,
    MultiChoiceAnswer,
    MultiChoiceQuestion,
    OptionSelection,
    Question,
    Questionnaire,
    QuestionnaireStatus,
    QuestionnaireTemplate,
    QuestionType,
    TextAnswer,
    TextQuestion,
)
from services.errors import IncompleteRequired, QuestionnaireClosed, TemplateNotFound, ValidationError
from services.questionnaire_templates import BUILTIN_TEMPLATES
from utils.dates import ensure_utc, utcnow

logger = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(r"[^@]+@[^@]+\.[^@]+")

CLOSED_STATUSES = {QuestionnaireStatus.COMPLETED, QuestionnaireStatus.EXPIRED}


class TemplateEngine:
    """Template lookup over a registry of built-in and stored templates."""

    def __init__(self, templates: Optional[Mapping[str, QuestionnaireTemplate]] = None):
        self._templates: Dict[str, QuestionnaireTemplate] = (
            dict(templates) if templates is not None else dict(BUILTIN_TEMPLATES)
        )

    def get_template(self, template_id: str) -> QuestionnaireTemplate:
        template = self._templates.get(template_id)
        if template is None:
            raise TemplateNotFound(template_id)
        return template

    def resolve_questions(self, template_id: str) -> List[Question]:
        return list(self.get_template(template_id).questions)

    def list_templates(self) -> List[QuestionnaireTemplate]:
        return sorted(self._templates.values(), key=lambda t: t.name.lower())


# ============================================================================
# ANSWERED / PROGRESS
# ============================================================================

def _is_filled(answer: Optional[Answer]) -> bool:
    if answer is None:
        return False
    if isinstance(answer, MultiChoiceAnswer):
        return any(s.option_id.strip() for s in answer.selections)
    if isinstance(answer, ChoiceAnswer):
        return bool(answer.option_id.strip())
    return bool(answer.value.strip())


def has_answer(question: Question, answers: Mapping[str, Answer]) -> bool:
    """True when the question carries a non-empty answer, required or not."""
    answer = answers.get(question.question_id)
    if question.type == QuestionType.CHECKBOX:
        return isinstance(answer, MultiChoiceAnswer) and _is_filled(answer)
    return _is_filled(answer)


def is_answered(question: Question, answers: Mapping[str, Answer]) -> bool:
    """Optional questions always count as answered.

    A selected allow_custom option satisfies the check on its own; the companion
    free-text is not required.
    """
    if not question.required:
        return True
    return has_answer(question, answers)


def can_advance(question: Question, answers: Mapping[str, Answer]) -> bool:
    return is_answered(question, answers)


def can_go_back(current_index: int) -> bool:
    # Backwards navigation never depends on answers
    return current_index > 0


def progress(questions: List[Question], current_index: int) -> float:
    """Position of the displayed question as a percentage (not answered count)."""
    total = len(questions)
    if total == 0:
        return 0.0
    index = min(max(current_index, 0), total - 1)
    return (index + 1) / total * 100


def completion(questions: List[Question], answers: Mapping[str, Answer]) -> float:
    """Share of questions that carry an answer."""
    if not questions:
        return 0.0
    filled = sum(1 for q in questions if has_answer(q, answers))
    return filled / len(questions) * 100


def navigate(
    questions: List[Question],
    answers: Mapping[str, Answer],
    current_index: int,
    direction: str,
) -> int:
    """Return the index after moving `next` or `previous`. Blocked moves stay put."""
    if not questions:
        return 0
    if direction == "previous":
        return current_index - 1 if can_go_back(current_index) else current_index
    if direction == "next":
        if current_index >= len(questions) - 1:
            return current_index
        if not can_advance(questions[current_index], answers):
            return current_index
        return current_index + 1
    raise ValidationError(f"Unknown navigation direction: {direction}", field="direction")


# ============================================================================
# VALIDATION
# ============================================================================

def _option_map(question: Union[ChoiceQuestion, MultiChoiceQuestion]) -> Dict[str, Any]:
    return {o.option_id: o for o in question.options}


def _check_selection(question, option_id: str, custom_text: Optional[str]) -> None:
    option = _option_map(question).get(option_id)
    if option is None:
        raise ValidationError(
            f"Unknown option '{option_id}' for question {question.question_id}",
            field=question.question_id,
        )
    if custom_text and not option.allow_custom:
        raise ValidationError(
            f"Option '{option_id}' does not accept a custom answer",
            field=question.question_id,
        )


def validate_answer(question: Question, answer: Answer) -> None:
    """Check an answer's shape against its question. Raises ValidationError."""
    qid = question.question_id

    if isinstance(question, TextQuestion):
        if not isinstance(answer, TextAnswer):
            raise ValidationError(f"Question {qid} expects a text answer", field=qid)
        value = answer.value.strip()
        if question.type == QuestionType.EMAIL and value and not EMAIL_PATTERN.match(value):
            raise ValidationError("Invalid email address", field=qid)
        return

    if isinstance(question, ChoiceQuestion):
        if not isinstance(answer, ChoiceAnswer):
            raise ValidationError(f"Question {qid} expects a single option", field=qid)
        if answer.option_id.strip():
            _check_selection(question, answer.option_id, answer.custom_text)
        return

    if not isinstance(answer, MultiChoiceAnswer):
        raise ValidationError(f"Question {qid} expects a set of options", field=qid)
    seen = set()
    for selection in answer.selections:
        if selection.option_id in seen:
            raise ValidationError(f"Option '{selection.option_id}' selected twice", field=qid)
        seen.add(selection.option_id)
        _check_selection(question, selection.option_id, selection.custom_text)


def _check_known(answers: Mapping[str, Answer], questions: List[Question]) -> None:
    known = {q.question_id for q in questions}
    unknown = [qid for qid in answers if qid not in known]
    if unknown:
        raise ValidationError(f"Answers for unknown questions: {', '.join(sorted(unknown))}")


def validate_submission(questions: List[Question], answers: Mapping[str, Answer]) -> None:
    """Final submission check.

    Raises:
        IncompleteRequired: listing every required unanswered question, in order
        ValidationError: for an answer that does not fit its question
    """
    missing = [q.question_id for q in questions if not is_answered(q, answers)]
    if missing:
        raise IncompleteRequired(missing)

    _check_known(answers, questions)

    for question in questions:
        answer = answers.get(question.question_id)
        if answer is not None:
            validate_answer(question, answer)


def validate_template(template: QuestionnaireTemplate) -> None:
    """Authoring checks for operator-created templates."""
    if not template.questions:
        raise ValidationError("Template must contain at least one question", field="questions")
    seen = set()
    for question in template.questions:
        if question.question_id in seen:
            raise ValidationError(f"Duplicate question id: {question.question_id}", field="questions")
        seen.add(question.question_id)
        if isinstance(question, (ChoiceQuestion, MultiChoiceQuestion)):
            if not question.options:
                raise ValidationError(
                    f"Question {question.question_id} needs at least one option", field="questions"
                )
            option_ids = [o.option_id for o in question.options]
            if len(option_ids) != len(set(option_ids)):
                raise ValidationError(
                    f"Duplicate option id in question {question.question_id}", field="questions"
                )


# ============================================================================
# LEGACY WIRE SHAPE
# ============================================================================

def _flatten_responses(responses: Union[Mapping[str, Any], List[Mapping[str, Any]]]) -> Dict[str, Any]:
    if isinstance(responses, list):
        flat = {}
        for item in responses:
            key = item.get("questionId") or item.get("question_id")
            if key:
                flat[key] = item.get("answer")
        return flat
    return dict(responses or {})


def _custom_for(flat: Mapping[str, Any], key: str) -> Optional[str]:
    value = flat.get(key)
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def answers_from_responses(
    questions: List[Question],
    responses: Union[Mapping[str, Any], List[Mapping[str, Any]]],
) -> Dict[str, Answer]:
    """Convert `{question_id: str | list}` plus sidecar custom keys into structured answers.

    A sidecar value is attached only when its option is selected and allows
    custom text; sidecars left behind by a deselected option are dropped.
    """
    flat = _flatten_responses(responses)
    answers: Dict[str, Answer] = {}

    for question in questions:
        qid = question.question_id
        raw = flat.get(qid)
        if raw is None:
            continue

        if isinstance(question, MultiChoiceQuestion):
            if not isinstance(raw, list):
                raise ValidationError(f"Question {qid} expects a list of options", field=qid)
            options = _option_map(question)
            selections = []
            for option_id in raw:
                option = options.get(option_id)
                custom = _custom_for(flat, f"{qid}_{option_id}_custom") if option and option.allow_custom else None
                selections.append(OptionSelection(option_id=option_id, custom_text=custom))
            answers[qid] = MultiChoiceAnswer(selections=selections)

        elif isinstance(question, ChoiceQuestion):
            if isinstance(raw, list):
                raise ValidationError(f"Question {qid} expects a single option", field=qid)
            option = _option_map(question).get(raw)
            custom = _custom_for(flat, f"{qid}_custom") if option and option.allow_custom else None
            answers[qid] = ChoiceAnswer(option_id=str(raw), custom_text=custom)

        else:
            if isinstance(raw, list):
                raise ValidationError(f"Question {qid} expects a text answer", field=qid)
            answers[qid] = TextAnswer(value=str(raw))

    return answers


def answers_to_responses(questions: List[Question], answers: Mapping[str, Answer]) -> Dict[str, Any]:
    """Inverse of answers_from_responses, for viewers that read the flat shape."""
    flat: Dict[str, Any] = {}
    for question in questions:
        qid = question.question_id
        answer = answers.get(qid)
        if answer is None:
            continue
        if isinstance(answer, MultiChoiceAnswer):
            flat[qid] = answer.option_ids
            for selection in answer.selections:
                if selection.custom_text:
                    flat[f"{qid}_{selection.option_id}_custom"] = selection.custom_text
        elif isinstance(answer, ChoiceAnswer):
            flat[qid] = answer.option_id
            if answer.custom_text:
                flat[f"{qid}_custom"] = answer.custom_text
        else:
            flat[qid] = answer.value
    return flat


# ============================================================================
# LIFECYCLE
# ============================================================================

def effective_status(questionnaire: Questionnaire, now: Optional[datetime] = None) -> QuestionnaireStatus:
    """Stored status with lazy expiry applied.

    Expiry applies to every state, completed included; a completed questionnaire
    that expires keeps its answers and completed_at.
    """
    now = now or utcnow()
    status = QuestionnaireStatus(questionnaire.status)
    expires_at = ensure_utc(questionnaire.expires_at)
    if expires_at and ensure_utc(now) > expires_at:
        return QuestionnaireStatus.EXPIRED
    return status


def is_submitted(questionnaire: Questionnaire) -> bool:
    """True once a final submission was accepted, even if the questionnaire later expired."""
    return (
        questionnaire.completed_at is not None
        or QuestionnaireStatus(questionnaire.status) == QuestionnaireStatus.COMPLETED
    )


def _ensure_open(questionnaire: Questionnaire, now: datetime) -> QuestionnaireStatus:
    status = effective_status(questionnaire, now)
    if status in CLOSED_STATUSES:
        raise QuestionnaireClosed(questionnaire.questionnaire_id, status.value)
    return status


def _current_answers(answers: Mapping[str, Answer], questions: Optional[List[Question]]) -> Dict[str, Answer]:
    """Stored answers still matching a template question; answers to removed questions are dropped."""
    if questions is None:
        return dict(answers)
    known = {q.question_id for q in questions}
    stale = [qid for qid in answers if qid not in known]
    if stale:
        logger.info(f"Dropping answers for removed questions: {', '.join(sorted(stale))}")
    return {qid: a for qid, a in answers.items() if qid in known}


def record_answers(
    questionnaire: Questionnaire,
    answers: Mapping[str, Answer],
    now: Optional[datetime] = None,
    questions: Optional[List[Question]] = None,
) -> Questionnaire:
    """Merge intermediate answers; the first recorded answer moves sent -> in-progress.

    With `questions`, answers to unknown questions are rejected and stored
    answers to questions no longer in the template are dropped.
    """
    now = now or utcnow()
    status = _ensure_open(questionnaire, now)
    if questions is not None:
        _check_known(answers, questions)
    merged = {**_current_answers(questionnaire.answers, questions), **answers}
    if status == QuestionnaireStatus.SENT and answers:
        status = QuestionnaireStatus.IN_PROGRESS
    return questionnaire.model_copy(update={"answers": merged, "status": status})


def complete(
    questionnaire: Questionnaire,
    questions: List[Question],
    answers: Optional[Mapping[str, Answer]] = None,
    now: Optional[datetime] = None,
) -> Questionnaire:
    """Validate the final answer set and mark the questionnaire completed.

    Stored answers to questions removed from the template since they were saved
    are dropped; unknown ids in the submitted answers are still rejected.
    """
    now = now or utcnow()
    _ensure_open(questionnaire, now)
    final = {**_current_answers(questionnaire.answers, questions), **(answers or {})}
    validate_submission(questions, final)
    logger.info(f"Questionnaire {questionnaire.questionnaire_id} completed with {len(final)} answers")
    return questionnaire.model_copy(update={
        "answers": final,
        "status": QuestionnaireStatus.COMPLETED,
        "completed_at": now,
    })
