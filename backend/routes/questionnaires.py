"""Questionnaire endpoints.

Admin:
POST   /api/questionnaires                       - Send a questionnaire to a client
GET    /api/questionnaires                       - List (effective status + completion)
DELETE /api/questionnaires/{questionnaire_id}    - Delete

Client (one question at a time):
GET    /api/questionnaire/{questionnaire_id}          - Questions, answers, progress helpers
PUT    /api/questionnaire/{questionnaire_id}/answers  - Save intermediate answers
POST   /api/questionnaire/{questionnaire_id}/submit   - Final submission

Answers may be sent structured (`answers`) or in the legacy flat shape
(`responses`, with `_custom` sidecar keys); both are merged.
Expired or completed questionnaires answer 410.
"""
import os
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Union

from fastapi import APIRouter, Query, status
from pydantic import BaseModel, EmailStr, Field

from database import database
from models import Answer, AuditAction, Questionnaire, QuestionnaireStatus
from services import template_engine
from services.engagement_store import (
    find_client_by_email,
    get_client,
    get_questionnaire,
    list_questionnaires,
    load_template_engine,
    new_questionnaire_id,
    to_doc,
)
from services.errors import TemplateNotFound, ValidationError
from utils.audit import create_audit_log

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/questionnaires", tags=["questionnaires"])
instance_router = APIRouter(prefix="/api/questionnaire", tags=["questionnaires"])

QUESTIONNAIRE_EXPIRES_IN_DAYS = int(os.getenv("QUESTIONNAIRE_EXPIRES_IN_DAYS", "30"))


class ContactIn(BaseModel):
    name: str
    email: EmailStr
    company: Optional[str] = None
    phone: Optional[str] = None


class QuestionnaireCreate(BaseModel):
    template_id: str
    client_id: Optional[str] = None
    client: Optional[ContactIn] = None
    notes: Optional[str] = None
    expires_in_days: int = Field(default=QUESTIONNAIRE_EXPIRES_IN_DAYS, ge=1)


class AnswersIn(BaseModel):
    answers: Dict[str, Answer] = Field(default_factory=dict)
    responses: Optional[Union[Dict[str, Any], List[Dict[str, Any]]]] = None


def _collect_answers(questions, body: AnswersIn) -> Dict[str, Any]:
    answers = {}
    if body.responses is not None:
        answers.update(template_engine.answers_from_responses(questions, body.responses))
    answers.update(body.answers)
    return answers


async def _load_with_status(questionnaire_id: str, now: datetime) -> Questionnaire:
    """Load and persist lazy expiry the first time it is observed."""
    questionnaire = await get_questionnaire(questionnaire_id)
    current = template_engine.effective_status(questionnaire, now)
    if current != QuestionnaireStatus(questionnaire.status):
        db = database.get_db()
        await db.questionnaires.update_one(
            {"questionnaire_id": questionnaire_id}, {"$set": {"status": current.value}}
        )
        logger.info(f"Questionnaire {questionnaire_id} expired")
        questionnaire = questionnaire.model_copy(update={"status": current})
    return questionnaire


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_questionnaire(body: QuestionnaireCreate):
    engine = await load_template_engine()
    template = engine.get_template(body.template_id)

    if body.client_id:
        client = await get_client(body.client_id)
    elif body.client:
        client = await find_client_by_email(str(body.client.email))
        if client is None:
            raise ValidationError("Client not found for email; create the client first", field="client")
    else:
        raise ValidationError("client_id or client is required", field="client_id")

    now = datetime.now(timezone.utc)
    questionnaire = Questionnaire(
        questionnaire_id=new_questionnaire_id(client.name),
        client_id=client.client_id,
        client=client.contact(),
        template_id=template.template_id,
        title=template.name,
        notes=body.notes,
        created_at=now,
        sent_at=now,
        expires_at=now + timedelta(days=body.expires_in_days),
    )

    db = database.get_db()
    await db.questionnaires.insert_one(to_doc(questionnaire))
    await create_audit_log(
        action=AuditAction.QUESTIONNAIRE_SENT,
        client_id=client.client_id,
        resource_type="questionnaire",
        resource_id=questionnaire.questionnaire_id,
        metadata={"template_id": template.template_id},
    )
    logger.info(f"Questionnaire created: {questionnaire.questionnaire_id} ({template.template_id})")
    return {
        "success": True,
        "questionnaire_id": questionnaire.questionnaire_id,
        "url": f"/questionnaire/{questionnaire.questionnaire_id}",
    }


@router.get("")
async def list_all_questionnaires(client_id: Optional[str] = Query(None)):
    engine = await load_template_engine()
    now = datetime.now(timezone.utc)
    rows = []
    for q in sorted(await list_questionnaires(client_id), key=lambda q: q.created_at, reverse=True):
        row = to_doc(q)
        row["status"] = template_engine.effective_status(q, now).value
        try:
            questions = engine.resolve_questions(q.template_id)
            row["completion"] = template_engine.completion(questions, q.answers)
        except TemplateNotFound:
            row["completion"] = 0.0
        rows.append(row)
    return {"questionnaires": rows}


@router.delete("/{questionnaire_id}")
async def delete_questionnaire(questionnaire_id: str):
    questionnaire = await get_questionnaire(questionnaire_id)
    db = database.get_db()
    await db.questionnaires.delete_one({"questionnaire_id": questionnaire_id})
    logger.info(f"Questionnaire deleted: {questionnaire_id} (client {questionnaire.client_id})")
    return {"success": True, "questionnaire_id": questionnaire_id}


@instance_router.get("/{questionnaire_id}")
async def get_questionnaire_for_client(questionnaire_id: str, index: int = Query(0, ge=0)):
    now = datetime.now(timezone.utc)
    questionnaire = await _load_with_status(questionnaire_id, now)
    engine = await load_template_engine()
    questions = engine.resolve_questions(questionnaire.template_id)

    current = questions[min(index, len(questions) - 1)] if questions else None
    data = to_doc(questionnaire)
    data.update({
        "questions": [q.model_dump() for q in questions],
        "responses": template_engine.answers_to_responses(questions, questionnaire.answers),
        "current_index": min(index, max(len(questions) - 1, 0)),
        "progress": template_engine.progress(questions, index),
        "completion": template_engine.completion(questions, questionnaire.answers),
        "can_advance": template_engine.can_advance(current, questionnaire.answers) if current else False,
        "can_go_back": template_engine.can_go_back(index),
    })
    return data


@instance_router.put("/{questionnaire_id}/answers")
async def save_answers(questionnaire_id: str, body: AnswersIn):
    now = datetime.now(timezone.utc)
    questionnaire = await get_questionnaire(questionnaire_id)
    engine = await load_template_engine()
    questions = engine.resolve_questions(questionnaire.template_id)

    updated = template_engine.record_answers(questionnaire, _collect_answers(questions, body), now, questions)
    db = database.get_db()
    await db.questionnaires.update_one(
        {"questionnaire_id": questionnaire_id},
        {"$set": {
            "answers": to_doc(updated)["answers"],
            "status": updated.status.value,
        }}
    )
    return {
        "success": True,
        "status": updated.status.value,
        "completion": template_engine.completion(questions, updated.answers),
    }


@instance_router.post("/{questionnaire_id}/submit")
async def submit_questionnaire(questionnaire_id: str, body: AnswersIn):
    now = datetime.now(timezone.utc)
    questionnaire = await get_questionnaire(questionnaire_id)
    engine = await load_template_engine()
    questions = engine.resolve_questions(questionnaire.template_id)

    completed = template_engine.complete(questionnaire, questions, _collect_answers(questions, body), now)
    doc = to_doc(completed)
    db = database.get_db()
    await db.questionnaires.update_one(
        {"questionnaire_id": questionnaire_id},
        {"$set": {
            "answers": doc["answers"],
            "status": doc["status"],
            "completed_at": doc["completed_at"],
        }}
    )
    await db.clients.update_one(
        {"client_id": questionnaire.client_id},
        {"$set": {"last_activity": now.isoformat()}}
    )
    await create_audit_log(
        action=AuditAction.QUESTIONNAIRE_COMPLETED,
        client_id=questionnaire.client_id,
        resource_type="questionnaire",
        resource_id=questionnaire_id,
        metadata={"answer_count": len(completed.answers)},
    )
    return {"success": True, "status": doc["status"]}
