"""Questionnaire template endpoints.

GET    /api/templates                - Built-in and stored templates
GET    /api/templates/{template_id}  - One template
POST   /api/templates                - Create an operator template
PUT    /api/templates/{template_id}  - Replace an operator template (built-ins are read-only)
DELETE /api/templates/{template_id}  - Delete an operator template
"""
import logging
from datetime import datetime, timezone
from typing import List, Optional

from fastapi import APIRouter, HTTPException, status
from pydantic import BaseModel, Field

from database import database
from models import AuditAction, Question, QuestionnaireTemplate
from services.engagement_store import load_template_engine, slugify, to_doc
from services.errors import TemplateNotFound, ValidationError
from services.questionnaire_templates import get_builtin_template
from services.template_engine import validate_template
from utils.audit import create_audit_log

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/templates", tags=["templates"])


class TemplateIn(BaseModel):
    template_id: Optional[str] = None
    name: str
    description: str = ""
    questions: List[Question] = Field(default_factory=list)


def _template_summary(template: QuestionnaireTemplate) -> dict:
    data = to_doc(template)
    data["question_count"] = len(template.questions)
    data["required_count"] = sum(1 for q in template.questions if q.required)
    return data


@router.get("")
async def list_templates():
    engine = await load_template_engine()
    return {"templates": [_template_summary(t) for t in engine.list_templates()]}


@router.get("/{template_id}")
async def get_template(template_id: str):
    engine = await load_template_engine()
    return to_doc(engine.get_template(template_id))


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_template(body: TemplateIn):
    template_id = body.template_id or slugify(body.name)
    if not template_id:
        raise ValidationError("Template id or name is required", field="template_id")

    engine = await load_template_engine()
    try:
        engine.get_template(template_id)
    except TemplateNotFound:
        pass
    else:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=f"Template already exists: {template_id}")

    template = QuestionnaireTemplate(
        template_id=template_id,
        name=body.name,
        description=body.description,
        questions=body.questions,
    )
    validate_template(template)

    db = database.get_db()
    await db.questionnaire_templates.insert_one(to_doc(template))
    await create_audit_log(
        action=AuditAction.TEMPLATE_SAVED,
        resource_type="template",
        resource_id=template_id,
        metadata={"question_count": len(template.questions)},
    )
    logger.info(f"Template created: {template_id}")
    return {"success": True, "template": to_doc(template)}


@router.put("/{template_id}")
async def update_template(template_id: str, body: TemplateIn):
    if get_builtin_template(template_id):
        raise ValidationError("Cannot edit built-in templates", field="template_id")

    db = database.get_db()
    existing = await db.questionnaire_templates.find_one({"template_id": template_id}, {"_id": 0})
    if not existing:
        raise TemplateNotFound(template_id)

    template = QuestionnaireTemplate(
        template_id=template_id,
        name=body.name,
        description=body.description,
        questions=body.questions,
        created_at=existing.get("created_at") or datetime.now(timezone.utc),
        updated_at=datetime.now(timezone.utc),
    )
    validate_template(template)

    await db.questionnaire_templates.replace_one({"template_id": template_id}, to_doc(template))
    await create_audit_log(
        action=AuditAction.TEMPLATE_SAVED,
        resource_type="template",
        resource_id=template_id,
        before_state=existing,
        after_state=to_doc(template),
    )
    logger.info(f"Template updated: {template_id}")
    return {"success": True, "template": to_doc(template)}


@router.delete("/{template_id}")
async def delete_template(template_id: str):
    if get_builtin_template(template_id):
        raise ValidationError("Cannot delete built-in templates", field="template_id")

    db = database.get_db()
    result = await db.questionnaire_templates.delete_one({"template_id": template_id})
    if result.deleted_count == 0:
        raise TemplateNotFound(template_id)
    return {"success": True, "template_id": template_id}
