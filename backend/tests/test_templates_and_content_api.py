"""Template authoring and admin portal-content endpoints."""
from unittest.mock import AsyncMock, MagicMock, patch


def _make_db(stored_templates=None):
    db = MagicMock()
    db.__getitem__.side_effect = lambda name: getattr(db, name)
    db.questionnaire_templates.find = MagicMock(
        return_value=MagicMock(to_list=AsyncMock(return_value=stored_templates or []))
    )
    db.questionnaire_templates.insert_one = AsyncMock()
    db.questionnaire_templates.find_one = AsyncMock(return_value=None)
    db.questionnaire_templates.delete_one = AsyncMock(return_value=MagicMock(deleted_count=0))
    db.content_items.insert_one = AsyncMock()
    db.content_items.delete_one = AsyncMock(return_value=MagicMock(deleted_count=0))
    db.audit_logs.insert_one = AsyncMock()
    return db


ONBOARDING = {
    "name": "Onboarding Basics",
    "questions": [
        {"question_id": "brokerage", "title": "Brokerage name", "type": "text", "required": True},
        {
            "question_id": "crm",
            "title": "Which CRM?",
            "type": "radio",
            "options": [{"option_id": "fub", "text": "Follow Up Boss"}, {"option_id": "other", "text": "Other", "allow_custom": True}],
        },
    ],
}


class TestTemplates:
    def test_list_includes_builtins_with_counts(self, client):
        db = _make_db()
        with patch("routes.templates.database.get_db", return_value=db):
            templates = client.get("/api/templates").json()["templates"]
        by_id = {t["template_id"]: t for t in templates}
        assert by_id["as-system-setup"]["question_count"] == 7
        assert by_id["as-system-setup"]["required_count"] == 4

    def test_create_template_slugifies_name(self, client):
        db = _make_db()
        with patch("routes.templates.database.get_db", return_value=db):
            response = client.post("/api/templates", json=ONBOARDING)
        assert response.status_code == 201
        assert response.json()["template"]["template_id"] == "onboarding-basics"
        db.questionnaire_templates.insert_one.assert_awaited_once()

    def test_create_conflicts_with_builtin_id(self, client):
        db = _make_db()
        with patch("routes.templates.database.get_db", return_value=db):
            response = client.post("/api/templates", json={**ONBOARDING, "template_id": "isa-setup"})
        assert response.status_code == 409

    def test_choice_question_without_options_rejected(self, client):
        body = {"name": "Broken", "questions": [{"question_id": "q", "title": "Pick", "type": "select"}]}
        db = _make_db()
        with patch("routes.templates.database.get_db", return_value=db):
            response = client.post("/api/templates", json=body)
        assert response.status_code == 400
        db.questionnaire_templates.insert_one.assert_not_called()

    def test_builtins_are_read_only(self, client):
        db = _make_db()
        with patch("routes.templates.database.get_db", return_value=db):
            assert client.put("/api/templates/isa-setup", json=ONBOARDING).status_code == 400
            assert client.delete("/api/templates/isa-setup").status_code == 400

    def test_missing_template_is_404(self, client):
        db = _make_db()
        with patch("routes.templates.database.get_db", return_value=db):
            assert client.get("/api/templates/nope").status_code == 404
            assert client.delete("/api/templates/nope").status_code == 404


class TestAdminContent:
    def test_create_restricted_item_dedupes_clients(self, client):
        db = _make_db()
        with patch("routes.content.database.get_db", return_value=db):
            response = client.post("/api/admin/content", json={
                "title": "Q1 Report",
                "category": "reports",
                "type": "file",
                "url": "https://files.example.com/q1.pdf",
                "client_ids": ["c2", "c1", "c2"],
            })
        assert response.status_code == 201
        assert response.json()["item"]["client_ids"] == ["c1", "c2"]
        stored = db.content_items.insert_one.call_args.args[0]
        assert stored["category"] == "reports"

    def test_unknown_category_rejected(self, client):
        response = client.post("/api/admin/content", json={"title": "X", "category": "memes"})
        assert response.status_code == 422

    def test_delete_missing_item_is_404(self, client):
        db = _make_db()
        with patch("routes.content.database.get_db", return_value=db):
            response = client.delete("/api/admin/content/missing")
        assert response.status_code == 404
