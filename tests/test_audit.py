"""Tests for the audit journal."""

import structlog

from product_requirements.db.audit import AuditService


class TestAuditService:
    def test_entries_carry_actor_and_trace(self, db_session, users):
        structlog.contextvars.bind_contextvars(request_id="trace-1")
        try:
            entry = AuditService(db_session).log_create(
                "epic", "e-1", {"title": "T"}, actor_id=users["user"].id
            )
        finally:
            structlog.contextvars.clear_contextvars()
        db_session.commit()

        assert entry.actor_kind == "human"
        assert entry.trace_id == "trace-1"

    def test_system_actor_when_anonymous(self, db_session):
        entry = AuditService(db_session).log_delete("epic", "e-1", {"title": "T"})
        assert entry.actor_kind == "system"
        assert entry.actor_id == "system"

    def test_query_recent_filters_by_kind(self, db_session, make):
        epic = make.epic()
        make.story(epic)

        entries = AuditService(db_session).query_recent(entity_kind="user_story")

        assert [e.action for e in entries] == ["created"]
        assert entries[0].after["reference_id"] == "US-001"


class TestAuditEndpoint:
    def test_admin_reads_entity_history(self, client, make, auth_headers):
        epic = make.epic()

        response = client.get(
            f"/api/v1/audit?entity_kind=epic&entity_id={epic.id}", headers=auth_headers("admin")
        )

        assert response.status_code == 200
        assert [e["action"] for e in response.json()["entries"]] == ["created"]

    def test_entity_id_requires_kind(self, client, auth_headers):
        response = client.get("/api/v1/audit?entity_id=abc", headers=auth_headers("admin"))
        assert response.status_code == 400

    def test_non_admin_denied(self, client, auth_headers):
        assert client.get("/api/v1/audit", headers=auth_headers()).status_code == 403
