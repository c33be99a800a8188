"""Tests for the status workflow engine."""

import pytest

from product_requirements.db.audit import AuditService
from product_requirements.db.models import StatusWorkflowModel
from product_requirements.errors import ConflictError, InputValidationError
from product_requirements.schemas.config import (
    StatusCreate,
    StatusModelCreate,
    StatusUpdate,
    TransitionCreate,
)
from product_requirements.schemas.enums import EntityType
from product_requirements.services.config import ConfigService
from product_requirements.services.epics import EpicService
from product_requirements.services.workflow import WorkflowEngine, status_model_problems


def build_model(db, admin, name, statuses, transitions, entity_type=EntityType.EPIC):
    """Create a status model from (name, is_initial, is_final) tuples and name pairs."""
    config = ConfigService(db, admin)
    model = config.create_status_model(StatusModelCreate(entity_type=entity_type, name=name))
    ids = {}
    for order, (status_name, is_initial, is_final) in enumerate(statuses):
        status = config.add_status(
            model.id,
            StatusCreate(name=status_name, is_initial=is_initial, is_final=is_final, order=order),
        )
        ids[status_name] = status.id
    for source, target in transitions:
        config.add_transition(
            model.id, TransitionCreate(from_status_id=ids[source], to_status_id=ids[target])
        )
    return model


@pytest.fixture
def simple_workflow(db_session, principals):
    """Backlog -> InProgress -> Done as the default epic workflow."""
    model = build_model(
        db_session,
        principals["admin"],
        "Simple",
        [("Backlog", True, False), ("InProgress", False, False), ("Done", False, True)],
        [("Backlog", "InProgress"), ("InProgress", "Done")],
    )
    ConfigService(db_session, principals["admin"]).set_default(model.id)
    return model


class TestStatusTransitions:
    def test_transition_enforcement(self, db_session, make, simple_workflow):
        make.epic()
        service = EpicService(db_session)

        with pytest.raises(InputValidationError) as exc_info:
            service.change_status("EP-001", "Done")
        assert exc_info.value.code == "VALIDATION_ERROR"
        assert "Backlog→Done" in exc_info.value.message

        moved = service.change_status("EP-001", "InProgress")
        assert moved.status == "InProgress"
        updated_at = moved.updated_at

        again = service.change_status("EP-001", "inprogress")
        assert again.status == "InProgress"
        assert again.updated_at == updated_at

    def test_status_change_is_audited(self, db_session, make, simple_workflow):
        epic = make.epic()
        EpicService(db_session).change_status("EP-001", "InProgress")

        entries = [
            e
            for e in AuditService(db_session).query_by_entity("epic", epic.id)
            if e.action == "status_changed"
        ]
        assert len(entries) == 1
        assert entries[0].before == {"status": "Backlog"}
        assert entries[0].after == {"status": "InProgress"}

    def test_allowed_transitions_under_seeded_workflow(self, db_session):
        allowed = WorkflowEngine(db_session).list_allowed_transitions(EntityType.EPIC, "Backlog")
        assert [t["to_status"] for t in allowed] == ["Draft", "In Progress", "Cancelled"]

    def test_unknown_current_status_has_no_transitions(self, db_session):
        assert WorkflowEngine(db_session).list_allowed_transitions(EntityType.EPIC, "Limbo") == []

    def test_acceptance_criteria_have_no_workflow(self, db_session):
        with pytest.raises(InputValidationError):
            WorkflowEngine(db_session).get_default_model(EntityType.ACCEPTANCE_CRITERIA)


class TestDefaultModelChanges:
    def test_entities_outside_new_workflow_are_reported_and_frozen(
        self, db_session, make, principals
    ):
        make.epic(status="Draft")
        model = build_model(
            db_session,
            principals["admin"],
            "Lean",
            [("Backlog", True, False), ("Done", False, True)],
            [("Backlog", "Done")],
        )

        _, orphaned = ConfigService(db_session, principals["admin"]).set_default(model.id)

        assert orphaned == ["EP-001"]
        epic = EpicService(db_session).get_by_id("EP-001")
        assert epic.status == "Draft"
        with pytest.raises(ConflictError):
            EpicService(db_session).change_status("EP-001", "Done")

    def test_default_model_keeps_an_initial_status(
        self, db_session, make, principals, simple_workflow
    ):
        config = ConfigService(db_session, principals["admin"])
        backlog = next(s for s in simple_workflow.statuses if s.name == "Backlog")

        with pytest.raises(InputValidationError) as exc_info:
            config.update_status(backlog.id, StatusUpdate(is_initial=False))

        assert exc_info.value.details["problems"] == [
            "Status model 'Simple' has no initial status"
        ]
        db_session.expire_all()
        assert config.get_status(backlog.id).is_initial is True
        assert make.epic().status == "Backlog"

    def test_non_default_model_can_be_edited_freely(self, db_session, principals):
        model = build_model(
            db_session, principals["admin"], "Draft flow", [("Open", True, False)], []
        )
        config = ConfigService(db_session, principals["admin"])

        updated = config.update_status(model.statuses[0].id, StatusUpdate(is_initial=False))

        assert updated.is_initial is False

    def test_deleting_a_status_cannot_empty_the_default_model(
        self, db_session, principals
    ):
        model = build_model(
            db_session, principals["admin"], "Solo", [("Open", True, True)], []
        )
        config = ConfigService(db_session, principals["admin"])
        config.set_default(model.id)

        with pytest.raises(InputValidationError):
            config.delete_status(model.statuses[0].id)

    def test_status_rename_invalidates_cache_after_commit(
        self, db_session, make, principals, search_cache, monkeypatch
    ):
        make.epic()
        search_cache.set("search:epics", "{}", ["epic"])
        config = ConfigService(db_session, principals["admin"])
        backlog = next(
            s for s in config.get_default_status_model("epic").statuses if s.name == "Backlog"
        )
        open_transaction = []
        original = search_cache.invalidate

        def recording_invalidate(*kinds):
            open_transaction.append(db_session.in_transaction())
            return original(*kinds)

        monkeypatch.setattr(search_cache, "invalidate", recording_invalidate)

        config.update_status(backlog.id, StatusUpdate(name="Icebox"))

        assert open_transaction == [False]
        assert search_cache.get("search:epics") is None

    def test_only_one_default_per_type(self, db_session, simple_workflow):
        defaults = (
            db_session.query(StatusWorkflowModel)
            .filter(
                StatusWorkflowModel.entity_type == "epic",
                StatusWorkflowModel.is_default.is_(True),
            )
            .all()
        )
        assert [m.id for m in defaults] == [simple_workflow.id]

    def test_invalid_model_cannot_become_default(self, db_session, principals):
        model = build_model(
            db_session,
            principals["admin"],
            "Broken",
            [("Start", True, False), ("Island", False, False)],
            [],
        )

        with pytest.raises(InputValidationError) as exc_info:
            ConfigService(db_session, principals["admin"]).set_default(model.id)
        assert exc_info.value.details["problems"] == [
            "Status 'Island' is not reachable from an initial status"
        ]


class TestStatusModelProblems:
    def test_model_without_initial_status(self, db_session, principals):
        model = build_model(
            db_session, principals["admin"], "No start", [("Only", False, True)], []
        )
        assert status_model_problems(model) == ["Status model 'No start' has no initial status"]

    def test_empty_model(self, db_session, principals):
        model = build_model(db_session, principals["admin"], "Empty", [], [])
        assert status_model_problems(model) == ["Status model 'Empty' has no statuses"]

    def test_seeded_models_are_valid(self, db_session):
        for model in db_session.query(StatusWorkflowModel).all():
            assert status_model_problems(model) == []
