"""Tests for administrator-managed reference data."""

import pytest

from product_requirements.errors import (
    ConflictError,
    InputValidationError,
    NotFoundError,
    PermissionDeniedError,
)
from product_requirements.schemas.config import (
    RelationshipTypeCreate,
    RequirementTypeCreate,
    RequirementTypeUpdate,
    StatusCreate,
    StatusModelCreate,
    StatusUpdate,
    TransitionCreate,
)
from product_requirements.schemas.enums import EntityType
from product_requirements.services.config import ConfigService, ReferenceDataService
from product_requirements.services.epics import EpicService
from product_requirements.services.relationships import RelationshipService


def named(rows, name):
    return next(row for row in rows if row.name == name)


@pytest.fixture
def admin_config(db_session, principals):
    return ConfigService(db_session, principals["admin"])


class TestPermissions:
    @pytest.mark.parametrize("role", ["user", "commenter"])
    def test_writes_require_administrator(self, db_session, principals, role):
        config = ConfigService(db_session, principals[role])
        with pytest.raises(PermissionDeniedError) as exc_info:
            config.create_requirement_type(RequirementTypeCreate(name="Security"))
        assert exc_info.value.code == "INSUFFICIENT_PERMISSIONS"

    def test_reads_are_open(self, db_session):
        names = [t.name for t in ReferenceDataService(db_session).list_requirement_types()]
        assert names == ["Business Rule", "Data", "Functional", "Interface", "Non-Functional"]


class TestRequirementTypes:
    def test_create_and_rename(self, admin_config):
        created = admin_config.create_requirement_type(
            RequirementTypeCreate(name=" Security ", description="Threat mitigations")
        )
        assert created.name == "Security"

        renamed = admin_config.update_requirement_type(
            created.id, RequirementTypeUpdate(name="Security & Privacy")
        )
        assert renamed.name == "Security & Privacy"

    def test_names_are_unique_ignoring_case(self, admin_config):
        with pytest.raises(ConflictError):
            admin_config.create_requirement_type(RequirementTypeCreate(name="functional"))

    def test_type_in_use_cannot_be_deleted(self, db_session, admin_config, make):
        make.requirement(make.story(make.epic()))
        functional = named(admin_config.list_requirement_types(), "Functional")

        with pytest.raises(ConflictError) as exc_info:
            admin_config.delete_requirement_type(functional.id)
        assert exc_info.value.code == "IN_USE"

    def test_unused_type_can_be_deleted(self, admin_config):
        data = named(admin_config.list_requirement_types(), "Data")
        admin_config.delete_requirement_type(data.id)

        with pytest.raises(NotFoundError):
            admin_config.get_requirement_type(data.id)


class TestRelationshipTypes:
    def test_create(self, admin_config):
        created = admin_config.create_relationship_type(RelationshipTypeCreate(name="refines"))
        assert "refines" in [t.name for t in admin_config.list_relationship_types()]
        assert created.id

    def test_type_in_use_cannot_be_deleted(self, db_session, admin_config, make, users):
        story = make.story(make.epic())
        make.requirement(story)
        make.requirement(story)
        RelationshipService(db_session).create("REQ-001", "REQ-002", "blocks", users["user"].id)
        blocks = named(admin_config.list_relationship_types(), "blocks")

        with pytest.raises(ConflictError) as exc_info:
            admin_config.delete_relationship_type(blocks.id)
        assert exc_info.value.code == "IN_USE"


class TestStatusModels:
    def test_duplicate_model_name_per_type(self, admin_config):
        admin_config.create_status_model(StatusModelCreate(entity_type="epic", name="Kanban"))
        with pytest.raises(ConflictError):
            admin_config.create_status_model(StatusModelCreate(entity_type="epic", name="kanban"))
        admin_config.create_status_model(StatusModelCreate(entity_type="requirement", name="Kanban"))

    def test_acceptance_criteria_cannot_have_a_model(self, admin_config):
        with pytest.raises(InputValidationError):
            admin_config.create_status_model(
                StatusModelCreate(entity_type=EntityType.ACCEPTANCE_CRITERIA, name="AC flow")
            )

    def test_default_model_cannot_be_deleted(self, admin_config):
        default = admin_config.get_default_status_model("epic")
        with pytest.raises(ConflictError) as exc_info:
            admin_config.delete_status_model(default.id)
        assert exc_info.value.code == "IN_USE"

    def test_non_default_model_can_be_deleted(self, admin_config):
        model = admin_config.create_status_model(StatusModelCreate(entity_type="epic", name="Spare"))
        admin_config.add_status(model.id, StatusCreate(name="Open", is_initial=True))

        admin_config.delete_status_model(model.id)

        with pytest.raises(NotFoundError):
            admin_config.get_status_model(model.id)


class TestStatuses:
    def test_duplicate_status_name_in_model(self, admin_config):
        default = admin_config.get_default_status_model("epic")
        with pytest.raises(ConflictError):
            admin_config.add_status(default.id, StatusCreate(name="backlog"))

    def test_rename_in_default_model_renames_entities(self, db_session, admin_config, make):
        make.epic()
        backlog = named(admin_config.get_default_status_model("epic").statuses, "Backlog")

        admin_config.update_status(backlog.id, StatusUpdate(name="Icebox"))

        db_session.expire_all()
        assert EpicService(db_session).get_by_id("EP-001").status == "Icebox"

    def test_status_with_transitions_is_in_use(self, admin_config):
        cancelled = named(admin_config.get_default_status_model("epic").statuses, "Cancelled")
        with pytest.raises(ConflictError) as exc_info:
            admin_config.delete_status(cancelled.id)
        assert exc_info.value.code == "IN_USE"

    def test_status_held_by_entities_is_in_use(self, admin_config, make):
        model = admin_config.create_status_model(StatusModelCreate(entity_type="epic", name="Flat"))
        only = admin_config.add_status(model.id, StatusCreate(name="Open", is_initial=True))
        admin_config.set_default(model.id)
        make.epic()

        with pytest.raises(ConflictError) as exc_info:
            admin_config.delete_status(only.id)
        assert "held by 1 epic" in exc_info.value.message


class TestTransitions:
    def test_transition_must_stay_inside_model(self, admin_config):
        epic_model = admin_config.get_default_status_model("epic")
        requirement_model = admin_config.get_default_status_model("requirement")
        source = named(epic_model.statuses, "Backlog")
        target = named(requirement_model.statuses, "Active")

        with pytest.raises(InputValidationError):
            admin_config.add_transition(
                epic_model.id,
                TransitionCreate(from_status_id=source.id, to_status_id=target.id),
            )

    def test_duplicate_and_self_transitions_rejected(self, admin_config):
        model = admin_config.get_default_status_model("epic")
        backlog = named(model.statuses, "Backlog")
        draft = named(model.statuses, "Draft")

        with pytest.raises(ConflictError):
            admin_config.add_transition(
                model.id, TransitionCreate(from_status_id=backlog.id, to_status_id=draft.id)
            )
        with pytest.raises(InputValidationError):
            admin_config.add_transition(
                model.id, TransitionCreate(from_status_id=backlog.id, to_status_id=backlog.id)
            )

    def test_added_transition_is_enforced(self, db_session, admin_config, make):
        model = admin_config.get_default_status_model("epic")
        done = named(model.statuses, "Done")
        backlog = named(model.statuses, "Backlog")
        make.epic()

        with pytest.raises(InputValidationError):
            EpicService(db_session).change_status("EP-001", "Done")
        admin_config.add_transition(
            model.id, TransitionCreate(from_status_id=backlog.id, to_status_id=done.id)
        )
        assert EpicService(db_session).change_status("EP-001", "Done").status == "Done"
