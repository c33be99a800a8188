"""
Reference data and workflow configuration.

Reads are open to every authenticated role through ``ReferenceDataService``.
``ConfigService`` adds the writes, all of which require the Administrator
role. Reference data cannot be deleted while an entity still points at it.
"""

from typing import List, Optional, Tuple

import structlog
from sqlalchemy import func, or_, update
from sqlalchemy.orm import Session

from ..db.audit import AuditService
from ..db.models import (
    RelationshipTypeModel,
    RequirementModel,
    RequirementRelationshipModel,
    RequirementTypeModel,
    StatusModel,
    StatusTransitionModel,
    StatusWorkflowModel,
    utc_now,
)
from ..db.transactions import run_in_transaction
from ..errors import ConflictError, InputValidationError, NotFoundError, PermissionDeniedError
from ..schemas.common import Principal
from ..schemas.config import (
    RelationshipTypeCreate,
    RelationshipTypeUpdate,
    RequirementTypeCreate,
    RequirementTypeUpdate,
    StatusCreate,
    StatusModelCreate,
    StatusModelUpdate,
    StatusUpdate,
    TransitionCreate,
)
from .cache import SearchCache, get_search_cache
from .reference_ids import ENTITY_MODELS
from .workflow import _workflow_type, status_model_problems

logger = structlog.get_logger()


class ReferenceDataService:
    """Read access to requirement types, relationship types and workflows."""

    def __init__(self, db: Session):
        self.db = db

    # =========================================================================
    # Requirement and relationship types
    # =========================================================================

    def list_requirement_types(self) -> List[RequirementTypeModel]:
        return self.db.query(RequirementTypeModel).order_by(RequirementTypeModel.name).all()

    def get_requirement_type(self, type_id: str) -> RequirementTypeModel:
        found = self.db.get(RequirementTypeModel, type_id) if type_id else None
        if found is None:
            raise NotFoundError("Requirement type", type_id)
        return found

    def list_relationship_types(self) -> List[RelationshipTypeModel]:
        return self.db.query(RelationshipTypeModel).order_by(RelationshipTypeModel.name).all()

    def get_relationship_type(self, type_id: str) -> RelationshipTypeModel:
        found = self.db.get(RelationshipTypeModel, type_id) if type_id else None
        if found is None:
            raise NotFoundError("Relationship type", type_id)
        return found

    # =========================================================================
    # Status models
    # =========================================================================

    def list_status_models(self, entity_type: Optional[str] = None) -> List[StatusWorkflowModel]:
        query = self.db.query(StatusWorkflowModel)
        if entity_type:
            query = query.filter(
                StatusWorkflowModel.entity_type == _workflow_type(entity_type).value
            )
        return query.order_by(StatusWorkflowModel.entity_type, StatusWorkflowModel.name).all()

    def get_status_model(self, model_id: str) -> StatusWorkflowModel:
        found = self.db.get(StatusWorkflowModel, model_id) if model_id else None
        if found is None:
            raise NotFoundError("Status model", model_id)
        return found

    def get_default_status_model(self, entity_type: str) -> StatusWorkflowModel:
        entity_type = _workflow_type(entity_type)
        found = (
            self.db.query(StatusWorkflowModel)
            .filter(
                StatusWorkflowModel.entity_type == entity_type.value,
                StatusWorkflowModel.is_default.is_(True),
            )
            .first()
        )
        if found is None:
            raise NotFoundError("Default status model", entity_type.value)
        return found

    def get_status(self, status_id: str) -> StatusModel:
        found = self.db.get(StatusModel, status_id) if status_id else None
        if found is None:
            raise NotFoundError("Status", status_id)
        return found

    def get_transition(self, transition_id: str) -> StatusTransitionModel:
        found = self.db.get(StatusTransitionModel, transition_id) if transition_id else None
        if found is None:
            raise NotFoundError("Status transition", transition_id)
        return found


class ConfigService(ReferenceDataService):
    """Administrator-only writes to reference data and workflows."""

    def __init__(
        self,
        db: Session,
        actor: Principal,
        audit: Optional[AuditService] = None,
        cache: Optional[SearchCache] = None,
    ):
        super().__init__(db)
        self.actor = actor
        self.audit = audit or AuditService(db)
        self.cache = cache or get_search_cache()

    def _require_admin(self) -> None:
        if self.actor is None or not self.actor.is_admin:
            raise PermissionDeniedError(
                "Reference data can only be changed by an Administrator"
            )

    def _write(self, operation: str, work):
        self._require_admin()
        result = run_in_transaction(self.db, work, operation=operation)
        logger.info("reference_data_changed", operation=operation, actor_id=self.actor.user_id)
        return result

    def _ensure_unique_name(
        self, model, name: str, label: str, exclude_id: Optional[str] = None
    ) -> str:
        name = (name or "").strip()
        if not name:
            raise InputValidationError("name must not be blank")
        query = self.db.query(model.id).filter(func.lower(model.name) == name.lower())
        if exclude_id:
            query = query.filter(model.id != exclude_id)
        if query.first() is not None:
            raise ConflictError(f"{label} '{name}' already exists")
        return name

    # =========================================================================
    # Requirement types
    # =========================================================================

    def create_requirement_type(self, data: RequirementTypeCreate) -> RequirementTypeModel:
        return self._create_named(RequirementTypeModel, "requirement_type", data)

    def update_requirement_type(self, type_id: str, data: RequirementTypeUpdate) -> RequirementTypeModel:
        return self._update_named(
            RequirementTypeModel, "requirement_type", self.get_requirement_type, type_id, data
        )

    def delete_requirement_type(self, type_id: str) -> None:
        def work() -> None:
            found = self.get_requirement_type(type_id)
            in_use = (
                self.db.query(func.count(RequirementModel.id))
                .filter(RequirementModel.type_id == found.id)
                .scalar()
            )
            if in_use:
                raise ConflictError(
                    f"Requirement type '{found.name}' is used by {in_use} requirement(s)",
                    code="IN_USE",
                )
            self.audit.log_delete(
                "requirement_type", found.id, found.to_dict(), actor_id=self.actor.user_id
            )
            self.db.delete(found)

        self._write("delete requirement type", work)

    # =========================================================================
    # Relationship types
    # =========================================================================

    def create_relationship_type(self, data: RelationshipTypeCreate) -> RelationshipTypeModel:
        return self._create_named(RelationshipTypeModel, "relationship_type", data)

    def update_relationship_type(
        self, type_id: str, data: RelationshipTypeUpdate
    ) -> RelationshipTypeModel:
        return self._update_named(
            RelationshipTypeModel, "relationship_type", self.get_relationship_type, type_id, data
        )

    def delete_relationship_type(self, type_id: str) -> None:
        def work() -> None:
            found = self.get_relationship_type(type_id)
            in_use = (
                self.db.query(func.count(RequirementRelationshipModel.id))
                .filter(RequirementRelationshipModel.relationship_type_id == found.id)
                .scalar()
            )
            if in_use:
                raise ConflictError(
                    f"Relationship type '{found.name}' is used by {in_use} relationship(s)",
                    code="IN_USE",
                )
            self.audit.log_delete(
                "relationship_type", found.id, found.to_dict(), actor_id=self.actor.user_id
            )
            self.db.delete(found)

        self._write("delete relationship type", work)

    @staticmethod
    def _label(kind: str) -> str:
        return kind.replace("_", " ").capitalize()

    def _create_named(self, model, kind: str, data):
        def work():
            now = utc_now()
            row = model(
                name=self._ensure_unique_name(model, data.name, self._label(kind)),
                description=data.description,
                created_at=now,
                updated_at=now,
            )
            self.db.add(row)
            self.db.flush()
            self.audit.log_create(kind, row.id, row.to_dict(), actor_id=self.actor.user_id)
            return row

        return self._write(f"create {kind.replace('_', ' ')}", work)

    def _update_named(self, model, kind: str, getter, row_id: str, data):
        changes = data.model_dump(exclude_unset=True)

        def work():
            row = getter(row_id)
            before = row.to_dict()
            if "name" in changes:
                row.name = self._ensure_unique_name(
                    model, changes["name"], self._label(kind), exclude_id=row.id
                )
            if "description" in changes:
                row.description = changes["description"]
            row.updated_at = utc_now()
            self.audit.log_update(kind, row.id, before, row.to_dict(), actor_id=self.actor.user_id)
            return row

        return self._write(f"update {kind.replace('_', ' ')}", work)

    # =========================================================================
    # Status models
    # =========================================================================

    def create_status_model(self, data: StatusModelCreate) -> StatusWorkflowModel:
        """Create an empty, non-default status model."""

        def work() -> StatusWorkflowModel:
            entity_type = _workflow_type(data.entity_type)
            name = (data.name or "").strip()
            exists = (
                self.db.query(StatusWorkflowModel.id)
                .filter(
                    StatusWorkflowModel.entity_type == entity_type.value,
                    func.lower(StatusWorkflowModel.name) == name.lower(),
                )
                .first()
            )
            if exists is not None:
                raise ConflictError(
                    f"Status model '{name}' already exists for {entity_type.value}"
                )
            now = utc_now()
            model = StatusWorkflowModel(
                entity_type=entity_type.value,
                name=name,
                description=data.description,
                is_default=False,
                created_at=now,
                updated_at=now,
            )
            self.db.add(model)
            self.db.flush()
            self.audit.log_create(
                "status_model", model.id, model.to_dict(), actor_id=self.actor.user_id
            )
            return model

        return self._write("create status model", work)

    def update_status_model(self, model_id: str, data: StatusModelUpdate) -> StatusWorkflowModel:
        changes = data.model_dump(exclude_unset=True)

        def work() -> StatusWorkflowModel:
            model = self.get_status_model(model_id)
            before = model.to_dict()
            if "name" in changes and changes["name"] is not None:
                model.name = changes["name"].strip()
            if "description" in changes:
                model.description = changes["description"]
            model.updated_at = utc_now()
            self.audit.log_update(
                "status_model", model.id, before, model.to_dict(), actor_id=self.actor.user_id
            )
            return model

        return self._write("update status model", work)

    def delete_status_model(self, model_id: str) -> None:
        def work() -> None:
            model = self.get_status_model(model_id)
            if model.is_default:
                raise ConflictError(
                    f"Status model '{model.name}' is the default for {model.entity_type}",
                    code="IN_USE",
                )
            self.audit.log_delete(
                "status_model",
                model.id,
                model.to_dict(include_children=True),
                actor_id=self.actor.user_id,
            )
            self.db.delete(model)

        self._write("delete status model", work)

    def set_default(self, model_id: str) -> Tuple[StatusWorkflowModel, List[str]]:
        """Make a model the default for its entity type.

        Returns:
            (model, reference ids of entities whose status the model lacks)
        """

        def work() -> Tuple[StatusWorkflowModel, List[str]]:
            model = self.get_status_model(model_id)
            problems = status_model_problems(model)
            if problems:
                raise InputValidationError(
                    f"Status model '{model.name}' cannot become the default",
                    details={"problems": problems},
                )
            previous = (
                self.db.query(StatusWorkflowModel)
                .filter(
                    StatusWorkflowModel.entity_type == model.entity_type,
                    StatusWorkflowModel.is_default.is_(True),
                    StatusWorkflowModel.id != model.id,
                )
                .all()
            )
            for other in previous:
                other.is_default = False
                other.updated_at = utc_now()
            self.db.flush()
            model.is_default = True
            model.updated_at = utc_now()
            self.audit.log_update(
                "status_model",
                model.id,
                {"is_default": False},
                {"is_default": True},
                actor_id=self.actor.user_id,
                note=f"Default workflow for {model.entity_type}",
            )
            return model, self._orphaned_entities(model)

        model, orphaned = self._write("set default status model", work)
        if orphaned:
            logger.warning(
                "entities_outside_workflow",
                status_model_id=model.id,
                count=len(orphaned),
            )
        return model, orphaned

    def _orphaned_entities(self, model: StatusWorkflowModel) -> List[str]:
        entity_model = ENTITY_MODELS[_workflow_type(model.entity_type)]
        names = [status.name.lower() for status in model.statuses]
        return [
            reference_id
            for (reference_id,) in self.db.query(entity_model.reference_id)
            .filter(func.lower(entity_model.status).notin_(names))
            .order_by(entity_model.reference_number)
            .all()
        ]

    # =========================================================================
    # Statuses
    # =========================================================================

    def add_status(self, model_id: str, data: StatusCreate) -> StatusModel:
        def work() -> StatusModel:
            model = self.get_status_model(model_id)
            name = self._status_name(model, data.name)
            now = utc_now()
            status = StatusModel(
                status_model_id=model.id,
                name=name,
                description=data.description,
                color=data.color,
                is_initial=data.is_initial,
                is_final=data.is_final,
                order=data.order,
                created_at=now,
                updated_at=now,
            )
            self.db.add(status)
            self.db.flush()
            self.audit.log_create("status", status.id, status.to_dict(), actor_id=self.actor.user_id)
            return status

        return self._write("add status", work)

    def update_status(self, status_id: str, data: StatusUpdate) -> StatusModel:
        """Update a status; renaming one in a default model renames it on entities too."""
        changes = data.model_dump(exclude_unset=True)

        def work() -> Tuple[StatusModel, Optional[str]]:
            status = self.get_status(status_id)
            model = status.status_model
            known_problems = status_model_problems(model) if model.is_default else []
            before = status.to_dict()
            renamed_kind = None
            if changes.get("name") is not None and changes["name"].strip() != status.name:
                old_name = status.name
                status.name = self._status_name(model, changes["name"], exclude_id=status.id)
                if model.is_default:
                    renamed_kind = self._rename_on_entities(model, old_name, status.name)
            for field in ("description", "color"):
                if field in changes:
                    setattr(status, field, changes[field])
            for field in ("is_initial", "is_final", "order"):
                if changes.get(field) is not None:
                    setattr(status, field, changes[field])
            status.updated_at = utc_now()
            self._check_default_model(model, known_problems)
            self.audit.log_update(
                "status", status.id, before, status.to_dict(), actor_id=self.actor.user_id
            )
            return status, renamed_kind

        status, renamed_kind = self._write("update status", work)
        if renamed_kind:
            self.cache.invalidate(renamed_kind)
        return status

    def _check_default_model(self, model: StatusWorkflowModel, known_problems: List[str]) -> None:
        """Reject an edit that leaves the active workflow of ``model`` unusable.

        Problems already present before the edit are tolerated so an
        administrator can repair a model step by step.
        """
        if not model.is_default:
            return
        self.db.flush()
        self.db.expire(model, ["statuses", "transitions"])
        introduced = [p for p in status_model_problems(model) if p not in known_problems]
        if introduced:
            raise InputValidationError(
                f"Change would break the default workflow '{model.name}'",
                details={"problems": introduced},
            )

    def delete_status(self, status_id: str) -> None:
        def work() -> None:
            status = self.get_status(status_id)
            model = status.status_model
            known_problems = status_model_problems(model) if model.is_default else []
            transitions = (
                self.db.query(func.count(StatusTransitionModel.id))
                .filter(
                    or_(
                        StatusTransitionModel.from_status_id == status.id,
                        StatusTransitionModel.to_status_id == status.id,
                    )
                )
                .scalar()
            )
            if transitions:
                raise ConflictError(
                    f"Status '{status.name}' is used by {transitions} transition(s)",
                    code="IN_USE",
                )
            if model.is_default:
                entity_model = ENTITY_MODELS[_workflow_type(model.entity_type)]
                holders = (
                    self.db.query(func.count(entity_model.id))
                    .filter(func.lower(entity_model.status) == status.name.lower())
                    .scalar()
                )
                if holders:
                    raise ConflictError(
                        f"Status '{status.name}' is held by {holders} {model.entity_type}(s)",
                        code="IN_USE",
                    )
            self.audit.log_delete("status", status.id, status.to_dict(), actor_id=self.actor.user_id)
            self.db.delete(status)
            self._check_default_model(model, known_problems)

        self._write("delete status", work)

    def _status_name(self, model: StatusWorkflowModel, name: str, exclude_id: Optional[str] = None) -> str:
        name = (name or "").strip()
        if not name:
            raise InputValidationError("Status name must not be blank")
        query = self.db.query(StatusModel.id).filter(
            StatusModel.status_model_id == model.id,
            func.lower(StatusModel.name) == name.lower(),
        )
        if exclude_id:
            query = query.filter(StatusModel.id != exclude_id)
        if query.first() is not None:
            raise ConflictError(f"Status '{name}' already exists in '{model.name}'")
        return name

    def _rename_on_entities(
        self, model: StatusWorkflowModel, old_name: str, new_name: str
    ) -> Optional[str]:
        """Rename the status on entities; returns the entity kind whose rows changed."""
        entity_type = _workflow_type(model.entity_type)
        entity_model = ENTITY_MODELS[entity_type]
        result = self.db.execute(
            update(entity_model)
            .where(func.lower(entity_model.status) == old_name.lower())
            .values(status=new_name, updated_at=utc_now())
            .execution_options(synchronize_session=False)
        )
        if not result.rowcount:
            return None
        logger.info(
            "status_renamed_on_entities",
            entity_type=entity_type.value,
            old_name=old_name,
            new_name=new_name,
            count=result.rowcount,
        )
        return entity_type.value

    # =========================================================================
    # Transitions
    # =========================================================================

    def add_transition(self, model_id: str, data: TransitionCreate) -> StatusTransitionModel:
        def work() -> StatusTransitionModel:
            model = self.get_status_model(model_id)
            source = self.get_status(data.from_status_id)
            target = self.get_status(data.to_status_id)
            if source.status_model_id != model.id or target.status_model_id != model.id:
                raise InputValidationError(
                    "Both statuses of a transition must belong to the same status model"
                )
            if source.id == target.id:
                raise InputValidationError("A transition must change the status")
            exists = (
                self.db.query(StatusTransitionModel.id)
                .filter(
                    StatusTransitionModel.status_model_id == model.id,
                    StatusTransitionModel.from_status_id == source.id,
                    StatusTransitionModel.to_status_id == target.id,
                )
                .first()
            )
            if exists is not None:
                raise ConflictError(
                    f"Transition {source.name}→{target.name} already exists in '{model.name}'"
                )
            transition = StatusTransitionModel(
                status_model_id=model.id,
                from_status_id=source.id,
                to_status_id=target.id,
                name=data.name,
                description=data.description,
                created_at=utc_now(),
            )
            self.db.add(transition)
            self.db.flush()
            self.audit.log_create(
                "status_transition",
                transition.id,
                transition.to_dict(),
                actor_id=self.actor.user_id,
            )
            return transition

        return self._write("add transition", work)

    def delete_transition(self, transition_id: str) -> None:
        def work() -> None:
            transition = self.get_transition(transition_id)
            self.audit.log_delete(
                "status_transition",
                transition.id,
                transition.to_dict(),
                actor_id=self.actor.user_id,
            )
            self.db.delete(transition)

        self._write("delete transition", work)

