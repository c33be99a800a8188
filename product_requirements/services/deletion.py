"""
Deletion planner.

The closure of a target is found by breadth-first search over containment
(epic -> user stories -> acceptance criteria and requirements), comments on
every node of the closure and requirement relationships touching any
requirement in it. ``validate`` reports the closure without touching
anything; ``delete`` rediscovers it inside a serializable transaction and
removes it leaves first: edges, comments, acceptance criteria and
requirements, user stories, then the target.

Requirements outside the closure that point at a deleted acceptance
criterion are unlinked rather than deleted.
"""

from collections import deque
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set

import structlog
from sqlalchemy import delete, or_
from sqlalchemy.orm import Session
from ulid import ULID

from ..db.audit import AuditService
from ..db.models import (
    AcceptanceCriteriaModel,
    CommentModel,
    RequirementModel,
    RequirementRelationshipModel,
    UserStoryModel,
    utc_now,
)
from ..db.transactions import run_in_transaction
from ..errors import ConflictError, StorageError
from ..schemas.deletion import DeletedEntity, DeletionReport, Dependency, DependencyReport
from ..schemas.enums import DependencyType, EntityType
from .cache import SearchCache, get_search_cache
from .comments import COMMENT_KIND
from .reference_ids import get_entity

logger = structlog.get_logger()

EDGE_KIND = "requirement_relationship"


@dataclass
class Closure:
    """Everything a deletion of ``root`` would remove."""

    root_type: EntityType
    root: object
    user_stories: List[UserStoryModel] = field(default_factory=list)
    acceptance_criteria: List[AcceptanceCriteriaModel] = field(default_factory=list)
    requirements: List[RequirementModel] = field(default_factory=list)
    comments: List[CommentModel] = field(default_factory=list)
    edges: List[RequirementRelationshipModel] = field(default_factory=list)
    unlinked_requirements: List[RequirementModel] = field(default_factory=list)
    dependencies: List[Dependency] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    blocked: bool = False
    root_id: str = field(init=False)
    root_reference_id: str = field(init=False)

    def __post_init__(self):
        self.root_id = self.root.id
        self.root_reference_id = self.root.reference_id

    def all_entities(self) -> List:
        return (
            self.edges
            + self.comments
            + self.requirements
            + self.acceptance_criteria
            + self.user_stories
            + [self.root]
        )

    def node_ids(self) -> Set[str]:
        ids = {self.root.id}
        for group in (self.user_stories, self.acceptance_criteria, self.requirements):
            ids.update(entity.id for entity in group)
        return ids

    def destroyed_kinds(self) -> List[str]:
        kinds = [self.root_type.value]
        if self.user_stories:
            kinds.append(EntityType.USER_STORY.value)
        if self.acceptance_criteria:
            kinds.append(EntityType.ACCEPTANCE_CRITERIA.value)
        if self.requirements or self.unlinked_requirements:
            kinds.append(EntityType.REQUIREMENT.value)
        if self.comments:
            kinds.append(COMMENT_KIND)
        return list(dict.fromkeys(kinds))


def _entity_title(entity) -> Optional[str]:
    return getattr(entity, "title", None)


class DeletionService:
    """Validates and executes deletions of planning entities."""

    def __init__(
        self,
        db: Session,
        audit: Optional[AuditService] = None,
        cache: Optional[SearchCache] = None,
    ):
        self.db = db
        self.audit = audit or AuditService(db)
        self.cache = cache or get_search_cache()

    # -------------------------------------------------------------------------
    # Discovery
    # -------------------------------------------------------------------------

    def discover(self, entity_type, identifier: str) -> Closure:
        entity_type = EntityType(entity_type)
        root = get_entity(self.db, entity_type, identifier)
        closure = Closure(root_type=entity_type, root=root)

        queue = deque([(entity_type, root)])
        while queue:
            kind, node = queue.popleft()
            children = []
            if kind == EntityType.EPIC:
                children = [(EntityType.USER_STORY, story) for story in node.user_stories]
            elif kind == EntityType.USER_STORY:
                children = [
                    (EntityType.ACCEPTANCE_CRITERIA, criterion)
                    for criterion in node.acceptance_criteria
                ] + [(EntityType.REQUIREMENT, requirement) for requirement in node.requirements]
            for child_kind, child in children:
                self._add_child(closure, child_kind, child)
                queue.append((child_kind, child))

        self._collect_comments(closure)
        self._collect_edges(closure)
        self._collect_unlinks(closure)
        self._check_closed(closure)
        return closure

    def _add_child(self, closure: Closure, kind: EntityType, entity) -> None:
        bucket = {
            EntityType.USER_STORY: closure.user_stories,
            EntityType.ACCEPTANCE_CRITERIA: closure.acceptance_criteria,
            EntityType.REQUIREMENT: closure.requirements,
        }[kind]
        bucket.append(entity)
        closure.dependencies.append(
            Dependency(
                entity_type=kind.value,
                entity_id=entity.id,
                reference_id=entity.reference_id,
                title=_entity_title(entity),
                dependency_type=DependencyType.CHILD,
            )
        )

    def _nodes_by_type(self, closure: Closure) -> Dict[str, List[str]]:
        nodes: Dict[str, List[str]] = {closure.root_type.value: [closure.root.id]}
        for kind, group in (
            (EntityType.USER_STORY, closure.user_stories),
            (EntityType.ACCEPTANCE_CRITERIA, closure.acceptance_criteria),
            (EntityType.REQUIREMENT, closure.requirements),
        ):
            nodes.setdefault(kind.value, []).extend(entity.id for entity in group)
        return nodes

    def _collect_comments(self, closure: Closure) -> None:
        conditions = [
            (CommentModel.entity_type == kind) & CommentModel.entity_id.in_(ids)
            for kind, ids in self._nodes_by_type(closure).items()
            if ids
        ]
        closure.comments = (
            self.db.query(CommentModel)
            .filter(or_(*conditions))
            .order_by(CommentModel.created_at, CommentModel.id)
            .all()
        )
        for comment in closure.comments:
            closure.dependencies.append(
                Dependency(
                    entity_type=COMMENT_KIND,
                    entity_id=comment.id,
                    title=comment.content[:120],
                    dependency_type=DependencyType.COMMENT,
                )
            )

    def _requirement_ids(self, closure: Closure) -> List[str]:
        ids = [requirement.id for requirement in closure.requirements]
        if closure.root_type == EntityType.REQUIREMENT:
            ids.append(closure.root.id)
        return ids

    def _collect_edges(self, closure: Closure) -> None:
        ids = self._requirement_ids(closure)
        if not ids:
            return
        closure.edges = (
            self.db.query(RequirementRelationshipModel)
            .filter(
                or_(
                    RequirementRelationshipModel.source_requirement_id.in_(ids),
                    RequirementRelationshipModel.target_requirement_id.in_(ids),
                )
            )
            .order_by(RequirementRelationshipModel.created_at, RequirementRelationshipModel.id)
            .all()
        )
        for edge in closure.edges:
            closure.dependencies.append(
                Dependency(
                    entity_type=EDGE_KIND,
                    entity_id=edge.id,
                    title=(
                        f"{edge.source_requirement.reference_id} "
                        f"{edge.relationship_type.name} "
                        f"{edge.target_requirement.reference_id}"
                    ),
                    dependency_type=DependencyType.RELATIONSHIP_EDGE,
                )
            )

    def _collect_unlinks(self, closure: Closure) -> None:
        criteria_ids = [criterion.id for criterion in closure.acceptance_criteria]
        if closure.root_type == EntityType.ACCEPTANCE_CRITERIA:
            criteria_ids.append(closure.root.id)
        if not criteria_ids:
            return
        inside = closure.node_ids()
        closure.unlinked_requirements = [
            requirement
            for requirement in self.db.query(RequirementModel)
            .filter(RequirementModel.acceptance_criteria_id.in_(criteria_ids))
            .order_by(RequirementModel.reference_number)
            .all()
            if requirement.id not in inside
        ]
        for requirement in closure.unlinked_requirements:
            closure.warnings.append(
                f"{requirement.reference_id} will be unlinked from its acceptance criterion"
            )

    def _check_closed(self, closure: Closure) -> None:
        """Flag dependents that point into the closure but were not collected."""
        inside = closure.node_ids()
        story_ids = [story.id for story in closure.user_stories]
        if closure.root_type == EntityType.USER_STORY:
            story_ids.append(closure.root.id)
        if not story_ids:
            return

        collected = {entity.id for entity in closure.acceptance_criteria + closure.requirements}
        for model in (AcceptanceCriteriaModel, RequirementModel):
            strays = (
                self.db.query(model)
                .filter(model.user_story_id.in_(story_ids), model.id.notin_(collected))
                .all()
            )
            for stray in strays:
                if stray.id in inside:
                    continue
                closure.blocked = True
                closure.warnings.append(
                    f"{stray.reference_id} depends on the deleted hierarchy "
                    f"but is not part of the deletion"
                )

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def validate(self, entity_type, identifier: str) -> DependencyReport:
        """Dependency report for deleting one entity; nothing is modified."""
        closure = self.discover(entity_type, identifier)
        return self._dependency_report(closure)

    def delete(
        self,
        entity_type,
        identifier: str,
        cascade: bool = False,
        dry_run: bool = False,
        actor_id: Optional[str] = None,
    ) -> DeletionReport:
        """Delete an entity, cascading into its closure when ``cascade`` is set.

        Raises:
            NotFoundError: the target does not exist.
            ConflictError: HAS_DEPENDENCIES when dependents exist and cascade is
                off, or the closure is not deletable.
            StorageError: the transaction failed; details carry the partial report.
        """
        entity_type = EntityType(entity_type)

        if dry_run:
            closure = self.discover(entity_type, identifier)
            self._ensure_deletable(closure, cascade)
            return self._deletion_report(closure, cascade=cascade, dry_run=True)

        transaction_id = str(ULID())
        deleted: List[DeletedEntity] = []
        state: Dict[str, Closure] = {}

        def work() -> Closure:
            deleted.clear()
            closure = self.discover(entity_type, identifier)
            state["closure"] = closure
            self._ensure_deletable(closure, cascade)
            self._execute(closure, deleted, actor_id, transaction_id)
            return closure

        try:
            closure = run_in_transaction(
                self.db, work, operation=f"delete {entity_type.value}", serializable=True
            )
        except StorageError as exc:
            partial = state.get("closure")
            details = {"transaction_id": transaction_id}
            if partial is not None:
                details["report"] = self._deletion_report(
                    partial, cascade=cascade, dry_run=False
                ).model_dump(mode="json")
            logger.error(
                "deletion_failed",
                entity_type=entity_type.value,
                identifier=identifier,
                transaction_id=transaction_id,
            )
            raise StorageError(exc.message, details=details) from exc

        self.cache.invalidate(*closure.destroyed_kinds())
        report = self._deletion_report(closure, cascade=cascade, dry_run=False)
        report.deleted = True
        report.deleted_entities = deleted
        report.transaction_id = transaction_id
        report.deleted_at = utc_now().isoformat()
        logger.info(
            "entity_deleted",
            entity_type=entity_type.value,
            entity_id=report.entity_id,
            reference_id=report.reference_id,
            cascade=cascade,
            deleted_count=len(deleted),
            transaction_id=transaction_id,
        )
        return report

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _ensure_deletable(self, closure: Closure, cascade: bool) -> None:
        if closure.blocked:
            raise ConflictError(
                f"{closure.root_reference_id} cannot be deleted safely",
                code="HAS_DEPENDENCIES",
                details=self._dependency_report(closure).model_dump(mode="json"),
            )
        if closure.dependencies and not cascade:
            raise ConflictError(
                f"{closure.root_reference_id} has {len(closure.dependencies)} dependencies; "
                f"use cascade to delete them",
                code="HAS_DEPENDENCIES",
                details=self._dependency_report(closure).model_dump(mode="json"),
            )

    def _execute(
        self,
        closure: Closure,
        deleted: List[DeletedEntity],
        actor_id: Optional[str],
        transaction_id: str,
    ) -> None:
        note = f"transaction {transaction_id}"

        def remove(model, kind: str, entities: List) -> None:
            if not entities:
                return
            for entity in entities:
                self.audit.log_delete(
                    kind, entity.id, entity.to_dict(), actor_id=actor_id, note=note
                )
                deleted.append(
                    DeletedEntity(
                        entity_type=kind,
                        entity_id=entity.id,
                        reference_id=getattr(entity, "reference_id", None),
                    )
                )
            self.db.execute(
                delete(model)
                .where(model.id.in_([entity.id for entity in entities]))
                .execution_options(synchronize_session=False)
            )

        remove(RequirementRelationshipModel, EDGE_KIND, closure.edges)
        remove(CommentModel, COMMENT_KIND, closure.comments)

        for requirement in closure.unlinked_requirements:
            self.audit.log_unlink(
                EntityType.REQUIREMENT.value,
                requirement.id,
                EntityType.ACCEPTANCE_CRITERIA.value,
                requirement.acceptance_criteria_id,
                actor_id=actor_id,
            )
            requirement.acceptance_criteria_id = None
            requirement.updated_at = utc_now()
        self.db.flush()

        remove(RequirementModel, EntityType.REQUIREMENT.value, closure.requirements)
        remove(
            AcceptanceCriteriaModel,
            EntityType.ACCEPTANCE_CRITERIA.value,
            closure.acceptance_criteria,
        )
        remove(UserStoryModel, EntityType.USER_STORY.value, closure.user_stories)
        remove(type(closure.root), closure.root_type.value, [closure.root])

        # Rows removed above must not be flushed again by the unit of work
        for entity in closure.all_entities():
            self.db.expunge(entity)

    def _dependency_report(self, closure: Closure) -> DependencyReport:
        return DependencyReport(
            entity_type=closure.root_type.value,
            entity_id=closure.root_id,
            reference_id=closure.root_reference_id,
            can_delete=not closure.blocked,
            dependencies=list(closure.dependencies),
            warnings=list(closure.warnings),
        )

    def _deletion_report(self, closure: Closure, cascade: bool, dry_run: bool) -> DeletionReport:
        would_delete = [
            DeletedEntity(
                entity_type=dependency.entity_type,
                entity_id=dependency.entity_id,
                reference_id=dependency.reference_id,
            )
            for dependency in closure.dependencies
        ]
        would_delete.append(
            DeletedEntity(
                entity_type=closure.root_type.value,
                entity_id=closure.root_id,
                reference_id=closure.root_reference_id,
            )
        )
        return DeletionReport(
            entity_type=closure.root_type.value,
            entity_id=closure.root_id,
            reference_id=closure.root_reference_id,
            deleted=False,
            dry_run=dry_run,
            cascade=cascade,
            deleted_entities=would_delete if dry_run else [],
            dependencies=list(closure.dependencies),
            warnings=list(closure.warnings),
        )
