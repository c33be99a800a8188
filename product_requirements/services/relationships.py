"""
Requirement relationship service.

Edges are typed and directed. For every relationship type the graph of its
edges stays acyclic: before inserting ``a -> b`` a depth-first search from
``b`` over edges of the same type must not reach ``a``. The search and the
insert share one serializable transaction that first locks the relationship
type row, so two writers cannot each add half of a cycle.
"""

from typing import Dict, List, Optional, Set, Tuple

import structlog
from sqlalchemy import desc
from sqlalchemy.orm import Session

from ..db.audit import AuditService
from ..db.models import (
    RelationshipTypeModel,
    RequirementRelationshipModel,
    utc_now,
)
from ..db.transactions import lock_row, run_in_transaction
from ..deadline import check_deadline
from ..errors import ConflictError, InputValidationError, NotFoundError
from ..schemas.enums import EntityType
from ._base import validate_pagination
from .reference_ids import get_entity
from .users import UserService

logger = structlog.get_logger()


def find_relationship_type(db: Session, value: str) -> Optional[RelationshipTypeModel]:
    """Relationship type by id, or by case-insensitive name."""
    if not value:
        return None
    found = db.get(RelationshipTypeModel, value)
    if found is not None:
        return found
    return (
        db.query(RelationshipTypeModel)
        .filter(RelationshipTypeModel.name.ilike(value.strip()))
        .first()
    )


class RelationshipService:
    """Service for typed edges between requirements."""

    def __init__(self, db: Session, audit: Optional[AuditService] = None):
        self.db = db
        self.audit = audit or AuditService(db)

    def get(self, relationship_id: str) -> RequirementRelationshipModel:
        edge = self.db.get(RequirementRelationshipModel, relationship_id) if relationship_id else None
        if edge is None:
            raise NotFoundError("Relationship", relationship_id)
        return edge

    def create(
        self,
        source_id: str,
        target_id: str,
        relationship_type: str,
        created_by: str,
    ) -> RequirementRelationshipModel:
        """Add ``source -> target`` of the given type.

        Raises:
            NotFoundError: an endpoint or the relationship type is missing.
            InputValidationError: CIRCULAR_RELATIONSHIP when source is target.
            ConflictError: DUPLICATE_RELATIONSHIP or CYCLE.
        """

        def work() -> RequirementRelationshipModel:
            rel_type = find_relationship_type(self.db, relationship_type)
            if rel_type is None:
                raise NotFoundError("Relationship type", relationship_type)
            lock_row(self.db, RelationshipTypeModel, rel_type.id)

            source = get_entity(self.db, EntityType.REQUIREMENT, source_id)
            target = get_entity(self.db, EntityType.REQUIREMENT, target_id)
            if source.id == target.id:
                raise InputValidationError(
                    "A requirement cannot have a relationship with itself",
                    code="CIRCULAR_RELATIONSHIP",
                )
            UserService(self.db, self.audit).require_existing(created_by, "created_by")

            duplicate = (
                self.db.query(RequirementRelationshipModel.id)
                .filter(
                    RequirementRelationshipModel.source_requirement_id == source.id,
                    RequirementRelationshipModel.target_requirement_id == target.id,
                    RequirementRelationshipModel.relationship_type_id == rel_type.id,
                )
                .first()
            )
            if duplicate is not None:
                raise ConflictError(
                    f"{source.reference_id} already {rel_type.name} {target.reference_id}",
                    code="DUPLICATE_RELATIONSHIP",
                )

            path = self.find_path(target.id, source.id, rel_type.id)
            if path is not None:
                raise ConflictError(
                    f"Adding {source.reference_id} {rel_type.name} {target.reference_id} "
                    f"would create a cycle",
                    code="CYCLE",
                    details={"path": path, "relationship_type": rel_type.name},
                )

            edge = RequirementRelationshipModel(
                source_requirement_id=source.id,
                target_requirement_id=target.id,
                relationship_type_id=rel_type.id,
                created_by=created_by,
                created_at=utc_now(),
            )
            self.db.add(edge)
            self.db.flush()
            self.audit.log_link(
                "requirement", source.id, "requirement", target.id, actor_id=created_by
            )
            self.audit.log_create(
                "requirement_relationship", edge.id, edge.to_dict(), actor_id=created_by
            )
            return edge

        edge = run_in_transaction(
            self.db, work, operation="create relationship", serializable=True
        )
        logger.info(
            "relationship_created",
            relationship_id=edge.id,
            source=edge.source_requirement_id,
            target=edge.target_requirement_id,
        )
        return edge

    def find_path(self, start_id: str, goal_id: str, type_id: str) -> Optional[List[str]]:
        """Depth-first search over edges of one type.

        Returns:
            Requirement ids from ``start_id`` to ``goal_id``, or None.
        """
        adjacency: Dict[str, List[str]] = {}
        rows = (
            self.db.query(
                RequirementRelationshipModel.source_requirement_id,
                RequirementRelationshipModel.target_requirement_id,
            )
            .filter(RequirementRelationshipModel.relationship_type_id == type_id)
            .all()
        )
        for source, target in rows:
            adjacency.setdefault(source, []).append(target)

        stack: List[Tuple[str, List[str]]] = [(start_id, [start_id])]
        visited: Set[str] = set()
        while stack:
            node, path = stack.pop()
            if node == goal_id:
                return path
            if node in visited:
                continue
            visited.add(node)
            if len(visited) % 256 == 0:
                check_deadline("cycle detection")
            for nxt in adjacency.get(node, []):
                if nxt not in visited:
                    stack.append((nxt, path + [nxt]))
        return None

    def delete(self, relationship_id: str, actor_id: Optional[str] = None) -> None:
        def work() -> None:
            edge = self.get(relationship_id)
            self.audit.log_unlink(
                "requirement",
                edge.source_requirement_id,
                "requirement",
                edge.target_requirement_id,
                actor_id=actor_id,
            )
            self.audit.log_delete(
                "requirement_relationship", edge.id, edge.to_dict(), actor_id=actor_id
            )
            self.db.delete(edge)

        run_in_transaction(self.db, work, operation="delete relationship")
        logger.info("relationship_deleted", relationship_id=relationship_id)

    def list_for_requirement(self, requirement_id: str) -> Dict[str, List[RequirementRelationshipModel]]:
        """Edges leaving (``source_edges``) and entering (``target_edges``) a requirement."""
        requirement = get_entity(self.db, EntityType.REQUIREMENT, requirement_id)
        query = self.db.query(RequirementRelationshipModel)
        return {
            "source_edges": query.filter(
                RequirementRelationshipModel.source_requirement_id == requirement.id
            )
            .order_by(RequirementRelationshipModel.created_at, RequirementRelationshipModel.id)
            .all(),
            "target_edges": query.filter(
                RequirementRelationshipModel.target_requirement_id == requirement.id
            )
            .order_by(RequirementRelationshipModel.created_at, RequirementRelationshipModel.id)
            .all(),
        }

    def list(
        self,
        relationship_type: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Tuple[List[RequirementRelationshipModel], int]:
        limit, offset = validate_pagination(limit, offset)
        query = self.db.query(RequirementRelationshipModel)
        if relationship_type:
            rel_type = find_relationship_type(self.db, relationship_type)
            if rel_type is None:
                raise NotFoundError("Relationship type", relationship_type)
            query = query.filter(RequirementRelationshipModel.relationship_type_id == rel_type.id)
        total = query.count()
        edges = (
            query.order_by(desc(RequirementRelationshipModel.created_at), RequirementRelationshipModel.id)
            .offset(offset)
            .limit(limit)
            .all()
        )
        return edges, total
