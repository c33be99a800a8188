"""
Steering document service.

Steering documents hold team norms, standards and instructions. They are
numbered STD-NNN from their own reference counter and linked to any number
of epics. Any editor may create one; only its creator or an administrator
may change, delete, link or unlink it.
"""

from typing import Any, Dict, List, Optional, Tuple

import structlog
from sqlalchemy import delete

from ..db.models import EpicModel, EpicSteeringDocumentModel, SteeringDocumentModel, utc_now
from ..errors import ConflictError, NotFoundError, PermissionDeniedError
from ..schemas.common import DEFAULT_LIMIT, Principal
from ..schemas.enums import STEERING_DOCUMENT, EntityType, SearchKind
from ..schemas.search import SearchParams
from ..schemas.steering_documents import SteeringDocumentCreate, SteeringDocumentUpdate
from ._base import EntityService, validate_text
from .reference_ids import STEERING_DOCUMENT_ID_PATTERN, ReferenceIdAllocator, get_entity
from .search import SearchService
from .users import UserService

logger = structlog.get_logger()


class SteeringDocumentService(EntityService):
    """Service for steering documents and their links to epics."""

    entity_type = SearchKind.STEERING_DOCUMENT
    model = SteeringDocumentModel
    orderable_fields = ("created_at", "updated_at", "title", "reference_id")
    filter_columns = {"creator_id": "creator_id"}

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def find(self, identifier: str) -> Optional[SteeringDocumentModel]:
        identifier = (identifier or "").strip()
        if not identifier:
            return None
        if STEERING_DOCUMENT_ID_PATTERN.match(identifier):
            return (
                self.db.query(SteeringDocumentModel)
                .filter(SteeringDocumentModel.reference_id == identifier.upper())
                .one_or_none()
            )
        return self.db.get(SteeringDocumentModel, identifier)

    def get_by_id(self, identifier: str) -> SteeringDocumentModel:
        """Fetch by UUID or STD-NNN; raises NotFoundError."""
        document = self.find(identifier)
        if document is None:
            raise NotFoundError("Steering document", identifier)
        return document

    def get_with_epics(self, identifier: str) -> Dict[str, Any]:
        return self.get_by_id(identifier).to_dict(include_epics=True)

    def list_for_epic(self, epic_identifier: str) -> List[SteeringDocumentModel]:
        """Documents linked to an epic, in reference order."""
        epic = get_entity(self.db, EntityType.EPIC, epic_identifier)
        return (
            self.db.query(SteeringDocumentModel)
            .join(
                EpicSteeringDocumentModel,
                EpicSteeringDocumentModel.steering_document_id == SteeringDocumentModel.id,
            )
            .filter(EpicSteeringDocumentModel.epic_id == epic.id)
            .order_by(SteeringDocumentModel.reference_number)
            .all()
        )

    def search(
        self, query: str, limit: int = DEFAULT_LIMIT, offset: int = 0
    ) -> Dict[str, Any]:
        """Ranked search restricted to steering documents."""
        params = SearchParams(
            query=query,
            entity_types=[SearchKind.STEERING_DOCUMENT],
            limit=limit,
            offset=offset,
        )
        return SearchService(self.db, self.cache).search(params)

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    def create(self, data: SteeringDocumentCreate, creator_id: str) -> SteeringDocumentModel:
        """Create a document with the next STD-NNN reference ID."""
        title = validate_text(data.title, "title")

        def work() -> SteeringDocumentModel:
            UserService(self.db, self.audit).require_existing(creator_id, "creator_id")
            reference_id, number = ReferenceIdAllocator(self.db).allocate(STEERING_DOCUMENT)
            now = utc_now()
            document = SteeringDocumentModel(
                reference_id=reference_id,
                reference_number=number,
                title=title,
                description=data.description.strip() if data.description else None,
                creator_id=creator_id,
                created_at=now,
                updated_at=now,
            )
            self.db.add(document)
            self.db.flush()
            self.audit.log_create(
                STEERING_DOCUMENT, document.id, document.to_dict(), actor_id=creator_id
            )
            return document

        document = self._write("create steering document", work)
        logger.info(
            "steering_document_created",
            steering_document_id=document.id,
            reference_id=document.reference_id,
        )
        return document

    def update(
        self, identifier: str, data: SteeringDocumentUpdate, actor: Principal
    ) -> SteeringDocumentModel:
        """Partial update by the creator or an administrator."""
        changes = data.model_dump(exclude_unset=True)

        def work() -> SteeringDocumentModel:
            document = self.get_by_id(identifier)
            self._require_owner(document, actor, "update")
            normalized: Dict[str, Any] = {}
            if "title" in changes:
                normalized["title"] = validate_text(changes["title"], "title")
            if "description" in changes:
                description = changes["description"]
                normalized["description"] = description.strip() if description else None
            updates = {
                field: value
                for field, value in normalized.items()
                if getattr(document, field) != value
            }
            if not updates:
                return document

            before = document.to_dict()
            for field, value in updates.items():
                setattr(document, field, value)
            document.updated_at = utc_now()
            self.audit.log_update(
                STEERING_DOCUMENT,
                document.id,
                before,
                document.to_dict(),
                actor_id=actor.user_id,
            )
            logger.info(
                "steering_document_updated",
                steering_document_id=document.id,
                fields=sorted(updates),
            )
            return document

        return self._write("update steering document", work)

    def delete(self, identifier: str, actor: Principal) -> None:
        """Delete a document together with its epic links."""

        def work() -> str:
            document = self.get_by_id(identifier)
            self._require_owner(document, actor, "delete")
            unlinked = self.db.execute(
                delete(EpicSteeringDocumentModel).where(
                    EpicSteeringDocumentModel.steering_document_id == document.id
                )
            ).rowcount
            self.audit.log_delete(
                STEERING_DOCUMENT,
                document.id,
                document.to_dict(),
                actor_id=actor.user_id,
                note=f"Removed {unlinked} epic link(s)" if unlinked else None,
            )
            self.db.delete(document)
            return document.reference_id

        reference_id = self._write("delete steering document", work)
        logger.info("steering_document_deleted", reference_id=reference_id)

    def link_to_epic(
        self, identifier: str, epic_identifier: str, actor: Principal
    ) -> EpicSteeringDocumentModel:
        """Link a document to an epic; a second link of the same pair conflicts."""

        def work() -> EpicSteeringDocumentModel:
            document, epic = self._link_endpoints(identifier, epic_identifier, actor, "link")
            if self._find_link(document.id, epic.id) is not None:
                raise ConflictError(
                    f"{document.reference_id} is already linked to {epic.reference_id}",
                    code="LINK_EXISTS",
                )
            link = EpicSteeringDocumentModel(
                epic_id=epic.id,
                steering_document_id=document.id,
                created_by=actor.user_id,
                created_at=utc_now(),
            )
            self.db.add(link)
            self.db.flush()
            self.audit.log_link(
                STEERING_DOCUMENT,
                document.id,
                EntityType.EPIC.value,
                epic.id,
                actor_id=actor.user_id,
            )
            return link

        link = self._write("link steering document", work)
        logger.info(
            "steering_document_linked",
            steering_document_id=link.steering_document_id,
            epic_id=link.epic_id,
        )
        return link

    def unlink_from_epic(self, identifier: str, epic_identifier: str, actor: Principal) -> None:
        def work() -> Tuple[str, str]:
            document, epic = self._link_endpoints(identifier, epic_identifier, actor, "unlink")
            link = self._find_link(document.id, epic.id)
            if link is None:
                raise NotFoundError(
                    "Steering document link", f"{document.reference_id}/{epic.reference_id}"
                )
            self.db.delete(link)
            self.audit.log_unlink(
                STEERING_DOCUMENT,
                document.id,
                EntityType.EPIC.value,
                epic.id,
                actor_id=actor.user_id,
            )
            return document.id, epic.id

        document_id, epic_id = self._write("unlink steering document", work)
        logger.info("steering_document_unlinked", steering_document_id=document_id, epic_id=epic_id)

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _link_endpoints(
        self, identifier: str, epic_identifier: str, actor: Principal, action: str
    ) -> Tuple[SteeringDocumentModel, EpicModel]:
        document = self.get_by_id(identifier)
        self._require_owner(document, actor, action)
        epic = get_entity(self.db, EntityType.EPIC, epic_identifier)
        return document, epic

    def _find_link(self, document_id: str, epic_id: str) -> Optional[EpicSteeringDocumentModel]:
        return (
            self.db.query(EpicSteeringDocumentModel)
            .filter(
                EpicSteeringDocumentModel.steering_document_id == document_id,
                EpicSteeringDocumentModel.epic_id == epic_id,
            )
            .one_or_none()
        )

    @staticmethod
    def _require_owner(document: SteeringDocumentModel, actor: Principal, action: str) -> None:
        if actor.is_admin or document.creator_id == actor.user_id:
            return
        raise PermissionDeniedError(
            f"Only the creator or an administrator can {action} this steering document"
        )

