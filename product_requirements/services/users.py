"""User administration and lookup."""

from typing import List, Optional, Tuple

import structlog
from sqlalchemy import or_
from sqlalchemy.orm import Session

from ..db.audit import AuditService
from ..db.models import (
    AcceptanceCriteriaModel,
    CommentModel,
    EpicModel,
    RequirementModel,
    RequirementRelationshipModel,
    UserModel,
    UserStoryModel,
    utc_now,
)
from ..db.transactions import run_in_transaction
from ..errors import ConflictError, InputValidationError, NotFoundError
from ..schemas.common import Principal
from ..schemas.enums import Role
from ..schemas.users import UserCreate, UserUpdate
from ._base import validate_pagination

logger = structlog.get_logger()


class UserService:
    """Service for managing users."""

    def __init__(self, db: Session, audit: Optional[AuditService] = None):
        self.db = db
        self.audit = audit or AuditService(db)

    def get(self, user_id: str) -> UserModel:
        user = self.db.get(UserModel, user_id) if user_id else None
        if user is None:
            raise NotFoundError("User", user_id)
        return user

    def get_by_username(self, username: str) -> Optional[UserModel]:
        return self.db.query(UserModel).filter(UserModel.username == username).first()

    def require_existing(self, user_id: Optional[str], field: str) -> None:
        """Raise a validation error naming ``field`` when the user is unknown."""
        if user_id is None:
            return
        if self.db.get(UserModel, user_id) is None:
            raise InputValidationError(f"{field} '{user_id}' does not reference an existing user")

    def count(self) -> int:
        return self.db.query(UserModel).count()

    def list(
        self,
        role: Optional[Role] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Tuple[List[UserModel], int]:
        validate_pagination(limit, offset)
        query = self.db.query(UserModel)
        if role:
            query = query.filter(UserModel.role == Role(role).value)
        total = query.count()
        users = query.order_by(UserModel.username).offset(offset).limit(limit).all()
        return users, total

    def create(self, data: UserCreate, actor_id: Optional[str] = None) -> UserModel:
        def work() -> UserModel:
            if self.get_by_username(data.username):
                raise ConflictError(f"Username '{data.username}' is already taken")
            if self.db.query(UserModel).filter(UserModel.email == data.email).first():
                raise ConflictError(f"Email '{data.email}' is already registered")
            now = utc_now()
            user = UserModel(
                username=data.username,
                email=data.email,
                role=Role(data.role).value,
                created_at=now,
                updated_at=now,
            )
            self.db.add(user)
            self.db.flush()
            self.audit.log_create("user", user.id, user.to_dict(), actor_id=actor_id)
            return user

        user = run_in_transaction(self.db, work, operation="create user")
        logger.info("user_created", user_id=user.id, role=user.role)
        return user

    def update(self, user_id: str, data: UserUpdate, actor_id: Optional[str] = None) -> UserModel:
        def work() -> UserModel:
            user = self.get(user_id)
            before = user.to_dict()
            changes = data.model_dump(exclude_unset=True, exclude_none=True)
            if "email" in changes and changes["email"] != user.email:
                taken = self.db.query(UserModel).filter(UserModel.email == changes["email"]).first()
                if taken:
                    raise ConflictError(f"Email '{changes['email']}' is already registered")
                user.email = changes["email"]
            if "role" in changes:
                user.role = Role(changes["role"]).value
            if user.to_dict() != before:
                user.updated_at = utc_now()
                self.audit.log_update("user", user.id, before, user.to_dict(), actor_id=actor_id)
            return user

        return run_in_transaction(self.db, work, operation="update user")

    def delete(self, user_id: str, actor: Principal) -> None:
        def work() -> None:
            user = self.get(user_id)
            if user.id == actor.user_id:
                raise ConflictError("Administrators cannot delete their own account", code="IN_USE")
            if self._is_referenced(user.id):
                raise ConflictError(
                    f"User '{user.username}' owns or is assigned to existing items",
                    code="IN_USE",
                )
            self.audit.log_delete("user", user.id, user.to_dict(), actor_id=actor.user_id)
            self.db.delete(user)

        run_in_transaction(self.db, work, operation="delete user")
        logger.info("user_deleted", user_id=user_id)

    def _is_referenced(self, user_id: str) -> bool:
        checks = [
            (EpicModel, or_(EpicModel.creator_id == user_id, EpicModel.assignee_id == user_id)),
            (
                UserStoryModel,
                or_(UserStoryModel.creator_id == user_id, UserStoryModel.assignee_id == user_id),
            ),
            (AcceptanceCriteriaModel, AcceptanceCriteriaModel.author_id == user_id),
            (
                RequirementModel,
                or_(RequirementModel.creator_id == user_id, RequirementModel.assignee_id == user_id),
            ),
            (RequirementRelationshipModel, RequirementRelationshipModel.created_by == user_id),
            (
                CommentModel,
                or_(CommentModel.author_id == user_id, CommentModel.resolved_by == user_id),
            ),
        ]
        return any(
            self.db.query(model.id).filter(condition).first() is not None
            for model, condition in checks
        )
