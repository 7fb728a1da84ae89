import logging

from sqlalchemy.orm import Session

from nexticket.domain.exceptions import (
    InvalidStateTransitionError,
    NotFoundError,
    ValidationFailedError,
)
from nexticket.domain.roles import Action, Role, RoleInfo, ensure_permitted
from nexticket.infrastructure.db.models import User
from nexticket.infrastructure.repositories.ticket_repository import TicketRepository
from nexticket.infrastructure.repositories.user_repository import UserRepository

logger = logging.getLogger(__name__)


def role_info_for(user: User | None) -> RoleInfo | None:
    if user is None:
        return None
    return RoleInfo(email=user.email, role=user.role, is_fraud=user.is_fraud)


class UserService:

    def __init__(self, db: Session):
        self.db = db
        self.user_repository = UserRepository(db)
        self.ticket_repository = TicketRepository(db)

    def sign_in(self, email: str, display_name: str | None, photo_url: str | None) -> User:
        """Upsert after the identity provider authenticated ``email``."""
        if not email or "@" not in email:
            raise ValidationFailedError("A valid email is required")
        user, created = self.user_repository.upsert(email, display_name, photo_url)
        if created:
            logger.info("User registered. email=%s", user.email)
        return user

    def get_user(self, actor: RoleInfo | None, email: str, caller_email: str | None = None) -> User:
        """
        A profile is visible to its owner and to admins. A caller asking
        about their own email gets NotFound while no account exists yet.
        """
        is_self = bool(caller_email) and caller_email.strip().lower() == email.strip().lower()
        if not is_self:
            ensure_permitted(actor, Action.MANAGE_USERS)

        user = self.user_repository.get_by_email(email)
        if not user:
            raise NotFoundError("User not found")
        return user

    def resolve(self, email: str | None) -> RoleInfo | None:
        if not email:
            return None
        return role_info_for(self.user_repository.get_by_email(email))

    def list_users(self, actor: RoleInfo | None) -> list[User]:
        ensure_permitted(actor, Action.MANAGE_USERS)
        return self.user_repository.list_all()

    def change_role(self, actor: RoleInfo | None, email: str, role: Role) -> User:
        actor = ensure_permitted(actor, Action.MANAGE_USERS)
        user = self.get_user(actor, email)
        if user.is_fraud:
            raise InvalidStateTransitionError(from_state="fraud", to_state=role.value)

        previous = user.role
        self.user_repository.set_role(user, role)
        self.db.flush()
        logger.info(
            "Role changed. email=%s from=%s to=%s by=%s",
            user.email,
            previous.value,
            role.value,
            actor.email,
        )
        return user

    def mark_fraud(self, actor: RoleInfo | None, email: str) -> User:
        """
        One-way suppression of a vendor. Their tickets disappear from
        public listings and give up any advertisement slots.
        """
        actor = ensure_permitted(actor, Action.MANAGE_USERS)
        user = self.get_user(actor, email)
        if user.role is not Role.VENDOR:
            raise InvalidStateTransitionError(from_state=user.role.value, to_state="fraud")
        if user.is_fraud:
            return user

        if not self.user_repository.mark_fraud(user.email):
            self.db.refresh(user)
            raise InvalidStateTransitionError(from_state=user.role.value, to_state="fraud")

        freed = self.ticket_repository.unadvertise_vendor(user.email)
        self.db.refresh(user)
        logger.warning(
            "Vendor marked as fraud. email=%s by=%s slots_freed=%s",
            user.email,
            actor.email,
            freed,
        )
        return user
