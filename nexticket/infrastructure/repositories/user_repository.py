# nexticket/infrastructure/repositories/user_repository.py

from sqlalchemy.orm import Session
from sqlalchemy import func, select, update

from nexticket.infrastructure.db.models import User
from nexticket.domain.roles import Role


class UserRepository:

    def __init__(self, db: Session):
        self.db = db

    def get_by_email(self, email: str) -> User | None:
        stmt = select(User).where(func.lower(User.email) == email.lower())
        return self.db.execute(stmt).scalar_one_or_none()

    def list_all(self) -> list[User]:
        stmt = select(User).order_by(User.created_at.desc())
        return list(self.db.execute(stmt).scalars().all())

    def upsert(
        self,
        email: str,
        display_name: str | None,
        photo_url: str | None,
    ) -> tuple[User, bool]:
        """
        Profile fields are refreshed on every sign-in.
        Role and fraud flag are never touched here.
        """
        user = self.get_by_email(email)
        if user:
            if display_name:
                user.display_name = display_name
            if photo_url:
                user.photo_url = photo_url
            return user, False

        user = User(
            email=email.lower(),
            display_name=display_name,
            photo_url=photo_url,
            role=Role.USER,
            is_fraud=False,
        )
        self.db.add(user)
        self.db.flush()
        return user, True

    def set_role(self, user: User, role: Role) -> None:
        user.role = role

    def mark_fraud(self, email: str) -> bool:
        result = self.db.execute(
            update(User)
            .where(func.lower(User.email) == email.lower())
            .where(User.role == Role.VENDOR)
            .where(User.is_fraud.is_(False))
            .values(is_fraud=True)
            .execution_options(synchronize_session="fetch")
        )
        return result.rowcount == 1
