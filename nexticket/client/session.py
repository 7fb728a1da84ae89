import logging
from dataclasses import dataclass
from urllib.parse import quote

from nexticket.client.backend import BackendClient
from nexticket.domain.exceptions import (
    AuthRequiredError,
    NexTicketError,
    NotFoundError,
    RoleLookupFailedError,
)
from nexticket.domain.roles import Action, RoleInfo, ensure_permitted, parse_role

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Identity:
    """What the external identity provider hands us after sign-in."""

    email: str
    display_name: str | None = None
    photo_url: str | None = None


class RoleResolver:

    def __init__(self, backend: BackendClient):
        self.backend = backend

    def resolve(self, email: str | None) -> RoleInfo | None:
        """
        Look up the role of ``email``.

        Returns None for an anonymous caller or an unknown user. Any other
        failure raises ``RoleLookupFailedError`` after a single attempt.
        """
        if not email:
            return None

        try:
            data = self.backend.get(f"/api/users/{quote(email)}", user_email=email, retry=False)
            return RoleInfo(
                email=data["email"],
                role=parse_role(data["role"]),
                is_fraud=bool(data.get("isFraud", False)),
            )
        except NotFoundError:
            return None
        except (NexTicketError, KeyError, TypeError) as exc:
            raise RoleLookupFailedError(f"Could not resolve role for {email}") from exc


class SessionContext:
    """
    Identity and resolved role of the signed-in actor.

    Passed explicitly to every command. ``generation`` changes on every
    sign-in, sign-out and expiry so views can drop data loaded for a
    previous identity.
    """

    def __init__(self, backend: BackendClient, resolver: RoleResolver | None = None):
        self.backend = backend
        self.resolver = resolver or RoleResolver(backend)
        self.identity: Identity | None = None
        self.role_info: RoleInfo | None = None
        self.generation = 0

    @property
    def email(self) -> str | None:
        return self.identity.email if self.identity else None

    @property
    def is_authenticated(self) -> bool:
        return self.identity is not None

    def sign_in(self, identity: Identity) -> RoleInfo | None:
        self._invalidate()
        self.backend.post(
            "/api/users",
            json={
                "email": identity.email,
                "name": identity.display_name,
                "photoURL": identity.photo_url,
            },
        )
        self.identity = identity
        self.role_info = self.resolver.resolve(identity.email)
        logger.info(
            "Signed in. email=%s role=%s",
            identity.email,
            self.role_info.role.value if self.role_info else None,
        )
        return self.role_info

    def refresh(self) -> RoleInfo | None:
        """Re-resolve the role, e.g. after an admin changed it."""
        self.role_info = None
        self.role_info = self.resolver.resolve(self.email)
        return self.role_info

    def sign_out(self) -> None:
        self._invalidate()

    def expire(self) -> None:
        logger.info("Session expired. email=%s", self.email)
        self._invalidate()

    def require(self, action: Action) -> RoleInfo:
        if self.identity is None:
            raise AuthRequiredError(f"Sign in required for {action.value}")
        if self.role_info is None:
            raise RoleLookupFailedError(f"Role of {self.identity.email} is unknown")
        return ensure_permitted(self.role_info, action)

    def _invalidate(self) -> None:
        self.identity = None
        self.role_info = None
        self.generation += 1
