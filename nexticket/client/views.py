import logging
from dataclasses import dataclass
from typing import Any, Callable, Generic, Iterable, TypeVar

from nexticket.api.schemas.schemas import AdvertiseResponse, TicketResponse
from nexticket.client.workflows import ModerationCommands
from nexticket.domain.advertising import MAX_ADVERTISED_TICKETS, slots_available
from nexticket.domain.exceptions import NexTicketError
from nexticket.domain.state_machine import VerificationStatus

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class Notice:
    """A transient, user-visible message about a failed action."""

    code: str
    message: str


class EntityView(Generic[T]):
    """
    Last loaded list of entities on one screen.

    Every load is tagged with a generation; a result that arrives after a
    newer load started is dropped. Command results only touch the view
    once the backend acknowledged them, and only if the entity is still
    shown. Failures leave the items as they were and set ``notice``.
    """

    def __init__(self, key: Callable[[T], str] = lambda item: item.id):
        self.key = key
        self.items: dict[str, T] = {}
        self.generation = 0
        self.notice: Notice | None = None

    def __contains__(self, entity_id: str) -> bool:
        return entity_id in self.items

    def __len__(self) -> int:
        return len(self.items)

    def values(self) -> list[T]:
        return list(self.items.values())

    def begin_load(self) -> int:
        self.generation += 1
        return self.generation

    def finish_load(self, token: int, items: Iterable[T]) -> bool:
        if token != self.generation:
            logger.debug("Dropping stale load. token=%s current=%s", token, self.generation)
            return False
        self.items = {self.key(item): item for item in items}
        self.notice = None
        return True

    def load(self, fetch: Callable[[], Iterable[T]]) -> bool:
        token = self.begin_load()
        try:
            items = list(fetch())
        except NexTicketError as exc:
            self._fail(exc)
            return False
        return self.finish_load(token, items)

    def perform(self, entity_id: str, command: Callable[..., Any], *args, **kwargs) -> Any:
        """
        Run ``command`` for one shown entity. Returns its result, or None
        when the command failed.
        """
        token = self.generation
        try:
            result = command(*args, **kwargs)
        except NexTicketError as exc:
            self._fail(exc)
            return None

        self.notice = None
        if token != self.generation or entity_id not in self.items:
            logger.debug("Ignoring result for entity no longer in view. id=%s", entity_id)
            return result
        self.apply(entity_id, result)
        return result

    def apply(self, entity_id: str, result: Any) -> None:
        # Deletes return the removed id.
        if result == entity_id:
            self.items.pop(entity_id, None)
        else:
            self.items[entity_id] = result

    def _fail(self, exc: NexTicketError) -> None:
        self.notice = Notice(code=exc.code, message=exc.message)
        logger.info("Action failed: %s: %s", exc.code, exc.message)


class AdvertiseBoard(EntityView[TicketResponse]):
    """Admin view of approved tickets with the advertisement slots."""

    def __init__(self, moderation: ModerationCommands):
        super().__init__()
        self.moderation = moderation

    @property
    def advertised_count(self) -> int:
        return sum(1 for ticket in self.items.values() if ticket.is_advertised)

    @property
    def slots_available(self) -> int:
        return slots_available(self.advertised_count)

    @property
    def is_full(self) -> bool:
        return self.advertised_count >= MAX_ADVERTISED_TICKETS

    def refresh(self) -> bool:
        return self.load(
            lambda: [
                ticket
                for ticket in self.moderation.all_tickets()
                if ticket.verification_status is VerificationStatus.APPROVED
            ]
        )

    def toggle(self, ticket_id: str, desired: bool) -> AdvertiseResponse | None:
        ticket = self.items.get(ticket_id)
        if ticket is None:
            return None
        return self.perform(
            ticket_id,
            self.moderation.toggle_advertise,
            ticket,
            desired,
            self.advertised_count,
        )

    def apply(self, entity_id: str, result: AdvertiseResponse) -> None:
        self.items[entity_id] = result.ticket
