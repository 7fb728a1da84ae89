from dataclasses import dataclass
from datetime import date, time


@dataclass(frozen=True)
class TicketDraft:
    """A vendor's new listing before it is stored and sent for review."""

    title: str
    from_location: str
    to_location: str
    transport_type: str
    price_per_unit: int
    quantity: int
    departure_date: date
    departure_time: time
    perks: tuple[str, ...] = ()
    image_url: str | None = None

    def to_payload(self) -> dict:
        return {
            "title": self.title,
            "fromLocation": self.from_location,
            "toLocation": self.to_location,
            "transportType": self.transport_type,
            "pricePerUnit": self.price_per_unit,
            "quantity": self.quantity,
            "perks": list(self.perks),
            "imageURL": self.image_url,
            "departureDate": self.departure_date.isoformat(),
            "departureTime": self.departure_time.isoformat(),
        }
