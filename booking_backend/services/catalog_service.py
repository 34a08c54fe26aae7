from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

from sqlalchemy.orm import Session

from booking_backend.models.catalog import Service


@dataclass(frozen=True)
class CatalogEntry:
    service_id: int
    provider_id: int
    name: str
    price: int
    duration_minutes: int
    is_active: bool


class ServiceCatalog:
    """Resolves service ids against the catalog tables."""

    def __init__(self, db: Session):
        self.db = db

    def get_entry(self, service_id: int) -> CatalogEntry | None:
        service = self.db.query(Service).filter(
            Service.id == service_id,
            Service.deleted_at.is_(None),
        ).first()

        if service is None:
            return None

        return CatalogEntry(
            service_id=service.id,
            provider_id=service.provider_id,
            name=service.name,
            price=int(Decimal(service.price).quantize(Decimal('1'), rounding=ROUND_HALF_UP)),
            duration_minutes=service.duration_minutes,
            is_active=bool(service.is_active),
        )
