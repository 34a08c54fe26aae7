"""Service catalog model definitions.

Providers and their services are owned by the catalog collaborator; the
scheduling core only reads them.
"""

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, Numeric, String
from sqlalchemy.orm import relationship

from booking_backend.database import Base


class Provider(Base):
    """Represents a service provider's public profile."""
    __tablename__ = "providers"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, index=True)
    business_name = Column(String, nullable=False)
    city = Column(String)
    neighborhood = Column(String)

    services = relationship("Service", back_populates="provider")

    @property
    def location(self) -> str:
        return f"{self.neighborhood or ''}, {self.city or ''}".strip(", ").strip()


class Service(Base):
    """Represents a bookable service offered by a provider."""
    __tablename__ = "services"

    id = Column(Integer, primary_key=True)
    provider_id = Column(Integer, ForeignKey("providers.id"), nullable=False, index=True)
    name = Column(String, nullable=False)
    price = Column(Numeric(12, 2), nullable=False)
    duration_minutes = Column(Integer, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    deleted_at = Column(DateTime, nullable=True)

    provider = relationship("Provider", back_populates="services")
