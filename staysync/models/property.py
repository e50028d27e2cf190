import uuid
from datetime import datetime
from sqlalchemy import Column, String, DateTime, Integer, Index
from ..database import Base


class Property(Base):
    """
    A hosted rental property.

    pms_listing_id is the property -> external listing mapping. It is
    maintained by onboarding/import flows and read-only for the sync core.
    """
    __tablename__ = "properties"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    organization_id = Column(String(36), nullable=False, index=True)
    name = Column(String(200), nullable=False)
    max_guests = Column(Integer, nullable=True)

    # External PMS listing id (None = not mapped)
    pms_listing_id = Column(String(100), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        Index("ix_property_pms_listing", "pms_listing_id"),
    )

    @property
    def is_mapped(self) -> bool:
        return bool(self.pms_listing_id)

    def __repr__(self):
        return f"<Property {self.name} listing={self.pms_listing_id}>"
