import uuid
from datetime import datetime
from sqlalchemy import Column, String, Date, Integer, Text, ForeignKey, DateTime, Index
from sqlalchemy.orm import relationship
from ..database import Base
import enum


class ReservationStatus(str, enum.Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELED = "canceled"


class Reservation(Base):
    """
    A direct (internal) guest reservation.

    external_reservation_id is the idempotency marker for the outbound
    publish: once set, the reservation exists on the PMS and must never be
    created there again.
    """
    __tablename__ = "reservations"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    organization_id = Column(String(36), nullable=False, index=True)
    property_id = Column(String(36), ForeignKey("properties.id", ondelete="CASCADE"), nullable=False)
    confirmation_code = Column(String(32), nullable=True)

    check_in = Column(Date, nullable=False)
    check_out = Column(Date, nullable=False)
    adults = Column(Integer, default=1)
    children = Column(Integer, default=0)

    guest_first_name = Column(String(100), nullable=True)
    guest_last_name = Column(String(100), nullable=True)
    guest_email = Column(String(255), nullable=True)
    guest_phone = Column(String(30), nullable=True)
    guest_notes = Column(Text, nullable=True)

    status = Column(String(20), default=ReservationStatus.PENDING.value)
    confirmed_at = Column(DateTime, nullable=True)

    # Outbound idempotency marker
    external_reservation_id = Column(String(255), nullable=True)
    external_synced_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    rental_property = relationship("Property")

    __table_args__ = (
        Index("ix_reservation_external", "external_reservation_id"),
        Index("ix_reservation_property", "property_id"),
    )

    @property
    def guest_count(self) -> int:
        return (self.adults or 0) + (self.children or 0)

    def __repr__(self):
        return f"<Reservation {self.confirmation_code or self.id} {self.check_in}->{self.check_out}>"
