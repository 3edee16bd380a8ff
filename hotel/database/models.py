import enum
from datetime import datetime, date
from decimal import Decimal
from typing import Optional, List
from sqlalchemy import String, Boolean, ForeignKey, Integer, Numeric, DateTime, Text, DATE, UniqueConstraint, Index
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.sql import func
from hotel.database.core import Base

# Enums
class ReservationStatus(str, enum.Enum):
    tentative = "tentative"
    confirmed = "confirmed"
    checked_in = "checked_in"
    checked_out = "checked_out"
    cancelled = "cancelled"

class BookingSource(str, enum.Enum):
    direct = "direct"
    ota = "ota"
    manual = "manual"
    agent = "agent"
    guide = "guide"

class IncomeType(str, enum.Enum):
    service = "service"  # Charge line on a guest bill
    general = "general"  # Hotel income linked to a booking for tracking only

class PaymentType(str, enum.Enum):
    advance = "advance"
    partial = "partial"
    full = "full"

# Income rows with this payment_method are unpaid bill items
PENDING_PAYMENT_METHOD = "pending"


# 1 Tenant (hotel organization)
class Tenant(Base):
    __tablename__ = "tenants"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    locations: Mapped[List["Location"]] = relationship(back_populates="tenant")


# 2 Location (one physical property)
class Location(Base):
    __tablename__ = "locations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    tenant_id: Mapped[int] = mapped_column(ForeignKey("tenants.id", ondelete="CASCADE"), index=True)
    name: Mapped[str] = mapped_column(String)
    address: Mapped[Optional[str]] = mapped_column(String)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    tenant: Mapped["Tenant"] = relationship(back_populates="locations")


# 3 Room
class Room(Base):
    __tablename__ = "rooms"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    tenant_id: Mapped[int] = mapped_column(ForeignKey("tenants.id", ondelete="CASCADE"))
    location_id: Mapped[int] = mapped_column(ForeignKey("locations.id", ondelete="CASCADE"))
    room_number: Mapped[str] = mapped_column(String)
    room_type: Mapped[str] = mapped_column(String, default="standard")
    bed_type: Mapped[Optional[str]] = mapped_column(String)
    base_rate: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=0)
    currency: Mapped[str] = mapped_column(String(3), default="USD")
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        UniqueConstraint('location_id', 'room_number', name='uq_location_room_number'),
    )


# 4 Account (where received money lands)
class Account(Base):
    __tablename__ = "accounts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    tenant_id: Mapped[int] = mapped_column(ForeignKey("tenants.id", ondelete="CASCADE"))
    location_id: Mapped[Optional[int]] = mapped_column(ForeignKey("locations.id"), nullable=True)
    name: Mapped[str] = mapped_column(String)
    account_type: Mapped[str] = mapped_column(String, default="cash")
    currency: Mapped[str] = mapped_column(String(3), default="USD")
    balance: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


# 5 CurrencyRate (USD pivot table, per tenant and location)
class CurrencyRate(Base):
    __tablename__ = "currency_rates"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    tenant_id: Mapped[int] = mapped_column(ForeignKey("tenants.id", ondelete="CASCADE"))
    location_id: Mapped[int] = mapped_column(ForeignKey("locations.id", ondelete="CASCADE"))
    currency_code: Mapped[str] = mapped_column(String(3))
    usd_rate: Mapped[Decimal] = mapped_column(Numeric(18, 6))  # Units of this currency per 1 USD
    is_custom: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        UniqueConstraint('tenant_id', 'location_id', 'currency_code', name='uq_currency_rate_scope'),
    )


# 6 Reservation
class Reservation(Base):
    __tablename__ = "reservations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    tenant_id: Mapped[int] = mapped_column(ForeignKey("tenants.id", ondelete="CASCADE"))
    location_id: Mapped[int] = mapped_column(ForeignKey("locations.id", ondelete="CASCADE"))
    room_id: Mapped[Optional[int]] = mapped_column(ForeignKey("rooms.id"), nullable=True)
    reservation_number: Mapped[str] = mapped_column(String, unique=True, index=True)

    guest_name: Mapped[str] = mapped_column(String)
    guest_email: Mapped[Optional[str]] = mapped_column(String)
    guest_phone: Mapped[Optional[str]] = mapped_column(String)
    guest_nationality: Mapped[Optional[str]] = mapped_column(String)
    adults: Mapped[int] = mapped_column(Integer, default=1)
    children: Mapped[int] = mapped_column(Integer, default=0)

    check_in_date: Mapped[date] = mapped_column(DATE)
    check_out_date: Mapped[date] = mapped_column(DATE)
    nights: Mapped[int] = mapped_column(Integer)

    room_rate: Mapped[Decimal] = mapped_column(Numeric(12, 2))
    currency: Mapped[str] = mapped_column(String(3), default="USD")

    # Maintained by datastore triggers once the row exists
    total_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=0)
    paid_amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), default=0)
    balance_amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2))

    status: Mapped[ReservationStatus] = mapped_column(String, default=ReservationStatus.confirmed.value)
    booking_source: Mapped[BookingSource] = mapped_column(String, default=BookingSource.direct.value)
    special_requests: Mapped[Optional[str]] = mapped_column(Text)

    created_by: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    payments: Mapped[List["Payment"]] = relationship(back_populates="reservation")

    __table_args__ = (
        Index('ix_reservations_scope_room', 'tenant_id', 'location_id', 'room_id'),
    )


# 7 ExternalBooking (channel manager bookings, prepaid)
class ExternalBooking(Base):
    __tablename__ = "external_bookings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    tenant_id: Mapped[int] = mapped_column(ForeignKey("tenants.id", ondelete="CASCADE"))
    location_id: Mapped[int] = mapped_column(ForeignKey("locations.id", ondelete="CASCADE"))
    room_id: Mapped[Optional[int]] = mapped_column(ForeignKey("rooms.id"), nullable=True)  # Unmapped channel rooms stay NULL

    source: Mapped[str] = mapped_column(String)  # 'booking_com', 'airbnb', 'expedia', ...
    external_id: Mapped[str] = mapped_column(String)
    guest_name: Mapped[Optional[str]] = mapped_column(String)
    check_in: Mapped[date] = mapped_column(DATE)
    check_out: Mapped[date] = mapped_column(DATE)
    status: Mapped[str] = mapped_column(String, default=ReservationStatus.confirmed.value)
    total_amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2))
    currency: Mapped[Optional[str]] = mapped_column(String(3))
    last_synced_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        UniqueConstraint('tenant_id', 'source', 'external_id', name='uq_external_booking'),
    )


# 8 Income (service charges and general income)
class Income(Base):
    __tablename__ = "income"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    tenant_id: Mapped[int] = mapped_column(ForeignKey("tenants.id", ondelete="CASCADE"))
    location_id: Mapped[int] = mapped_column(ForeignKey("locations.id", ondelete="CASCADE"))
    booking_id: Mapped[Optional[int]] = mapped_column(ForeignKey("reservations.id", ondelete="CASCADE"), nullable=True, index=True)
    account_id: Mapped[Optional[int]] = mapped_column(ForeignKey("accounts.id"), nullable=True)  # NULL for pending bill items

    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2))
    currency: Mapped[str] = mapped_column(String(3))
    payment_method: Mapped[str] = mapped_column(String, default=PENDING_PAYMENT_METHOD)
    type: Mapped[IncomeType] = mapped_column(String, default=IncomeType.service.value)
    note: Mapped[Optional[str]] = mapped_column(Text)
    income_date: Mapped[Optional[date]] = mapped_column("date", DATE)

    created_by: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


# 9 Payment
class Payment(Base):
    __tablename__ = "payments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    tenant_id: Mapped[int] = mapped_column(ForeignKey("tenants.id", ondelete="CASCADE"))
    reservation_id: Mapped[int] = mapped_column(ForeignKey("reservations.id", ondelete="CASCADE"), index=True)
    account_id: Mapped[int] = mapped_column(ForeignKey("accounts.id"))

    payment_number: Mapped[str] = mapped_column(String, unique=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2))
    currency: Mapped[str] = mapped_column(String(3))
    payment_method: Mapped[str] = mapped_column(String, default="cash")
    payment_type: Mapped[PaymentType] = mapped_column(String, default=PaymentType.partial.value)
    notes: Mapped[Optional[str]] = mapped_column(Text)
    reference_number: Mapped[Optional[str]] = mapped_column(String)

    created_by: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    reservation: Mapped["Reservation"] = relationship(back_populates="payments")


# 10 CurrencyConversionLog (audit)
class CurrencyConversionLog(Base):
    __tablename__ = "currency_conversion_log"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    tenant_id: Mapped[int] = mapped_column(ForeignKey("tenants.id", ondelete="CASCADE"))
    transaction_type: Mapped[str] = mapped_column(String)  # 'payment' or 'income'
    transaction_id: Mapped[int] = mapped_column(Integer)

    from_currency: Mapped[str] = mapped_column(String(3))
    to_currency: Mapped[str] = mapped_column(String(3))
    from_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2))
    to_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2))
    exchange_rate: Mapped[Decimal] = mapped_column(Numeric(18, 8))
    rate_source: Mapped[str] = mapped_column(String, default="system")
    notes: Mapped[Optional[str]] = mapped_column(Text)

    created_by: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
