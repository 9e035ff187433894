"""
CoopWatch Database Models

Tables:
  Farm records (read-only to the alerting core):
  1. farms              - Farm owned by a user
  2. lots               - Cohort of birds tracked as a unit
  3. weight_records     - Average weight samples per lot
  4. egg_collections    - Daily egg collection per layer lot
  5. mortality_records  - Deaths recorded per lot

  Reference data:
  6. reference_curves   - Per-breed benchmark curves (weight / lay rate)

  Delivery:
  7. device_tokens      - Push tokens registered by user devices
  8. notifications      - Delivered in-app notifications + push outcome
"""

import uuid
from datetime import datetime

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    TypeDecorator,
    UniqueConstraint,
    types,
)
from sqlalchemy.dialects.postgresql import UUID as PG_UUID


class GUID(TypeDecorator):
    """Platform-independent UUID type.

    Uses PostgreSQL UUID when available, stores as CHAR(36) on SQLite.
    """

    impl = types.String(36)
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            return dialect.type_descriptor(PG_UUID(as_uuid=True))
        return dialect.type_descriptor(types.String(36))

    def process_bind_param(self, value, dialect):
        if value is None:
            return value
        if dialect.name == "postgresql":
            return value if isinstance(value, uuid.UUID) else uuid.UUID(str(value))
        return str(value) if isinstance(value, uuid.UUID) else str(uuid.UUID(str(value)))

    def process_result_value(self, value, dialect):
        if value is None:
            return value
        if isinstance(value, uuid.UUID):
            return value
        return uuid.UUID(str(value))


from sqlalchemy.orm import relationship

from db.session import Base

# ─── 1. Farms ──────────────────────────────────────────────────────────────


class Farm(Base):
    __tablename__ = "farms"

    farm_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    name = Column(String(255), nullable=False)
    owner_user_id = Column(String(128), nullable=True)
    status = Column(String(20), nullable=False, default="active")
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    lots = relationship("Lot", back_populates="farm", cascade="all, delete-orphan")


# ─── 2. Lots ───────────────────────────────────────────────────────────────


class Lot(Base):
    __tablename__ = "lots"

    lot_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    farm_id = Column(GUID(), ForeignKey("farms.farm_id"), nullable=False)
    name = Column(String(255), nullable=False)
    kind = Column(String(20), nullable=False)
    breed = Column(String(100), nullable=False, default="unknown")
    birth_date = Column(Date, nullable=False)
    initial_count = Column(Integer, nullable=False)
    current_count = Column(Integer, nullable=False)
    status = Column(String(20), nullable=False, default="active")
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        Index("ix_lots_farm_status", "farm_id", "status"),
        CheckConstraint("kind IN ('layer', 'broiler', 'pullet')", name="ck_lot_kind"),
        CheckConstraint("status IN ('active', 'inactive', 'sold', 'closed')", name="ck_lot_status"),
    )

    farm = relationship("Farm", back_populates="lots")


# ─── 3-5. Measurement records ──────────────────────────────────────────────


class WeightRecord(Base):
    __tablename__ = "weight_records"

    id = Column(Integer, primary_key=True, autoincrement=True)
    lot_id = Column(GUID(), ForeignKey("lots.lot_id"), nullable=False)
    average_weight_lb = Column(Float, nullable=False)
    sample_size = Column(Integer, nullable=True)
    recorded_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (Index("ix_weight_records_lot_time", "lot_id", "recorded_at"),)


class EggCollection(Base):
    __tablename__ = "egg_collections"

    id = Column(Integer, primary_key=True, autoincrement=True)
    lot_id = Column(GUID(), ForeignKey("lots.lot_id"), nullable=False)
    eggs_collected = Column(Integer, nullable=False)
    collected_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (Index("ix_egg_collections_lot_time", "lot_id", "collected_at"),)


class MortalityRecord(Base):
    __tablename__ = "mortality_records"

    id = Column(Integer, primary_key=True, autoincrement=True)
    lot_id = Column(GUID(), ForeignKey("lots.lot_id"), nullable=False)
    deaths = Column(Integer, nullable=False)
    cause = Column(String(255), nullable=True)
    recorded_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (Index("ix_mortality_records_lot", "lot_id"),)


# ─── 6. Reference curves ───────────────────────────────────────────────────


class ReferenceCurveRow(Base):
    """
    Breed benchmark maintained by the catalog editor (outside this core).

    points: [{"age": 7, "expected": 185, "min": 165, "max": 205}, ...]
      weight curves: age in days, grams
      lay-rate curves: age in weeks, percent
    """

    __tablename__ = "reference_curves"

    id = Column(Integer, primary_key=True, autoincrement=True)
    kind = Column(String(20), nullable=False)
    breed = Column(String(100), nullable=False)
    version = Column(Integer, nullable=False, default=1)
    points = Column(JSON, nullable=False, default=list)
    expected_mortality_pct = Column(Float, nullable=True)
    expected_feed_conversion = Column(Float, nullable=True)
    target_market_age_days = Column(Integer, nullable=True)
    target_final_weight_lb = Column(Float, nullable=True)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (UniqueConstraint("kind", "breed", "version", name="uq_reference_curve_version"),)


# ─── 7. Device tokens ──────────────────────────────────────────────────────


class DeviceToken(Base):
    __tablename__ = "device_tokens"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(128), nullable=False)
    token = Column(String(255), nullable=False, unique=True)
    platform = Column(String(20), nullable=True)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (Index("ix_device_tokens_user", "user_id", "updated_at"),)


# ─── 8. Notifications ──────────────────────────────────────────────────────


class Notification(Base):
    """
    In-app notification produced by the delivery pipeline.

    Lifecycle:
      unread -> read -> archived   (read/archive driven by the client)
      consolidated originals are set to read with consolidated_into pointing
      at the summary row; summaries carry is_consolidated=True.
    """

    __tablename__ = "notifications"

    notification_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    user_id = Column(String(128), nullable=False)
    notification_type = Column(String(50), nullable=False)
    category = Column(String(20), nullable=False)
    severity = Column(String(20), nullable=False)
    title = Column(String(255), nullable=False)
    message = Column(Text, nullable=False)
    correlation_key = Column(String(512), nullable=True)
    payload = Column(JSON, nullable=True)
    status = Column(String(20), nullable=False, default="unread")
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    read_at = Column(DateTime, nullable=True)
    archived_at = Column(DateTime, nullable=True)
    expires_at = Column(DateTime, nullable=True)

    # Consolidation
    is_consolidated = Column(Boolean, nullable=False, default=False)
    consolidated_into = Column(GUID(), nullable=True)

    # Push delivery
    sent_to_push = Column(Boolean, nullable=False, default=False)
    push_delivered = Column(Boolean, nullable=False, default=False)
    push_ticket_id = Column(String(128), nullable=True)
    push_sent_at = Column(DateTime, nullable=True)
    push_error = Column(Text, nullable=True)

    __table_args__ = (
        Index("ix_notifications_user_type_created", "user_id", "notification_type", "created_at"),
        Index("ix_notifications_user_status", "user_id", "status"),
        Index("ix_notifications_correlation", "user_id", "correlation_key"),
        Index("ix_notifications_expires", "expires_at"),
        CheckConstraint(
            "category IN ('production', 'financial', 'system', 'reminder', 'event', 'custom')",
            name="ck_notification_category",
        ),
        CheckConstraint("severity IN ('low', 'medium', 'high', 'critical')", name="ck_notification_severity"),
        CheckConstraint("status IN ('unread', 'read', 'archived')", name="ck_notification_status"),
    )
