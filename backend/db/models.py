from datetime import datetime
from sqlalchemy import (
    Column, Integer, Text, Float, Boolean, ForeignKey, Index,
    DateTime,
)
from sqlalchemy.orm import relationship
from db.database import Base


class PlannedFieldsMixin:
    """Planned measurement columns shared by library, template and calendar items."""

    # fitness
    sets = Column(Integer)
    reps = Column(Text)
    duration = Column(Integer)  # seconds
    duration_text = Column(Text)  # free text when duration is not numeric
    weight = Column(Float)
    weight_unit = Column(Text)
    set_01_rep = Column(Text)
    weight_01 = Column(Float)
    set_02_rep = Column(Text)
    weight_02 = Column(Float)
    set_03_rep = Column(Text)
    weight_03 = Column(Float)
    rest_seconds = Column(Integer)
    # diet
    quantity = Column(Text)
    calories = Column(Float)
    protein = Column(Float)
    carbs = Column(Float)
    fats = Column(Float)
    fiber = Column(Float)
    sugar = Column(Float)
    sodium = Column(Float)
    notes = Column(Text)


class LibraryDefinition(PlannedFieldsMixin, Base):
    __tablename__ = "library_definitions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    owner_id = Column(Integer, nullable=False)
    domain = Column(Text, nullable=False)  # diet | fitness
    name = Column(Text, nullable=False)
    normalized_name = Column(Text, nullable=False)
    description = Column(Text)
    category = Column(Text)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class WeekTemplate(Base):
    __tablename__ = "week_templates"

    id = Column(Integer, primary_key=True, autoincrement=True)
    owner_id = Column(Integer, nullable=False)
    domain = Column(Text, nullable=False)  # diet | fitness
    name = Column(Text, nullable=False)
    description = Column(Text)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    days = relationship(
        "TemplateDay",
        back_populates="week_template",
        cascade="all, delete-orphan",
        order_by="TemplateDay.day_of_week",
    )


class TemplateDay(Base):
    __tablename__ = "template_days"

    id = Column(Integer, primary_key=True, autoincrement=True)
    week_template_id = Column(Integer, ForeignKey("week_templates.id", ondelete="CASCADE"), nullable=False)
    day_of_week = Column(Integer, nullable=False)  # 0 = Monday .. 6 = Sunday
    is_rest_day = Column(Boolean, nullable=False, default=False)
    notes = Column(Text)
    created_at = Column(DateTime, default=datetime.utcnow)

    week_template = relationship("WeekTemplate", back_populates="days")
    sessions = relationship(
        "TemplateSession",
        back_populates="template_day",
        cascade="all, delete-orphan",
        order_by="TemplateSession.session_order",
    )


class TemplateSession(Base):
    __tablename__ = "template_sessions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    template_day_id = Column(Integer, ForeignKey("template_days.id", ondelete="CASCADE"), nullable=False)
    name = Column(Text, nullable=False)
    session_order = Column(Integer, nullable=False, default=0)
    notes = Column(Text)

    template_day = relationship("TemplateDay", back_populates="sessions")
    items = relationship(
        "TemplateItem",
        back_populates="session",
        cascade="all, delete-orphan",
        order_by="TemplateItem.item_order",
    )


class TemplateItem(PlannedFieldsMixin, Base):
    __tablename__ = "template_items"

    id = Column(Integer, primary_key=True, autoincrement=True)
    template_session_id = Column(Integer, ForeignKey("template_sessions.id", ondelete="CASCADE"), nullable=False)
    library_id = Column(Integer, ForeignKey("library_definitions.id", ondelete="SET NULL"), nullable=True)
    name = Column(Text, nullable=False)
    item_order = Column(Integer, nullable=False, default=0)

    session = relationship("TemplateSession", back_populates="items")


class CalendarEntry(Base):
    __tablename__ = "calendar_entries"

    id = Column(Integer, primary_key=True, autoincrement=True)
    subject_id = Column(Integer, nullable=False)
    domain = Column(Text, nullable=False)
    entry_date = Column(Text, nullable=False)  # YYYY-MM-DD
    # Traceability only; the copied content never follows these links.
    week_template_id = Column(Integer, ForeignKey("week_templates.id", ondelete="SET NULL"), nullable=True)
    template_day_id = Column(Integer, nullable=True)
    is_override = Column(Boolean, nullable=False, default=False)
    is_rest_day = Column(Boolean, nullable=False, default=False)
    notes = Column(Text)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    sessions = relationship(
        "CalendarSession",
        back_populates="entry",
        cascade="all, delete-orphan",
        order_by="CalendarSession.session_order",
    )


class CalendarSession(Base):
    __tablename__ = "calendar_sessions"
    # Ids are never reused; ledger rows may still point at deleted sessions.
    __table_args__ = {"sqlite_autoincrement": True}

    id = Column(Integer, primary_key=True, autoincrement=True)
    calendar_entry_id = Column(Integer, ForeignKey("calendar_entries.id", ondelete="CASCADE"), nullable=False)
    name = Column(Text, nullable=False)
    session_order = Column(Integer, nullable=False, default=0)
    notes = Column(Text)
    week_template_id = Column(Integer, nullable=True)  # source template of the copy

    entry = relationship("CalendarEntry", back_populates="sessions")
    items = relationship(
        "CalendarItem",
        back_populates="session",
        cascade="all, delete-orphan",
        order_by="CalendarItem.item_order",
    )


class CalendarItem(PlannedFieldsMixin, Base):
    __tablename__ = "calendar_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = Column(Integer, primary_key=True, autoincrement=True)
    calendar_session_id = Column(Integer, ForeignKey("calendar_sessions.id", ondelete="CASCADE"), nullable=False)
    library_id = Column(Integer, nullable=True)
    name = Column(Text, nullable=False)
    item_order = Column(Integer, nullable=False, default=0)

    session = relationship("CalendarSession", back_populates="items")


class TrackingRecord(Base):
    __tablename__ = "tracking_records"

    id = Column(Integer, primary_key=True, autoincrement=True)
    subject_id = Column(Integer, nullable=False)
    domain = Column(Text, nullable=False)
    calendar_entry_id = Column(Integer, ForeignKey("calendar_entries.id"), nullable=False)
    # No FK on session/item: history is kept even after the entry's sessions are replaced.
    calendar_session_id = Column(Integer, nullable=True)
    calendar_item_id = Column(Integer, nullable=True)
    record_key = Column(Text, nullable=False)  # "<entry>:<session|->:<item|->"
    tracked_date = Column(Text, nullable=False)  # YYYY-MM-DD
    tracked_at = Column(DateTime, default=datetime.utcnow)
    completion_status = Column(Text, nullable=False, default="pending")  # pending | completed | partial | skipped
    # fitness actuals
    completed_sets = Column(Integer)
    completed_reps = Column(Text)
    completed_duration = Column(Integer)
    completed_weight = Column(Float)
    completed_sets_detail = Column(Text)  # JSON array
    # diet actuals
    completed_quantity = Column(Text)
    completed_calories = Column(Float)
    completed_protein = Column(Float)
    completed_carbs = Column(Float)
    completed_fats = Column(Float)
    completed_items_detail = Column(Text)  # JSON array
    notes = Column(Text)
    media = Column(Text)  # JSON array of media references
    rating = Column(Integer)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class MetricMeasurement(Base):
    __tablename__ = "metric_measurements"

    id = Column(Integer, primary_key=True, autoincrement=True)
    subject_id = Column(Integer, nullable=False)
    metric = Column(Text, nullable=False)  # weight | bmi | hba1c | ...
    value = Column(Float, nullable=False)
    unit = Column(Text)
    measured_at = Column(DateTime, nullable=False)
    source = Column(Text, default="manual")
    notes = Column(Text)
    created_at = Column(DateTime, default=datetime.utcnow)


Index(
    "idx_library_definitions_owner_name",
    LibraryDefinition.owner_id,
    LibraryDefinition.domain,
    LibraryDefinition.normalized_name,
    unique=True,
)
Index("idx_library_definitions_owner_active", LibraryDefinition.owner_id, LibraryDefinition.domain, LibraryDefinition.is_active)
Index("idx_week_templates_owner_active", WeekTemplate.owner_id, WeekTemplate.domain, WeekTemplate.is_active)
Index("idx_template_days_unique_weekday", TemplateDay.week_template_id, TemplateDay.day_of_week, unique=True)
Index("idx_template_sessions_day", TemplateSession.template_day_id)
Index("idx_template_items_session", TemplateItem.template_session_id)
Index(
    "idx_calendar_entries_unique_date",
    CalendarEntry.subject_id,
    CalendarEntry.domain,
    CalendarEntry.entry_date,
    unique=True,
)
Index("idx_calendar_entries_template", CalendarEntry.week_template_id, CalendarEntry.entry_date)
Index("idx_calendar_sessions_entry", CalendarSession.calendar_entry_id)
Index("idx_calendar_items_session", CalendarItem.calendar_session_id)
Index("idx_tracking_records_key", TrackingRecord.record_key, unique=True)
Index("idx_tracking_records_subject_date", TrackingRecord.subject_id, TrackingRecord.domain, TrackingRecord.tracked_date)
Index("idx_tracking_records_entry", TrackingRecord.calendar_entry_id)
Index("idx_metric_measurements_subject_metric", MetricMeasurement.subject_id, MetricMeasurement.metric, MetricMeasurement.measured_at)
