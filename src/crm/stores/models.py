"""SQL-store tables -- the primary read source for every CRM entity.

Seven SQLAlchemy models on the shared declarative Base:
- CompanyModel: companies (legacy column names: city, description, interaction_rating)
- ContactModel: official contacts (job_title is exposed as `position`)
- OpportunityModel: opportunities, self-referencing through parent_opportunity_id
- OpportunityContactLinkModel: contact <-> opportunity join table
- InteractionModel: interaction / activity records
- EventLogModel: event logs (one table, event_type is a plain column here)
- AnnouncementModel: bulletin-board announcements

Columns keep the snake_case names the SQL store was migrated with; the
Identity Normalizer maps them onto DTO fields. Ids are strings minted by the
service layer or the writers, never by the database.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, DateTime, String, Text, false, func
from sqlalchemy.orm import Mapped, mapped_column

from src.crm.core.database import Base


class AuditColumns:
    """created/updated bookkeeping shared by the mutable tables."""

    created_time: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=True
    )
    updated_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_by: Mapped[str | None] = mapped_column(String(100), nullable=True)
    updated_by: Mapped[str | None] = mapped_column(String(100), nullable=True)


class CompanyModel(AuditColumns, Base):
    """Company row. company_name is unique only after normalization, so no DB constraint."""

    __tablename__ = "companies"

    company_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    company_name: Mapped[str] = mapped_column(String(300), nullable=False, index=True)
    phone: Mapped[str | None] = mapped_column(String(100), nullable=True)
    address: Mapped[str | None] = mapped_column(String(500), nullable=True)
    city: Mapped[str | None] = mapped_column(String(50), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    company_type: Mapped[str | None] = mapped_column(String(50), nullable=True)
    customer_stage: Mapped[str | None] = mapped_column(String(50), nullable=True)
    interaction_rating: Mapped[str | None] = mapped_column(String(20), nullable=True)


class ContactModel(AuditColumns, Base):
    """Official (vetted) contact. SQL holds write authority."""

    __tablename__ = "contacts"

    contact_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    source_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    company_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    department: Mapped[str | None] = mapped_column(String(200), nullable=True)
    job_title: Mapped[str | None] = mapped_column(String(200), nullable=True)
    mobile: Mapped[str | None] = mapped_column(String(50), nullable=True)
    phone: Mapped[str | None] = mapped_column(String(50), nullable=True)
    email: Mapped[str | None] = mapped_column(String(320), nullable=True)


class OpportunityModel(AuditColumns, Base):
    """Opportunity row. customer_company is free text, joined by normalized name."""

    __tablename__ = "opportunities"

    opportunity_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    opportunity_name: Mapped[str | None] = mapped_column(String(300), nullable=True)
    customer_company: Mapped[str | None] = mapped_column(String(300), nullable=True)
    main_contact: Mapped[str | None] = mapped_column(String(200), nullable=True)
    opportunity_type: Mapped[str | None] = mapped_column(String(50), nullable=True)
    current_stage: Mapped[str | None] = mapped_column(String(50), nullable=True)
    current_status: Mapped[str | None] = mapped_column(String(50), nullable=True)
    assignee: Mapped[str | None] = mapped_column(String(100), nullable=True)
    opportunity_value: Mapped[str | None] = mapped_column(String(50), nullable=True)
    probability: Mapped[str | None] = mapped_column(String(10), nullable=True)
    expected_close_date: Mapped[str | None] = mapped_column(String(30), nullable=True)
    parent_opportunity_id: Mapped[str | None] = mapped_column(String(64), nullable=True)


class OpportunityContactLinkModel(Base):
    """Join row between an opportunity and an official contact."""

    __tablename__ = "opportunity_contact_links"

    link_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    opportunity_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    contact_id: Mapped[str] = mapped_column(String(64), nullable=False)
    status: Mapped[str | None] = mapped_column(String(20), nullable=True)
    created_time: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=True
    )


class InteractionModel(Base):
    """Interaction (activity) record."""

    __tablename__ = "interactions"

    interaction_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    opportunity_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    company_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    interaction_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    event_type: Mapped[str | None] = mapped_column(String(50), nullable=True)
    event_title: Mapped[str | None] = mapped_column(String(300), nullable=True)
    content_summary: Mapped[str | None] = mapped_column(Text, nullable=True)
    recorder: Mapped[str | None] = mapped_column(String(100), nullable=True)
    created_time: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=True
    )


class EventLogModel(AuditColumns, Base):
    """Event log. The SQL store is not partitioned; event_type is an ordinary column."""

    __tablename__ = "event_logs"

    event_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    event_type: Mapped[str | None] = mapped_column(String(50), nullable=True)
    event_name: Mapped[str | None] = mapped_column(String(300), nullable=True)
    event_content: Mapped[str | None] = mapped_column(Text, nullable=True)
    opportunity_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    company_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)


class AnnouncementModel(AuditColumns, Base):
    """Bulletin-board announcement."""

    __tablename__ = "announcements"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    title: Mapped[str | None] = mapped_column(String(300), nullable=True)
    content: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str | None] = mapped_column(String(20), nullable=True)
    is_pinned: Mapped[bool] = mapped_column(Boolean, default=False, server_default=false())
