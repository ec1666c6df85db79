"""CRM SQL store: companies, contacts, opportunities, links, interactions, event logs, announcements.

Revision ID: 001_crm_tables
Revises:
Create Date: 2026-02-04

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "001_crm_tables"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _audit_columns() -> list[sa.Column]:
    return [
        sa.Column("created_time", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_by", sa.String(100), nullable=True),
        sa.Column("updated_by", sa.String(100), nullable=True),
    ]


def upgrade() -> None:
    op.create_table(
        "companies",
        sa.Column("company_id", sa.String(64), primary_key=True),
        sa.Column("company_name", sa.String(300), nullable=False),
        sa.Column("phone", sa.String(100), nullable=True),
        sa.Column("address", sa.String(500), nullable=True),
        sa.Column("city", sa.String(50), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("company_type", sa.String(50), nullable=True),
        sa.Column("customer_stage", sa.String(50), nullable=True),
        sa.Column("interaction_rating", sa.String(20), nullable=True),
        *_audit_columns(),
    )
    op.create_index("ix_companies_company_name", "companies", ["company_name"])

    op.create_table(
        "contacts",
        sa.Column("contact_id", sa.String(64), primary_key=True),
        sa.Column("source_id", sa.String(64), nullable=True),
        sa.Column("name", sa.String(200), nullable=True),
        sa.Column("company_id", sa.String(64), nullable=True),
        sa.Column("department", sa.String(200), nullable=True),
        sa.Column("job_title", sa.String(200), nullable=True),
        sa.Column("mobile", sa.String(50), nullable=True),
        sa.Column("phone", sa.String(50), nullable=True),
        sa.Column("email", sa.String(320), nullable=True),
        *_audit_columns(),
    )
    op.create_index("ix_contacts_company_id", "contacts", ["company_id"])

    op.create_table(
        "opportunities",
        sa.Column("opportunity_id", sa.String(64), primary_key=True),
        sa.Column("opportunity_name", sa.String(300), nullable=True),
        sa.Column("customer_company", sa.String(300), nullable=True),
        sa.Column("main_contact", sa.String(200), nullable=True),
        sa.Column("opportunity_type", sa.String(50), nullable=True),
        sa.Column("current_stage", sa.String(50), nullable=True),
        sa.Column("current_status", sa.String(50), nullable=True),
        sa.Column("assignee", sa.String(100), nullable=True),
        sa.Column("opportunity_value", sa.String(50), nullable=True),
        sa.Column("probability", sa.String(10), nullable=True),
        sa.Column("expected_close_date", sa.String(30), nullable=True),
        sa.Column("parent_opportunity_id", sa.String(64), nullable=True),
        *_audit_columns(),
    )

    op.create_table(
        "opportunity_contact_links",
        sa.Column("link_id", sa.String(64), primary_key=True),
        sa.Column("opportunity_id", sa.String(64), nullable=False),
        sa.Column("contact_id", sa.String(64), nullable=False),
        sa.Column("status", sa.String(20), nullable=True),
        sa.Column("created_time", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index(
        "ix_opportunity_contact_links_opportunity_id",
        "opportunity_contact_links",
        ["opportunity_id"],
    )

    op.create_table(
        "interactions",
        sa.Column("interaction_id", sa.String(64), primary_key=True),
        sa.Column("opportunity_id", sa.String(64), nullable=True),
        sa.Column("company_id", sa.String(64), nullable=True),
        sa.Column("interaction_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("event_type", sa.String(50), nullable=True),
        sa.Column("event_title", sa.String(300), nullable=True),
        sa.Column("content_summary", sa.Text(), nullable=True),
        sa.Column("recorder", sa.String(100), nullable=True),
        sa.Column("created_time", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_interactions_opportunity_id", "interactions", ["opportunity_id"])
    op.create_index("ix_interactions_company_id", "interactions", ["company_id"])

    op.create_table(
        "event_logs",
        sa.Column("event_id", sa.String(64), primary_key=True),
        sa.Column("event_type", sa.String(50), nullable=True),
        sa.Column("event_name", sa.String(300), nullable=True),
        sa.Column("event_content", sa.Text(), nullable=True),
        sa.Column("opportunity_id", sa.String(64), nullable=True),
        sa.Column("company_id", sa.String(64), nullable=True),
        *_audit_columns(),
    )
    op.create_index("ix_event_logs_opportunity_id", "event_logs", ["opportunity_id"])
    op.create_index("ix_event_logs_company_id", "event_logs", ["company_id"])

    op.create_table(
        "announcements",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("title", sa.String(300), nullable=True),
        sa.Column("content", sa.Text(), nullable=True),
        sa.Column("status", sa.String(20), nullable=True),
        sa.Column("is_pinned", sa.Boolean(), server_default=sa.false(), nullable=False),
        *_audit_columns(),
    )


def downgrade() -> None:
    op.drop_table("announcements")
    op.drop_table("event_logs")
    op.drop_table("interactions")
    op.drop_table("opportunity_contact_links")
    op.drop_table("opportunities")
    op.drop_table("contacts")
    op.drop_table("companies")
