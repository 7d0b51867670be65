"""Read-only SQLAlchemy mappings of the upstream CRM tables.

The tables are created and written by the CRM application; this service only
reads them. Python attribute names are canonical, while the column names keep
the upstream spelling (``SalesAgentID``, ``sales_team``, ``agentId``,
``monthlyTarget``).
"""

from __future__ import annotations

from datetime import date, datetime, time
from decimal import Decimal

from sqlalchemy import Boolean, Date, DateTime, Integer, Numeric, String, Text, Time
from sqlalchemy.orm import Mapped, mapped_column

from src.app.core.database import CRMBase


class UserRow(CRMBase):
    """Dashboard users. Password columns are deliberately not mapped."""

    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(50), primary_key=True)
    username: Mapped[str | None] = mapped_column(String(100))
    name: Mapped[str | None] = mapped_column(String(100))
    email: Mapped[str | None] = mapped_column(String(255))
    role: Mapped[str | None] = mapped_column(String(20))
    team: Mapped[str | None] = mapped_column(String(100))
    managed_team: Mapped[str | None] = mapped_column("managedTeam", String(100))
    created_at: Mapped[datetime | None] = mapped_column(DateTime)


class DealRow(CRMBase):
    __tablename__ = "deals"

    id: Mapped[str] = mapped_column(String(50), primary_key=True)
    deal_id: Mapped[str | None] = mapped_column("DealID", String(50))
    customer_name: Mapped[str | None] = mapped_column(String(255))
    customer_email: Mapped[str | None] = mapped_column("email", String(255))
    customer_phone: Mapped[str | None] = mapped_column("phone_number", String(20))
    amount: Mapped[Decimal | None] = mapped_column("amount_paid", Numeric(10, 2))
    service_tier: Mapped[str | None] = mapped_column(String(50))
    program_type: Mapped[str | None] = mapped_column("product_type", String(100))
    sales_agent: Mapped[str | None] = mapped_column(String(100))
    closing_agent: Mapped[str | None] = mapped_column(String(100))
    team: Mapped[str | None] = mapped_column("sales_team", String(100))
    sales_agent_id: Mapped[str | None] = mapped_column("SalesAgentID", String(50))
    closing_agent_id: Mapped[str | None] = mapped_column("ClosingAgentID", String(50))
    stage: Mapped[str | None] = mapped_column(String(50))
    status: Mapped[str | None] = mapped_column(String(50))
    signup_date: Mapped[date | None] = mapped_column(Date)
    duration_months: Mapped[int | None] = mapped_column(Integer)
    created_at: Mapped[datetime | None] = mapped_column(DateTime)
    updated_at: Mapped[datetime | None] = mapped_column(DateTime)


class CallbackRow(CRMBase):
    __tablename__ = "callbacks"

    id: Mapped[str] = mapped_column(String(50), primary_key=True)
    customer_name: Mapped[str | None] = mapped_column(String(255))
    customer_phone: Mapped[str | None] = mapped_column("phone_number", String(20))
    customer_email: Mapped[str | None] = mapped_column("email", String(255))
    sales_agent_name: Mapped[str | None] = mapped_column("sales_agent", String(100))
    team: Mapped[str | None] = mapped_column("sales_team", String(100))
    sales_agent_id: Mapped[str | None] = mapped_column("SalesAgentID", String(50))
    scheduled_date: Mapped[date | None] = mapped_column(Date)
    scheduled_time: Mapped[time | None] = mapped_column(Time)
    notes: Mapped[str | None] = mapped_column("callback_notes", Text)
    reason: Mapped[str | None] = mapped_column("callback_reason", String(255))
    status: Mapped[str | None] = mapped_column(String(20))
    converted_to_deal: Mapped[bool | None] = mapped_column(Boolean)
    deal_id: Mapped[str | None] = mapped_column(String(50))
    created_by_name: Mapped[str | None] = mapped_column("created_by", String(100))
    created_by_id: Mapped[str | None] = mapped_column(String(50))
    created_at: Mapped[datetime | None] = mapped_column(DateTime)
    updated_at: Mapped[datetime | None] = mapped_column(DateTime)


class TargetRow(CRMBase):
    """Per-agent targets. The upstream table has no team column."""

    __tablename__ = "targets"

    id: Mapped[str] = mapped_column(String(255), primary_key=True)
    agent_id: Mapped[str | None] = mapped_column("agentId", String(255))
    agent_name: Mapped[str | None] = mapped_column("agentName", String(255))
    manager_id: Mapped[str | None] = mapped_column("managerId", String(255))
    manager_name: Mapped[str | None] = mapped_column("managerName", String(255))
    target_amount: Mapped[Decimal | None] = mapped_column("monthlyTarget", Numeric(15, 2))
    target_deals: Mapped[int | None] = mapped_column("dealsTarget", Integer)
    period: Mapped[str | None] = mapped_column(String(50))
    type: Mapped[str | None] = mapped_column(String(50))
    description: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime | None] = mapped_column(DateTime)
    updated_at: Mapped[datetime | None] = mapped_column(DateTime)
