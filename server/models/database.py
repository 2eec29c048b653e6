"""SQLModel database models and tables."""

from datetime import datetime, timezone
from typing import Optional, Dict, Any, List
from sqlmodel import SQLModel, Field, Column, DateTime, JSON
from sqlalchemy import func


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Sales(SQLModel, table=True):
    """A CRM user; the tenant that owns rules, runs and credentials."""

    __tablename__ = "sales"

    id: Optional[int] = Field(default=None, primary_key=True)
    first_name: str = Field(max_length=255)
    last_name: str = Field(max_length=255)
    email: str = Field(max_length=255)
    basics_api_key: Optional[str] = Field(default=None, max_length=255)
    disabled: bool = Field(default=False)


class AutomationRule(SQLModel, table=True):
    """Automation rule with its embedded workflow definition."""

    __tablename__ = "automation_rules"

    id: Optional[int] = Field(default=None, primary_key=True)
    sales_id: int = Field(foreign_key="sales.id", index=True)
    name: str = Field(max_length=255)
    enabled: bool = Field(default=True, index=True)
    workflow_definition: Dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON))
    last_run_at: Optional[datetime] = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    last_run_status: Optional[str] = Field(default=None, max_length=32)
    created_at: datetime = Field(
        default_factory=utcnow,
        sa_column=Column(DateTime(timezone=True), server_default=func.now())
    )
    updated_at: datetime = Field(
        default_factory=utcnow,
        sa_column=Column(DateTime(timezone=True), onupdate=func.now())
    )


class AutomationRun(SQLModel, table=True):
    """One execution attempt of a rule's workflow."""

    __tablename__ = "automation_runs"

    id: Optional[int] = Field(default=None, primary_key=True)
    rule_id: int = Field(foreign_key="automation_rules.id", index=True)
    sales_id: int = Field(foreign_key="sales.id")
    status: str = Field(default="running", max_length=32)  # running | success | error
    result: Optional[Dict[str, Any]] = Field(default=None, sa_column=Column(JSON))
    error: Optional[str] = Field(default=None)
    started_at: datetime = Field(
        default_factory=utcnow,
        sa_column=Column(DateTime(timezone=True), nullable=False)
    )
    finished_at: Optional[datetime] = Field(default=None, sa_column=Column(DateTime(timezone=True)))


class AutomationJob(SQLModel, table=True):
    """A queued job, kept until a worker has handled it."""

    __tablename__ = "automation_jobs"

    id: str = Field(primary_key=True, max_length=36)
    queue: str = Field(max_length=255, index=True)
    payload: Dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON))
    status: str = Field(default="pending", max_length=32, index=True)  # pending | done | failed | dropped
    attempts: int = Field(default=0)
    last_error: Optional[str] = Field(default=None)
    created_at: datetime = Field(
        default_factory=utcnow,
        sa_column=Column(DateTime(timezone=True), nullable=False)
    )
    updated_at: Optional[datetime] = Field(default=None, sa_column=Column(DateTime(timezone=True)))


# =============================================================================
# CRM records written by action_crm and the AI agent tools
# =============================================================================

class Contact(SQLModel, table=True):
    __tablename__ = "contacts"

    id: Optional[int] = Field(default=None, primary_key=True)
    sales_id: Optional[int] = Field(default=None, foreign_key="sales.id", index=True)
    first_name: Optional[str] = Field(default=None, max_length=255)
    last_name: Optional[str] = Field(default=None, max_length=255)
    email: Optional[str] = Field(default=None)
    title: Optional[str] = Field(default=None, max_length=255)
    status: Optional[str] = Field(default=None, max_length=64)
    background: Optional[str] = Field(default=None)
    company_id: Optional[int] = Field(default=None)
    first_seen: Optional[datetime] = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    last_seen: Optional[datetime] = Field(default=None, sa_column=Column(DateTime(timezone=True)))


class Task(SQLModel, table=True):
    __tablename__ = "tasks"

    id: Optional[int] = Field(default=None, primary_key=True)
    contact_id: int = Field(foreign_key="contacts.id", index=True)
    sales_id: Optional[int] = Field(default=None, foreign_key="sales.id", index=True)
    type: Optional[str] = Field(default=None, max_length=64)
    text: Optional[str] = Field(default=None)
    due_date: Optional[datetime] = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    done_date: Optional[datetime] = Field(default=None, sa_column=Column(DateTime(timezone=True)))


class Deal(SQLModel, table=True):
    __tablename__ = "deals"

    id: Optional[int] = Field(default=None, primary_key=True)
    sales_id: Optional[int] = Field(default=None, foreign_key="sales.id", index=True)
    name: str = Field(max_length=255)
    company_id: Optional[int] = Field(default=None)
    contact_ids: Optional[List[int]] = Field(default=None, sa_column=Column(JSON))
    category: Optional[str] = Field(default=None, max_length=128)
    stage: str = Field(default="opportunity", max_length=128)
    description: Optional[str] = Field(default=None)
    amount: Optional[int] = Field(default=None)
    created_at: datetime = Field(
        default_factory=utcnow,
        sa_column=Column(DateTime(timezone=True), server_default=func.now())
    )
    updated_at: datetime = Field(
        default_factory=utcnow,
        sa_column=Column(DateTime(timezone=True), onupdate=func.now())
    )


class ContactNote(SQLModel, table=True):
    __tablename__ = "contact_notes"

    id: Optional[int] = Field(default=None, primary_key=True)
    contact_id: int = Field(foreign_key="contacts.id", index=True)
    sales_id: Optional[int] = Field(default=None, foreign_key="sales.id")
    text: Optional[str] = Field(default=None)
    status: Optional[str] = Field(default=None, max_length=64)
    date: datetime = Field(default_factory=utcnow, sa_column=Column(DateTime(timezone=True)))


class DealNote(SQLModel, table=True):
    __tablename__ = "deal_notes"

    id: Optional[int] = Field(default=None, primary_key=True)
    deal_id: int = Field(foreign_key="deals.id", index=True)
    sales_id: Optional[int] = Field(default=None, foreign_key="sales.id")
    type: Optional[str] = Field(default=None, max_length=64)
    text: Optional[str] = Field(default=None)
    date: datetime = Field(default_factory=utcnow, sa_column=Column(DateTime(timezone=True)))
