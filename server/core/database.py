"""Modern async database service with SQLModel and SQLAlchemy 2.0."""

import logging
from datetime import datetime
from typing import Dict, Any, List, Optional, Type, TypeVar
from contextlib import asynccontextmanager

from sqlmodel import SQLModel, select, or_
from sqlalchemy import update
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker

from core.config import Settings
from core.logging import get_logger
from constants import (
    RUN_STATUS_RUNNING,
    JOB_STATUS_PENDING,
    JOB_STATUS_DONE,
    JOB_STATUS_FAILED,
    JOB_STATUS_DROPPED,
)
from models.database import (
    utcnow,
    Sales,
    AutomationRule,
    AutomationRun,
    AutomationJob,
    Contact,
    Task,
    Deal,
    ContactNote,
    DealNote,
)

logger = get_logger(__name__)

RecordT = TypeVar("RecordT", bound=SQLModel)


class Database:
    """Async database service with SQLModel."""

    def __init__(self, settings: Settings):
        self.settings = settings
        self.engine = None
        self.async_session = None

    async def startup(self):
        """Initialize database connection and create tables."""
        try:
            logging.getLogger("aiosqlite").setLevel(logging.WARNING)
            logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
            logging.getLogger("sqlalchemy.pool").setLevel(logging.WARNING)

            engine_kwargs: Dict[str, Any] = {"echo": self.settings.database_echo}
            # SQLite engines use a static/null pool that rejects sizing arguments
            if not self.settings.is_sqlite:
                engine_kwargs["pool_size"] = self.settings.database_pool_size
                engine_kwargs["max_overflow"] = self.settings.database_max_overflow

            self.engine = create_async_engine(self.settings.database_url, **engine_kwargs)

            self.async_session = async_sessionmaker(
                bind=self.engine,
                class_=AsyncSession,
                expire_on_commit=False
            )

            async with self.engine.begin() as conn:
                await conn.run_sync(SQLModel.metadata.create_all)

            logger.info("Database initialized successfully")

        except Exception as e:
            logger.error("Database startup failed", error=str(e))
            raise

    async def shutdown(self):
        """Close database connections."""
        if self.engine:
            await self.engine.dispose()
            self.engine = None
            self.async_session = None
            logger.info("Database connections closed")

    @asynccontextmanager
    async def get_session(self):
        """Get async database session."""
        if not self.async_session:
            raise RuntimeError("Database not initialized")

        async with self.async_session() as session:
            try:
                yield session
            except Exception:
                await session.rollback()
                raise
            finally:
                await session.close()

    async def _insert(self, record: RecordT) -> RecordT:
        async with self.get_session() as session:
            session.add(record)
            await session.commit()
            await session.refresh(record)
            return record

    async def _get_owned(self, model: Type[RecordT], record_id: int,
                         sales_id: Optional[int]) -> Optional[RecordT]:
        async with self.get_session() as session:
            record = await session.get(model, record_id)
            if record is None:
                return None
            if sales_id is not None and getattr(record, "sales_id", None) != sales_id:
                return None
            return record

    async def _update_owned(self, model: Type[RecordT], record_id: int,
                            sales_id: Optional[int], fields: Dict[str, Any]) -> Optional[RecordT]:
        async with self.get_session() as session:
            record = await session.get(model, record_id)
            if record is None:
                return None
            if sales_id is not None and getattr(record, "sales_id", None) != sales_id:
                return None
            for key, value in fields.items():
                setattr(record, key, value)
            session.add(record)
            await session.commit()
            await session.refresh(record)
            return record

    # ============================================================================
    # Sales (tenants)
    # ============================================================================

    async def create_sales(self, first_name: str, last_name: str, email: str,
                           basics_api_key: Optional[str] = None, **fields) -> Sales:
        return await self._insert(Sales(
            first_name=first_name,
            last_name=last_name,
            email=email,
            basics_api_key=basics_api_key,
            **fields
        ))

    async def get_sales(self, sales_id: int) -> Optional[Sales]:
        async with self.get_session() as session:
            return await session.get(Sales, sales_id)

    # ============================================================================
    # Automation Rules
    # ============================================================================

    async def create_rule(self, sales_id: int, name: str, workflow_definition: Dict[str, Any],
                          enabled: bool = True) -> AutomationRule:
        """Insert a rule. Callers must reload the rule's schedule afterwards."""
        return await self._insert(AutomationRule(
            sales_id=sales_id,
            name=name,
            workflow_definition=workflow_definition,
            enabled=enabled,
        ))

    async def get_rule(self, rule_id: int, sales_id: Optional[int] = None) -> Optional[AutomationRule]:
        """Get a rule, optionally only if it belongs to ``sales_id``."""
        return await self._get_owned(AutomationRule, rule_id, sales_id)

    async def update_rule(self, rule_id: int, sales_id: Optional[int] = None,
                          **fields) -> Optional[AutomationRule]:
        fields.setdefault("updated_at", utcnow())
        return await self._update_owned(AutomationRule, rule_id, sales_id, fields)

    async def delete_rule(self, rule_id: int, sales_id: Optional[int] = None) -> bool:
        async with self.get_session() as session:
            rule = await session.get(AutomationRule, rule_id)
            if rule is None or (sales_id is not None and rule.sales_id != sales_id):
                return False
            # Runs cascade with their rule
            runs = await session.execute(select(AutomationRun).where(AutomationRun.rule_id == rule_id))
            for run in runs.scalars().all():
                await session.delete(run)
            await session.delete(rule)
            await session.commit()
            return True

    async def get_enabled_rules(self, sales_id: Optional[int] = None) -> List[AutomationRule]:
        """Enabled rules, for one tenant or for all tenants."""
        async with self.get_session() as session:
            stmt = select(AutomationRule).where(AutomationRule.enabled == True)  # noqa: E712
            if sales_id is not None:
                stmt = stmt.where(AutomationRule.sales_id == sales_id)
            result = await session.execute(stmt.order_by(AutomationRule.id))
            return list(result.scalars().all())

    async def set_rule_run_status(self, rule_id: int, status: str,
                                  run_at: Optional[datetime] = None) -> None:
        """Record the outcome of the latest run; ``last_run_at`` only when given."""
        values: Dict[str, Any] = {"last_run_status": status}
        if run_at is not None:
            values["last_run_at"] = run_at
        async with self.get_session() as session:
            await session.execute(
                update(AutomationRule).where(AutomationRule.id == rule_id).values(**values)
            )
            await session.commit()

    # ============================================================================
    # Automation Runs
    # ============================================================================

    async def create_run(self, rule_id: int, sales_id: int) -> AutomationRun:
        return await self._insert(AutomationRun(
            rule_id=rule_id,
            sales_id=sales_id,
            status=RUN_STATUS_RUNNING,
            started_at=utcnow(),
        ))

    async def get_run(self, run_id: int) -> Optional[AutomationRun]:
        async with self.get_session() as session:
            return await session.get(AutomationRun, run_id)

    async def finish_run(self, run_id: int, status: str, result: Optional[Dict[str, Any]],
                         error: Optional[str] = None) -> bool:
        """Move a running run to a terminal status.

        The update only matches rows still ``running``; returns False when
        the run was already finished (or does not exist).
        """
        async with self.get_session() as session:
            outcome = await session.execute(
                update(AutomationRun)
                .where(AutomationRun.id == run_id, AutomationRun.status == RUN_STATUS_RUNNING)
                .values(status=status, result=result, error=error, finished_at=utcnow())
            )
            await session.commit()
            return outcome.rowcount == 1

    async def list_runs(self, rule_id: int, limit: int = 20) -> List[AutomationRun]:
        """Runs of a rule, newest first."""
        async with self.get_session() as session:
            stmt = (
                select(AutomationRun)
                .where(AutomationRun.rule_id == rule_id)
                .order_by(AutomationRun.started_at.desc(), AutomationRun.id.desc())
                .limit(limit)
            )
            result = await session.execute(stmt)
            return list(result.scalars().all())

    # ============================================================================
    # Automation Jobs
    # ============================================================================

    async def create_job(self, job_id: str, queue: str, payload: Dict[str, Any],
                         attempts: int = 0) -> AutomationJob:
        return await self._insert(AutomationJob(
            id=job_id,
            queue=queue,
            payload=payload,
            status=JOB_STATUS_PENDING,
            attempts=attempts,
        ))

    async def get_job(self, job_id: str) -> Optional[AutomationJob]:
        async with self.get_session() as session:
            return await session.get(AutomationJob, job_id)

    async def get_pending_jobs(self) -> List[AutomationJob]:
        """Jobs not yet handled, oldest first."""
        async with self.get_session() as session:
            stmt = (
                select(AutomationJob)
                .where(AutomationJob.status == JOB_STATUS_PENDING)
                .order_by(AutomationJob.created_at, AutomationJob.id)
            )
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def _set_job(self, job_id: str, **values) -> None:
        async with self.get_session() as session:
            await session.execute(
                update(AutomationJob)
                .where(AutomationJob.id == job_id)
                .values(updated_at=utcnow(), **values)
            )
            await session.commit()

    async def complete_job(self, job_id: str) -> None:
        await self._set_job(job_id, status=JOB_STATUS_DONE)

    async def record_job_failure(self, job_id: str, attempts: int, error: str,
                                 final: bool = False) -> None:
        """Store a failed attempt; ``final`` gives the job up."""
        values: Dict[str, Any] = {"attempts": attempts, "last_error": error[:2000]}
        if final:
            values["status"] = JOB_STATUS_FAILED
        await self._set_job(job_id, **values)

    async def drop_jobs(self, job_ids: List[str]) -> None:
        if not job_ids:
            return
        async with self.get_session() as session:
            await session.execute(
                update(AutomationJob)
                .where(AutomationJob.id.in_(job_ids), AutomationJob.status == JOB_STATUS_PENDING)
                .values(status=JOB_STATUS_DROPPED, updated_at=utcnow())
            )
            await session.commit()

    # ============================================================================
    # CRM Records
    # ============================================================================

    async def create_contact(self, sales_id: int, **fields) -> Contact:
        return await self._insert(Contact(sales_id=sales_id, **fields))

    async def get_contact(self, contact_id: int, sales_id: Optional[int] = None) -> Optional[Contact]:
        return await self._get_owned(Contact, contact_id, sales_id)

    async def update_contact(self, contact_id: int, sales_id: int, **fields) -> Optional[Contact]:
        return await self._update_owned(Contact, contact_id, sales_id, fields)

    async def search_contacts(self, sales_id: int, query: str, limit: int = 10) -> List[Contact]:
        """Contacts whose first name, last name or email contains ``query``."""
        pattern = f"%{query}%"
        async with self.get_session() as session:
            stmt = (
                select(Contact)
                .where(Contact.sales_id == sales_id)
                .where(or_(
                    Contact.first_name.like(pattern),
                    Contact.last_name.like(pattern),
                    Contact.email.like(pattern),
                ))
                .limit(limit)
            )
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def create_task(self, sales_id: int, contact_id: int, **fields) -> Task:
        return await self._insert(Task(sales_id=sales_id, contact_id=contact_id, **fields))

    async def update_task(self, task_id: int, sales_id: int, **fields) -> Optional[Task]:
        return await self._update_owned(Task, task_id, sales_id, fields)

    async def create_deal(self, sales_id: int, name: str, **fields) -> Deal:
        return await self._insert(Deal(sales_id=sales_id, name=name, **fields))

    async def get_deal(self, deal_id: int, sales_id: Optional[int] = None) -> Optional[Deal]:
        return await self._get_owned(Deal, deal_id, sales_id)

    async def update_deal(self, deal_id: int, sales_id: int, **fields) -> Optional[Deal]:
        fields.setdefault("updated_at", utcnow())
        return await self._update_owned(Deal, deal_id, sales_id, fields)

    async def search_deals(self, sales_id: int, query: str, limit: int = 10) -> List[Deal]:
        async with self.get_session() as session:
            stmt = (
                select(Deal)
                .where(Deal.sales_id == sales_id)
                .where(Deal.name.like(f"%{query}%"))
                .limit(limit)
            )
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def create_contact_note(self, sales_id: int, contact_id: int, **fields) -> ContactNote:
        return await self._insert(ContactNote(sales_id=sales_id, contact_id=contact_id, **fields))

    async def create_deal_note(self, sales_id: int, deal_id: int, **fields) -> DealNote:
        return await self._insert(DealNote(sales_id=sales_id, deal_id=deal_id, **fields))
