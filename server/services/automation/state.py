"""Automation state snapshots: step traces, dispatch results, schedules."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional


@dataclass
class StepTrace:
    """Trace of one executed (or skipped) node, stored under ``_steps``."""
    node_id: str
    node_type: str
    started_at: datetime
    finished_at: Optional[datetime] = None
    output_key: Optional[str] = None
    output: Any = None
    error: Optional[str] = None
    skipped: bool = False

    @property
    def duration_ms(self) -> Optional[int]:
        if self.finished_at is None:
            return None
        return int((self.finished_at - self.started_at).total_seconds() * 1000)

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "nodeId": self.node_id,
            "type": self.node_type,
            "startedAt": self.started_at.isoformat(),
            "finishedAt": self.finished_at.isoformat() if self.finished_at else None,
            "durationMs": self.duration_ms,
        }
        if self.output_key:
            d["outputKey"] = self.output_key
            d["output"] = self.output
        if self.error is not None:
            d["error"] = self.error
        if self.skipped:
            d["skipped"] = True
        return d


@dataclass
class DispatchResult:
    """Outcome of a fire_event call. ``error`` is set instead of raising."""
    event_name: str
    matched_rule_ids: List[int] = field(default_factory=list)
    job_ids: List[str] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_dict(self) -> Dict[str, Any]:
        d = {
            "event": self.event_name,
            "matched_rule_ids": self.matched_rule_ids,
            "job_ids": self.job_ids,
        }
        if self.error:
            d["error"] = self.error
        return d


@dataclass
class ScheduleInfo:
    """Cron registration held for a rule."""
    rule_id: int
    schedule_name: str
    cron: str
    timezone: str
    node_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "rule_id": self.rule_id,
            "schedule_name": self.schedule_name,
            "cron": self.cron,
            "timezone": self.timezone,
            "node_id": self.node_id,
        }
