"""Shared types for action executors."""

from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional

from models.workflow import BaseNodeConfig


@dataclass(frozen=True)
class Tenant:
    """The sales user a run executes for."""
    id: int
    basics_api_key: Optional[str] = None

    @classmethod
    def from_sales(cls, sales) -> "Tenant":
        return cls(id=sales.id, basics_api_key=sales.basics_api_key)

    @property
    def api_key(self) -> str:
        return self.basics_api_key or ""


# (config, context, tenant) -> partial context update
ActionExecutor = Callable[[BaseNodeConfig, Dict[str, Any], Tenant], Awaitable[Mapping[str, Any]]]
