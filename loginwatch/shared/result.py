"""Result types for pipeline steps that must not raise.

Each step of login recording returns either ``Success(value=...)`` or
``Failure(error=StepError(...))``. The orchestrator collects the failures and
logs them once, so a broken collaborator degrades the record instead of
aborting it.
"""

from dataclasses import dataclass
from typing import Generic, TypeVar

T = TypeVar("T")
E = TypeVar("E")


@dataclass(frozen=True, slots=True, kw_only=True)
class Success(Generic[T]):
    value: T


@dataclass(frozen=True, slots=True, kw_only=True)
class Failure(Generic[E]):
    error: E


@dataclass(frozen=True, slots=True)
class StepError:
    """A recovered failure inside one pipeline component."""

    component: str  # "geo" | "device" | "detection" | "persistence" | "alert" | "cache"
    message: str
    category: str = "upstream_unavailable"

    def as_log_dict(self) -> dict[str, str]:
        return {"component": self.component, "category": self.category, "message": self.message}
