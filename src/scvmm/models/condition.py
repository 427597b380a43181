"""Condition model used for progress reporting."""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field
from pydantic.alias_generators import to_camel


class ConditionType(str, Enum):
    """Conditions maintained on a machine record."""
    VM_CREATED = "VmCreated"
    VM_RUNNING = "VmRunning"
    READY = "Ready"


class ConditionSeverity(str, Enum):
    """Severity of a false condition."""
    INFO = "Info"
    WARNING = "Warning"
    ERROR = "Error"


SEVERITY_RANK = {
    ConditionSeverity.INFO: 1,
    ConditionSeverity.WARNING: 2,
    ConditionSeverity.ERROR: 3,
}


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(microsecond=0)


class Condition(BaseModel):
    """A named boolean fact with reason and severity."""
    type: ConditionType
    status: bool
    reason: str = Field(default="")
    severity: Optional[ConditionSeverity] = None
    message: str = Field(default="")
    last_transition_time: datetime = Field(default_factory=utcnow)

    class Config:
        """Pydantic config."""
        alias_generator = to_camel
        populate_by_name = True
        extra = "ignore"

    def same_state(self, other: "Condition") -> bool:
        """Compare everything except the transition time."""
        return (
            self.type == other.type
            and self.status == other.status
            and self.reason == other.reason
            and self.severity == other.severity
            and self.message == other.message
        )
