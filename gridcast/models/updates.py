"""GridCast — Change & Update Models.

A ``ChangeEvent`` is one normalised row change read from a table's change
stream. A ``ClassifiedUpdate`` is what the broadcast hub fans out to viewers.
Both are immutable and never persisted.
"""

from enum import Enum
from typing import Any, Dict

from pydantic import BaseModel, ConfigDict, Field


class EventKind(str, Enum):
    """Row-level change kinds reported by a change stream."""

    INSERT = "INSERT"
    MODIFY = "MODIFY"
    REMOVE = "REMOVE"


class UpdateKind(str, Enum):
    """Semantic update types pushed to viewers."""

    LAYOUT = "layoutUpdate"
    GRID_ITEM = "gridItemUpdate"
    SCHEDULED_AD = "scheduledAdUpdate"
    AD = "adUpdate"
    UNKNOWN = "unknownUpdate"


class ChangeEvent(BaseModel):
    """A single change read from a table's stream."""

    model_config = ConfigDict(frozen=True)

    source_table: str
    event_kind: EventKind
    new_image: Dict[str, Any] = Field(default_factory=dict)

    @property
    def is_upsert(self) -> bool:
        """Inserts and modifications are propagated; removals are not."""
        return self.event_kind in (EventKind.INSERT, EventKind.MODIFY)


class ClassifiedUpdate(BaseModel):
    """A change tagged with its update kind and routing key."""

    model_config = ConfigDict(frozen=True)

    update_kind: UpdateKind
    routing_key: str = ""
    payload: Dict[str, Any] = Field(default_factory=dict)

    def to_message(self) -> Dict[str, Any]:
        """Outbound wire form: the full current record, never a diff."""
        return {"type": self.update_kind.value, "data": self.payload}
