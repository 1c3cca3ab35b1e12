"""GridCast — Layout & Ad Record Models.

Records are owned by the persistence layer; these models are the in-memory
copies the server and viewers pass around. Wire names are camelCase.
"""

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

# Zero-padded 24-hour clock, compared as plain strings
SCHEDULED_TIME_PATTERN = r"^([01]\d|2[0-3]):[0-5]\d$"


class RecordModel(BaseModel):
    """Base for records exchanged in camelCase."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_record(self) -> Dict[str, Any]:
        """Dump with wire (camelCase) names, dropping unset optionals."""
        return self.model_dump(by_alias=True, exclude_none=True)


class AdType(str, Enum):
    """Kinds of ad a cell can render."""

    TEXT = "Text"
    IMAGE = "Image"
    VIDEO = "Video"

    @classmethod
    def parse(cls, value: str) -> "AdType":
        """Accept any casing, e.g. ``"image"`` → ``AdType.IMAGE``."""
        return cls(value.strip().capitalize())


class AdContent(RecordModel):
    """Ad content: title, description and a media reference for Image/Video."""

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, extra="allow"
    )

    title: str = "Untitled"
    description: str = ""
    src: Optional[str] = None
    media_url: Optional[str] = None
    s3_key: Optional[str] = None
    s3_bucket: Optional[str] = None
    s3_region: Optional[str] = None


class Ad(RecordModel):
    """A single ad. ``created_at`` is written once, ``updated_at`` on every save."""

    ad_id: str
    type: AdType
    content: AdContent = Field(default_factory=AdContent)
    styles: Dict[str, Any] = Field(default_factory=dict)
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


class ScheduledAdAssignment(RecordModel):
    """One slot of a cell's daily programming."""

    scheduled_time: str = Field(pattern=SCHEDULED_TIME_PATTERN)
    ad_id: Optional[str] = None
    ad: Optional[Ad] = None


class GridItem(RecordModel):
    """One addressable region of a layout."""

    index: int
    row: int = Field(default=0, ge=0)
    column: int = Field(default=0, ge=0)
    row_span: int = Field(default=1, ge=1)
    col_span: int = Field(default=1, ge=1)
    hidden: bool = False
    scheduled_ads: List[ScheduledAdAssignment] = Field(default_factory=list)


class Layout(RecordModel):
    """A grid of cells shown on one screen."""

    layout_id: str
    name: Optional[str] = None
    rows: int = Field(gt=0)
    columns: int = Field(gt=0)
    grid_items: List[GridItem] = Field(default_factory=list)

    def ad_ids(self) -> List[str]:
        """Unique ad ids referenced by any cell, in first-seen order."""
        seen: Dict[str, None] = {}
        for item in self.grid_items:
            for assignment in item.scheduled_ads:
                if assignment.ad_id:
                    seen.setdefault(assignment.ad_id, None)
        return list(seen)
