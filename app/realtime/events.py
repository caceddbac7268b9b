"""Row change events carried by the realtime feed."""

from collections.abc import Mapping
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic_core import to_jsonable_python

from app.models.base import utc_now


class ChangeType(str, Enum):
    """Kind of row change."""

    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"


class ChangeEvent(BaseModel):
    """
    One committed row change.

    Row images are stored in their JSON form (UUIDs, dates and times as
    strings) so an event reads the same whether it was dispatched in-process
    or came back from Redis.
    """

    model_config = ConfigDict(populate_by_name=True)

    table: str
    event_type: ChangeType = Field(..., alias="eventType")
    new: dict[str, Any] | None = None
    old: dict[str, Any] | None = None
    committed_at: datetime = Field(default_factory=utc_now, alias="committedAt")

    @field_validator("new", "old", mode="before")
    @classmethod
    def to_json_row(cls, v: Any) -> dict[str, Any] | None:
        """Accept SQLAlchemy row mappings and plain dicts alike."""
        if v is None:
            return None
        if hasattr(v, "_mapping"):
            v = v._mapping
        return to_jsonable_python(dict(v))

    @classmethod
    def insert(cls, table: str, row: Mapping[str, Any] | Any) -> "ChangeEvent":
        return cls(table=table, event_type=ChangeType.INSERT, new=row)

    @classmethod
    def update(
        cls,
        table: str,
        row: Mapping[str, Any] | Any,
        old: Mapping[str, Any] | Any | None = None,
    ) -> "ChangeEvent":
        return cls(table=table, event_type=ChangeType.UPDATE, new=row, old=old)

    @classmethod
    def delete(cls, table: str, row: Mapping[str, Any] | Any) -> "ChangeEvent":
        return cls(table=table, event_type=ChangeType.DELETE, old=row)

    @property
    def row(self) -> dict[str, Any]:
        """The most recent image of the row."""
        return self.new if self.new is not None else (self.old or {})

    def matches(self, column: str | None, value: str | None) -> bool:
        """
        Check an equality filter against the row.

        Deletes are matched on the old image, everything else on the new one.
        """
        if column is None:
            return True
        current = self.row.get(column)
        return current is not None and str(current) == str(value)

    def to_json(self) -> str:
        """Wire form published on Redis."""
        return self.model_dump_json(by_alias=True)

    @classmethod
    def from_json(cls, raw: str | bytes) -> "ChangeEvent":
        return cls.model_validate_json(raw)
