"""Base Model Module."""

import json
from datetime import UTC, datetime
from typing import Any, Literal

from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.sql.sqltypes import DateTime

from src.exceptions import UnsupportedModeError

__all__ = ["Base", "TimestampMixin", "utcnow"]


def utcnow() -> datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.now(UTC)


def generic_serialize(obj: Any) -> Any:
    """Convert a value that ``json`` cannot encode natively.

    Args:
        obj: The object to convert.

    Returns:
        A JSON-serializable representation of the object.
    """
    if obj is None:
        return None
    if isinstance(obj, datetime):
        return obj.isoformat()
    return str(obj)


class Base(DeclarativeBase):
    """Base class for all database models."""

    @classmethod
    def column_names(cls) -> frozenset[str]:
        """Names of the mapped table columns of this model."""
        return frozenset(column.key for column in cls.__table__.columns)

    @classmethod
    def filter_columns(cls, values: dict[str, Any]) -> dict[str, Any]:
        """Drop keys that are not columns of this model.

        Args:
            values (dict[str, Any]): Candidate column values

        Returns:
            dict[str, Any]: Only the entries that map to a column
        """
        columns = cls.column_names()
        return {k: v for k, v in values.items() if k in columns}

    def model_dump(
        self,
        *,
        mode: Literal["json", "python"] | str = "python",
        exclude_none: bool = False,
    ) -> dict[str, Any]:
        """Dump the column values to a dictionary.

        Imitates the behavior of Pydantic's model_dump method.
        """
        result = {
            key: getattr(self, key)
            for key in self.column_names()
            if not (exclude_none and getattr(self, key) is None)
        }

        if mode == "python":
            return result
        if mode == "json":
            return json.loads(json.dumps(result, default=generic_serialize))
        raise UnsupportedModeError(f"Unsupported mode: {mode}")


class TimestampMixin:
    """Adds ``created_at``/``updated_at`` bookkeeping columns."""

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, onupdate=utcnow
    )
