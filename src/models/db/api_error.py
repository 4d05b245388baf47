"""API Error Database Model."""

from datetime import datetime
from enum import StrEnum

from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.schema import Index
from sqlalchemy.sql.sqltypes import DateTime, Enum, Integer, String

from src.models.db.base import Base, utcnow

__all__ = ["ApiError", "ApiErrorType"]


class ApiErrorType(StrEnum):
    """Operator-facing classification of an external API failure."""

    RATE_LIMIT = "rate_limit"
    AUTH = "auth"
    NOT_FOUND = "not_found"
    OUTAGE = "outage"


class ApiError(Base):
    """Model for an external API failure surfaced to the operator."""

    __tablename__ = "api_errors"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    provider: Mapped[str] = mapped_column(String)
    error_type: Mapped[ApiErrorType] = mapped_column(Enum(ApiErrorType))
    error_code: Mapped[str | None] = mapped_column(String, nullable=True)
    http_status: Mapped[int] = mapped_column(Integer)
    job_id: Mapped[str | None] = mapped_column(String, nullable=True)
    error_message: Mapped[str | None] = mapped_column(String, nullable=True)
    reset_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    action_url: Mapped[str | None] = mapped_column(String, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    dismissed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    __table_args__ = (
        Index(
            "ix_api_errors_similar",
            "provider",
            "error_type",
            "http_status",
            "created_at",
        ),
    )
