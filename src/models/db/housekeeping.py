"""System Settings Model Module."""

from sqlalchemy.orm import Mapped, Session, mapped_column
from sqlalchemy.sql.sqltypes import String

from src.models.db.base import Base

__all__ = ["SystemSetting"]


class SystemSetting(Base):
    """Model for the system_settings table.

    Holds runtime values that are discovered or changed while the application is
    running, such as the detected MDBList supporter tier.
    """

    __tablename__ = "system_settings"

    key: Mapped[str] = mapped_column(String, primary_key=True)
    value: Mapped[str | None] = mapped_column(String, nullable=True)
    description: Mapped[str | None] = mapped_column(String, nullable=True)

    @classmethod
    def get_value(cls, session: Session, key: str) -> str | None:
        """Read a setting value, returning None if it was never set."""
        row = session.get(cls, key)
        return row.value if row else None

    @classmethod
    def set_value(
        cls,
        session: Session,
        key: str,
        value: str | None,
        description: str | None = None,
    ) -> None:
        """Insert or update a setting value (the caller commits)."""
        row = session.get(cls, key)
        if row is None:
            session.add(cls(key=key, value=value, description=description))
            return
        row.value = value
        if description is not None:
            row.description = description
