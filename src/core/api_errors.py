"""External API error classification and persistence."""

from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from email.utils import parsedate_to_datetime

from sqlalchemy import func, select, update

from src import log
from src.config.database import db
from src.models.db.api_error import ApiError, ApiErrorType
from src.models.db.base import utcnow

__all__ = [
    "ApiErrorDefinition",
    "ApiErrorStore",
    "ParsedApiError",
    "parse_api_error",
    "parse_retry_after",
]

SIMILAR_ERROR_WINDOW = timedelta(minutes=5)


@dataclass(frozen=True)
class ApiErrorDefinition:
    """Operator-facing description of a class of API failure."""

    type: ApiErrorType
    message: str
    auto_retry: bool = False
    retry_after_seconds: int | None = None
    action_url: str | None = None


DEFAULT_ERROR = ApiErrorDefinition(
    type=ApiErrorType.OUTAGE,
    message="Service temporarily unavailable. Will retry automatically.",
    auto_retry=True,
    retry_after_seconds=60,
)

PROVIDER_ERRORS: dict[str, dict[int, ApiErrorDefinition]] = {
    "mdblist": {
        401: ApiErrorDefinition(
            type=ApiErrorType.AUTH,
            message="MDBList API key is invalid. Check the key in your settings.",
            action_url="https://mdblist.com/preferences/",
        ),
        403: ApiErrorDefinition(
            type=ApiErrorType.AUTH,
            message="MDBList refused the request. Your API key may be disabled.",
            action_url="https://mdblist.com/preferences/",
        ),
        404: ApiErrorDefinition(
            type=ApiErrorType.NOT_FOUND,
            message="MDBList has no record for the requested item.",
        ),
        429: ApiErrorDefinition(
            type=ApiErrorType.RATE_LIMIT,
            message="MDBList daily request limit reached. Requests resume later.",
            auto_retry=True,
            retry_after_seconds=60,
            action_url="https://mdblist.com/preferences/",
        ),
    },
}


@dataclass(frozen=True)
class ParsedApiError:
    """An API failure classified for logging and display."""

    provider: str
    http_status: int
    definition: ApiErrorDefinition
    raw_message: str | None = None
    error_code: str | None = None
    reset_at: datetime | None = None

    @property
    def error_type(self) -> ApiErrorType:
        """Shortcut to the definition's classification."""
        return self.definition.type


def parse_retry_after(value: str | None) -> datetime | None:
    """Convert a ``Retry-After`` header (seconds or HTTP date) to a UTC moment."""
    if not value:
        return None
    value = value.strip()
    if value.isdigit():
        return utcnow() + timedelta(seconds=int(value))
    try:
        parsed = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)


def parse_api_error(
    provider: str,
    status: int,
    message: str | None = None,
    retry_after: str | None = None,
    error_code: str | None = None,
) -> ParsedApiError:
    """Classify an HTTP failure of an external provider.

    Args:
        provider (str): Provider name such as ``mdblist``
        status (int): HTTP status code of the failed response
        message (str | None): Raw error message, if any
        retry_after (str | None): Value of the ``Retry-After`` header
        error_code (str | None): Provider specific error code

    Returns:
        ParsedApiError: The classified error
    """
    definition = PROVIDER_ERRORS.get(provider, {}).get(status)
    if definition is None:
        if status in (401, 403):
            definition = ApiErrorDefinition(
                type=ApiErrorType.AUTH, message=f"{provider} rejected the credentials."
            )
        elif status == 404:
            definition = ApiErrorDefinition(
                type=ApiErrorType.NOT_FOUND, message=f"{provider} resource not found."
            )
        elif status == 429:
            definition = ApiErrorDefinition(
                type=ApiErrorType.RATE_LIMIT,
                message=f"{provider} rate limit reached.",
                auto_retry=True,
                retry_after_seconds=60,
            )
        else:
            definition = DEFAULT_ERROR

    parsed = ParsedApiError(
        provider=provider,
        http_status=status,
        definition=definition,
        raw_message=message,
        error_code=error_code,
        reset_at=parse_retry_after(retry_after),
    )
    log.debug(
        f"Parsed $$'{provider}'$$ API error as $$'{definition.type}'$$ "
        f"$${{status: {status}}}$$"
    )
    return parsed


class ApiErrorStore:
    """Persistent log of external API failures shown to the operator."""

    def has_recent_similar_error(
        self,
        provider: str,
        error_type: ApiErrorType | str,
        http_status: int,
        window: timedelta = SIMILAR_ERROR_WINDOW,
    ) -> bool:
        """Whether the same kind of error was already logged within `window`."""
        cutoff = utcnow() - window
        with db() as ctx:
            count = ctx.session.execute(
                select(func.count(ApiError.id)).where(
                    ApiError.provider == provider,
                    ApiError.error_type == ApiErrorType(error_type),
                    ApiError.http_status == http_status,
                    ApiError.created_at > cutoff,
                )
            ).scalar_one()
        return count > 0

    def log_api_error(self, error: ParsedApiError, job_id: str | None = None) -> int:
        """Persist a parsed error and return its id."""
        record = ApiError(
            provider=error.provider,
            error_type=error.error_type,
            error_code=error.error_code,
            http_status=error.http_status,
            job_id=job_id,
            error_message=error.raw_message or error.definition.message,
            reset_at=error.reset_at,
            action_url=error.definition.action_url,
        )
        with db() as ctx:
            ctx.session.add(record)
            ctx.session.commit()
            error_id = record.id

        log.warning(
            f"Logged $$'{error.provider}'$$ API error $$'{error.error_type}'$$ "
            f"$${{status: {error.http_status}, job_id: {job_id}}}$$"
        )
        return error_id

    def get_active_errors(self, provider: str | None = None) -> list[ApiError]:
        """Return undismissed errors, most recent first."""
        query = select(ApiError).where(ApiError.dismissed_at.is_(None))
        if provider is not None:
            query = query.where(ApiError.provider == provider)
        query = query.order_by(ApiError.created_at.desc(), ApiError.id.desc()).limit(
            50
        )
        with db() as ctx:
            return list(ctx.session.execute(query).scalars().all())

    def dismiss(self, error_id: int) -> bool:
        """Mark an error as acknowledged.

        Returns:
            bool: False if no active error with that id exists
        """
        with db() as ctx:
            result = ctx.session.execute(
                update(ApiError)
                .where(ApiError.id == error_id, ApiError.dismissed_at.is_(None))
                .values(dismissed_at=utcnow())
            )
            ctx.session.commit()
        if result.rowcount:
            log.debug(f"Dismissed API error $$'{error_id}'$$")
        return bool(result.rowcount)
