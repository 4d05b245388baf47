"""ReelSync exception classes."""


class ReelSyncError(Exception):
    """Base class for all ReelSync exceptions."""

    # Default HTTP status for API responses
    status_code: int = 500


# Configuration errors
class ConfigError(ReelSyncError):
    """Base class for configuration-related errors."""

    status_code = 500


class DataPathError(ConfigError, ValueError):
    """The configured data directory path is invalid for the requested operation."""

    status_code = 400


class MediaServerConfigError(ConfigError, ValueError):
    """The media server URL or API key is missing or malformed."""

    status_code = 400


class EnrichmentNotConfiguredError(ConfigError):
    """An enrichment operation was requested but no MDBList API key is set."""

    status_code = 400


# Database errors
class DatabaseError(ReelSyncError):
    """Base class for database-related errors."""

    status_code = 500


class UnsupportedModeError(DatabaseError, ValueError):
    """Unsupported mode value was provided when dumping a database model."""

    status_code = 400


# Media server errors
class MediaServerError(ReelSyncError):
    """Base class for media server communication failures."""

    status_code = 502


class MediaServerRequestError(MediaServerError):
    """The media server returned an error status or could not be reached."""

    status_code = 502


class UnsupportedMediaTypeError(MediaServerError, ValueError):
    """A media type is not one of the supported catalog media types."""

    status_code = 400


# Enrichment errors
class EnrichmentError(ReelSyncError):
    """Base class for enrichment provider failures."""

    status_code = 502


class InvalidExternalIdError(EnrichmentError, ValueError):
    """An external identifier is not in the format expected by the provider."""

    status_code = 400


# Reconciliation errors
class ReconcileError(ReelSyncError):
    """Base class for catalog reconciliation failures."""

    status_code = 500


class MissingNaturalKeyError(ReconcileError, KeyError):
    """A record lacks the fields needed to compute its natural key."""

    status_code = 422


# Job errors
class JobError(ReelSyncError):
    """Base class for job progress tracking failures."""

    status_code = 500


class JobNotFoundError(JobError, KeyError):
    """Requested job does not exist or has already been evicted."""

    status_code = 404


class JobAlreadyExistsError(JobError, ValueError):
    """A job with the same identifier is still active."""

    status_code = 409


class JobCancelledError(JobError):
    """The job was cancelled by request between two batches."""

    status_code = 409


# User errors
class UserError(ReelSyncError):
    """Base class for user-related failures."""

    status_code = 500


class UserNotFoundError(UserError, KeyError):
    """Requested local user could not be located."""

    status_code = 404
