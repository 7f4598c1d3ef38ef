from pathlib import Path


class TransferError(Exception):
    """Base exception for all expected chat-transfer errors."""

    message: str
    exit_code: int

    def __init__(self, message: str, exit_code: int = 1):
        super().__init__(message)
        self.message = message
        self.exit_code = exit_code


class ConfigurationError(TransferError):
    """Configuration related errors (env vars, config files)."""


class InvalidInputError(TransferError):
    """User input validation errors."""


class StoreUnavailableError(TransferError):
    """A store file is missing, unreadable, locked past the busy timeout, or lacks its table."""


class EngineUnavailableError(TransferError):
    """The SQLite engine cannot be used from this interpreter."""

    def __init__(self, details: str):
        super().__init__(
            f"SQLite engine unavailable: {details}\n"
            + "Install a Python build that ships the sqlite3 extension "
            + "(e.g. install libsqlite3-dev and rebuild, or use the python.org / distro package).",
            exit_code=3,
        )


class DecodeError(TransferError):
    """A stored document is not valid. Readers log it and treat the entry as absent."""


class InvalidFormatError(TransferError):
    """A snapshot file failed structural validation."""


class SizeLimitExceededError(TransferError):
    """A store is larger than the configured in-memory processing threshold."""


class BackupError(TransferError):
    """A backup could not be created or restored."""


class PreconditionFailedError(TransferError):
    """A target store failed its integrity check before any mutation."""


class PostconditionFailedError(TransferError):
    """A target store failed its integrity check after mutation. Backups are kept for manual recovery."""

    backups: list[Path]

    def __init__(self, message: str, backups: list[Path]):
        locations = "\n".join(f"  - {p}" for p in backups)
        super().__init__(f"{message}\nBackups retained for manual recovery:\n{locations}", exit_code=2)
        self.backups = backups
