"""Exceptions raised by migration operations."""


class MigrationError(Exception):
    """Base class for errors that stop a migration run."""


class GroupNotFoundError(MigrationError):
    """A directory object the mode depends on does not exist."""

    def __init__(self, identity: str, where: str = "Exchange Online") -> None:
        self.identity = identity
        self.where = where
        super().__init__(f"Object not found in {where}: {identity}")


class GroupExistsError(MigrationError):
    """An object that the mode is about to create already exists."""

    def __init__(self, identity: str, where: str = "Exchange Online") -> None:
        self.identity = identity
        self.where = where
        super().__init__(f"Object already exists in {where}: {identity}")


class PollingTimeoutError(MigrationError):
    """An eventual-consistency wait ran out of attempts."""

    def __init__(self, description: str, attempts: int) -> None:
        self.description = description
        self.attempts = attempts
        super().__init__(f"Timed out after {attempts} attempts waiting for {description}")


class ExchangeCommandError(MigrationError):
    """A PowerShell cmdlet reported failure."""

    def __init__(self, action: str, detail: str | None = None) -> None:
        self.action = action
        self.detail = detail
        message = f"Exchange command failed: {action}"
        if detail:
            message += f" ({detail.strip()[:300]})"
        super().__init__(message)


class BackupFormatError(MigrationError):
    """A backup file could not be parsed."""
