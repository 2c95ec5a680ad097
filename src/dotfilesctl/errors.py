"""Exception hierarchy for dotfilesctl."""


class DotfilesError(RuntimeError):
    """Raised when dotfilesctl encounters an unrecoverable state."""


class UserNotFound(DotfilesError):
    """Account lookup failed or resolved to a missing home directory."""


class BackupNotPossible(DotfilesError):
    """No backup candidate existed in the home directory."""


class LinkFailure(DotfilesError):
    """A symlink could not be created at its destination."""


class ArchiveError(DotfilesError):
    """Creating or reading a snapshot archive failed."""


class ConfirmationDeclined(DotfilesError):
    """The caller declined an operation that required confirmation."""
