"""Domain errors for dbcloner."""


class ClonerError(RuntimeError):
    """Raised when the run cannot continue safely."""


class DatabaseSkipped(ClonerError):
    """Raised when one database must be left untouched for this run."""


class DatabaseFailed(ClonerError):
    """Raised when the pipeline of one database was aborted midway."""


class IdentifierError(ClonerError):
    """Raised when a name cannot be safely interpolated into a statement."""
