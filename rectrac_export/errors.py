class ConfigError(Exception):
    """Raised when required process configuration is missing or invalid."""


class AutomationError(Exception):
    """Base class for every fatal failure of an export run.

    ``phase`` is the label under which diagnostics were captured.
    """

    def __init__(self, message: str, phase: str = "error"):
        super().__init__(message)
        self.phase = phase


class AuthFailure(AutomationError):
    """The login loop exceeded its deadline or the form never appeared."""


class NavigationFailure(AutomationError):
    """The report surface was never confirmed."""


class ResolutionFailure(AutomationError):
    """A required control could not be matched by any declared candidate."""

    def __init__(self, target: str, tried: list[str], phase: str | None = None):
        self.target = target
        self.tried = list(tried)
        message = f"No visible match for '{target}' (tried: {', '.join(tried) or 'nothing'})"
        super().__init__(message, phase or f"unresolved-{target}")


class ExportFailure(AutomationError):
    """No capture channel yielded bytes within budget."""


class FormatFailure(AutomationError):
    """Captured bytes are not a recognizable tabular report."""
