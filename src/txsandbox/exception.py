class SandboxError(Exception):
    ...


class ConfigurationError(SandboxError):
    """Raised when the sandbox is set up without a usable database"""


class NoContextError(SandboxError):
    """Raised when the ambient context is used outside of a running chain"""


class InvariantViolationError(SandboxError):
    """Raised when transaction bookkeeping gets out of step with the hooks"""


class TransactionalWarning(UserWarning):
    ...
