"""Error types raised while preparing and running a build."""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Sequence


class BuilderError(RuntimeError):
    """Base class for every error the builder raises on purpose."""

    pass


class ValidationError(BuilderError):
    """Raised when the configuration is incomplete or contradictory."""

    def __init__(self, errors: Sequence[str]) -> None:
        self.errors = list(errors)
        super().__init__("; ".join(self.errors) or "invalid configuration")


class MissingStateError(BuilderError):
    """Raised when a step reads a build state field nobody has set yet."""

    def __init__(self, key: str) -> None:
        self.key = key
        super().__init__(f"build state has no value for '{key}'")


class ProviderRequestError(BuilderError):
    """The control-plane API rejected a request."""

    def __init__(self, message: str, code: Optional[str] = None, status: Optional[int] = None) -> None:
        self.message = message
        self.code = code
        self.status = status
        detail = f"{code}: {message}" if code else message
        if status:
            detail = f"{detail} (HTTP {status})"
        super().__init__(detail)


class ActionFailedError(BuilderError):
    """An asynchronous provider action finished with an error."""

    def __init__(self, message: str, action_id: Optional[int] = None, code: Optional[str] = None) -> None:
        self.message = message
        self.action_id = action_id
        self.code = code
        super().__init__(message)


class PollTimeoutError(BuilderError):
    """Gave up waiting for a state transition before the provider finished."""

    def __init__(self, what: str, waited: float) -> None:
        self.what = what
        self.waited = waited
        super().__init__(f"timed out after {waited:.1f}s waiting for {what}")


class NoMatchingImageError(BuilderError):
    """The image filter matched nothing."""

    def __init__(self, selector: str) -> None:
        self.selector = selector
        super().__init__(f"no image found for selector '{selector}'")


class AmbiguousImageError(BuilderError):
    """The image filter matched several images and most_recent is off."""

    def __init__(self, selector: str, count: int) -> None:
        self.selector = selector
        self.count = count
        super().__init__(
            f"image filter '{selector}' matched {count} images; "
            "set most_recent or narrow the selector"
        )


class ConnectivityTimeoutError(BuilderError):
    """The server address never became reachable."""

    def __init__(self, host: str, port: int, waited: float, last_error: Optional[str] = None) -> None:
        self.host = host
        self.port = port
        self.waited = waited
        self.last_error = last_error
        message = f"{host}:{port} not reachable after {waited:.1f}s"
        if last_error:
            message = f"{message} (last error: {last_error})"
        super().__init__(message)


class ProvisioningError(BuilderError):
    """The external provisioning phase reported a failure."""

    pass


class BuildCancelledError(BuilderError):
    """The operator interrupted the build."""

    def __init__(self, message: str = "build cancelled") -> None:
        super().__init__(message)


@dataclass
class CleanupFailure:
    """A cleanup that raised while the runner was unwinding."""

    step: str
    error: BaseException

    def __str__(self) -> str:
        return f"{self.step}: {str(self.error) or type(self.error).__name__}"


class BuildError(BuilderError):
    """A build did not produce an artifact.

    ``cause`` is always the original failure; cleanup problems are carried
    separately in ``cleanup_errors`` and never replace it.
    """

    def __init__(
        self,
        step: Optional[str],
        cause: Optional[BaseException],
        cleanup_errors: Optional[List[CleanupFailure]] = None,
        message: Optional[str] = None,
    ) -> None:
        self.step = step
        self.cause = cause
        self.cleanup_errors = list(cleanup_errors or [])
        if message is None:
            if cause is None:
                message = f"build halted at step '{step}'" if step else "build halted"
            elif step:
                message = f"step '{step}' failed: {cause}"
            else:
                message = str(cause)
        if self.cleanup_errors:
            message += f" ({len(self.cleanup_errors)} cleanup error(s): "
            message += "; ".join(str(e) for e in self.cleanup_errors) + ")"
        super().__init__(message)

    @property
    def cancelled(self) -> bool:
        return isinstance(self.cause, BuildCancelledError)
