"""
Error types raised while provisioning, waiting on, invoking and tearing down
function resources. Every error keeps the resource context needed to diagnose it.
"""

from typing import Optional


class LifecycleError(Exception):
    """Base class for all orchestration errors."""


class ConfigurationError(LifecycleError, ValueError):
    pass


class LookupFailedError(LifecycleError):
    def __init__(self, kind: str, display_name: str, scope: str, count: int):
        self.kind = kind
        self.display_name = display_name
        self.scope = scope
        self.count = count
        super().__init__(self.describe())

    def describe(self) -> str:
        return f"Could not find unique {self.kind} with name '{self.display_name}' in {self.scope} ({self.count} found)"


class NotFoundError(LookupFailedError):
    def __init__(self, kind: str, display_name: str, scope: str, count: int = 0):
        super().__init__(kind, display_name, scope, count)

    def describe(self) -> str:
        return f"No {self.kind} named '{self.display_name}' in {self.scope}"


class AmbiguousError(LookupFailedError):
    def describe(self) -> str:
        return f"{self.count} {self.kind} resources named '{self.display_name}' in {self.scope}, expected exactly one"


class ProviderError(LifecycleError):
    """A failure reported by the cloud provider API."""

    def __init__(self, message: str, status: Optional[int] = None, code: Optional[str] = None,
                 resource: Optional[str] = None):
        self.message = message
        self.status = status
        self.code = code
        self.resource = resource
        detail = f"{status} {code}: {message}" if status is not None else message
        if resource:
            detail = f"{resource}: {detail}"
        super().__init__(detail)


class ConflictError(ProviderError):
    def __init__(self, message: str, code: Optional[str] = "Conflict", resource: Optional[str] = None):
        super().__init__(message, status=409, code=code, resource=resource)


class ResourceGoneError(ProviderError):
    """Describe of a resource id the provider no longer knows about."""

    def __init__(self, message: str, code: Optional[str] = "NotAuthorizedOrNotFound", resource: Optional[str] = None):
        super().__init__(message, status=404, code=code, resource=resource)


class StateTimeoutError(LifecycleError, TimeoutError):
    def __init__(self, resource: str, target_state: str, last_state: Optional[str], waited: float):
        self.resource = resource
        self.target_state = target_state
        self.last_state = last_state
        self.waited = waited
        super().__init__(
            f"{resource} did not reach {target_state} within {waited:.0f}s (last observed state: {last_state})"
        )


class ResourceFailedError(LifecycleError):
    def __init__(self, resource: str, target_state: str, state: str):
        self.resource = resource
        self.target_state = target_state
        self.state = state
        super().__init__(f"{resource} entered {state} while waiting for {target_state}")
