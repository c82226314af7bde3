from abc import ABC, abstractmethod
from typing import Any, Dict, List

import pulumi

from errors import AmbiguousError, NotFoundError
from resources import ResourceKind, ResourceRef, ResourceStatus, policy_for


class Provider(ABC):
    """Control-plane operations the orchestrator consumes.

    Implementations own their SDK clients and release them in close(); use
    the provider as a context manager so clients are closed on every exit path.
    """

    @abstractmethod
    def list_availability_domains(self, compartment_id: str) -> List[str]:
        pass

    @abstractmethod
    def create(self, kind: ResourceKind, details: Dict[str, Any]) -> ResourceRef:
        pass

    @abstractmethod
    def describe(self, ref: ResourceRef) -> ResourceStatus:
        pass

    @abstractmethod
    def list(self, kind: ResourceKind, scope: Dict[str, str], display_name: str) -> List[ResourceStatus]:
        """List resources of `kind` in `scope` with their lifecycle state, gone ones included."""

    @abstractmethod
    def delete(self, ref: ResourceRef) -> None:
        pass

    @abstractmethod
    def invoke(self, ref: ResourceRef, endpoint: str, payload: bytes) -> bytes:
        pass

    def close(self) -> None:
        pass

    def __enter__(self) -> "Provider":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


def format_scope(scope: Dict[str, str]) -> str:
    return ", ".join(f"{key}={value}" for key, value in scope.items()) or "<no scope>"


def find_unique_by_name(provider: Provider, kind: ResourceKind, scope: Dict[str, str], display_name: str) -> ResourceRef:
    """Return the single live resource of `kind` in `scope` named exactly `display_name`.

    Deleted resources linger in provider listings for a while and are ignored.
    """
    gone_state = policy_for(kind).gone_state
    matches = [
        status.ref for status in provider.list(kind, scope, display_name)
        if status.ref.display_name == display_name and status.state != gone_state
    ]
    if not matches:
        raise NotFoundError(kind.value, display_name, format_scope(scope))
    if len(matches) > 1:
        raise AmbiguousError(kind.value, display_name, format_scope(scope), len(matches))
    pulumi.log.debug(f"Resolved {matches[0]} by name")
    return matches[0]
