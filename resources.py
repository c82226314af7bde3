"""
Resource handles, per-kind lifecycle policy, and the naming scheme used to
re-derive resource identity across runs.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional


class ResourceKind(str, Enum):
    NETWORK = "network"
    SUBNET = "subnet"
    APPLICATION = "application"
    FUNCTION = "function"


# Creation order. Teardown walks it backwards.
DEPENDENCY_CHAIN: List[ResourceKind] = [
    ResourceKind.NETWORK,
    ResourceKind.SUBNET,
    ResourceKind.APPLICATION,
    ResourceKind.FUNCTION,
]


@dataclass(frozen=True)
class KindPolicy:
    suffix: str
    ready_state: str
    gone_state: str
    failure_states: FrozenSet[str] = frozenset()


POLICIES: Dict[ResourceKind, KindPolicy] = {
    ResourceKind.NETWORK: KindPolicy("vcn", "AVAILABLE", "TERMINATED"),
    ResourceKind.SUBNET: KindPolicy("subnet", "AVAILABLE", "TERMINATED"),
    ResourceKind.APPLICATION: KindPolicy("app", "ACTIVE", "DELETED", frozenset({"FAILED"})),
    ResourceKind.FUNCTION: KindPolicy("fn", "ACTIVE", "DELETED", frozenset({"FAILED"})),
}


def policy_for(kind: ResourceKind) -> KindPolicy:
    return POLICIES[kind]


def resource_name(name: str, kind: ResourceKind) -> str:
    return f"{name}-{POLICIES[kind].suffix}"


@dataclass(frozen=True)
class ResourceRef:
    kind: ResourceKind
    id: str
    display_name: str

    def __str__(self) -> str:
        return f"{self.kind.value} '{self.display_name}' ({self.id})"


@dataclass(frozen=True)
class ResourceStatus:
    """A single describe result. Attributes hold kind-specific extras such as the invoke endpoint."""

    ref: ResourceRef
    state: str
    attributes: Dict[str, Any] = field(default_factory=dict)


@dataclass
class Session:
    """Refs created during one orchestration run, in creation order."""

    name: str
    refs: Dict[ResourceKind, ResourceRef] = field(default_factory=dict)
    availability_domain: Optional[str] = None

    def add(self, ref: ResourceRef) -> None:
        if ref.kind in self.refs:
            raise ValueError(f"Session '{self.name}' already holds a {ref.kind.value}: {self.refs[ref.kind]}")
        self.refs[ref.kind] = ref

    def get(self, kind: ResourceKind) -> Optional[ResourceRef]:
        return self.refs.get(kind)

    def remove(self, kind: ResourceKind) -> None:
        self.refs.pop(kind, None)

    def name_for(self, kind: ResourceKind) -> str:
        return resource_name(self.name, kind)

    def teardown_order(self) -> List[ResourceRef]:
        return [self.refs[kind] for kind in reversed(DEPENDENCY_CHAIN) if kind in self.refs]

    def __bool__(self) -> bool:
        return bool(self.refs)
