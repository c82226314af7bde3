"""Shared fixtures: an in-memory provider with scripted state transitions and a fake clock."""

import itertools
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

import pytest

from config import Config, FunctionConfig, RetryPolicy, WaitPolicy
from errors import ResourceGoneError
from provider import Provider
from resources import ResourceKind, ResourceRef, ResourceStatus, policy_for

TRANSITIONAL_STATES = {
    ResourceKind.NETWORK: ("PROVISIONING", "TERMINATING"),
    ResourceKind.SUBNET: ("PROVISIONING", "TERMINATING"),
    ResourceKind.APPLICATION: ("CREATING", "DELETING"),
    ResourceKind.FUNCTION: ("CREATING", "DELETING"),
}

SCOPE_KEYS = {
    ResourceKind.NETWORK: ("compartment_id",),
    ResourceKind.SUBNET: ("compartment_id", "vcn_id"),
    ResourceKind.APPLICATION: ("compartment_id",),
    ResourceKind.FUNCTION: ("application_id",),
}

COMPARTMENT_ID = "ocid1.compartment.oc1..test"


@dataclass
class FakeResource:
    ref: ResourceRef
    details: Dict[str, Any]
    state: str
    pending: Optional[str] = None
    polls_left: int = 0
    attributes: Dict[str, Any] = field(default_factory=dict)


class FakeProvider(Provider):
    """Provider double. A pending state is reported after `polls_left` describes of the transitional state."""

    def __init__(self, zones=("AD-1",), ready_polls: int = 2, gone_polls: int = 1):
        self.zones = list(zones)
        self.default_ready_polls = ready_polls
        self.gone_polls = gone_polls
        self.ready_polls: Dict[ResourceKind, int] = {}
        self.resources: Dict[str, FakeResource] = {}
        self.create_errors: Dict[ResourceKind, List[Exception]] = {}
        self.delete_errors: Dict[ResourceKind, List[Exception]] = {}
        self.create_calls: Counter = Counter()
        self.delete_calls: Counter = Counter()
        self.describe_calls: Counter = Counter()
        self.deletes: List[ResourceKind] = []
        self.invocations: List[bytes] = []
        self.invoke_handler: Callable[[bytes], bytes] = lambda payload: b"pong" if payload == b"ping" else payload
        self.closed = False
        self._ids = itertools.count(1)

    def seed(self, kind: ResourceKind, display_name: str, state: Optional[str] = None, **details) -> ResourceRef:
        ref = ResourceRef(kind, f"ocid1.{kind.value}.{next(self._ids)}", display_name)
        resource = FakeResource(ref, {"display_name": display_name, **details}, state or policy_for(kind).ready_state)
        if kind == ResourceKind.FUNCTION:
            resource.attributes["invoke_endpoint"] = f"https://functions.test/{ref.id}"
        self.resources[ref.id] = resource
        return ref

    def list_availability_domains(self, compartment_id: str) -> List[str]:
        return list(self.zones)

    def create(self, kind: ResourceKind, details: Dict[str, Any]) -> ResourceRef:
        self.create_calls[kind] += 1
        errors = self.create_errors.get(kind)
        if errors:
            raise errors.pop(0)
        extra = {key: value for key, value in details.items() if key != "display_name"}
        ref = self.seed(kind, details["display_name"], TRANSITIONAL_STATES[kind][0], **extra)
        resource = self.resources[ref.id]
        resource.pending = policy_for(kind).ready_state
        resource.polls_left = self.ready_polls.get(kind, self.default_ready_polls)
        return ref

    def describe(self, ref: ResourceRef) -> ResourceStatus:
        self.describe_calls[ref.kind] += 1
        resource = self.resources.get(ref.id)
        if resource is None:
            raise ResourceGoneError(f"{ref.id} not found", resource=str(ref))
        if resource.pending is not None:
            if resource.polls_left <= 0:
                resource.state, resource.pending = resource.pending, None
            else:
                resource.polls_left -= 1
        return ResourceStatus(ref, resource.state, dict(resource.attributes))

    def list(self, kind: ResourceKind, scope: Dict[str, str], display_name: str) -> List[ResourceStatus]:
        # Deleted resources stay listed, as they do in OCI.
        return [
            ResourceStatus(r.ref, r.state) for r in self.resources.values()
            if r.ref.kind == kind
            and r.ref.display_name == display_name
            and all(r.details.get(key) == scope.get(key) for key in SCOPE_KEYS[kind] if key in scope)
        ]

    def delete(self, ref: ResourceRef) -> None:
        self.delete_calls[ref.kind] += 1
        self.deletes.append(ref.kind)
        errors = self.delete_errors.get(ref.kind)
        if errors:
            raise errors.pop(0)
        resource = self.resources.get(ref.id)
        if resource is None:
            raise ResourceGoneError(f"{ref.id} not found", resource=str(ref))
        resource.state = TRANSITIONAL_STATES[ref.kind][1]
        resource.pending = policy_for(ref.kind).gone_state
        resource.polls_left = self.gone_polls

    def invoke(self, ref: ResourceRef, endpoint: str, payload: bytes) -> bytes:
        self.invocations.append(payload)
        return self.invoke_handler(payload)

    def close(self) -> None:
        self.closed = True

    def state_of(self, ref: ResourceRef) -> str:
        return self.resources[ref.id].state


class FakeClock:
    """Monotonic clock advanced only by sleep()."""

    def __init__(self):
        self.now = 0.0
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def config() -> Config:
    return Config(
        compartment_id=COMPARTMENT_ID,
        name="x",
        function=FunctionConfig(image="phx.ocir.io/tenancy/registry/pong:1", payload="ping"),
        wait=WaitPolicy(poll_interval_seconds=1, max_wait_seconds=30),
        retry=RetryPolicy(max_attempts=5, delay_seconds=10),
    )
