import time
from dataclasses import dataclass, field
from enum import Enum
from functools import partial
from typing import Any, Callable, Dict, Iterable, List, Optional

import pulumi

from config import Config
from errors import LifecycleError, NotFoundError, ResourceGoneError
from provider import Provider, find_unique_by_name
from resources import DEPENDENCY_CHAIN, ResourceKind, ResourceRef, ResourceStatus, Session, policy_for
from waiters import is_conflict, mutate_with_retry, wait_for


class Phase(str, Enum):
    SETUP = "setup"
    INVOKE = "invoke"
    TEARDOWN = "teardown"


PHASE_ORDER = [Phase.SETUP, Phase.INVOKE, Phase.TEARDOWN]


class Stage(str, Enum):
    INIT = "init"
    ZONE_RESOLVED = "zone-resolved"
    NETWORK_READY = "network-ready"
    SUBNET_READY = "subnet-ready"
    APPLICATION_READY = "application-ready"
    FUNCTION_READY = "function-ready"
    INVOKED = "invoked"
    TEARDOWN_FUNCTION = "teardown-function"
    TEARDOWN_APPLICATION = "teardown-application"
    TEARDOWN_SUBNET = "teardown-subnet"
    TEARDOWN_NETWORK = "teardown-network"
    DONE = "done"


READY_STAGES = {
    ResourceKind.NETWORK: Stage.NETWORK_READY,
    ResourceKind.SUBNET: Stage.SUBNET_READY,
    ResourceKind.APPLICATION: Stage.APPLICATION_READY,
    ResourceKind.FUNCTION: Stage.FUNCTION_READY,
}

TEARDOWN_STAGES = {
    ResourceKind.FUNCTION: Stage.TEARDOWN_FUNCTION,
    ResourceKind.APPLICATION: Stage.TEARDOWN_APPLICATION,
    ResourceKind.SUBNET: Stage.TEARDOWN_SUBNET,
    ResourceKind.NETWORK: Stage.TEARDOWN_NETWORK,
}


@dataclass
class StepFailure:
    stage: Stage
    resource: str
    error: Exception

    def __str__(self) -> str:
        return f"{self.stage.value} [{self.resource}]: {self.error}"


@dataclass
class RunResult:
    """Outcome of one orchestration run. Failures are collected here instead of raised."""

    phases: List[Phase]
    stage: Stage = Stage.INIT
    history: List[Stage] = field(default_factory=lambda: [Stage.INIT])
    availability_domain: Optional[str] = None
    created: List[ResourceRef] = field(default_factory=list)
    deleted: List[ResourceRef] = field(default_factory=list)
    response: Optional[str] = None
    failures: List[StepFailure] = field(default_factory=list)
    retry_teardown_later: bool = False

    @property
    def ok(self) -> bool:
        return not self.failures

    @property
    def teardown_failures(self) -> List[StepFailure]:
        return [f for f in self.failures if f.stage in TEARDOWN_STAGES.values()]


def ordered_phases(phases: Iterable[Phase]) -> List[Phase]:
    selected = {Phase(p) for p in phases}
    return [p for p in PHASE_ORDER if p in selected]


class LifecycleOrchestrator:
    """Provision, invoke and tear down a function and its supporting network.

    Resources are created in dependency order (network, subnet, application,
    function), each waited on until ready, and deleted in strict reverse order.
    A failed forward step stops provisioning and tears down whatever this run
    created. A failed teardown step is recorded and the next resource is still
    attempted.
    """

    def __init__(self, provider: Provider, config: Config,
                 sleep: Callable[[float], None] = time.sleep,
                 clock: Callable[[], float] = time.monotonic):
        self.provider = provider
        self.config = config
        self.sleep = sleep
        self.clock = clock
        self.session = Session(config.name)
        self._pending = (Stage.INIT, "")
        self._invoked = False

    def run(self, phases: Iterable[Phase]) -> RunResult:
        phases = ordered_phases(phases)
        self.session = Session(self.config.name)
        self._invoked = False
        result = RunResult(phases=phases)

        if Phase.SETUP in phases:
            if not self._forward(result, self._provision):
                return result

        if Phase.INVOKE in phases:
            if not self._forward(result, self._invoke):
                return result

        if Phase.TEARDOWN in phases:
            if self._invoked:
                pulumi.log.warn(
                    f"The function was invoked in this run. Its subnet and VCN can stay pinned for about "
                    f"{self.config.cooldown_minutes} minutes after the last invocation; if teardown fails, "
                    f"run the 'teardown' phase again later."
                )
            refs = self.session.teardown_order() if self.session else self._discover(result)
            self._teardown(result, refs)

        return result

    # --- forward transitions ---

    def _forward(self, result: RunResult, step: Callable[[RunResult], None]) -> bool:
        try:
            step(result)
        except Exception as e:
            stage, resource = self._pending
            result.failures.append(StepFailure(stage, resource, e))
            pulumi.log.error(f"Failed during {stage.value} [{resource}]: {e}")
            if self.session:
                pulumi.log.info("Cleaning up resources created in this run")
                self._teardown(result, self.session.teardown_order())
            return False
        return True

    def _provision(self, result: RunResult) -> None:
        cfg = self.config
        self._begin(Stage.ZONE_RESOLVED, f"availability domains of {cfg.compartment_id}")
        domains = self.provider.list_availability_domains(cfg.compartment_id)
        if not domains:
            raise NotFoundError("availability domain", "*", f"compartment_id={cfg.compartment_id}")
        ad = domains[0]
        self.session.availability_domain = ad
        result.availability_domain = ad
        pulumi.log.info(f"Using availability domain: {ad}")
        self._advance(result, Stage.ZONE_RESOLVED)

        vcn = self._create(result, ResourceKind.NETWORK, {
            "compartment_id": cfg.compartment_id,
            "cidr_block": cfg.network.vcn_cidr_block,
        })
        # In multi-AD regions further subnets could be added here for redundancy.
        subnet = self._create(result, ResourceKind.SUBNET, {
            "availability_domain": ad,
            "compartment_id": cfg.compartment_id,
            "cidr_block": cfg.network.subnet_cidr_block,
            "vcn_id": vcn.id,
        })
        app = self._create(result, ResourceKind.APPLICATION, {
            "compartment_id": cfg.compartment_id,
            "subnet_ids": [subnet.id],
        })
        self._create(result, ResourceKind.FUNCTION, {
            "application_id": app.id,
            "image": cfg.function.image,
            "memory_in_mbs": cfg.function.memory_in_mbs,
            "timeout_in_seconds": cfg.function.timeout_in_seconds,
        })

    def _create(self, result: RunResult, kind: ResourceKind, args: Dict[str, Any]) -> ResourceRef:
        details = {"display_name": self.session.name_for(kind), **args}
        self._begin(READY_STAGES[kind], f"{kind.value} '{details['display_name']}'")
        ref = mutate_with_retry(
            partial(self.provider.create, kind, details),
            is_conflict=is_conflict,
            max_attempts=self.config.retry.max_attempts,
            delay=self.config.retry.delay_seconds,
            description=f"create {kind.value} '{details['display_name']}'",
            sleep=self.sleep,
        )
        # Registered before waiting so a failed wait still gets cleaned up.
        self.session.add(ref)
        result.created.append(ref)
        self._wait(ref, policy_for(ref.kind).ready_state)
        pulumi.log.info(f"Created {ref}")
        self._advance(result, READY_STAGES[kind])
        return ref

    def _invoke(self, result: RunResult) -> None:
        self._begin(Stage.INVOKED, f"function '{self.session.name_for(ResourceKind.FUNCTION)}'")
        fn = self.session.get(ResourceKind.FUNCTION) or self._lookup_function()
        status = self._wait(fn, policy_for(fn.kind).ready_state)
        endpoint = status.attributes.get("invoke_endpoint")
        if not endpoint:
            raise LifecycleError(f"{fn} has no invoke endpoint")

        payload = self.config.function.payload.encode("utf-8")
        response = self.provider.invoke(fn, endpoint, payload)
        self._invoked = True
        result.response = response.decode("utf-8", errors="replace") if isinstance(response, bytes) else response
        pulumi.log.info(f"Response from function: {result.response}")
        self._advance(result, Stage.INVOKED)

    def _lookup_function(self) -> ResourceRef:
        app = find_unique_by_name(
            self.provider,
            ResourceKind.APPLICATION,
            {"compartment_id": self.config.compartment_id},
            self.session.name_for(ResourceKind.APPLICATION),
        )
        return find_unique_by_name(
            self.provider,
            ResourceKind.FUNCTION,
            {"application_id": app.id},
            self.session.name_for(ResourceKind.FUNCTION),
        )

    # --- teardown transitions ---

    def _discover(self, result: RunResult) -> List[ResourceRef]:
        """Re-derive resources from their deterministic names, returned in teardown order."""
        compartment = {"compartment_id": self.config.compartment_id}
        found: Dict[ResourceKind, ResourceRef] = {}

        vcn = self._find(result, ResourceKind.NETWORK, compartment)
        if vcn:
            found[ResourceKind.NETWORK] = vcn
            subnet = self._find(result, ResourceKind.SUBNET, {**compartment, "vcn_id": vcn.id})
            if subnet:
                found[ResourceKind.SUBNET] = subnet

        app = self._find(result, ResourceKind.APPLICATION, compartment)
        if app:
            found[ResourceKind.APPLICATION] = app
            fn = self._find(result, ResourceKind.FUNCTION, {"application_id": app.id})
            if fn:
                found[ResourceKind.FUNCTION] = fn

        return [found[kind] for kind in reversed(DEPENDENCY_CHAIN) if kind in found]

    def _find(self, result: RunResult, kind: ResourceKind, scope: Dict[str, str]) -> Optional[ResourceRef]:
        name = self.session.name_for(kind)
        try:
            return find_unique_by_name(self.provider, kind, scope, name)
        except NotFoundError:
            pulumi.log.info(f"No {kind.value} named '{name}' to delete")
        except Exception as e:
            result.failures.append(StepFailure(TEARDOWN_STAGES[kind], f"{kind.value} '{name}'", e))
            pulumi.log.error(f"Could not resolve {kind.value} '{name}' for teardown: {e}")
        return None

    def _teardown(self, result: RunResult, refs: List[ResourceRef]) -> None:
        for ref in refs:
            stage = TEARDOWN_STAGES[ref.kind]
            try:
                self._delete(ref)
            except Exception as e:
                result.failures.append(StepFailure(stage, str(ref), e))
                pulumi.log.error(f"Failed to delete {ref}: {e}")
                if self._invoked or is_conflict(e):
                    result.retry_teardown_later = True
                    pulumi.log.warn(
                        f"{ref} may still be held by a recent invocation; run the 'teardown' phase again "
                        f"after the {self.config.cooldown_minutes} minute cool-down window."
                    )
                continue
            self.session.remove(ref.kind)
            result.deleted.append(ref)
            pulumi.log.info(f"Deleted {ref}")
            self._advance(result, stage)

        if not result.teardown_failures:
            self._advance(result, Stage.DONE)

    def _delete(self, ref: ResourceRef) -> None:
        try:
            mutate_with_retry(
                partial(self.provider.delete, ref),
                is_conflict=is_conflict,
                max_attempts=self.config.retry.max_attempts,
                delay=self.config.retry.delay_seconds,
                description=f"delete {ref}",
                sleep=self.sleep,
            )
        except ResourceGoneError:
            pulumi.log.warn(f"{ref} was already deleted")
            return
        self._wait(ref, policy_for(ref.kind).gone_state, succeed_on_not_found=True)

    # --- helpers ---

    def _begin(self, stage: Stage, resource: str) -> None:
        self._pending = (stage, resource)

    def _wait(self, ref: ResourceRef, target_state: str, succeed_on_not_found: bool = False) -> Optional[ResourceStatus]:
        return wait_for(
            self.provider,
            ref,
            target_state,
            poll_interval=self.config.wait.poll_interval_seconds,
            max_wait=self.config.wait.max_wait_seconds,
            succeed_on_not_found=succeed_on_not_found,
            sleep=self.sleep,
            clock=self.clock,
        )

    def _advance(self, result: RunResult, stage: Stage) -> None:
        result.stage = stage
        result.history.append(stage)
        pulumi.log.debug(f"Stage: {stage.value}")


def run_phases(config: Config, phases: Iterable[Phase],
               provider_factory: Callable[[Config], Provider]) -> RunResult:
    """Run the selected phases with a provider scoped to this run."""
    with provider_factory(config) as provider:
        return LifecycleOrchestrator(provider, config).run(phases)
