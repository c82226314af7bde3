import os
from typing import Any, Callable, Dict, List, Optional

import oci
import pulumi

from errors import ConfigurationError, ConflictError, ProviderError, ResourceGoneError
from provider import Provider
from resources import ResourceKind, ResourceRef, ResourceStatus


def translate_service_error(e: oci.exceptions.ServiceError, resource: Optional[str] = None) -> ProviderError:
    if e.status == 409:
        return ConflictError(e.message, code=e.code, resource=resource)
    if e.status == 404:
        return ResourceGoneError(e.message, code=e.code, resource=resource)
    return ProviderError(e.message, status=e.status, code=e.code, resource=resource)


def call(fn: Callable[..., Any], *args, resource: Optional[str] = None, **kwargs) -> Any:
    try:
        return fn(*args, **kwargs)
    except oci.exceptions.ServiceError as e:
        raise translate_service_error(e, resource) from e


def load_oci_config(config_file: str, profile: str, region: Optional[str] = None) -> Dict[str, Any]:
    """Read an OCI config profile, optionally pinning the region."""
    try:
        oci_config = oci.config.from_file(file_location=os.path.expanduser(config_file), profile_name=profile)
        if region:
            oci_config["region"] = region
        oci.config.validate_config(oci_config)
    except oci.exceptions.ClientError as e:
        raise ConfigurationError(f"Unusable OCI profile '{profile}' in {config_file}: {e}") from e
    return oci_config


def function_details(details: Dict[str, Any]) -> oci.functions.models.CreateFunctionDetails:
    """Build CreateFunctionDetails, moving the container image into its source details."""
    details = dict(details)
    image = details.pop("image")
    return oci.functions.models.CreateFunctionDetails(
        source_details=oci.functions.models.CreateContainerImageFunctionSourceDetails(image=image),
        **details,
    )


class OCIProvider(Provider):
    """Provider backed by the OCI identity, virtual network and functions clients."""

    def __init__(self, oci_config: Dict[str, Any]):
        self.oci_config = oci_config
        self.identity = oci.identity.IdentityClient(oci_config)
        self.network = oci.core.VirtualNetworkClient(oci_config)
        self.functions = oci.functions.FunctionsManagementClient(oci_config)
        # Invoke clients are bound to a function's endpoint, created on demand.
        self._invoke_clients: Dict[str, oci.functions.FunctionsInvokeClient] = {}

    @classmethod
    def from_file(cls, config_file: str, profile: str, region: Optional[str] = None) -> "OCIProvider":
        return cls(load_oci_config(config_file, profile, region))

    def list_availability_domains(self, compartment_id: str) -> List[str]:
        response = call(self.identity.list_availability_domains, compartment_id, resource="availability domains")
        return [ad.name for ad in response.data]

    def create(self, kind: ResourceKind, details: Dict[str, Any]) -> ResourceRef:
        label = f"{kind.value} '{details.get('display_name')}'"
        if kind == ResourceKind.NETWORK:
            model = call(self.network.create_vcn, oci.core.models.CreateVcnDetails(**details), resource=label).data
        elif kind == ResourceKind.SUBNET:
            model = call(self.network.create_subnet, oci.core.models.CreateSubnetDetails(**details), resource=label).data
        elif kind == ResourceKind.APPLICATION:
            model = call(
                self.functions.create_application,
                oci.functions.models.CreateApplicationDetails(**details),
                resource=label,
            ).data
        elif kind == ResourceKind.FUNCTION:
            model = call(
                self.functions.create_function,
                function_details(details),
                resource=label,
            ).data
        else:
            raise ValueError(f"Unsupported resource kind: {kind}")
        return ResourceRef(kind, model.id, model.display_name)

    def _get(self, ref: ResourceRef) -> Any:
        getters = {
            ResourceKind.NETWORK: self.network.get_vcn,
            ResourceKind.SUBNET: self.network.get_subnet,
            ResourceKind.APPLICATION: self.functions.get_application,
            ResourceKind.FUNCTION: self.functions.get_function,
        }
        return call(getters[ref.kind], ref.id, resource=str(ref)).data

    def describe(self, ref: ResourceRef) -> ResourceStatus:
        model = self._get(ref)
        attributes = {}
        if ref.kind == ResourceKind.FUNCTION:
            attributes["invoke_endpoint"] = model.invoke_endpoint
        elif ref.kind == ResourceKind.APPLICATION:
            attributes["subnet_ids"] = list(model.subnet_ids or [])
        return ResourceStatus(ref, model.lifecycle_state, attributes)

    def list(self, kind: ResourceKind, scope: Dict[str, str], display_name: str) -> List[ResourceStatus]:
        listers = {
            ResourceKind.NETWORK: self.network.list_vcns,
            ResourceKind.SUBNET: self.network.list_subnets,
            ResourceKind.APPLICATION: self.functions.list_applications,
            ResourceKind.FUNCTION: self.functions.list_functions,
        }
        items = call(
            oci.pagination.list_call_get_all_results,
            listers[kind],
            display_name=display_name,
            resource=f"{kind.value} listing",
            **scope,
        ).data
        return [
            ResourceStatus(ResourceRef(kind, item.id, item.display_name), item.lifecycle_state)
            for item in items
        ]

    def delete(self, ref: ResourceRef) -> None:
        deleters = {
            ResourceKind.NETWORK: self.network.delete_vcn,
            ResourceKind.SUBNET: self.network.delete_subnet,
            ResourceKind.APPLICATION: self.functions.delete_application,
            ResourceKind.FUNCTION: self.functions.delete_function,
        }
        call(deleters[ref.kind], ref.id, resource=str(ref))

    def invoke(self, ref: ResourceRef, endpoint: str, payload: bytes) -> bytes:
        client = self._invoke_clients.get(endpoint)
        if client is None:
            client = oci.functions.FunctionsInvokeClient(self.oci_config, service_endpoint=endpoint)
            self._invoke_clients[endpoint] = client
        pulumi.log.info(f"Invoking function endpoint - {endpoint}")
        response = call(client.invoke_function, ref.id, invoke_function_body=payload, resource=str(ref))
        return response.data.content

    def close(self) -> None:
        clients = [self.identity, self.network, self.functions, *self._invoke_clients.values()]
        for client in clients:
            client.base_client.session.close()
        self._invoke_clients.clear()
