"""Resource types of the yawol.stackit.cloud/v1beta1 API group and their JSON form."""

import dataclasses
import types
import typing
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, TypeVar

GROUP = "yawol.stackit.cloud"
VERSION = "v1beta1"
API_VERSION = f"{GROUP}/{VERSION}"

# Service annotations understood by the cloud controller.
SERVICE_IMAGE_ID = "yawol.stackit.cloud/imageId"
SERVICE_FLAVOR_ID = "yawol.stackit.cloud/flavorId"
SERVICE_AVAILABILITY_ZONE = "yawol.stackit.cloud/availabilityZone"
SERVICE_INTERNAL_LOADBALANCER = "yawol.stackit.cloud/internalLB"
SERVICE_DEBUG = "yawol.stackit.cloud/debug"
SERVICE_DEBUG_SSH_KEY = "yawol.stackit.cloud/debugsshkey"
SERVICE_CLASS_NAME = "yawol.stackit.cloud/className"
SERVICE_REPLICAS = "yawol.stackit.cloud/replicas"
SERVICE_TCP_PROXY_PROTOCOL = "yawol.stackit.cloud/tcpProxyProtocol"
SERVICE_TCP_PROXY_PROTOCOL_PORTS_FILTER = "yawol.stackit.cloud/tcpProxyProtocolPortsFilter"
SERVICE_EXISTING_FLOATING_IP = "yawol.stackit.cloud/existingFloatingIP"

T = TypeVar("T")

_MISSING = dataclasses.MISSING


def _field(json_name: str, *, omitempty: bool = False, default: Any = _MISSING,
           default_factory: Any = _MISSING) -> Any:
    metadata = {"json": json_name, "omitempty": omitempty}
    if default_factory is not _MISSING:
        return field(default_factory=default_factory, metadata=metadata)
    if default is not _MISSING:
        return field(default=default, metadata=metadata)
    return field(metadata=metadata)


@dataclass
class ObjectMeta:
    """Standard object metadata."""

    name: str = _field("name", omitempty=True, default="")
    namespace: str = _field("namespace", omitempty=True, default="")
    uid: str = _field("uid", omitempty=True, default="")
    resource_version: str = _field("resourceVersion", omitempty=True, default="")
    labels: dict[str, str] = _field("labels", omitempty=True, default_factory=dict)
    annotations: dict[str, str] = _field("annotations", omitempty=True, default_factory=dict)
    finalizers: list[str] = _field("finalizers", omitempty=True, default_factory=list)
    creation_timestamp: str | None = _field("creationTimestamp", omitempty=True, default=None)
    deletion_timestamp: str | None = _field("deletionTimestamp", omitempty=True, default=None)


@dataclass
class LabelSelector:
    """A label query over a set of resources."""

    match_labels: dict[str, str] = _field("matchLabels", omitempty=True, default_factory=dict)
    match_expressions: list[dict[str, Any]] = _field(
        "matchExpressions", omitempty=True, default_factory=list
    )


@dataclass
class SecretReference:
    """Reference to a secret by name and namespace."""

    name: str = _field("name", omitempty=True, default="")
    namespace: str = _field("namespace", omitempty=True, default="")


@dataclass
class ServicePort:
    """A port exposed by a service."""

    name: str = _field("name", omitempty=True, default="")
    protocol: str = _field("protocol", omitempty=True, default="")
    app_protocol: str | None = _field("appProtocol", omitempty=True, default=None)
    port: int = _field("port", default=0)
    target_port: int | str = _field("targetPort", omitempty=True, default=0)
    node_port: int = _field("nodePort", omitempty=True, default=0)


@dataclass
class OpenstackImageRef:
    """Reference to an OpenStack image by id, name or metadata search."""

    image_id: str | None = _field("image_id", omitempty=True, default=None)
    image_name: str | None = _field("image_name", omitempty=True, default=None)
    image_search: str | None = _field("image_search", omitempty=True, default=None)


@dataclass
class OpenstackFlavorRef:
    """Reference to an OpenStack flavor by id, name or metadata search."""

    flavor_id: str | None = _field("flavor_id", omitempty=True, default=None)
    flavor_name: str | None = _field("flavor_name", omitempty=True, default=None)
    flavor_search: str | None = _field("flavor_search", omitempty=True, default=None)


@dataclass
class LoadBalancerInfrastructure:
    """Infrastructure parameters of a load balancer."""

    floating_net_id: str | None = _field("floatingNetID", omitempty=True, default=None)
    network_id: str = _field("networkID", default="")
    flavor: OpenstackFlavorRef | None = _field("flavor", omitempty=True, default=None)
    image: OpenstackImageRef | None = _field("image", omitempty=True, default=None)
    availability_zone: str = _field("availabilityZone", default="")
    auth_secret_ref: SecretReference = _field("authSecretRef", default_factory=SecretReference)


@dataclass
class LoadBalancerDebugSettings:
    """Debug settings of a load balancer."""

    enabled: bool = _field("enabled", default=False)
    sshkey_name: str = _field("sshkeyName", omitempty=True, default="")


@dataclass
class LoadBalancerEndpoint:
    """A backend endpoint (usually a node) of a load balancer."""

    name: str = _field("name", default="")
    addresses: list[str] = _field("addresses", omitempty=True, default_factory=list)


@dataclass
class LoadBalancerOptions:
    """Additional load balancer settings."""

    internal_lb: bool = _field("internalLB", omitempty=True, default=False)
    load_balancer_source_ranges: list[str] = _field(
        "loadBalancerSourceRanges", omitempty=True, default_factory=list
    )
    tcp_proxy_protocol: bool = _field("tcpProxyProtocol", omitempty=True, default=False)
    tcp_proxy_protocol_ports_filter: list[int] = _field(
        "tcpProxyProtocolPortFilter", omitempty=True, default_factory=list
    )


@dataclass
class LoadBalancerRef:
    """Reference to a LoadBalancer object."""

    name: str = _field("name", default="")
    namespace: str = _field("namespace", default="")


def _check_replicas(replicas: int) -> None:
    if replicas < 0:
        raise ValueError(f"replicas must be at least 0, got {replicas}")


@dataclass
class LoadBalancerSpec:
    """Desired state of a LoadBalancer."""

    selector: LabelSelector = _field("selector", default_factory=LabelSelector)
    replicas: int = _field("replicas", omitempty=True, default=1)
    existing_floating_ip: str | None = _field("existingFloatingIP", omitempty=True, default=None)
    debug_settings: LoadBalancerDebugSettings = _field(
        "debugSettings", omitempty=True, default_factory=LoadBalancerDebugSettings
    )
    endpoints: list[LoadBalancerEndpoint] = _field("endpoints", omitempty=True, default_factory=list)
    ports: list[ServicePort] = _field("ports", omitempty=True, default_factory=list)
    infrastructure: LoadBalancerInfrastructure = _field(
        "infrastructure", default_factory=LoadBalancerInfrastructure
    )
    options: LoadBalancerOptions = _field("options", omitempty=True, default_factory=LoadBalancerOptions)

    def __post_init__(self) -> None:
        _check_replicas(self.replicas)


@dataclass
class LoadBalancerStatus:
    """Observed state of a LoadBalancer."""

    ready_replicas: int | None = _field("readyReplicas", omitempty=True, default=None)
    replicas: int | None = _field("replicas", omitempty=True, default=None)
    external_ip: str | None = _field("externalIP", omitempty=True, default=None)
    floating_id: str | None = _field("floatingID", omitempty=True, default=None)
    floating_name: str | None = _field("floatingName", omitempty=True, default=None)
    port_id: str | None = _field("portID", omitempty=True, default=None)
    port_name: str | None = _field("portName", omitempty=True, default=None)
    security_group_id: str | None = _field("security_group_id", omitempty=True, default=None)
    security_group_name: str | None = _field("security_group_name", omitempty=True, default=None)
    last_openstack_reconcile: str | None = _field("lastOpenstackReconcile", omitempty=True, default=None)
    openstack_reconcile_hash: str | None = _field("openstackReconcileHash", omitempty=True, default=None)


@dataclass
class LoadBalancer:
    """A yawol LoadBalancer resource."""

    api_version: str = _field("apiVersion", omitempty=True, default=API_VERSION)
    kind: str = _field("kind", omitempty=True, default="LoadBalancer")
    metadata: ObjectMeta = _field("metadata", default_factory=ObjectMeta)
    spec: LoadBalancerSpec = _field("spec", omitempty=True, default_factory=LoadBalancerSpec)
    status: LoadBalancerStatus = _field("status", omitempty=True, default_factory=LoadBalancerStatus)


@dataclass
class LoadBalancerMachineSpec:
    """Desired state of a LoadBalancerMachine."""

    infrastructure: LoadBalancerInfrastructure = _field(
        "infrastructure", default_factory=LoadBalancerInfrastructure
    )
    port_id: str = _field("portID", default="")
    load_balancer_ref: LoadBalancerRef = _field("loadBalancerRef", default_factory=LoadBalancerRef)


@dataclass
class LoadBalancerMachineTemplateSpec:
    """Template from which LoadBalancerMachines are made."""

    labels: dict[str, str] = _field("labels", default_factory=dict)
    spec: LoadBalancerMachineSpec = _field("spec", default_factory=LoadBalancerMachineSpec)


@dataclass
class LoadBalancerMachineMetric:
    """A single metric reported by a LoadBalancerMachine."""

    type: str = _field("type", default="")
    value: str = _field("value", default="")
    time: str | None = _field("timestamp", default=None)


@dataclass
class LoadBalancerMachineStatus:
    """Observed state of a LoadBalancerMachine."""

    conditions: list[dict[str, Any]] | None = _field("conditions", omitempty=True, default=None)
    metrics: list[LoadBalancerMachineMetric] | None = _field("metrics", omitempty=True, default=None)
    creation_timestamp: str | None = _field("creationTimestamp", omitempty=True, default=None)
    last_openstack_reconcile: str | None = _field("lastOpenstackReconcile", omitempty=True, default=None)
    server_id: str | None = _field("serverID", omitempty=True, default=None)
    port_id: str | None = _field("portID", omitempty=True, default=None)
    service_account_name: str | None = _field("serviceAccountName", omitempty=True, default=None)
    role_name: str | None = _field("roleName", omitempty=True, default=None)
    role_binding_name: str | None = _field("roleBindingName", omitempty=True, default=None)


@dataclass
class LoadBalancerMachine:
    """A yawol LoadBalancerMachine resource."""

    api_version: str = _field("apiVersion", omitempty=True, default=API_VERSION)
    kind: str = _field("kind", omitempty=True, default="LoadBalancerMachine")
    metadata: ObjectMeta = _field("metadata", omitempty=True, default_factory=ObjectMeta)
    spec: LoadBalancerMachineSpec = _field("spec", omitempty=True, default_factory=LoadBalancerMachineSpec)
    status: LoadBalancerMachineStatus = _field(
        "status", omitempty=True, default_factory=LoadBalancerMachineStatus
    )


@dataclass
class LoadBalancerSetSpec:
    """Desired state of a LoadBalancerSet."""

    selector: LabelSelector = _field("selector", default_factory=LabelSelector)
    replicas: int = _field("replicas", omitempty=True, default=1)
    template: LoadBalancerMachineTemplateSpec = _field(
        "template", default_factory=LoadBalancerMachineTemplateSpec
    )

    def __post_init__(self) -> None:
        _check_replicas(self.replicas)


@dataclass
class LoadBalancerSetStatus:
    """Observed state of a LoadBalancerSet."""

    available_replicas: int | None = _field("availableReplicas", omitempty=True, default=None)
    ready_replicas: int | None = _field("readyReplicas", omitempty=True, default=None)
    replicas: int | None = _field("replicas", omitempty=True, default=None)


@dataclass
class LoadBalancerSet:
    """A yawol LoadBalancerSet resource."""

    api_version: str = _field("apiVersion", omitempty=True, default=API_VERSION)
    kind: str = _field("kind", omitempty=True, default="LoadBalancerSet")
    metadata: ObjectMeta = _field("metadata", omitempty=True, default_factory=ObjectMeta)
    spec: LoadBalancerSetSpec = _field("spec", omitempty=True, default_factory=LoadBalancerSetSpec)
    status: LoadBalancerSetStatus = _field("status", omitempty=True, default_factory=LoadBalancerSetStatus)


def _is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, (bool, int, float, str)):
        return not value
    if isinstance(value, (list, tuple, dict)):
        return not value
    return False


def _encode(value: Any) -> Any:
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return to_dict(value)
    if isinstance(value, (list, tuple)):
        return [_encode(item) for item in value]
    if isinstance(value, dict):
        return {str(key): _encode(item) for key, item in value.items()}
    return value


def to_dict(obj: Any) -> dict[str, Any]:
    """Return the JSON-ready mapping of a resource object, using wire field names."""
    if not dataclasses.is_dataclass(obj) or isinstance(obj, type):
        raise TypeError(f"expected a resource object, got {type(obj).__name__}")
    result: dict[str, Any] = {}
    for f in dataclasses.fields(obj):
        value = getattr(obj, f.name)
        if f.metadata.get("omitempty") and _is_empty(value):
            continue
        result[f.metadata.get("json", f.name)] = _encode(value)
    return result


def _decode(tp: Any, value: Any) -> Any:
    if tp is Any:
        return value
    origin = typing.get_origin(tp)
    if origin in (typing.Union, types.UnionType):
        args = typing.get_args(tp)
        if value is None and type(None) in args:
            return None
        last_error: Exception | None = None
        for option in (arg for arg in args if arg is not type(None)):
            try:
                return _decode(option, value)
            except (TypeError, ValueError) as exc:
                last_error = exc
        raise TypeError(f"value {value!r} does not match {tp}") from last_error
    if origin is list:
        (item_type,) = typing.get_args(tp)
        if not isinstance(value, list):
            raise TypeError(f"expected a list, got {type(value).__name__}")
        return [_decode(item_type, item) for item in value]
    if origin is dict:
        _, item_type = typing.get_args(tp)
        if not isinstance(value, Mapping):
            raise TypeError(f"expected a mapping, got {type(value).__name__}")
        return {str(key): _decode(item_type, item) for key, item in value.items()}
    if isinstance(tp, type) and dataclasses.is_dataclass(tp):
        return from_dict(tp, value)
    if tp is int:
        if isinstance(value, bool) or not isinstance(value, int):
            raise TypeError(f"expected an integer, got {value!r}")
        return value
    if isinstance(tp, type) and isinstance(value, tp):
        return value
    raise TypeError(f"expected {getattr(tp, '__name__', tp)}, got {value!r}")


def from_dict(cls: type[T], data: Mapping[str, Any]) -> T:
    """Build a resource object of type ``cls`` from its JSON mapping.

    Unknown keys are ignored; absent or null keys leave the field at its default.
    """
    if not (isinstance(cls, type) and dataclasses.is_dataclass(cls)):
        raise TypeError(f"expected a resource type, got {cls!r}")
    if not isinstance(data, Mapping):
        raise TypeError(f"expected a mapping for {cls.__name__}, got {type(data).__name__}")
    kwargs: dict[str, Any] = {}
    for f in dataclasses.fields(cls):
        if not f.init:
            continue
        value = data.get(f.metadata.get("json", f.name))
        if value is None:
            continue
        kwargs[f.name] = _decode(f.type, value)
    return cls(**kwargs)