"""Node readiness and node-to-endpoint sync for load balancers."""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any

from yawol.api import LoadBalancer, LoadBalancerEndpoint, to_dict
from yawol.client import (
    EVENT_TYPE_NORMAL,
    EventRecorder,
    InMemoryClient,
    ObjectKey,
    PatchType,
    Result,
)
from yawol.infrastructure import InfrastructureDefaults

SERVICE_ANNOTATION = "yawol.stackit.cloud/serviceName"

NODE_INTERNAL_IP = "InternalIP"
NODE_READY = "Ready"
CONDITION_TRUE = "True"
IPV4_PROTOCOL = "IPv4"
IPV6_PROTOCOL = "IPv6"

_H = "[0-9a-fA-F]"
_V4_OCTET = r"(25[0-5]|(2[0-4]|1{0,1}[0-9]){0,1}[0-9])"
_V4_TAIL = rf"({_V4_OCTET}\.){{3,3}}{_V4_OCTET}"
_IPV6 = re.compile(
    rf"^(({_H}{{1,4}}:){{7,7}}{_H}{{1,4}}"
    rf"|({_H}{{1,4}}:){{1,7}}:"
    rf"|({_H}{{1,4}}:){{1,6}}:{_H}{{1,4}}"
    rf"|({_H}{{1,4}}:){{1,5}}(:{_H}{{1,4}}){{1,2}}"
    rf"|({_H}{{1,4}}:){{1,4}}(:{_H}{{1,4}}){{1,3}}"
    rf"|({_H}{{1,4}}:){{1,3}}(:{_H}{{1,4}}){{1,4}}"
    rf"|({_H}{{1,4}}:){{1,2}}(:{_H}{{1,4}}){{1,5}}"
    rf"|{_H}{{1,4}}:((:{_H}{{1,4}}){{1,6}})"
    rf"|:((:{_H}{{1,4}}){{1,7}}|:)"
    rf"|fe80:(:{_H}{{0,4}}){{0,4}}%[0-9a-zA-Z]{{1,}}"
    rf"|::(ffff(:0{{1,4}}){{0,1}}:){{0,1}}{_V4_TAIL}"
    rf"|({_H}{{1,4}}:){{1,4}}:{_V4_TAIL})\Z"
)
_IPV4 = re.compile(r"^(((25[0-5]|2[0-4][0-9]|[01]?[0-9][0-9]?)(\.|\Z)){4})")

_SYNC_MESSAGE = "LoadBalancer endpoints successfully synced with nodes addresses"


def _metadata(node: Mapping[str, Any]) -> Mapping[str, Any]:
    return node.get("metadata") or {}


def _status(node: Mapping[str, Any]) -> Mapping[str, Any]:
    return node.get("status") or {}


def is_node_ready(node: Mapping[str, Any]) -> bool:
    """Return whether a node is not being deleted and its Ready condition is True."""
    if _metadata(node).get("deletionTimestamp"):
        return False
    for condition in _status(node).get("conditions") or []:
        if condition.get("type") == NODE_READY:
            return condition.get("status") == CONDITION_TRUE
    return False


def endpoint_from_node(node: Mapping[str, Any], ip_families: Sequence[str]) -> LoadBalancerEndpoint:
    """Return the endpoint of a node holding its internal addresses of the given IP families."""
    addresses: list[str] = []
    for address in _status(node).get("addresses") or []:
        if address.get("type") != NODE_INTERNAL_IP:
            continue
        value = address.get("address", "")
        if not ip_families:
            addresses.append(value)
            continue
        for family in ip_families:
            if family == IPV4_PROTOCOL and _IPV4.search(value):
                addresses.append(value)
            elif family == IPV6_PROTOCOL and _IPV6.search(value):
                addresses.append(value)
    return LoadBalancerEndpoint(name=_metadata(node).get("name", ""), addresses=addresses)


def ready_endpoints_from_nodes(
    nodes: Iterable[Mapping[str, Any]], ip_families: Sequence[str]
) -> list[LoadBalancerEndpoint]:
    """Return the endpoints of all ready nodes, in the order given."""
    return [endpoint_from_node(node, ip_families) for node in nodes if is_node_ready(node)]


def equal_endpoints(
    first: Iterable[LoadBalancerEndpoint], second: Iterable[LoadBalancerEndpoint]
) -> bool:
    """Return whether two endpoint lists are equal regardless of their order by name."""
    return sorted(first, key=lambda ep: ep.name) == sorted(second, key=lambda ep: ep.name)


def _service_key(lb: LoadBalancer) -> ObjectKey:
    parts = lb.metadata.annotations.get(SERVICE_ANNOTATION, "").split("/")
    if len(parts) != 2:
        raise ValueError("could not read service namespaced name from load balancer annotation")
    return ObjectKey(namespace=parts[0], name=parts[1])


@dataclass
class NodeReconciler:
    """Keeps the endpoints of every load balancer in line with the ready nodes."""

    target_client: InMemoryClient
    control_client: InMemoryClient
    infrastructure_defaults: InfrastructureDefaults
    recorder: EventRecorder

    def reconcile(self, request: ObjectKey) -> Result:
        """Sync endpoints of all load balancers after a change to node ``request``."""
        load_balancers = self.control_client.list(LoadBalancer, self.infrastructure_defaults.namespace)
        nodes = self.target_client.list("Node")
        for lb in load_balancers:
            svc = self.target_client.get("Service", _service_key(lb))
            families = (svc.get("spec") or {}).get("ipFamilies") or []
            ready = ready_endpoints_from_nodes(nodes, families)
            if not equal_endpoints(lb.spec.endpoints, ready):
                patch = {"spec": {"endpoints": [to_dict(ep) for ep in ready]}}
                self.control_client.patch(lb, patch, PatchType.MERGE)
                self.recorder.event(svc, EVENT_TYPE_NORMAL, "update", _SYNC_MESSAGE)
        return Result()