"""Reconciliation of Services of type LoadBalancer into yawol LoadBalancer objects."""

from __future__ import annotations

import base64
import hashlib
import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from yawol.api import (
    SERVICE_CLASS_NAME,
    SERVICE_DEBUG,
    SERVICE_DEBUG_SSH_KEY,
    SERVICE_EXISTING_FLOATING_IP,
    SERVICE_INTERNAL_LOADBALANCER,
    SERVICE_REPLICAS,
    SERVICE_TCP_PROXY_PROTOCOL,
    SERVICE_TCP_PROXY_PROTOCOL_PORTS_FILTER,
    LabelSelector,
    LoadBalancer,
    LoadBalancerDebugSettings,
    LoadBalancerInfrastructure,
    LoadBalancerOptions,
    LoadBalancerSpec,
    ObjectMeta,
    SecretReference,
    ServicePort,
    from_dict,
    to_dict,
)
from yawol.client import (
    EVENT_TYPE_NORMAL,
    EVENT_TYPE_WARNING,
    EventRecorder,
    InMemoryClient,
    NotFoundError,
    ObjectKey,
    PatchType,
    Result,
)
from yawol.infrastructure import (
    InfrastructureDefaults,
    merged_infrastructure_details,
    parse_bool,
)
from yawol.nodes import SERVICE_ANNOTATION, equal_endpoints, ready_endpoints_from_nodes

SERVICE_FINALIZER = "stackit.cloud/loadbalancer"
LOAD_BALANCER_LABEL_NAME = "yawol.stackit.cloud/loadbalancer"
SERVICE_TYPE_LOAD_BALANCER = "LoadBalancer"

_SUPPORTED_PROTOCOLS = frozenset({"TCP", "UDP"})
_DELETION_REQUEUE_SECONDS = 5.0

logger = logging.getLogger(__name__)


def selector_hash(namespace: str, service_namespace: str, service_name: str) -> str:
    """Return the 16-character label value that ties a load balancer to its service."""
    digest = hashlib.sha256(f"{namespace}.{service_namespace}--{service_name}".encode()).digest()
    return base64.b32encode(digest).decode("ascii").lower()[:16]


def _metadata(svc: Mapping[str, Any]) -> Mapping[str, Any]:
    return svc.get("metadata") or {}


def _annotations(svc: Mapping[str, Any]) -> Mapping[str, str]:
    return _metadata(svc).get("annotations") or {}


def _spec(svc: Mapping[str, Any]) -> Mapping[str, Any]:
    return svc.get("spec") or {}


def _bool_annotation(annotations: Mapping[str, str], name: str) -> bool:
    try:
        return parse_bool(annotations.get(name, ""))
    except ValueError:
        return False


def _load_balancer_name(svc: Mapping[str, Any]) -> str:
    metadata = _metadata(svc)
    return f"{metadata.get('namespace', '')}--{metadata.get('name', '')}"


def _replicas(svc: Mapping[str, Any]) -> int:
    try:
        replicas = int(_annotations(svc).get(SERVICE_REPLICAS, ""))
    except ValueError:
        return 1
    return replicas if replicas >= 0 else 1


def _existing_floating_ip(svc: Mapping[str, Any]) -> str | None:
    return _annotations(svc).get(SERVICE_EXISTING_FLOATING_IP) or None


def _ip_from_status(svc: Mapping[str, Any]) -> str | None:
    ingress = ((svc.get("status") or {}).get("loadBalancer") or {}).get("ingress") or []
    return (ingress[0].get("ip") or None) if ingress else None


def _debug_settings(svc: Mapping[str, Any]) -> LoadBalancerDebugSettings:
    annotations = _annotations(svc)
    if not _bool_annotation(annotations, SERVICE_DEBUG):
        return LoadBalancerDebugSettings()
    return LoadBalancerDebugSettings(
        enabled=True, sshkey_name=annotations.get(SERVICE_DEBUG_SSH_KEY, "")
    )


def _ports_filter(annotations: Mapping[str, str]) -> list[int]:
    ports = []
    for part in annotations.get(SERVICE_TCP_PROXY_PROTOCOL_PORTS_FILTER, "").split(","):
        try:
            ports.append(int(part.strip()))
        except ValueError:
            continue
    return ports


def _options(svc: Mapping[str, Any]) -> LoadBalancerOptions:
    annotations = _annotations(svc)
    return LoadBalancerOptions(
        internal_lb=_bool_annotation(annotations, SERVICE_INTERNAL_LOADBALANCER),
        load_balancer_source_ranges=list(_spec(svc).get("loadBalancerSourceRanges") or []),
        tcp_proxy_protocol=_bool_annotation(annotations, SERVICE_TCP_PROXY_PROTOCOL),
        tcp_proxy_protocol_ports_filter=_ports_filter(annotations),
    )


def _service_ports(svc: Mapping[str, Any]) -> list[ServicePort]:
    return [from_dict(ServicePort, port) for port in _spec(svc).get("ports") or []]


def _validate(svc: Mapping[str, Any]) -> None:
    for port in _spec(svc).get("ports") or []:
        protocol = port.get("protocol") or "TCP"
        if protocol not in _SUPPORTED_PROTOCOLS:
            raise ValueError(f"unsupported protocol {protocol} on port {port.get('name', '')!r}")


def _infrastructure(infra: InfrastructureDefaults) -> LoadBalancerInfrastructure:
    return LoadBalancerInfrastructure(
        floating_net_id=infra.floating_network_id,
        network_id=infra.network_id or "",
        flavor=infra.flavor_ref,
        image=infra.image_ref,
        availability_zone=infra.availability_zone or "",
        auth_secret_ref=SecretReference(
            name=infra.auth_secret_name or "", namespace=infra.namespace or ""
        ),
    )


@dataclass
class ServiceReconciler:
    """Creates, updates and deletes the LoadBalancer object belonging to each Service."""

    target_client: InMemoryClient
    control_client: InMemoryClient
    infrastructure_defaults: InfrastructureDefaults
    recorder: EventRecorder
    class_name: str = ""

    def reconcile(self, request: ObjectKey) -> Result:
        """Bring the LoadBalancer of service ``request`` in line with the service."""
        try:
            svc = self.target_client.get("Service", request)
        except NotFoundError:
            logger.info("svc could not be found: %s", request)
            return Result()

        infra = merged_infrastructure_details(self.infrastructure_defaults, svc)
        lb_key = ObjectKey(namespace=infra.namespace or "", name=f"{request.namespace}--{request.name}")

        if _annotations(svc).get(SERVICE_CLASS_NAME, "") != self.class_name:
            logger.info("service %s and controller classname does not match", request)
            try:
                self.control_client.get(LoadBalancer, lb_key)
            except NotFoundError:
                return Result()
            logger.info("trigger deletion routine for %s", request)
            return self._deletion_routine(svc, infra)

        if _spec(svc).get("type") != SERVICE_TYPE_LOAD_BALANCER:
            logger.info("service %s is not of type LoadBalancer, trigger deletion routine", request)
            return self._deletion_routine(svc, infra)

        if _metadata(svc).get("deletionTimestamp"):
            return self._deletion_routine(svc, infra)

        svc = self._add_finalizer(svc)

        try:
            _validate(svc)
        except ValueError as error:
            self._fail(svc, ValueError(f"validation failed: {error}"))

        try:
            lb = self.control_client.get(LoadBalancer, lb_key)
        except NotFoundError:
            try:
                self._create_load_balancer(request, svc, infra)
            except (ValueError, TypeError) as error:
                self._fail(svc, error)
            self.recorder.event(svc, EVENT_TYPE_NORMAL, "creation", "LoadBalancer is in creation")
            return Result(requeue=True)

        expected = f"{_metadata(svc).get('namespace', '')}/{_metadata(svc).get('name', '')}"
        if lb.metadata.annotations.get(SERVICE_ANNOTATION) != expected:
            self.control_client.patch(lb, {"metadata": {"annotations": {SERVICE_ANNOTATION: expected}}})
            return Result(requeue=True)

        lb = self._reconcile_ports(lb, svc)
        lb = self._reconcile_replicas(lb, svc)
        lb = self._reconcile_nodes(lb, svc)
        lb = self._reconcile_infrastructure(lb, infra)
        lb = self._reconcile_debug_settings(lb, svc)
        lb = self._reconcile_options(lb, svc)
        self._reconcile_existing_floating_ip(lb, svc)
        return Result()

    def _fail(self, svc: Mapping[str, Any], error: Exception) -> None:
        self.recorder.event(svc, EVENT_TYPE_WARNING, "Failed", str(error))
        raise error

    def _patch(self, lb: LoadBalancer, patch: Mapping[str, Any]) -> LoadBalancer:
        return self.control_client.patch(lb, patch, PatchType.MERGE)

    def _add_finalizer(self, svc: dict[str, Any]) -> dict[str, Any]:
        finalizers = list(_metadata(svc).get("finalizers") or [])
        if SERVICE_FINALIZER in finalizers:
            return svc
        finalizers.append(SERVICE_FINALIZER)
        return self.target_client.patch(svc, {"metadata": {"finalizers": finalizers}})

    def _remove_finalizer(self, svc: dict[str, Any]) -> None:
        finalizers = list(_metadata(svc).get("finalizers") or [])
        if SERVICE_FINALIZER not in finalizers:
            return
        remaining = [name for name in finalizers if name != SERVICE_FINALIZER]
        self.target_client.patch(svc, {"metadata": {"finalizers": remaining}})

    def _create_load_balancer(
        self, request: ObjectKey, svc: Mapping[str, Any], infra: InfrastructureDefaults
    ) -> None:
        namespace = infra.namespace or ""
        lb = LoadBalancer(
            metadata=ObjectMeta(
                namespace=namespace,
                name=_load_balancer_name(svc),
                annotations={SERVICE_ANNOTATION: str(request)},
            ),
            spec=LoadBalancerSpec(
                replicas=_replicas(svc),
                selector=LabelSelector(
                    match_labels={
                        LOAD_BALANCER_LABEL_NAME: selector_hash(namespace, request.namespace, request.name)
                    }
                ),
                existing_floating_ip=_existing_floating_ip(svc),
                infrastructure=_infrastructure(infra),
                debug_settings=_debug_settings(svc),
                options=_options(svc),
            ),
        )
        self.control_client.create(lb)

    def _reconcile_ports(self, lb: LoadBalancer, svc: Mapping[str, Any]) -> LoadBalancer:
        ports = _service_ports(svc)
        if ports == lb.spec.ports:
            return lb
        lb = self._patch(lb, {"spec": {"ports": [to_dict(port) for port in ports] or None}})
        self.recorder.event(
            svc, EVENT_TYPE_NORMAL, "update", "LoadBalancer ports successfully synced with service ports"
        )
        return lb

    def _reconcile_replicas(self, lb: LoadBalancer, svc: Mapping[str, Any]) -> LoadBalancer:
        replicas = _replicas(svc)
        if replicas == lb.spec.replicas:
            return lb
        lb = self._patch(lb, {"spec": {"replicas": replicas}})
        self.recorder.event(
            svc, EVENT_TYPE_NORMAL, "update", "LoadBalancer replicas successfully synced with service replicas"
        )
        return lb

    def _reconcile_nodes(self, lb: LoadBalancer, svc: Mapping[str, Any]) -> LoadBalancer:
        nodes = self.target_client.list("Node")
        endpoints = ready_endpoints_from_nodes(nodes, _spec(svc).get("ipFamilies") or [])
        if equal_endpoints(lb.spec.endpoints, endpoints):
            return lb
        lb = self._patch(lb, {"spec": {"endpoints": [to_dict(ep) for ep in endpoints]}})
        self.recorder.event(
            svc, EVENT_TYPE_NORMAL, "update", "LoadBalancer endpoints successfully synced with nodes addresses"
        )
        return lb

    def _reconcile_infrastructure(self, lb: LoadBalancer, infra: InfrastructureDefaults) -> LoadBalancer:
        new_infra = _infrastructure(infra)
        if new_infra != lb.spec.infrastructure:
            lb = self._patch(lb, {"spec": {"infrastructure": to_dict(new_infra)}})
        if infra.internal_lb is not None and infra.internal_lb != lb.spec.options.internal_lb:
            lb = self._patch(lb, {"spec": {"options": {"internalLB": infra.internal_lb}}})
        return lb

    def _reconcile_debug_settings(self, lb: LoadBalancer, svc: Mapping[str, Any]) -> LoadBalancer:
        settings = _debug_settings(svc)
        if settings == lb.spec.debug_settings:
            return lb
        return self._patch(lb, {"spec": {"debugSettings": to_dict(settings)}})

    def _reconcile_options(self, lb: LoadBalancer, svc: Mapping[str, Any]) -> LoadBalancer:
        options = _options(svc)
        if options.load_balancer_source_ranges != lb.spec.options.load_balancer_source_ranges:
            lb = self._patch(
                lb,
                {"spec": {"options": {"loadBalancerSourceRanges": options.load_balancer_source_ranges or None}}},
            )
            self.recorder.event(
                svc,
                EVENT_TYPE_NORMAL,
                "update",
                "LoadBalancer SourceRanges successfully synced with service SourceRange",
            )
        if options.tcp_proxy_protocol != lb.spec.options.tcp_proxy_protocol:
            lb = self._patch(lb, {"spec": {"options": {"tcpProxyProtocol": options.tcp_proxy_protocol}}})
        if options.tcp_proxy_protocol_ports_filter != lb.spec.options.tcp_proxy_protocol_ports_filter:
            lb = self._patch(
                lb,
                {"spec": {"options": {
                    "tcpProxyProtocolPortFilter": options.tcp_proxy_protocol_ports_filter or None
                }}},
            )
        return lb

    def _reconcile_existing_floating_ip(self, lb: LoadBalancer, svc: Mapping[str, Any]) -> None:
        existing_ip = _existing_floating_ip(svc)
        if existing_ip is None:
            return
        status_ip = _ip_from_status(svc)
        if status_ip is None:
            return
        if existing_ip != status_ip:
            self._fail(
                svc, ValueError("adding a different ExistingFloatingIP is not supported after LB creation")
            )
        if lb.spec.existing_floating_ip == existing_ip:
            return
        self._patch(lb, {"spec": {"existingFloatingIP": existing_ip}})

    def _deletion_routine(self, svc: dict[str, Any], infra: InfrastructureDefaults) -> Result:
        lb_key = ObjectKey(namespace=infra.namespace or "", name=_load_balancer_name(svc))
        try:
            lb = self.control_client.get(LoadBalancer, lb_key)
        except NotFoundError:
            if _annotations(svc).get(SERVICE_CLASS_NAME, "") != self.class_name:
                return Result()
            ingress = ((svc.get("status") or {}).get("loadBalancer") or {}).get("ingress") or []
            if ingress:
                svc = self.target_client.patch_status(
                    svc, [{"op": "remove", "path": "/status/loadBalancer/ingress"}], PatchType.JSON
                )
                logger.info("successfully deleted loadbalancer ip on svc status")
            logger.info("load balancer deleted")
            self._remove_finalizer(svc)
            return Result()

        if lb.metadata.deletion_timestamp is None:
            self.control_client.delete(lb)
        return Result(requeue_after=_DELETION_REQUEUE_SECONDS)