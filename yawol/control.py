"""Controllers that carry LoadBalancer state and events back to the Service."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from yawol.api import LoadBalancer
from yawol.client import (
    EVENT_TYPE_NORMAL,
    EventRecorder,
    InMemoryClient,
    NotFoundError,
    ObjectKey,
    PatchType,
    Result,
)
from yawol.nodes import SERVICE_ANNOTATION

EVENT_SOURCE = "yawol-service"
LOAD_BALANCER_KIND = "LoadBalancer"

logger = logging.getLogger(__name__)


def service_key_from_annotation(lb: LoadBalancer) -> ObjectKey:
    """Return the key of the service a load balancer belongs to, read from its annotation."""
    parts = lb.metadata.annotations.get(SERVICE_ANNOTATION, "").split("/")
    if len(parts) != 2:
        raise ValueError("could not read service namespaced name from load balancer annotation")
    return ObjectKey(namespace=parts[0], name=parts[1])


def _section(obj: Mapping[str, Any], name: str) -> Mapping[str, Any]:
    return obj.get(name) or {}


@dataclass
class EventReconciler:
    """Forwards events about load balancers to the service they belong to."""

    target_client: InMemoryClient
    control_client: InMemoryClient
    recorder: EventRecorder

    def reconcile(self, request: ObjectKey) -> Result:
        """Forward event ``request`` to its service if it comes from the load balancer components."""
        try:
            event = self.control_client.get("Event", request)
        except NotFoundError:
            return Result()

        involved = _section(event, "involvedObject")
        if (
            _section(event, "source").get("component") != EVENT_SOURCE
            or involved.get("kind") != LOAD_BALANCER_KIND
        ):
            return Result()

        lb_key = ObjectKey(namespace=involved.get("namespace", ""), name=involved.get("name", ""))
        try:
            lb = self.control_client.get(LoadBalancer, lb_key)
        except NotFoundError:
            return Result()

        svc = self.target_client.get("Service", service_key_from_annotation(lb))
        self.recorder.event(
            svc, event.get("type", ""), event.get("reason", ""), event.get("message", "")
        )
        return Result()


@dataclass
class LoadBalancerReconciler:
    """Writes the external IP of a ready load balancer into its service's status."""

    target_client: InMemoryClient
    control_client: InMemoryClient
    recorder: EventRecorder

    def reconcile(self, request: ObjectKey) -> Result:
        """Publish the external IP of load balancer ``request`` once it has ready replicas."""
        try:
            lb = self.control_client.get(LoadBalancer, request)
        except NotFoundError:
            return Result()

        key = service_key_from_annotation(lb)
        try:
            svc = self.target_client.get("Service", key)
        except NotFoundError:
            logger.error("could not retrieve svc %s", key)
            raise

        status = lb.status
        if status.external_ip is None or not status.ready_replicas or status.ready_replicas <= 0:
            return Result()

        wanted = {"ingress": [{"ip": status.external_ip}]}
        current = _section(_section(svc, "status"), "loadBalancer")
        if dict(current) == wanted:
            return Result()

        svc = self.target_client.patch_status(
            svc, {"status": {"loadBalancer": wanted}}, PatchType.MERGE
        )
        self.recorder.event(
            svc,
            EVENT_TYPE_NORMAL,
            "creation",
            f"LoadBalancer is successfully created with IP {status.external_ip}",
        )
        return Result(requeue=True)