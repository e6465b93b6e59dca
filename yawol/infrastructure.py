"""Infrastructure defaults for load balancers and their per-service overrides."""

from __future__ import annotations

import dataclasses
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from yawol.api import (
    SERVICE_AVAILABILITY_ZONE,
    SERVICE_FLAVOR_ID,
    SERVICE_IMAGE_ID,
    SERVICE_INTERNAL_LOADBALANCER,
    OpenstackFlavorRef,
    OpenstackImageRef,
)

_TRUE_VALUES = frozenset({"1", "t", "T", "TRUE", "true", "True"})
_FALSE_VALUES = frozenset({"0", "f", "F", "FALSE", "false", "False"})


@dataclass
class InfrastructureDefaults:
    """Infrastructure settings; ``None`` means not set."""

    auth_secret_name: str | None = None
    floating_network_id: str | None = None
    network_id: str | None = None
    namespace: str | None = None
    flavor_ref: OpenstackFlavorRef | None = None
    image_ref: OpenstackImageRef | None = None
    availability_zone: str | None = None
    internal_lb: bool | None = None


def parse_bool(value: str) -> bool:
    """Parse a boolean the way the controller accepts it in env vars and annotations."""
    if value in _TRUE_VALUES:
        return True
    if value in _FALSE_VALUES:
        return False
    raise ValueError(f"invalid boolean value: {value!r}")


def _annotations(svc: Any) -> Mapping[str, str]:
    if isinstance(svc, Mapping):
        metadata = svc.get("metadata") or {}
        return metadata.get("annotations") or {}
    metadata = getattr(svc, "metadata", None)
    return getattr(metadata, "annotations", None) or {}


def infrastructure_details_from_service(svc: Any) -> InfrastructureDefaults:
    """Return the infrastructure settings a service sets through its annotations."""
    annotations = _annotations(svc)
    details = InfrastructureDefaults()
    if image_id := annotations.get(SERVICE_IMAGE_ID, ""):
        details.image_ref = OpenstackImageRef(image_id=image_id)
    if flavor_id := annotations.get(SERVICE_FLAVOR_ID, ""):
        details.flavor_ref = OpenstackFlavorRef(flavor_id=flavor_id)
    if zone := annotations.get(SERVICE_AVAILABILITY_ZONE, ""):
        details.availability_zone = zone
    if internal := annotations.get(SERVICE_INTERNAL_LOADBALANCER, ""):
        try:
            details.internal_lb = parse_bool(internal)
        except ValueError:
            pass
    return details


def merged_infrastructure_details(defaults: InfrastructureDefaults, svc: Any) -> InfrastructureDefaults:
    """Return ``defaults`` overridden by whatever the service sets; ``defaults`` is unchanged."""
    overrides = infrastructure_details_from_service(svc)
    changes = {
        f.name: getattr(overrides, f.name)
        for f in dataclasses.fields(overrides)
        if getattr(overrides, f.name) is not None
    }
    return dataclasses.replace(defaults, **changes)