"""Command-line options and environment settings of the cloud controller."""

from __future__ import annotations

import argparse
import os
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from datetime import timedelta

from yawol.api import OpenstackFlavorRef, OpenstackImageRef
from yawol.infrastructure import InfrastructureDefaults, parse_bool

ENV_CLUSTER_NAMESPACE = "CLUSTER_NAMESPACE"
ENV_AUTH_SECRET_NAME = "SECRET_NAME"
ENV_FLOATING_NET_ID = "FLOATING_NET_ID"
ENV_NETWORK_ID = "NETWORK_ID"
ENV_FLAVOR_ID = "FLAVOR_ID"
ENV_FLAVOR_NAME = "FLAVOR_NAME"
ENV_FLAVOR_SEARCH = "FLAVOR_SEARCH"
ENV_IMAGE_ID = "IMAGE_ID"
ENV_IMAGE_NAME = "IMAGE_NAME"
ENV_IMAGE_SEARCH = "IMAGE_SEARCH"
ENV_AVAILABILITY_ZONE = "AVAILABILITY_ZONE"
ENV_INTERNAL_LB = "INTERNAL_LB"


class ConfigError(ValueError):
    """Raised when the controller's environment settings are missing or invalid."""


@dataclass(frozen=True)
class CloudControllerOptions:
    """Settings given to the cloud controller on its command line."""

    metrics_bind_address: str = ":8080"
    health_probe_bind_address: str = ":8081"
    leader_elect: bool = False
    target_leader_elect: bool = False
    target_kubeconfig: str = ""
    control_kubeconfig: str = ""
    classname: str = ""
    leases_duration: int = 60
    leases_renew_deadline: int = 50
    leases_retry_period: int = 10
    leases_leader_election_resource_lock: str = "leases"

    @property
    def lease_duration(self) -> timedelta:
        return timedelta(seconds=self.leases_duration)

    @property
    def renew_deadline(self) -> timedelta:
        return timedelta(seconds=self.leases_renew_deadline)

    @property
    def retry_period(self) -> timedelta:
        return timedelta(seconds=self.leases_retry_period)


def _required(environ: Mapping[str, str], name: str) -> str:
    value = environ.get(name, "")
    if not value:
        raise ConfigError(f"could not read env {name}")
    return value


def _optional(environ: Mapping[str, str], name: str) -> str | None:
    return environ.get(name, "") or None


def _one_of(environ: Mapping[str, str], names: Sequence[str]) -> list[str | None]:
    values = [_optional(environ, name) for name in names]
    if all(value is None for value in values):
        raise ConfigError(f"could not read one of envs [{','.join(names)}]")
    return values


def infrastructure_defaults_from_env(environ: Mapping[str, str] | None = None) -> InfrastructureDefaults:
    """Read the infrastructure defaults from the environment (``os.environ`` if none is given)."""
    if environ is None:
        environ = os.environ
    auth_secret_name = _required(environ, ENV_AUTH_SECRET_NAME)
    floating_network_id = _required(environ, ENV_FLOATING_NET_ID)
    network_id = _required(environ, ENV_NETWORK_ID)
    namespace = _required(environ, ENV_CLUSTER_NAMESPACE)

    flavor_id, flavor_name, flavor_search = _one_of(
        environ, (ENV_FLAVOR_ID, ENV_FLAVOR_NAME, ENV_FLAVOR_SEARCH)
    )
    image_id, image_name, image_search = _one_of(
        environ, (ENV_IMAGE_ID, ENV_IMAGE_NAME, ENV_IMAGE_SEARCH)
    )

    availability_zone = environ.get(ENV_AVAILABILITY_ZONE, "")

    internal_lb = False
    if raw := environ.get(ENV_INTERNAL_LB, ""):
        try:
            internal_lb = parse_bool(raw)
        except ValueError:
            raise ConfigError(
                f"{ENV_INTERNAL_LB} must match one of the following values: "
                "'1', 't', 'T', 'true', 'TRUE', 'True', '0', 'f', 'F', 'false', 'FALSE', 'False'"
            ) from None

    return InfrastructureDefaults(
        auth_secret_name=auth_secret_name,
        floating_network_id=floating_network_id,
        network_id=network_id,
        namespace=namespace,
        flavor_ref=OpenstackFlavorRef(
            flavor_id=flavor_id, flavor_name=flavor_name, flavor_search=flavor_search
        ),
        image_ref=OpenstackImageRef(
            image_id=image_id, image_name=image_name, image_search=image_search
        ),
        availability_zone=availability_zone,
        internal_lb=internal_lb,
    )


def _flag_bool(value: str) -> bool:
    try:
        return parse_bool(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid boolean value: {value!r}") from None


def _parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="yawol-cloud-controller", allow_abbrev=False)

    def option(name: str, **kwargs) -> None:
        parser.add_argument(f"-{name}", f"--{name}", dest=name.replace("-", "_"), **kwargs)

    def flag(name: str, help_text: str) -> None:
        option(name, type=_flag_bool, nargs="?", const=True, default=False, help=help_text)

    option("metrics-bind-address", default=":8080",
           help="The address the metric endpoint binds to.")
    option("health-probe-bind-address", default=":8081",
           help="The address the probe endpoint binds to.")
    flag("leader-elect", "Enable leader election for controller manager.")
    flag("target-leader-elect", "Enable leader election for target manager.")
    option("target-kubeconfig", default="",
           help="K8s credentials for watching the Service resources.")
    option("control-kubeconfig", default="",
           help="K8s credentials for deploying the LoadBalancer resources.")
    option("classname", default="",
           help="Only listen to Services with the given className.")
    option("leases-duration", type=int, default=60,
           help="Time in seconds a non-leader waits until forcing to acquire leadership.")
    option("leases-renew-deadline", type=int, default=50,
           help="Time in seconds the current controller retries before giving up.")
    option("leases-retry-period", type=int, default=10,
           help="Time in seconds the controller waits between lease actions.")
    option("leases-leader-election-resource-lock", default="leases",
           help="The resource type used for leader election.")
    return parser


def parse_args(argv: Sequence[str] | None = None) -> CloudControllerOptions:
    """Parse the controller's command line into its options."""
    namespace = _parser().parse_args(argv)
    return CloudControllerOptions(**vars(namespace))