from datetime import timedelta

import pytest

from yawol.api import OpenstackFlavorRef, OpenstackImageRef
from yawol.config import (
    CloudControllerOptions,
    ConfigError,
    infrastructure_defaults_from_env,
    parse_args,
)


def _env(**overrides):
    environ = {
        "SECRET_NAME": "secret",
        "FLOATING_NET_ID": "floatingNetID",
        "NETWORK_ID": "networkID",
        "CLUSTER_NAMESPACE": "default",
        "FLAVOR_ID": "flavorID",
        "IMAGE_ID": "imageID",
    }
    environ.update(overrides)
    return {key: value for key, value in environ.items() if value is not None}


def test_defaults_from_env():
    defaults = infrastructure_defaults_from_env(_env(AVAILABILITY_ZONE="eu01"))
    assert defaults.auth_secret_name == "secret"
    assert defaults.floating_network_id == "floatingNetID"
    assert defaults.network_id == "networkID"
    assert defaults.namespace == "default"
    assert defaults.flavor_ref == OpenstackFlavorRef(flavor_id="flavorID")
    assert defaults.image_ref == OpenstackImageRef(image_id="imageID")
    assert defaults.availability_zone == "eu01"
    assert defaults.internal_lb is False


def test_availability_zone_is_optional():
    defaults = infrastructure_defaults_from_env(_env())
    assert defaults.availability_zone == ""


@pytest.mark.parametrize(
    "missing", ["SECRET_NAME", "FLOATING_NET_ID", "NETWORK_ID", "CLUSTER_NAMESPACE"]
)
def test_required_env_missing(missing):
    with pytest.raises(ConfigError, match=f"could not read env {missing}"):
        infrastructure_defaults_from_env(_env(**{missing: None}))


def test_empty_required_env_counts_as_missing():
    with pytest.raises(ConfigError, match="NETWORK_ID"):
        infrastructure_defaults_from_env(_env(NETWORK_ID=""))


def test_flavor_by_search_only():
    defaults = infrastructure_defaults_from_env(_env(FLAVOR_ID=None, FLAVOR_SEARCH="c1.2"))
    assert defaults.flavor_ref == OpenstackFlavorRef(flavor_search="c1.2")


def test_no_flavor_raises():
    with pytest.raises(ConfigError, match=r"\[FLAVOR_ID,FLAVOR_NAME,FLAVOR_SEARCH\]"):
        infrastructure_defaults_from_env(_env(FLAVOR_ID=""))


def test_no_image_raises():
    with pytest.raises(ConfigError, match=r"\[IMAGE_ID,IMAGE_NAME,IMAGE_SEARCH\]"):
        infrastructure_defaults_from_env(_env(IMAGE_ID=None))


def test_image_by_name():
    defaults = infrastructure_defaults_from_env(_env(IMAGE_ID=None, IMAGE_NAME="alpine"))
    assert defaults.image_ref == OpenstackImageRef(image_name="alpine")


@pytest.mark.parametrize("raw,expected", [("1", True), ("True", True), ("f", False), ("FALSE", False)])
def test_internal_lb_parsing(raw, expected):
    assert infrastructure_defaults_from_env(_env(INTERNAL_LB=raw)).internal_lb is expected


def test_invalid_internal_lb_raises():
    with pytest.raises(ConfigError, match="INTERNAL_LB must match"):
        infrastructure_defaults_from_env(_env(INTERNAL_LB="yes"))


def test_parse_args_defaults():
    options = parse_args([])
    assert options == CloudControllerOptions()
    assert options.metrics_bind_address == ":8080"
    assert options.health_probe_bind_address == ":8081"
    assert options.leases_leader_election_resource_lock == "leases"
    assert options.lease_duration == timedelta(seconds=60)
    assert options.renew_deadline == timedelta(seconds=50)
    assert options.retry_period == timedelta(seconds=10)


def test_parse_args_values():
    options = parse_args([
        "-leader-elect",
        "--target-leader-elect=false",
        "-classname", "internal",
        "--leases-duration", "30",
        "-target-kubeconfig=inClusterConfig",
        "--leases-leader-election-resource-lock", "configmaps",
    ])
    assert options.leader_elect is True
    assert options.target_leader_elect is False
    assert options.classname == "internal"
    assert options.leases_duration == 30
    assert options.lease_duration == timedelta(seconds=30)
    assert options.target_kubeconfig == "inClusterConfig"
    assert options.leases_leader_election_resource_lock == "configmaps"


def test_parse_args_rejects_bad_int():
    with pytest.raises(SystemExit):
        parse_args(["--leases-duration", "soon"])


def test_parse_args_rejects_unknown_flag():
    with pytest.raises(SystemExit):
        parse_args(["--no-such-flag"])