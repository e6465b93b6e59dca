import pytest

from yawol.api import LoadBalancer, LoadBalancerEndpoint, ObjectMeta
from yawol.client import EventRecorder, InMemoryClient, NotFoundError, ObjectKey, Result
from yawol.infrastructure import InfrastructureDefaults
from yawol.nodes import (
    SERVICE_ANNOTATION,
    NodeReconciler,
    endpoint_from_node,
    equal_endpoints,
    is_node_ready,
    ready_endpoints_from_nodes,
)

V4 = "10.10.10.10"
V6 = "2001:16b8:3015:1100::1b14"


def _node(name, addresses, ready=True):
    return {
        "apiVersion": "v1",
        "kind": "Node",
        "metadata": {"name": name},
        "status": {
            "conditions": [
                {"type": "Ready", "status": "True" if ready else "False", "reason": "Ready"}
            ],
            "addresses": [{"type": "InternalIP", "address": a} for a in addresses],
        },
    }


def _setup(service_name="node-test1", annotation="default/node-test1"):
    client = InMemoryClient()
    client.create(
        {
            "apiVersion": "v1",
            "kind": "Service",
            "metadata": {"name": service_name, "namespace": "default"},
            "spec": {
                "type": "LoadBalancer",
                "ipFamilies": ["IPv4"],
                "ports": [{"protocol": "TCP", "port": 8123}],
            },
        }
    )
    client.create(
        LoadBalancer(
            metadata=ObjectMeta(
                name="default--" + service_name,
                namespace="default",
                annotations={SERVICE_ANNOTATION: annotation},
            )
        )
    )
    recorder = EventRecorder("yawol-cloud-controller", client)
    reconciler = NodeReconciler(
        target_client=client,
        control_client=client,
        infrastructure_defaults=InfrastructureDefaults(namespace="default"),
        recorder=recorder,
    )
    return client, reconciler


def _endpoints(client, name="default--node-test1"):
    return client.get(LoadBalancer, ObjectKey("default", name)).spec.endpoints


def test_is_node_ready():
    assert is_node_ready(_node("n", [V4]))
    assert not is_node_ready(_node("n", [V4], ready=False))
    assert not is_node_ready({"metadata": {"name": "n"}, "status": {}})
    deleting = _node("n", [V4])
    deleting["metadata"]["deletionTimestamp"] = "2022-01-01T00:00:00Z"
    assert not is_node_ready(deleting)


@pytest.mark.parametrize(
    "families, expected",
    [
        (["IPv4"], [V4]),
        (["IPv6"], [V6]),
        (["IPv4", "IPv6"], [V4, V6]),
        ([], [V4, V6]),
    ],
)
def test_endpoint_from_node_filters_ip_families(families, expected):
    endpoint = endpoint_from_node(_node("node1", [V4, V6]), families)
    assert endpoint == LoadBalancerEndpoint(name="node1", addresses=expected)


def test_endpoint_from_node_ignores_non_internal_addresses():
    node = _node("node1", [V4])
    node["status"]["addresses"].append({"type": "ExternalIP", "address": "127.0.0.1"})
    assert endpoint_from_node(node, ["IPv4"]).addresses == [V4]


def test_ready_endpoints_skip_unready_nodes():
    nodes = [_node("node1", [V4]), _node("node2", ["10.10.10.11"], ready=False)]
    assert [ep.name for ep in ready_endpoints_from_nodes(nodes, ["IPv4"])] == ["node1"]


def test_equal_endpoints_ignores_order():
    a = LoadBalancerEndpoint(name="node1", addresses=[V4])
    b = LoadBalancerEndpoint(name="node2", addresses=["10.10.10.11"])
    assert equal_endpoints([a, b], [b, a])
    assert not equal_endpoints([a], [LoadBalancerEndpoint(name="node1", addresses=[])])
    assert not equal_endpoints([a, b], [a])


def test_reconcile_without_nodes_leaves_no_endpoints():
    client, reconciler = _setup()
    assert reconciler.reconcile(ObjectKey("", "node1")) == Result()
    assert _endpoints(client) == []


def test_reconcile_syncs_nodes_and_readiness():
    client, reconciler = _setup()

    client.create(_node("node1", [V4, V6]))
    reconciler.reconcile(ObjectKey("", "node1"))
    assert _endpoints(client) == [LoadBalancerEndpoint(name="node1", addresses=[V4])]
    messages = [
        e["message"]
        for e in client.list("Event")
        if e["involvedObject"]["name"] == "node-test1" and e["involvedObject"]["kind"] == "Service"
    ]
    assert "LoadBalancer endpoints successfully synced with nodes addresses" in messages

    client.create(_node("node2", ["10.10.10.11"]))
    reconciler.reconcile(ObjectKey("", "node2"))
    endpoints = _endpoints(client)
    assert [(ep.name, ep.addresses) for ep in endpoints] == [
        ("node1", [V4]),
        ("node2", ["10.10.10.11"]),
    ]
    node_count = len(endpoints)

    node = client.get("Node", ObjectKey("", "node2"))
    node["status"]["conditions"] = [{"type": "Ready", "status": "False", "reason": "notready"}]
    client.update_status(node)
    reconciler.reconcile(ObjectKey("", "node2"))
    assert len(_endpoints(client)) == node_count - 1

    node["status"]["conditions"] = [{"type": "Ready", "status": "True", "reason": "ready"}]
    client.update_status(node)
    reconciler.reconcile(ObjectKey("", "node2"))
    assert len(_endpoints(client)) == node_count


def test_reconcile_records_no_event_when_in_sync():
    client, reconciler = _setup()
    client.create(_node("node1", [V4]))
    reconciler.reconcile(ObjectKey("", "node1"))
    count = len(reconciler.recorder.events)
    reconciler.reconcile(ObjectKey("", "node1"))
    assert len(reconciler.recorder.events) == count


def test_reconcile_bad_annotation_raises():
    _, reconciler = _setup(annotation="no-slash")
    with pytest.raises(ValueError):
        reconciler.reconcile(ObjectKey("", "node1"))


def test_reconcile_missing_service_raises():
    _, reconciler = _setup(annotation="default/missing")
    with pytest.raises(NotFoundError):
        reconciler.reconcile(ObjectKey("", "node1"))