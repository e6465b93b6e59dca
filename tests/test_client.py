import dataclasses

import pytest

from yawol.api import LoadBalancer, LoadBalancerSpec, LoadBalancerStatus, ObjectMeta
from yawol.client import (
    EVENT_TYPE_NORMAL,
    EventRecorder,
    InMemoryClient,
    NotFoundError,
    ObjectKey,
    PatchType,
    Result,
    json_patch,
    merge_patch,
)


def make_service(name="svc", namespace="default"):
    return {
        "apiVersion": "v1",
        "kind": "Service",
        "metadata": {"name": name, "namespace": namespace},
        "spec": {"type": "LoadBalancer"},
    }


def make_load_balancer(name="default--svc", replicas=1):
    return LoadBalancer(
        metadata=ObjectMeta(name=name, namespace="default"),
        spec=LoadBalancerSpec(replicas=replicas),
    )


def test_merge_patch_rfc_example():
    target = {"a": "b", "c": {"d": "e", "f": "g"}}
    result = merge_patch(target, {"a": "z", "c": {"f": None}})
    assert result == {"a": "z", "c": {"d": "e"}}
    assert target == {"a": "b", "c": {"d": "e", "f": "g"}}


def test_merge_patch_accepts_json_bytes_and_replaces_lists():
    target = {"spec": {"endpoints": [{"name": "a"}], "replicas": 1}}
    result = merge_patch(target, b'{"spec":{"endpoints":[]}}')
    assert result == {"spec": {"endpoints": [], "replicas": 1}}


def test_json_patch_remove_ingress():
    doc = {"status": {"loadBalancer": {"ingress": [{"ip": "123.123.123.123"}]}}}
    result = json_patch(doc, '[{"op":"remove", "path":"/status/loadBalancer/ingress"}]')
    assert result == {"status": {"loadBalancer": {}}}
    assert "ingress" in doc["status"]["loadBalancer"]


def test_json_patch_add_replace_and_escaped_pointer():
    doc = {"metadata": {}, "spec": {"ports": [{"port": 1}]}}
    ops = [
        {"op": "add", "path": "/metadata/annotations", "value": {"x/y": "1"}},
        {"op": "replace", "path": "/metadata/annotations/x~1y", "value": "2"},
        {"op": "add", "path": "/spec/ports/-", "value": {"port": 2}},
        {"op": "test", "path": "/spec/ports/1/port", "value": 2},
    ]
    result = json_patch(doc, ops)
    assert result["metadata"]["annotations"] == {"x/y": "2"}
    assert [p["port"] for p in result["spec"]["ports"]] == [1, 2]


def test_json_patch_errors():
    with pytest.raises(ValueError):
        json_patch({"a": 1}, [{"op": "remove", "path": "/b"}])
    with pytest.raises(ValueError):
        json_patch({"a": 1}, [{"op": "test", "path": "/a", "value": 2}])
    with pytest.raises(ValueError):
        json_patch({"a": 1}, [{"op": "bogus", "path": "/a"}])


def test_object_key_from_object():
    key = ObjectKey.from_object(make_service("web", "shop"))
    assert key == ObjectKey("shop", "web")
    assert str(key) == "shop/web"


def test_create_and_get_round_trip():
    client = InMemoryClient()
    created = client.create(make_load_balancer(replicas=3))
    assert created.metadata.uid
    fetched = client.get(LoadBalancer, ObjectKey("default", "default--svc"))
    assert fetched.spec.replicas == 3
    assert fetched.metadata.uid == created.metadata.uid


def test_get_missing_raises():
    client = InMemoryClient()
    with pytest.raises(NotFoundError):
        client.get("Service", ObjectKey("default", "nope"))


def test_create_twice_raises():
    client = InMemoryClient()
    client.create(make_service())
    with pytest.raises(ValueError):
        client.create(make_service())


def test_list_filters_namespace_and_sorts():
    client = InMemoryClient()
    client.create(make_service("b"))
    client.create(make_service("a"))
    client.create(make_service("c", "other"))
    names = [s["metadata"]["name"] for s in client.list("Service", "default")]
    assert names == ["a", "b"]
    assert len(client.list("Service")) == 3


def test_update_keeps_status_and_update_status_keeps_spec():
    client = InMemoryClient()
    created = client.create(make_load_balancer())
    with_status = dataclasses.replace(
        created,
        status=LoadBalancerStatus(external_ip="123.123.123.123", ready_replicas=1),
    )
    after_status = client.update_status(with_status)
    changed = dataclasses.replace(
        after_status,
        spec=dataclasses.replace(after_status.spec, replicas=2),
        status=LoadBalancerStatus(),
    )
    client.update(changed)
    stored = client.get(LoadBalancer, ObjectKey.from_object(changed))
    assert stored.spec.replicas == 2
    assert stored.status.external_ip == "123.123.123.123"


def test_patch_ignores_status_and_changes_resource_version():
    client = InMemoryClient()
    created = client.create(make_load_balancer())
    apply_merge = client.patch
    patched = apply_merge(created, b'{"spec":{"replicas":3},"status":{"externalIP":"1.1.1.1"}}')
    assert patched.spec.replicas == 3
    assert patched.status.external_ip is None
    assert patched.metadata.resource_version != created.metadata.resource_version


def test_patch_status_with_json_patch():
    client = InMemoryClient()
    svc = make_service()
    svc["status"] = {"loadBalancer": {"ingress": [{"ip": "123.123.123.123"}]}}
    svc = client.create(svc)
    client.patch_status(
        svc, '[{"op":"remove", "path":"/status/loadBalancer/ingress"}]', PatchType.JSON
    )
    stored = client.get("Service", ObjectKey("default", "svc"))
    assert stored["status"] == {"loadBalancer": {}}
    assert stored["spec"] == {"type": "LoadBalancer"}


def test_delete_with_and_without_finalizers():
    client = InMemoryClient()
    plain = client.create(make_service("plain"))
    client.delete(plain)
    with pytest.raises(NotFoundError):
        client.get("Service", ObjectKey("default", "plain"))

    guarded = make_service("guarded")
    guarded["metadata"]["finalizers"] = ["stackit.cloud/loadbalancer"]
    client.create(guarded)
    client.delete(guarded)
    marked = client.get("Service", ObjectKey("default", "guarded"))
    assert marked["metadata"]["deletionTimestamp"]
    marked["metadata"]["finalizers"] = []
    client.update(marked)
    with pytest.raises(NotFoundError):
        client.get("Service", ObjectKey("default", "guarded"))


def test_event_recorder_stores_event():
    client = InMemoryClient()
    svc = client.create(make_service("web"))
    recorder = EventRecorder("yawol-cloud-controller", client)
    recorder.event(svc, EVENT_TYPE_NORMAL, "creation", "LoadBalancer is in creation")
    events = client.list("Event", "default")
    assert len(events) == 1
    assert events[0]["involvedObject"]["name"] == "web"
    assert events[0]["involvedObject"]["kind"] == "Service"
    assert events[0]["involvedObject"]["uid"] == svc["metadata"]["uid"]
    assert events[0]["source"]["component"] == "yawol-cloud-controller"
    assert recorder.events[0]["message"] == "LoadBalancer is in creation"


def test_result_defaults():
    assert Result() == Result(requeue=False, requeue_after=0.0)
    assert Result(requeue=True) != Result()