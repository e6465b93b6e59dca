# yawol

`yawol` holds the reconciliation logic of a cloud controller that turns
Kubernetes services of type `LoadBalancer` into yawol `LoadBalancer`
resources, and reports the state of those load balancers back to the
services. Everything works against an in-memory object store, so the logic
can be driven and inspected directly from Python.

## Modules

- `yawol.api` – the `yawol.stackit.cloud/v1beta1` resource types as
  dataclasses: `LoadBalancer`, `LoadBalancerSet`, `LoadBalancerMachine`,
  their specs and statuses, and the pieces they are made of
  (`ObjectMeta`, `LabelSelector`, `ServicePort`, `OpenstackImageRef`,
  `OpenstackFlavorRef`, `LoadBalancerInfrastructure`, ...). `to_dict`
  gives the JSON form with wire field names (empty optional fields left
  out); `from_dict(cls, data)` builds an object back, ignoring unknown keys.
  A negative `replicas` in a `LoadBalancerSpec` or `LoadBalancerSetSpec`
  raises `ValueError`. The module also holds the service annotation names,
  such as `SERVICE_CLASS_NAME` and `SERVICE_EXISTING_FLOATING_IP`.
- `yawol.infrastructure` – `InfrastructureDefaults` (every field `None`
  when unset), `parse_bool` (accepts `1 t T true TRUE True 0 f F false
  FALSE False`), `infrastructure_details_from_service` (reads the image id,
  flavor id, availability zone and internal-LB annotations) and
  `merged_infrastructure_details` (defaults overridden by what the service
  sets).
- `yawol.client` – `InMemoryClient`, a thread-safe object store with
  `get`, `list`, `create`, `update`, `update_status`, `patch`,
  `patch_status` and `delete`; `merge_patch` and `json_patch` for the two
  `PatchType`s; `NotFoundError`, `ObjectKey`, `Result` and an
  `EventRecorder` that stores `Event` objects in a client when given one.
  Deleting an object with finalizers only marks it with a deletion
  timestamp; it goes away once its finalizers are removed.
- `yawol.nodes` – `is_node_ready`, `endpoint_from_node`,
  `ready_endpoints_from_nodes`, `equal_endpoints` and the
  `NodeReconciler`, which keeps the endpoints of every load balancer in
  line with the ready nodes' internal addresses of the service's IP
  families.
- `yawol.service` – the `ServiceReconciler`, which creates, updates and
  deletes the load balancer of each service, and `selector_hash`, the
  16-character selector label value of a new load balancer.
- `yawol.control` – the `LoadBalancerReconciler`, which writes the
  external IP of a load balancer with ready replicas into the service
  status, the `EventReconciler`, which forwards events from the
  `yawol-service` component about load balancers to the owning service,
  and `service_key_from_annotation`.
- `yawol.config` – `infrastructure_defaults_from_env`, `parse_args`
  (returning `CloudControllerOptions`) and `ConfigError`.

## Reconciling a service

```python
from yawol.api import LoadBalancer
from yawol.client import EventRecorder, InMemoryClient, ObjectKey
from yawol.infrastructure import InfrastructureDefaults
from yawol.service import ServiceReconciler

store = InMemoryClient()
store.create({
    "kind": "Service",
    "metadata": {"name": "web", "namespace": "default"},
    "spec": {
        "type": "LoadBalancer",
        "ports": [{"name": "http", "protocol": "TCP", "port": 80, "nodePort": 30080}],
    },
})

reconciler = ServiceReconciler(
    target_client=store,
    control_client=store,
    infrastructure_defaults=InfrastructureDefaults(
        auth_secret_name="secret",
        floating_network_id="floating-net",
        network_id="private-net",
        namespace="default",
        availability_zone="eu01",
        internal_lb=False,
    ),
    recorder=EventRecorder("yawol-cloud-controller", store),
)

reconciler.reconcile(ObjectKey("default", "web"))   # creates the load balancer
reconciler.reconcile(ObjectKey("default", "web"))   # syncs ports, nodes, options
lb = store.get(LoadBalancer, ObjectKey("default", "default--web"))
```

The load balancer is named `<service namespace>--<service name>` and lives
in the namespace of the infrastructure defaults. The first run adds the
`stackit.cloud/loadbalancer` finalizer to the service, creates the load
balancer and asks for a requeue; later runs patch ports, replicas,
endpoints, infrastructure, debug settings, options and the existing
floating IP where they differ, recording an event for the changes to
ports, replicas, endpoints and source ranges.

Only TCP and UDP ports are accepted; any other protocol raises
`ValueError` and records a `Warning` event on the service. A service whose
`className` annotation does not match the reconciler's `class_name`, a
service that is no longer of type `LoadBalancer` and a service being
deleted all lead to the load balancer being deleted; once it is gone, the
ingress IP is removed from the service status and the finalizer is taken
off (the finalizer is kept when the class name does not match).

## Configuration from the environment

```python
from yawol.config import infrastructure_defaults_from_env

defaults = infrastructure_defaults_from_env({
    "SECRET_NAME": "secret",
    "FLOATING_NET_ID": "floating-net",
    "NETWORK_ID": "private-net",
    "CLUSTER_NAMESPACE": "default",
    "FLAVOR_ID": "flavor-id",
    "IMAGE_ID": "image-id",
    "AVAILABILITY_ZONE": "eu01",
    "INTERNAL_LB": "false",
})
```

With no argument, `os.environ` is read. `SECRET_NAME`, `FLOATING_NET_ID`,
`NETWORK_ID` and `CLUSTER_NAMESPACE` are required, as is one of
`FLAVOR_ID`, `FLAVOR_NAME`, `FLAVOR_SEARCH` and one of `IMAGE_ID`,
`IMAGE_NAME`, `IMAGE_SEARCH`. `AVAILABILITY_ZONE` defaults to the empty
string and `INTERNAL_LB` to false. A missing value or an `INTERNAL_LB`
that is not a boolean raises `ConfigError`.

## Command-line options

`parse_args(argv)` understands `--metrics-bind-address` (`:8080`),
`--health-probe-bind-address` (`:8081`), `--leader-elect`,
`--target-leader-elect`, `--target-kubeconfig`, `--control-kubeconfig`,
`--classname`, `--leases-duration` (60), `--leases-renew-deadline` (50),
`--leases-retry-period` (10) and `--leases-leader-election-resource-lock`
(`leases`); each may also be written with a single dash. The lease
settings are also available as `timedelta`s through `lease_duration`,
`renew_deadline` and `retry_period`.

## What this package does not do

There is no command to run and no controller process: nothing here
connects to a Kubernetes API server, watches objects, runs leader
election or serves metrics and health probes. Objects live only in an
`InMemoryClient`, and reconcilers run when `reconcile` is called on them.

## Service annotations

Services may set annotations under `yawol.stackit.cloud/`: `imageId`,
`flavorId`, `availabilityZone`, `internalLB`, `className`, `replicas`,
`debug`, `debugsshkey`, `tcpProxyProtocol`, `tcpProxyProtocolPortsFilter`
(comma separated ports) and `existingFloatingIP`. A replicas value that is
not a non-negative integer counts as 1. A reconciler only handles
services whose `className` annotation matches its own class name; the
default is the empty class name.