"""In-memory object store with the read and write verbs the controllers rely on."""

from __future__ import annotations

import copy
import dataclasses
import itertools
import json
import threading
import uuid
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from yawol.api import from_dict, to_dict

EVENT_TYPE_NORMAL = "Normal"
EVENT_TYPE_WARNING = "Warning"

_PRESERVED_METADATA = ("uid", "creationTimestamp", "deletionTimestamp")


class NotFoundError(LookupError):
    """Raised when an object does not exist in the store."""

    def __init__(self, kind: str, key: ObjectKey) -> None:
        super().__init__(f"{kind} {key} not found")
        self.kind = kind
        self.key = key


@dataclass(frozen=True)
class ObjectKey:
    """Namespace and name that identify an object of a given kind."""

    namespace: str = ""
    name: str = ""

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}"

    @classmethod
    def from_object(cls, obj: Any) -> ObjectKey:
        """Return the key of a resource object or of its JSON mapping."""
        metadata = _wire(obj).get("metadata") or {}
        return cls(namespace=metadata.get("namespace", ""), name=metadata.get("name", ""))


@dataclass(frozen=True)
class Result:
    """Outcome of a reconcile run."""

    requeue: bool = False
    requeue_after: float = 0.0


class PatchType(Enum):
    """Supported patch formats."""

    MERGE = "application/merge-patch+json"
    JSON = "application/json-patch+json"


def _load(patch: Any) -> Any:
    if isinstance(patch, (bytes, bytearray)):
        patch = patch.decode("utf-8")
    if isinstance(patch, str):
        return json.loads(patch)
    return copy.deepcopy(patch)


def _merge(target: Any, patch: Any) -> Any:
    if not isinstance(patch, Mapping):
        return patch
    result = dict(target) if isinstance(target, Mapping) else {}
    for key, value in patch.items():
        if value is None:
            result.pop(key, None)
        else:
            result[key] = _merge(result.get(key), value)
    return result


def merge_patch(target: Any, patch: Any) -> Any:
    """Apply a JSON merge patch to ``target`` and return the result; ``target`` is unchanged."""
    return _merge(copy.deepcopy(target), _load(patch))


def _pointer(path: Any) -> list[str]:
    if not isinstance(path, str):
        raise ValueError(f"invalid JSON pointer: {path!r}")
    if path == "":
        return []
    if not path.startswith("/"):
        raise ValueError(f"invalid JSON pointer: {path!r}")
    return [token.replace("~1", "/").replace("~0", "~") for token in path[1:].split("/")]


def _index(token: str, upper: int) -> int:
    if not token.isdigit() or (len(token) > 1 and token.startswith("0")):
        raise ValueError(f"invalid array index: {token!r}")
    index = int(token)
    if index >= upper:
        raise ValueError(f"array index out of range: {index}")
    return index


def _resolve(document: Any, tokens: list[str]) -> Any:
    current = document
    for token in tokens:
        if isinstance(current, list):
            current = current[_index(token, len(current))]
        elif isinstance(current, dict):
            if token not in current:
                raise ValueError(f"path member {token!r} does not exist")
            current = current[token]
        else:
            raise ValueError(f"cannot descend into {type(current).__name__} at {token!r}")
    return current


def _add(document: Any, tokens: list[str], value: Any) -> Any:
    if not tokens:
        return value
    parent = _resolve(document, tokens[:-1])
    last = tokens[-1]
    if isinstance(parent, list):
        if last == "-":
            parent.append(value)
        else:
            parent.insert(_index(last, len(parent) + 1), value)
    elif isinstance(parent, dict):
        parent[last] = value
    else:
        raise ValueError(f"cannot add to {type(parent).__name__}")
    return document


def _remove(document: Any, tokens: list[str]) -> Any:
    if not tokens:
        raise ValueError("cannot remove the document root")
    parent = _resolve(document, tokens[:-1])
    last = tokens[-1]
    if isinstance(parent, list):
        return parent.pop(_index(last, len(parent)))
    if isinstance(parent, dict):
        if last not in parent:
            raise ValueError(f"path member {last!r} does not exist")
        return parent.pop(last)
    raise ValueError(f"cannot remove from {type(parent).__name__}")


def _operation_value(operation: Mapping[str, Any]) -> Any:
    if "value" not in operation:
        raise ValueError(f"operation {operation.get('op')!r} needs a value")
    return copy.deepcopy(operation["value"])


def json_patch(document: Any, operations: Any) -> Any:
    """Apply a JSON patch (a list of operations) and return the result; ``document`` is unchanged."""
    ops = _load(operations)
    if not isinstance(ops, list):
        raise ValueError("a JSON patch must be a list of operations")
    result = copy.deepcopy(document)
    for operation in ops:
        if not isinstance(operation, Mapping) or "op" not in operation or "path" not in operation:
            raise ValueError(f"invalid patch operation: {operation!r}")
        name = operation["op"]
        path = _pointer(operation["path"])
        if name == "add":
            result = _add(result, path, _operation_value(operation))
        elif name == "remove":
            _remove(result, path)
        elif name == "replace":
            value = _operation_value(operation)
            if path:
                _remove(result, path)
            result = _add(result, path, value)
        elif name == "move":
            value = _remove(result, _pointer(operation.get("from")))
            result = _add(result, path, value)
        elif name == "copy":
            value = copy.deepcopy(_resolve(result, _pointer(operation.get("from"))))
            result = _add(result, path, value)
        elif name == "test":
            if _resolve(result, path) != _operation_value(operation):
                raise ValueError(f"test failed at {operation['path']!r}")
        else:
            raise ValueError(f"unknown patch operation: {name!r}")
    return result


def _wire(obj: Any) -> dict[str, Any]:
    if dataclasses.is_dataclass(obj) and not isinstance(obj, type):
        return to_dict(obj)
    if isinstance(obj, Mapping):
        return copy.deepcopy(dict(obj))
    raise TypeError(f"expected a resource object or mapping, got {type(obj).__name__}")


def _kind_name(kind: Any) -> str:
    if isinstance(kind, type):
        return kind.__name__
    if isinstance(kind, str) and kind:
        return kind
    raise ValueError(f"invalid kind: {kind!r}")


def _object_kind(obj: Any, wire: Mapping[str, Any]) -> str:
    if wire.get("kind"):
        return wire["kind"]
    if dataclasses.is_dataclass(obj):
        return type(obj).__name__
    raise ValueError("object has no kind")


def _like(obj_or_kind: Any, data: dict[str, Any]) -> Any:
    if isinstance(obj_or_kind, type):
        return from_dict(obj_or_kind, data)
    if dataclasses.is_dataclass(obj_or_kind):
        return from_dict(type(obj_or_kind), data)
    return copy.deepcopy(data)


def _now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _apply(document: dict[str, Any], patch: Any, patch_type: PatchType) -> Any:
    if patch_type is PatchType.MERGE:
        return merge_patch(document, patch)
    if patch_type is PatchType.JSON:
        return json_patch(document, patch)
    raise ValueError(f"unsupported patch type: {patch_type!r}")


def _with_status(document: dict[str, Any], status: Any) -> dict[str, Any]:
    if status is None:
        document.pop("status", None)
    else:
        document["status"] = status
    return document


class InMemoryClient:
    """A thread-safe store of API objects with get, list, create, update, patch and delete."""

    def __init__(self) -> None:
        self._objects: dict[tuple[str, str, str], dict[str, Any]] = {}
        self._lock = threading.RLock()
        self._versions = itertools.count(1)

    def _stored(self, kind: str, key: ObjectKey) -> dict[str, Any]:
        data = self._objects.get((kind, key.namespace, key.name))
        if data is None:
            raise NotFoundError(kind, key)
        return data

    def _write(self, kind: str, key: ObjectKey, data: dict[str, Any]) -> dict[str, Any]:
        metadata = data.setdefault("metadata", {})
        metadata["resourceVersion"] = str(next(self._versions))
        if metadata.get("deletionTimestamp") and not metadata.get("finalizers"):
            self._objects.pop((kind, key.namespace, key.name), None)
        else:
            self._objects[(kind, key.namespace, key.name)] = copy.deepcopy(data)
        return data

    @staticmethod
    def _preserve(new: dict[str, Any], stored: Mapping[str, Any], kind: str) -> dict[str, Any]:
        new["kind"] = kind
        metadata = new.setdefault("metadata", {})
        stored_metadata = stored.get("metadata") or {}
        for name in _PRESERVED_METADATA:
            if name in stored_metadata:
                metadata[name] = stored_metadata[name]
            else:
                metadata.pop(name, None)
        return new

    def get(self, kind: Any, key: ObjectKey) -> Any:
        """Return the object of ``kind`` (a resource type or a kind name) stored under ``key``."""
        with self._lock:
            return _like(kind, self._stored(_kind_name(kind), key))

    def list(self, kind: Any, namespace: str | None = None) -> list[Any]:
        """Return all objects of ``kind``, in one namespace or all, ordered by namespace and name."""
        name = _kind_name(kind)
        with self._lock:
            found = sorted(
                (key, data)
                for key, data in self._objects.items()
                if key[0] == name and (namespace is None or key[1] == namespace)
            )
            return [_like(kind, data) for _, data in found]

    def create(self, obj: Any) -> Any:
        """Store a new object and return it as stored."""
        wire = _wire(obj)
        kind = _object_kind(obj, wire)
        wire["kind"] = kind
        metadata = wire.setdefault("metadata", {})
        if not metadata.get("name"):
            raise ValueError(f"{kind} has no name")
        key = ObjectKey.from_object(wire)
        with self._lock:
            if (kind, key.namespace, key.name) in self._objects:
                raise ValueError(f"{kind} {key} already exists")
            metadata["uid"] = str(uuid.uuid4())
            metadata["creationTimestamp"] = _now()
            metadata.pop("deletionTimestamp", None)
            return _like(obj, self._write(kind, key, wire))

    def update(self, obj: Any) -> Any:
        """Replace an object's metadata and spec; its status is kept."""
        wire = _wire(obj)
        kind = _object_kind(obj, wire)
        key = ObjectKey.from_object(wire)
        with self._lock:
            stored = self._stored(kind, key)
            new = _with_status(self._preserve(wire, stored, kind), copy.deepcopy(stored.get("status")))
            return _like(obj, self._write(kind, key, new))

    def update_status(self, obj: Any) -> Any:
        """Replace an object's status; everything else is kept."""
        wire = _wire(obj)
        kind = _object_kind(obj, wire)
        key = ObjectKey.from_object(wire)
        with self._lock:
            new = _with_status(copy.deepcopy(self._stored(kind, key)), wire.get("status"))
            return _like(obj, self._write(kind, key, new))

    def patch(self, obj: Any, patch: Any, patch_type: PatchType = PatchType.MERGE) -> Any:
        """Patch an object's metadata and spec; changes to its status are ignored."""
        wire = _wire(obj)
        kind = _object_kind(obj, wire)
        key = ObjectKey.from_object(wire)
        with self._lock:
            stored = self._stored(kind, key)
            patched = _apply(stored, patch, patch_type)
            if not isinstance(patched, dict):
                raise ValueError("patch did not produce an object")
            new = _with_status(self._preserve(patched, stored, kind), copy.deepcopy(stored.get("status")))
            return _like(obj, self._write(kind, key, new))

    def patch_status(self, obj: Any, patch: Any, patch_type: PatchType = PatchType.MERGE) -> Any:
        """Patch an object's status; changes elsewhere are ignored."""
        wire = _wire(obj)
        kind = _object_kind(obj, wire)
        key = ObjectKey.from_object(wire)
        with self._lock:
            stored = self._stored(kind, key)
            patched = _apply(stored, patch, patch_type)
            if not isinstance(patched, dict):
                raise ValueError("patch did not produce an object")
            new = _with_status(copy.deepcopy(stored), patched.get("status"))
            return _like(obj, self._write(kind, key, new))

    def delete(self, obj: Any) -> None:
        """Delete an object; one with finalizers is only marked for deletion."""
        wire = _wire(obj)
        kind = _object_kind(obj, wire)
        key = ObjectKey.from_object(wire)
        with self._lock:
            stored = self._stored(kind, key)
            metadata = stored.get("metadata") or {}
            if not metadata.get("finalizers"):
                self._objects.pop((kind, key.namespace, key.name), None)
                return
            if not metadata.get("deletionTimestamp"):
                marked = copy.deepcopy(stored)
                marked["metadata"]["deletionTimestamp"] = _now()
                self._write(kind, key, marked)


@dataclass
class EventRecorder:
    """Records events about objects, storing them in a client when one is given."""

    component: str
    client: InMemoryClient | None = None
    events: list[dict[str, Any]] = field(default_factory=list)

    def event(self, obj: Any, event_type: str, reason: str, message: str) -> dict[str, Any]:
        """Record an event about ``obj`` and return it."""
        wire = _wire(obj)
        metadata = wire.get("metadata") or {}
        name = metadata.get("name", "")
        record: dict[str, Any] = {
            "apiVersion": "v1",
            "kind": "Event",
            "metadata": {
                "name": f"{name}.{uuid.uuid4().hex[:16]}",
                "namespace": metadata.get("namespace") or "default",
            },
            "involvedObject": {
                "kind": wire.get("kind", ""),
                "namespace": metadata.get("namespace", ""),
                "name": name,
                "uid": metadata.get("uid", ""),
                "apiVersion": wire.get("apiVersion", ""),
            },
            "type": event_type,
            "reason": reason,
            "message": message,
            "source": {"component": self.component},
        }
        if self.client is not None:
            record = self.client.create(record)
        self.events.append(record)
        return record