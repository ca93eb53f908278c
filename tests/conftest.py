"""
pytest fixtures: an in-memory cluster standing in for the Kubernetes API.
"""

import copy

import pytest
from kubernetes.client.rest import ApiException

from deviceplugin_operator import crd
from deviceplugin_operator.k8s import ResourceStore

NAMESPACE = "inteldeviceplugins-system"


class FakeCluster:
    """Implements the AppsV1Api, CoreV1Api and CustomObjectsApi calls the
    ResourceStore makes, with resourceVersion conflict checks and owner
    reference garbage collection.
    """

    def __init__(self):
        self.resources = {}  # (plural, name) -> object
        self.daemonsets = {}  # (namespace, name) -> object
        self.pods = []
        self.writes = []  # (method, name)
        self.fail_next = {}  # method -> [status, ...] raised before doing anything
        self.daemonset_status = {"desiredNumberScheduled": 2, "numberReady": 2}
        self._version = 0
        self._uid = 0

    def _next_version(self):
        self._version += 1
        return str(self._version)

    def _next_uid(self):
        self._uid += 1
        return f"uid-{self._uid}"

    def _inject(self, method):
        statuses = self.fail_next.get(method)
        if statuses:
            raise ApiException(status=statuses.pop(0), reason="Injected")

    @staticmethod
    def _not_found(what):
        return ApiException(status=404, reason=f"{what} not found")

    # CustomObjectsApi

    @staticmethod
    def _served(obj, group, version):
        # No conversion webhook: the body is returned as stored, relabelled
        # with the version it was read at.
        served = copy.deepcopy(obj)
        served["apiVersion"] = f"{group}/{version}"
        return served

    def get_cluster_custom_object(self, group, version, plural, name):
        self._inject("get_cluster_custom_object")
        try:
            return self._served(self.resources[(plural, name)], group, version)
        except KeyError:
            raise self._not_found(name) from None

    def list_cluster_custom_object(self, group, version, plural):
        return {
            "items": [
                self._served(obj, group, version)
                for (p, _), obj in self.resources.items()
                if p == plural
            ]
        }

    def create_cluster_custom_object(self, group, version, plural, body):
        self._inject("create_cluster_custom_object")
        name = body["metadata"]["name"]
        if (plural, name) in self.resources:
            raise ApiException(status=409, reason="AlreadyExists")
        obj = copy.deepcopy(body)
        obj["metadata"]["uid"] = self._next_uid()
        obj["metadata"]["resourceVersion"] = self._next_version()
        self.resources[(plural, name)] = obj
        return copy.deepcopy(obj)

    def replace_cluster_custom_object(self, group, version, plural, name, body):
        stored = self.resources.get((plural, name))
        if stored is None:
            raise self._not_found(name)
        if body["metadata"].get("resourceVersion") != stored["metadata"]["resourceVersion"]:
            raise ApiException(status=409, reason="Conflict")
        obj = copy.deepcopy(body)
        obj.pop("status", None)
        if "status" in stored:
            obj["status"] = stored["status"]
        obj["metadata"]["resourceVersion"] = self._next_version()
        self.resources[(plural, name)] = obj
        return copy.deepcopy(obj)

    def replace_cluster_custom_object_status(self, group, version, plural, name, body):
        self._inject("replace_cluster_custom_object_status")
        stored = self.resources.get((plural, name))
        if stored is None:
            raise self._not_found(name)
        if body["metadata"].get("resourceVersion") != stored["metadata"]["resourceVersion"]:
            raise ApiException(status=409, reason="Conflict")
        stored["status"] = copy.deepcopy(body.get("status"))
        stored["metadata"]["resourceVersion"] = self._next_version()
        self.writes.append(("replace_status", name))
        return copy.deepcopy(stored)

    def delete_cluster_custom_object(self, group, version, plural, name):
        stored = self.resources.pop((plural, name), None)
        if stored is None:
            raise self._not_found(name)
        # Garbage collection of dependents
        uid = stored["metadata"]["uid"]
        for key, ds in list(self.daemonsets.items()):
            refs = ds["metadata"].get("ownerReferences") or []
            if any(ref.get("uid") == uid for ref in refs):
                del self.daemonsets[key]
        return {"status": "Success"}

    # AppsV1Api

    def read_namespaced_daemon_set(self, name, namespace):
        self._inject("read_namespaced_daemon_set")
        try:
            return copy.deepcopy(self.daemonsets[(namespace, name)])
        except KeyError:
            raise self._not_found(name) from None

    def create_namespaced_daemon_set(self, namespace, body):
        self._inject("create_namespaced_daemon_set")
        name = body["metadata"]["name"]
        if (namespace, name) in self.daemonsets:
            raise ApiException(status=409, reason="AlreadyExists")
        obj = copy.deepcopy(body)
        obj["metadata"]["uid"] = self._next_uid()
        obj["metadata"]["resourceVersion"] = self._next_version()
        obj["status"] = dict(self.daemonset_status)
        self.daemonsets[(namespace, name)] = obj
        self.writes.append(("create_daemonset", name))
        return copy.deepcopy(obj)

    def replace_namespaced_daemon_set(self, name, namespace, body):
        self._inject("replace_namespaced_daemon_set")
        stored = self.daemonsets.get((namespace, name))
        if stored is None:
            raise self._not_found(name)
        if body["metadata"].get("resourceVersion") != stored["metadata"]["resourceVersion"]:
            raise ApiException(status=409, reason="Conflict")
        obj = copy.deepcopy(body)
        obj["status"] = stored.get("status")
        obj["metadata"]["resourceVersion"] = self._next_version()
        self.daemonsets[(namespace, name)] = obj
        self.writes.append(("replace_daemonset", name))
        return copy.deepcopy(obj)

    # CoreV1Api

    def list_namespaced_pod(self, namespace, label_selector=None):
        key, _, value = (label_selector or "").partition("=")
        return {
            "items": [
                copy.deepcopy(pod)
                for pod in self.pods
                if pod["metadata"].get("namespace") == namespace
                and (not key or pod["metadata"].get("labels", {}).get(key) == value)
            ]
        }

    # Test helpers

    def add_plugin_pod(self, family, node_name):
        self.pods.append(
            {
                "metadata": {
                    "name": f"{crd.plugin_name(family)}-{node_name}",
                    "namespace": NAMESPACE,
                    "labels": {"app": crd.plugin_name(family)},
                },
                "spec": {"nodeName": node_name},
            }
        )

    def edit_spec(self, family, name, **changes):
        """Operator edit of a resource spec, as kubectl edit would do it."""
        plural = crd.get_family(family)["plural"]
        body = copy.deepcopy(self.resources[(plural, name)])
        body["spec"].update(changes)
        return self.replace_cluster_custom_object(crd.GROUP, crd.VERSION, plural, name, body)

    def daemonset(self, family):
        return self.daemonsets.get((NAMESPACE, crd.plugin_name(family)))


@pytest.fixture
def cluster():
    return FakeCluster()


@pytest.fixture
def store(cluster):
    return ResourceStore(
        core_api=cluster, apps_api=cluster, custom_api=cluster, namespace=NAMESPACE
    )


@pytest.fixture
def make_resource(store):
    """Create a device plugin resource in the fake cluster.

    ``api_version`` is the version the object is stored under. Reads always
    come back labelled with the version they were made at.
    """

    def _make(family, name, spec, api_version=crd.API_VERSION):
        body = {
            "apiVersion": api_version,
            "kind": crd.get_family(family)["kind"],
            "metadata": {"name": name},
            "spec": spec,
        }
        return store.create_resource(family, body)

    return _make
