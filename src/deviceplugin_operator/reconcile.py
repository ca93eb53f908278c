"""Core reconciliation logic."""

import logging
import threading
from datetime import datetime, timezone
from kubernetes.client.rest import ApiException

from . import crd
from .config import Config
from .conversion import convert_to_current
from .defaults import default_spec
from .errors import ConflictError, InvalidSpecError
from .k8s import to_dict
from .templates import (
    apply_managed_fields,
    create_daemonset_manifest,
    create_owner_references,
    managed_fields,
)

logger = logging.getLogger(__name__)


def retry_on_conflict(operation, description, retry_statuses=(409,)):
    """Run ``operation`` until it stops failing with a retryable status.

    Each attempt must re-read whatever it writes, so a retry always starts
    from fresh state.
    """
    attempts = max(1, Config.MAX_CONFLICT_RETRIES)
    for attempt in range(1, attempts + 1):
        try:
            return operation()
        except ApiException as e:
            if e.status not in retry_statuses:
                raise
            logger.warning(
                f"Conflict writing {description} ({e.status}, attempt {attempt}/{attempts}), "
                "retrying with a fresh read"
            )
    raise ConflictError(f"Gave up writing {description} after {attempts} conflicts")


def _controller_uid(obj):
    for ref in obj.get("metadata", {}).get("ownerReferences") or []:
        if ref.get("controller"):
            return ref.get("uid")
    return None


def owner_of(daemonset):
    """Return (family, name) of the resource controlling a DaemonSet, or None."""
    for ref in daemonset.get("metadata", {}).get("ownerReferences") or []:
        if not ref.get("controller"):
            continue
        group = (ref.get("apiVersion") or "").rpartition("/")[0]
        family = crd.KIND_TO_FAMILY.get(ref.get("kind"))
        if group == crd.GROUP and family:
            return family, ref.get("name")
    return None


def render_daemonset(family, resource, namespace):
    """Render the desired DaemonSet (dict form) for a resource of any version."""
    current = convert_to_current(resource)
    spec = default_spec(current.get("spec"))
    if not spec.get("image"):
        raise InvalidSpecError(f"{current.get('kind')} {current['metadata']['name']}: image is required")

    metadata = current["metadata"]
    owner_refs = create_owner_references(current["kind"], metadata["name"], metadata["uid"])
    return to_dict(create_daemonset_manifest(family, spec, namespace, owner_refs))


def ensure_daemonset(store, desired):
    """Create or update the DaemonSet so its managed fields match ``desired``.

    Returns the DaemonSet as stored. No write is issued when nothing differs.
    """
    name = desired["metadata"]["name"]
    owner_uid = _controller_uid(desired)

    def attempt():
        live = store.get_daemonset(name)
        if live is None:
            logger.info(f"Creating DaemonSet {store.namespace}/{name}")
            return store.create_daemonset(desired)

        live_owner = _controller_uid(live)
        if live_owner and live_owner != owner_uid:
            raise InvalidSpecError(
                f"DaemonSet {store.namespace}/{name} is controlled by another resource ({live_owner})"
            )

        if live_owner == owner_uid and managed_fields(live) == managed_fields(desired):
            logger.debug(f"DaemonSet {store.namespace}/{name} is up to date")
            return live

        logger.info(f"Updating DaemonSet {store.namespace}/{name}")
        return store.replace_daemonset(name, apply_managed_fields(live, desired))

    # A 404 can only come from the replace: the DaemonSet vanished after the read.
    return retry_on_conflict(attempt, f"DaemonSet {name}", retry_statuses=(404, 409))


def _now():
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def set_condition(conditions, ready, reason, message):
    """Return ``conditions`` with the Reconciled condition set.

    lastTransitionTime only moves when the condition status changes.
    """
    status = "True" if ready else "False"
    others = [c for c in conditions or [] if c.get("type") != crd.CONDITION_RECONCILED]
    previous = next(
        (c for c in conditions or [] if c.get("type") == crd.CONDITION_RECONCILED), None
    )
    transition = _now()
    if previous and previous.get("status") == status and previous.get("lastTransitionTime"):
        transition = previous["lastTransitionTime"]

    return others + [
        {
            "type": crd.CONDITION_RECONCILED,
            "status": status,
            "reason": reason,
            "message": message,
            "lastTransitionTime": transition,
        }
    ]


def desired_status(daemonset, node_names):
    """Status fields describing the DaemonSet a resource controls."""
    metadata = daemonset["metadata"]
    ds_status = daemonset.get("status") or {}
    return {
        "controlledDaemonSet": {
            "apiVersion": crd.WORKLOAD_API_VERSION,
            "kind": crd.WORKLOAD_KIND,
            "name": metadata["name"],
            "namespace": metadata.get("namespace"),
            "uid": metadata.get("uid"),
        },
        "desiredNumberScheduled": ds_status.get("desiredNumberScheduled", 0),
        "numberReady": ds_status.get("numberReady", 0),
        "nodeNames": node_names,
    }


def _write_status(store, family, name, make_status):
    """Merge ``make_status(old_status)`` into the resource status if it changed."""

    def attempt():
        resource = store.get_resource(family, name)
        if resource is None:
            logger.info(f"{crd.get_family(family)['kind']} {name} is gone, skipping status update")
            return None

        status = resource.get("status") or {}
        new_status = dict(status)
        new_status.update(make_status(status))
        if new_status == status:
            logger.debug(f"Status of {name} is up to date")
            return resource

        resource["status"] = new_status
        logger.info(f"Updating status of {crd.get_family(family)['kind']} {name}")
        return store.replace_resource_status(family, resource)

    return retry_on_conflict(attempt, f"status of {name}")


def update_status(store, family, name, daemonset):
    """Record the controlled DaemonSet in the resource status."""
    node_names = sorted(
        {
            pod["spec"]["nodeName"]
            for pod in store.list_plugin_pods(family)
            if pod.get("spec", {}).get("nodeName")
        }
    )
    fields = desired_status(daemonset, node_names)
    message = f"DaemonSet {store.namespace}/{daemonset['metadata']['name']} is up to date"

    def make_status(status):
        return dict(
            fields,
            conditions=set_condition(
                status.get("conditions"), True, crd.REASON_RECONCILED, message
            ),
        )

    return _write_status(store, family, name, make_status)


def report_failure(store, family, name, reason, message):
    """Surface a reconciliation failure as a Reconciled=False condition."""

    def make_status(status):
        return {"conditions": set_condition(status.get("conditions"), False, reason, message)}

    return _write_status(store, family, name, make_status)


def reconcile_deviceplugin(store, family, name):
    """Run one reconcile pass for a device plugin resource.

    Everything is recomputed from the stored resource and DaemonSet, so a
    pass can be repeated or abandoned at any point. Returns the DaemonSet, or
    None when the resource no longer exists.
    """
    kind = crd.get_family(family)["kind"]
    resource = store.get_resource(family, name)
    if resource is None:
        logger.info(f"{kind} {name} not found, nothing to reconcile")
        return None
    if resource.get("metadata", {}).get("deletionTimestamp"):
        logger.info(f"{kind} {name} is being deleted, leaving cleanup to owner references")
        return None

    desired = render_daemonset(family, resource, store.namespace)
    daemonset = ensure_daemonset(store, desired)
    update_status(store, family, name, daemonset)
    return daemonset


class KeyedRunner:
    """Serializes reconcile passes per resource key.

    A request for a key that is already being reconciled does not run in
    parallel. It marks the key dirty and the running pass goes around once
    more. Different keys run independently.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._running = set()
        self._dirty = set()

    def run(self, key, fn):
        with self._lock:
            if key in self._running:
                self._dirty.add(key)
                logger.debug(f"Reconcile of {key} already in progress, queued a re-run")
                return None
            self._running.add(key)

        try:
            while True:
                result = fn()
                with self._lock:
                    if key not in self._dirty:
                        self._running.discard(key)
                        return result
                    self._dirty.discard(key)
        except BaseException:
            with self._lock:
                self._running.discard(key)
                self._dirty.discard(key)
            raise


_runner = KeyedRunner()


def reconcile(store, family, name, runner=None):
    """Reconcile one resource, collapsing overlapping requests for the same key."""
    runner = runner or _runner
    return runner.run((family, name), lambda: reconcile_deviceplugin(store, family, name))
