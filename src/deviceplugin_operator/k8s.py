"""Kubernetes client helpers."""

import logging
from kubernetes import client, config
from kubernetes.client.rest import ApiException

from . import crd
from .config import Config

logger = logging.getLogger(__name__)

# Initialize clients
_core_v1 = None
_apps_v1 = None
_custom_api = None
_api_client = None


def load_config():
    """Load Kubernetes configuration, preferring in-cluster credentials."""
    if Config.KUBECONFIG_PATH:
        config.load_kube_config(Config.KUBECONFIG_PATH)
        logger.info(f"Loaded kubeconfig from {Config.KUBECONFIG_PATH}")
        return

    try:
        config.load_incluster_config()
        logger.info("Loaded in-cluster Kubernetes config")
    except config.ConfigException:
        config.load_kube_config()
        logger.info("Loaded kubeconfig")


def init_clients():
    """Initialize Kubernetes clients."""
    global _core_v1, _apps_v1, _custom_api

    load_config()

    _core_v1 = client.CoreV1Api()
    _apps_v1 = client.AppsV1Api()
    _custom_api = client.CustomObjectsApi()

    return _core_v1, _apps_v1, _custom_api


def get_clients():
    """Get initialized Kubernetes clients."""
    if _core_v1 is None or _apps_v1 is None or _custom_api is None:
        init_clients()
    return _core_v1, _apps_v1, _custom_api


def to_dict(obj):
    """Serialize a client model (or plain dict) into its camelCase dict form."""
    global _api_client
    if obj is None:
        return None
    if _api_client is None:
        _api_client = client.ApiClient()
    return _api_client.sanitize_for_serialization(obj)


class ResourceStore:
    """Reads and writes device plugin resources and their DaemonSets.

    Everything returned is a plain dict in API (camelCase) form, whether the
    underlying client hands back models or dicts. Missing objects are
    reported as None rather than raising.
    """

    def __init__(self, core_api=None, apps_api=None, custom_api=None, namespace=None):
        if core_api is None or apps_api is None or custom_api is None:
            core_api, apps_api, custom_api = get_clients()
        self.core_api = core_api
        self.apps_api = apps_api
        self.custom_api = custom_api
        self.namespace = namespace or Config.NAMESPACE

    # Device plugin resources (cluster scoped)

    def get_resource(self, family, name):
        try:
            return to_dict(
                self.custom_api.get_cluster_custom_object(
                    group=crd.GROUP,
                    version=crd.VERSION,
                    plural=crd.get_family(family)["plural"],
                    name=name,
                )
            )
        except ApiException as e:
            if e.status == 404:
                return None
            logger.error(f"Error getting {family} resource {name}: {e}")
            raise

    def list_resources(self, family):
        response = self.custom_api.list_cluster_custom_object(
            group=crd.GROUP,
            version=crd.VERSION,
            plural=crd.get_family(family)["plural"],
        )
        return to_dict(response).get("items", [])

    def create_resource(self, family, body):
        return to_dict(
            self.custom_api.create_cluster_custom_object(
                group=crd.GROUP,
                version=crd.VERSION,
                plural=crd.get_family(family)["plural"],
                body=body,
            )
        )

    def delete_resource(self, family, name):
        """Delete a resource; returns False if it was already gone."""
        try:
            self.custom_api.delete_cluster_custom_object(
                group=crd.GROUP,
                version=crd.VERSION,
                plural=crd.get_family(family)["plural"],
                name=name,
            )
            return True
        except ApiException as e:
            if e.status == 404:
                return False
            raise

    def replace_resource_status(self, family, body):
        """Write the status subresource. The body carries resourceVersion."""
        return to_dict(
            self.custom_api.replace_cluster_custom_object_status(
                group=crd.GROUP,
                version=crd.VERSION,
                plural=crd.get_family(family)["plural"],
                name=body["metadata"]["name"],
                body=body,
            )
        )

    # Plugin DaemonSets

    def get_daemonset(self, name):
        try:
            return to_dict(
                self.apps_api.read_namespaced_daemon_set(
                    name=name, namespace=self.namespace
                )
            )
        except ApiException as e:
            if e.status == 404:
                return None
            logger.error(f"Error getting DaemonSet {name}: {e}")
            raise

    def create_daemonset(self, body):
        return to_dict(
            self.apps_api.create_namespaced_daemon_set(
                namespace=self.namespace, body=body
            )
        )

    def replace_daemonset(self, name, body):
        return to_dict(
            self.apps_api.replace_namespaced_daemon_set(
                name=name, namespace=self.namespace, body=body
            )
        )

    def list_plugin_pods(self, family):
        pods = self.core_api.list_namespaced_pod(
            namespace=self.namespace,
            label_selector=f"app={crd.plugin_name(family)}",
        )
        return to_dict(pods).get("items", [])
