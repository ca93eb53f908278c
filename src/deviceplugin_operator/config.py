"""Operator configuration, overridable through environment variables."""

import os


class Config:
    """Device plugin operator settings."""

    # Kubernetes
    KUBECONFIG_PATH = os.getenv("KUBECONFIG_PATH", "")
    NAMESPACE = os.getenv("NAMESPACE", "inteldeviceplugins-system")

    # Node selector applied when a resource leaves nodeSelector empty
    ARCH_LABEL = os.getenv("ARCH_LABEL", "kubernetes.io/arch")
    DEFAULT_ARCH = os.getenv("DEFAULT_ARCH", "amd64")

    # Reconciliation
    MAX_CONFLICT_RETRIES = int(os.getenv("MAX_CONFLICT_RETRIES", "5"))
    RESYNC_INTERVAL = int(os.getenv("RESYNC_INTERVAL", "30"))  # seconds
    RETRY_DELAY = int(os.getenv("RETRY_DELAY", "10"))  # seconds
    WORKER_LIMIT = int(os.getenv("WORKER_LIMIT", "5"))

    # Logging
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
    LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    @classmethod
    def default_node_selector(cls):
        """Node selector used for resources that do not set one."""
        return {cls.ARCH_LABEL: cls.DEFAULT_ARCH}
