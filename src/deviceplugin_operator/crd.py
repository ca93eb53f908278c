"""CRD schema constants and device family definitions."""

from .errors import UnknownFamilyError

# CRD Group and Versions
GROUP = "deviceplugin.intel.com"
VERSION = "v1"
PREVIOUS_VERSIONS = ["v1alpha1"]

# API version string
API_VERSION = f"{GROUP}/{VERSION}"

# Managed workload
WORKLOAD_API_VERSION = "apps/v1"
WORKLOAD_KIND = "DaemonSet"
MANAGED_BY_LABEL = "app.kubernetes.io/managed-by"
MANAGED_BY = "intel-deviceplugin-operator"

# Status condition
CONDITION_RECONCILED = "Reconciled"
REASON_RECONCILED = "DaemonSetReconciled"
REASON_UNSUPPORTED_VERSION = "UnsupportedVersion"
REASON_INVALID_SPEC = "InvalidSpec"
REASON_UNKNOWN_KIND = "UnknownKind"

# Kubelet device plugin socket directory shared by every plugin
KUBELET_SOCKETS_PATH = "/var/lib/kubelet/device-plugins"

# Tunable value types
INT = "int"
STR = "str"
BOOL = "bool"
LIST = "list"

# Device families. Tunables are (spec field, command-line flag, type).
# host_mounts and init_mounts are (volume name, host path, mount path).
FAMILIES = {
    "sgx": {
        "kind": "SgxDevicePlugin",
        "plural": "sgxdeviceplugins",
        "tunables": [
            ("enclaveLimit", "-enclave-limit", INT),
            ("provisionLimit", "-provision-limit", INT),
        ],
        "host_mounts": [
            ("sgx-enclave", "/dev/sgx_enclave", "/dev/sgx_enclave"),
            ("sgx-provision", "/dev/sgx_provision", "/dev/sgx_provision"),
        ],
        "init_mounts": [
            (
                "nfd-features",
                "/etc/kubernetes/node-feature-discovery/source.d/",
                "/etc/kubernetes/node-feature-discovery/source.d/",
            ),
        ],
        "config_mount_path": None,
    },
    "dsa": {
        "kind": "DsaDevicePlugin",
        "plural": "dsadeviceplugins",
        "tunables": [
            ("sharedDevNum", "-shared-dev-num", INT),
        ],
        "host_mounts": [
            ("devfs", "/dev/dsa", "/dev/dsa"),
            ("chardevs", "/dev/char", "/dev/char"),
            ("sysfs", "/sys/bus/dsa", "/sys/bus/dsa"),
        ],
        "init_mounts": [
            ("sys-devices", "/sys/devices", "/sys/devices"),
            ("scratch", "/var/lib/idxd-init", "/idxd-init/scratch"),
        ],
        "config_mount_path": "/idxd-init/conf",
    },
    "iaa": {
        "kind": "IaaDevicePlugin",
        "plural": "iaadeviceplugins",
        "tunables": [
            ("sharedDevNum", "-shared-dev-num", INT),
        ],
        "host_mounts": [
            ("devfs", "/dev/iax", "/dev/iax"),
            ("chardevs", "/dev/char", "/dev/char"),
            ("sysfs", "/sys/bus/dsa", "/sys/bus/dsa"),
        ],
        "init_mounts": [
            ("sys-devices", "/sys/devices", "/sys/devices"),
            ("scratch", "/var/lib/idxd-init", "/idxd-init/scratch"),
        ],
        "config_mount_path": "/idxd-init/conf",
    },
    "qat": {
        "kind": "QatDevicePlugin",
        "plural": "qatdeviceplugins",
        "tunables": [
            ("dpdkDriver", "-dpdk-driver", STR),
            ("kernelVfDrivers", "-kernel-vf-drivers", LIST),
            ("maxNumDevices", "-max-num-devices", INT),
            ("preferredAllocationPolicy", "-allocation-policy", STR),
        ],
        "host_mounts": [
            ("devfs", "/dev", "/dev"),
            ("pcidevices", "/sys/bus/pci/devices", "/sys/bus/pci/devices"),
            ("pcidrivers", "/sys/bus/pci/drivers", "/sys/bus/pci/drivers"),
        ],
        "init_mounts": [
            ("sysfs", "/sys", "/sys"),
        ],
        "config_mount_path": "/qat-init/conf",
    },
    "gpu": {
        "kind": "GpuDevicePlugin",
        "plural": "gpudeviceplugins",
        "tunables": [
            ("sharedDevNum", "-shared-dev-num", INT),
            ("enableMonitoring", "-enable-monitoring", BOOL),
            ("resourceManager", "-resource-manager", BOOL),
            ("preferredAllocationPolicy", "-allocation-policy", STR),
        ],
        "host_mounts": [
            ("devfs", "/dev/dri", "/dev/dri"),
            ("sysfs", "/sys/class/drm", "/sys/class/drm"),
        ],
        "init_mounts": [
            (
                "nfd-features",
                "/etc/kubernetes/node-feature-discovery/source.d/",
                "/etc/kubernetes/node-feature-discovery/source.d/",
            ),
        ],
        "config_mount_path": None,
    },
    "dlb": {
        "kind": "DlbDevicePlugin",
        "plural": "dlbdeviceplugins",
        "tunables": [],
        "host_mounts": [
            ("devfs", "/dev", "/dev"),
            ("sysfs", "/sys/class/dlb2", "/sys/class/dlb2"),
        ],
        "init_mounts": [],
        "config_mount_path": None,
    },
}

KIND_TO_FAMILY = {f["kind"]: name for name, f in FAMILIES.items()}


def get_family(family):
    """Return the definition of a device family."""
    try:
        return FAMILIES[family]
    except KeyError:
        raise UnknownFamilyError(
            f"Unknown device family: {family}. Allowed: {sorted(FAMILIES)}"
        ) from None


def family_for_kind(kind):
    """Map a resource kind (e.g. SgxDevicePlugin) to its family name."""
    try:
        return KIND_TO_FAMILY[kind]
    except KeyError:
        raise UnknownFamilyError(f"Unknown device plugin kind: {kind}") from None


def supports_provisioning_config(family):
    return get_family(family)["config_mount_path"] is not None


def plugin_name(family):
    """Name of the DaemonSet (and its container) managing a family."""
    return f"intel-{family}-plugin"


def init_container_name(family):
    return f"intel-{family}-initcontainer"


def config_volume_name(family):
    return f"intel-{family}-config-volume"
