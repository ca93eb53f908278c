"""Kubernetes resource templates."""

from kubernetes import client

from . import crd

# 0644
CONFIG_FILE_MODE = 420


def build_args(family, spec):
    """Build the plugin command line from a defaulted spec.

    ``-v`` is always present. A tunable contributes its flag only when set:
    present and not None, and for strings and lists also non-empty. Boolean
    tunables are bare flags emitted when true.
    """
    args = ["-v", str(spec.get("logLevel", 0))]

    for field, flag, kind in crd.get_family(family)["tunables"]:
        value = spec.get(field)
        if value is None:
            continue
        if kind == crd.BOOL:
            if value:
                args.append(flag)
        elif kind == crd.LIST:
            if value:
                args.extend([flag, ",".join(str(v) for v in value)])
        elif kind == crd.STR:
            if value != "":
                args.extend([flag, str(value)])
        else:
            args.extend([flag, str(value)])

    return args


def create_owner_references(kind, name, uid):
    """Owner reference making the resource's deletion cascade to the DaemonSet."""
    return [
        client.V1OwnerReference(
            api_version=crd.API_VERSION,
            kind=kind,
            name=name,
            uid=uid,
            controller=True,
            block_owner_deletion=True,
        )
    ]


def _host_path_volume(name, path, path_type=None):
    return client.V1Volume(
        name=name,
        host_path=client.V1HostPathVolumeSource(path=path, type=path_type),
    )


def _node_name_env():
    return client.V1EnvVar(
        name="NODE_NAME",
        value_from=client.V1EnvVarSource(
            field_ref=client.V1ObjectFieldSelector(field_path="spec.nodeName")
        ),
    )


def create_daemonset_manifest(family, spec, namespace, owner_refs=None):
    """Create the plugin DaemonSet manifest for a defaulted spec."""
    definition = crd.get_family(family)
    name = crd.plugin_name(family)
    selector_labels = {"app": name}

    volumes = [_host_path_volume("kubeletsockets", crd.KUBELET_SOCKETS_PATH)]
    plugin_mounts = [
        client.V1VolumeMount(name="kubeletsockets", mount_path=crd.KUBELET_SOCKETS_PATH)
    ]
    for volume_name, host_path, mount_path in definition["host_mounts"]:
        volumes.append(_host_path_volume(volume_name, host_path))
        plugin_mounts.append(
            client.V1VolumeMount(name=volume_name, mount_path=mount_path, read_only=True)
        )

    init_containers = None
    init_image = spec.get("initImage")
    if init_image:
        init_mounts = []
        for volume_name, host_path, mount_path in definition["init_mounts"]:
            volumes.append(_host_path_volume(volume_name, host_path, "DirectoryOrCreate"))
            init_mounts.append(client.V1VolumeMount(name=volume_name, mount_path=mount_path))
        init_containers = [
            client.V1Container(
                name=crd.init_container_name(family),
                image=init_image,
                image_pull_policy="IfNotPresent",
                env=[_node_name_env()],
                security_context=client.V1SecurityContext(privileged=True),
                volume_mounts=init_mounts,
            )
        ]

    provisioning_config = spec.get("provisioningConfig")
    if provisioning_config and definition["config_mount_path"]:
        config_volume = crd.config_volume_name(family)
        volumes.append(
            client.V1Volume(
                name=config_volume,
                config_map=client.V1ConfigMapVolumeSource(
                    name=provisioning_config,
                    default_mode=CONFIG_FILE_MODE,
                ),
            )
        )
        config_mount = client.V1VolumeMount(
            name=config_volume,
            mount_path=definition["config_mount_path"],
            read_only=True,
        )
        if init_containers:
            init_containers[0].volume_mounts.append(config_mount)
        else:
            plugin_mounts.append(config_mount)

    return client.V1DaemonSet(
        api_version=crd.WORKLOAD_API_VERSION,
        kind=crd.WORKLOAD_KIND,
        metadata=client.V1ObjectMeta(
            name=name,
            namespace=namespace,
            labels={
                "app": name,
                crd.MANAGED_BY_LABEL: crd.MANAGED_BY,
            },
            owner_references=owner_refs if owner_refs else None,
        ),
        spec=client.V1DaemonSetSpec(
            selector=client.V1LabelSelector(match_labels=selector_labels),
            template=client.V1PodTemplateSpec(
                metadata=client.V1ObjectMeta(labels=selector_labels),
                spec=client.V1PodSpec(
                    automount_service_account_token=False,
                    node_selector=dict(spec.get("nodeSelector") or {}),
                    init_containers=init_containers,
                    containers=[
                        client.V1Container(
                            name=name,
                            image=spec["image"],
                            image_pull_policy="IfNotPresent",
                            args=build_args(family, spec),
                            env=[_node_name_env()],
                            security_context=client.V1SecurityContext(
                                read_only_root_filesystem=True,
                                allow_privilege_escalation=False,
                            ),
                            volume_mounts=plugin_mounts,
                        )
                    ],
                    volumes=volumes,
                ),
            ),
        ),
    )


def managed_fields(daemonset):
    """Comparable projection of the fields the operator owns on a DaemonSet.

    Takes the dict form. Arguments are compared in rendered order so each
    flag stays paired with its value. Server-side defaults on containers and
    volumes are left out.
    """
    pod_spec = daemonset.get("spec", {}).get("template", {}).get("spec", {})
    containers = pod_spec.get("containers") or [{}]
    volumes = []
    for volume in pod_spec.get("volumes") or []:
        config_map = volume.get("configMap")
        volumes.append(
            (
                volume.get("name"),
                config_map.get("name") if config_map else None,
                config_map.get("defaultMode") if config_map else None,
            )
        )

    return {
        "image": containers[0].get("image"),
        "args": list(containers[0].get("args") or []),
        "initContainers": [
            (c.get("name"), c.get("image")) for c in pod_spec.get("initContainers") or []
        ],
        "volumes": sorted(volumes, key=lambda v: v[0] or ""),
        "nodeSelector": pod_spec.get("nodeSelector") or {},
    }


def apply_managed_fields(live, desired):
    """Copy the operator-owned fields of ``desired`` onto ``live`` (both dicts).

    Optional parts missing from ``desired`` are removed from ``live``.
    """
    live_pod = live.setdefault("spec", {}).setdefault("template", {}).setdefault("spec", {})
    desired_pod = desired["spec"]["template"]["spec"]

    for field in ("containers", "initContainers", "volumes", "nodeSelector"):
        if desired_pod.get(field):
            live_pod[field] = desired_pod[field]
        else:
            live_pod.pop(field, None)

    # Adopt: add the controller reference next to any refs already present.
    metadata = live.setdefault("metadata", {})
    live_refs = metadata.get("ownerReferences") or []
    if not any(ref.get("controller") for ref in live_refs):
        owner_refs = desired.get("metadata", {}).get("ownerReferences") or []
        if owner_refs:
            metadata["ownerReferences"] = live_refs + owner_refs

    return live
