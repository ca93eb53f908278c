"""Tests for defaulting and DaemonSet rendering."""

import pytest

from deviceplugin_operator import crd
from deviceplugin_operator.config import Config
from deviceplugin_operator.defaults import default_spec
from deviceplugin_operator.k8s import to_dict
from deviceplugin_operator.templates import (
    apply_managed_fields,
    build_args,
    create_daemonset_manifest,
    create_owner_references,
    managed_fields,
)

NAMESPACE = "inteldeviceplugins-system"


def render(family, spec, owner_refs=None):
    return to_dict(create_daemonset_manifest(family, default_spec(spec), NAMESPACE, owner_refs))


def pod_spec(daemonset):
    return daemonset["spec"]["template"]["spec"]


class TestDefaultSpec:
    def test_empty_node_selector_gets_arch_default(self):
        spec = default_spec({"image": "img", "nodeSelector": {}})
        assert spec["nodeSelector"] == {"kubernetes.io/arch": "amd64"}

    def test_missing_node_selector_gets_arch_default(self):
        spec = default_spec({"image": "img"})
        assert spec["nodeSelector"] == Config.default_node_selector()
        assert spec["logLevel"] == 0

    def test_explicit_values_are_kept(self):
        raw = {"image": "img", "initImage": "", "nodeSelector": {"k": "true"}, "logLevel": 3, "sharedDevNum": 0}
        spec = default_spec(raw)
        assert spec == raw
        assert spec is not raw

    def test_idempotent(self):
        once = default_spec({"image": "img"})
        assert default_spec(once) == once

    def test_input_is_not_mutated(self):
        raw = {"image": "img"}
        default_spec(raw)
        assert raw == {"image": "img"}


class TestBuildArgs:
    def test_log_level_always_present(self):
        assert build_args("dlb", {"logLevel": 0}) == ["-v", "0"]

    def test_sgx_limits(self):
        args = build_args("sgx", {"logLevel": 2, "enclaveLimit": 110, "provisionLimit": 20})
        assert args == ["-v", "2", "-enclave-limit", "110", "-provision-limit", "20"]

    def test_absent_tunable_is_omitted_but_zero_is_set(self):
        assert build_args("dsa", {"logLevel": 1}) == ["-v", "1"]
        assert build_args("dsa", {"logLevel": 1, "sharedDevNum": None}) == ["-v", "1"]
        assert build_args("dsa", {"logLevel": 1, "sharedDevNum": 0}) == ["-v", "1", "-shared-dev-num", "0"]

    def test_gpu_bool_flags_and_policy(self):
        args = build_args(
            "gpu",
            {
                "logLevel": 4,
                "sharedDevNum": 2,
                "enableMonitoring": True,
                "resourceManager": False,
                "preferredAllocationPolicy": "balanced",
            },
        )
        assert args == ["-v", "4", "-shared-dev-num", "2", "-enable-monitoring", "-allocation-policy", "balanced"]

    def test_qat_list_and_empty_string(self):
        args = build_args(
            "qat",
            {"logLevel": 0, "kernelVfDrivers": ["c6xxvf", "4xxxvf"], "dpdkDriver": "", "maxNumDevices": 32},
        )
        assert args == ["-v", "0", "-kernel-vf-drivers", "c6xxvf,4xxxvf", "-max-num-devices", "32"]


class TestDaemonSetManifest:
    def test_basic_layout(self):
        owner_refs = create_owner_references("SgxDevicePlugin", "sgx", "uid-1")
        ds = render("sgx", {"image": "sgx-img", "nodeSelector": {"k": "true"}}, owner_refs)

        assert ds["metadata"]["name"] == "intel-sgx-plugin"
        assert ds["metadata"]["namespace"] == NAMESPACE
        assert ds["metadata"]["labels"][crd.MANAGED_BY_LABEL] == crd.MANAGED_BY
        assert ds["metadata"]["ownerReferences"] == [
            {
                "apiVersion": "deviceplugin.intel.com/v1",
                "kind": "SgxDevicePlugin",
                "name": "sgx",
                "uid": "uid-1",
                "controller": True,
                "blockOwnerDeletion": True,
            }
        ]
        assert ds["spec"]["selector"]["matchLabels"] == {"app": "intel-sgx-plugin"}
        container = pod_spec(ds)["containers"][0]
        assert container["name"] == "intel-sgx-plugin"
        assert container["image"] == "sgx-img"
        assert container["args"] == ["-v", "0"]
        assert pod_spec(ds)["nodeSelector"] == {"k": "true"}
        assert "initContainers" not in pod_spec(ds)

    def test_init_container_iff_init_image(self):
        with_init = render("sgx", {"image": "img", "initImage": "init-img"})
        init_containers = pod_spec(with_init)["initContainers"]
        assert len(init_containers) == 1
        assert init_containers[0]["name"] == "intel-sgx-initcontainer"
        assert init_containers[0]["image"] == "init-img"
        assert "nfd-features" in [v["name"] for v in pod_spec(with_init)["volumes"]]

        without_init = render("sgx", {"image": "img", "initImage": ""})
        assert "initContainers" not in pod_spec(without_init)
        assert "nfd-features" not in [v["name"] for v in pod_spec(without_init)["volumes"]]

    def test_config_volume_iff_provisioning_config(self):
        ds = render("dsa", {"image": "img", "initImage": "init", "provisioningConfig": "dsa-conf"})
        volumes = {v["name"]: v for v in pod_spec(ds)["volumes"]}
        assert volumes["intel-dsa-config-volume"]["configMap"] == {"name": "dsa-conf", "defaultMode": 420}
        init_mounts = pod_spec(ds)["initContainers"][0]["volumeMounts"]
        assert {"name": "intel-dsa-config-volume", "mountPath": "/idxd-init/conf", "readOnly": True} in init_mounts

        cleared = render("dsa", {"image": "img", "initImage": "init", "provisioningConfig": ""})
        assert "intel-dsa-config-volume" not in [v["name"] for v in pod_spec(cleared)["volumes"]]

    def test_config_volume_mounts_on_plugin_without_init(self):
        ds = render("qat", {"image": "img", "provisioningConfig": "qat-conf"})
        mounts = pod_spec(ds)["containers"][0]["volumeMounts"]
        assert "intel-qat-config-volume" in [m["name"] for m in mounts]

    def test_provisioning_config_ignored_for_unsupported_family(self):
        ds = render("sgx", {"image": "img", "provisioningConfig": "conf"})
        assert "intel-sgx-config-volume" not in [v["name"] for v in pod_spec(ds)["volumes"]]

    def test_rendering_is_deterministic(self):
        spec = {"image": "img", "initImage": "init", "sharedDevNum": 3, "provisioningConfig": "c"}
        assert render("iaa", spec) == render("iaa", spec)

    @pytest.mark.parametrize("family", sorted(crd.FAMILIES))
    def test_every_family_renders(self, family):
        ds = render(family, {"image": f"{family}-img", "initImage": f"{family}-init"})
        assert ds["metadata"]["name"] == f"intel-{family}-plugin"
        names = [v["name"] for v in pod_spec(ds)["volumes"]]
        assert len(names) == len(set(names))


class TestManagedFields:
    def test_same_spec_compares_equal(self):
        spec = {"image": "img", "enclaveLimit": 1, "provisionLimit": 2}
        assert managed_fields(render("sgx", spec)) == managed_fields(render("sgx", dict(spec)))

    def test_detects_swapped_tunable_values(self):
        ds = render("sgx", {"image": "img", "enclaveLimit": 1, "provisionLimit": 2})
        swapped = render("sgx", {"image": "img", "enclaveLimit": 2, "provisionLimit": 1})
        assert managed_fields(ds) != managed_fields(swapped)

    def test_apply_adopts_next_to_foreign_owner_refs(self):
        owner_refs = create_owner_references("SgxDevicePlugin", "sgx", "uid-1")
        desired = render("sgx", {"image": "img"}, owner_refs)
        live = render("sgx", {"image": "img"})
        foreign = {"apiVersion": "v1", "kind": "ConfigMap", "name": "cm", "uid": "cm-uid"}
        live["metadata"]["ownerReferences"] = [foreign]

        updated = apply_managed_fields(live, desired)

        assert updated["metadata"]["ownerReferences"] == [foreign] + desired["metadata"]["ownerReferences"]

    def test_detects_image_change(self):
        assert managed_fields(render("sgx", {"image": "a"})) != managed_fields(render("sgx", {"image": "b"}))

    def test_apply_removes_optional_parts(self):
        live = render("dsa", {"image": "img", "initImage": "init", "provisioningConfig": "c"})
        live["metadata"]["resourceVersion"] = "7"
        desired = render("dsa", {"image": "img"})

        updated = apply_managed_fields(live, desired)

        assert "initContainers" not in pod_spec(updated)
        assert "intel-dsa-config-volume" not in [v["name"] for v in pod_spec(updated)["volumes"]]
        assert updated["metadata"]["resourceVersion"] == "7"
        assert managed_fields(updated) == managed_fields(desired)
