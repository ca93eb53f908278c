"""Conversion between served versions of the device plugin resources.

v1alpha1 differs from v1 in three ways:

* the log level was called ``verbosity``;
* SGX enclave and provision limits were nested under ``limits``;
* there was no ``provisioningConfig``.

Each version pair has its own explicit mapping function. Fields are copied
by name only where both versions define them.

Without a conversion webhook the API server returns objects stored under
v1alpha1 labelled as v1 but with their old keys intact. Such bodies have
those keys lifted onto the v1 schema before anything else reads them.
"""

import copy

from . import crd
from .errors import UnsupportedVersionError

V1ALPHA1 = "v1alpha1"
V1 = "v1"

# Fields carried unchanged between v1alpha1 and v1 for every family.
_COMMON_FIELDS = ["image", "initImage", "nodeSelector"]


def _family_tunable_fields(family):
    return [field for field, _flag, _kind in crd.get_family(family)["tunables"]]


def v1alpha1_to_v1(family, spec):
    """Map a v1alpha1 spec onto the v1 schema."""
    converted = {}
    for field in _COMMON_FIELDS:
        if field in spec:
            converted[field] = copy.deepcopy(spec[field])

    if "verbosity" in spec:
        converted["logLevel"] = spec["verbosity"]

    limits = spec.get("limits") or {}
    for field in _family_tunable_fields(family):
        if family == "sgx":
            if limits.get(field) is not None:
                converted[field] = limits[field]
        elif field in spec:
            converted[field] = copy.deepcopy(spec[field])

    return converted


def v1_to_v1alpha1(family, spec):
    """Map a v1 spec onto the v1alpha1 schema. provisioningConfig is dropped."""
    converted = {}
    for field in _COMMON_FIELDS:
        if field in spec:
            converted[field] = copy.deepcopy(spec[field])

    if "logLevel" in spec:
        converted["verbosity"] = spec["logLevel"]

    limits = {}
    for field in _family_tunable_fields(family):
        if field not in spec:
            continue
        if family == "sgx":
            limits[field] = spec[field]
        else:
            converted[field] = copy.deepcopy(spec[field])
    if limits:
        converted["limits"] = limits

    return converted


_LEGACY_FIELDS = ("verbosity", "limits")


def lift_legacy_fields(family, spec):
    """Return a v1 spec with any leftover v1alpha1 keys mapped onto it.

    Values already set under their v1 names win over the legacy ones.
    """
    if not any(field in spec for field in _LEGACY_FIELDS):
        return spec

    lifted = v1alpha1_to_v1(family, spec)
    for field, value in spec.items():
        if field not in _LEGACY_FIELDS and value is not None:
            lifted[field] = copy.deepcopy(value)
    return lifted


# (from, to) -> spec mapping function
CONVERTERS = {
    (V1ALPHA1, V1): v1alpha1_to_v1,
    (V1, V1ALPHA1): v1_to_v1alpha1,
}


def split_api_version(api_version):
    group, _, version = (api_version or "").rpartition("/")
    return group, version


def convert(body, to_version=V1):
    """Return a copy of a resource body encoded under ``to_version``.

    Raises UnsupportedVersionError for a group or version this operator does
    not serve.
    """
    api_version = body.get("apiVersion", "")
    group, version = split_api_version(api_version)
    if group != crd.GROUP:
        raise UnsupportedVersionError(api_version)
    if to_version not in crd.PREVIOUS_VERSIONS + [crd.VERSION]:
        raise UnsupportedVersionError(f"{crd.GROUP}/{to_version}")

    family = crd.family_for_kind(body.get("kind"))
    converted = copy.deepcopy(body)
    converted["apiVersion"] = f"{crd.GROUP}/{to_version}"
    spec = converted.get("spec") or {}
    if version == V1:
        lifted = lift_legacy_fields(family, spec)
        if lifted is not spec:
            converted["spec"] = spec = lifted
    if version == to_version:
        return converted

    converter = CONVERTERS.get((version, to_version))
    if converter is None:
        raise UnsupportedVersionError(api_version)
    converted["spec"] = converter(family, spec)
    return converted


def convert_to_current(body):
    """Normalize a resource body of any supported version to the current one."""
    return convert(body, to_version=crd.VERSION)
