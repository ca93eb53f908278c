"""Defaulting of device plugin specs before rendering."""

import copy

from .config import Config


def default_spec(spec):
    """Return a defaulted copy of ``spec``.

    An empty or missing nodeSelector becomes the baseline architecture
    selector and a missing logLevel becomes 0. Explicit empty strings and
    zeros are left alone. Applying this twice is the same as applying it once.
    """
    defaulted = copy.deepcopy(spec or {})

    if not defaulted.get("nodeSelector"):
        defaulted["nodeSelector"] = Config.default_node_selector()

    if defaulted.get("logLevel") is None:
        defaulted["logLevel"] = 0

    return defaulted
