"""Main operator entrypoint using Kopf."""

import logging
import kopf

from . import crd
from .config import Config
from .errors import InvalidSpecError, UnknownFamilyError, UnsupportedVersionError
from .k8s import ResourceStore, init_clients
from .reconcile import owner_of, reconcile, report_failure

# Configure logging
logging.basicConfig(
    level=Config.LOG_LEVEL,
    format=Config.LOG_FORMAT,
)
logger = logging.getLogger(__name__)

_store = None


def get_store():
    """Get the shared resource store, creating it on first use."""
    global _store
    if _store is None:
        _store = ResourceStore()
    return _store


@kopf.on.startup()
def configure(settings: kopf.OperatorSettings, **kwargs):
    """Load client configuration and tune the operator."""
    init_clients()

    # Bound concurrent handler workers so a restart does not flood the API server.
    settings.batching.worker_limit = Config.WORKER_LIMIT
    settings.posting.enabled = False

    logger.info(
        f"Operator started, managing {', '.join(sorted(crd.FAMILIES))} device plugins "
        f"in namespace {Config.NAMESPACE}"
    )


def reconcile_handler(family, name):
    """Reconcile a resource and translate failures into kopf errors."""
    store = get_store()
    try:
        reconcile(store, family, name)
    except UnsupportedVersionError as e:
        logger.error(f"Cannot convert {name}: {e}")
        report_failure(store, family, name, crd.REASON_UNSUPPORTED_VERSION, str(e))
        raise kopf.PermanentError(str(e))
    except InvalidSpecError as e:
        logger.error(f"Invalid spec for {name}: {e}")
        report_failure(store, family, name, crd.REASON_INVALID_SPEC, str(e))
        raise kopf.PermanentError(str(e))
    except UnknownFamilyError as e:
        logger.error(f"Unknown kind for {name}: {e}")
        report_failure(store, family, name, crd.REASON_UNKNOWN_KIND, str(e))
        raise kopf.PermanentError(str(e))
    except ValueError as e:
        logger.error(f"Validation error: {e}")
        raise kopf.PermanentError(str(e))
    except Exception as e:
        logger.error(f"Reconciliation error: {e}", exc_info=True)
        raise kopf.TemporaryError(f"Reconciliation failed: {e}", delay=Config.RETRY_DELAY)


def register_family(family):
    """Register the resource handlers for one device family."""
    plural = crd.get_family(family)["plural"]

    @kopf.on.resume(crd.GROUP, crd.VERSION, plural)
    @kopf.on.create(crd.GROUP, crd.VERSION, plural)
    @kopf.on.update(crd.GROUP, crd.VERSION, plural)
    def deviceplugin_handler(name, **kwargs):
        """Handle device plugin create/update/resume events."""
        logger.info(f"Handling {crd.get_family(family)['kind']} {name}")
        reconcile_handler(family, name)

    @kopf.timer(crd.GROUP, crd.VERSION, plural, interval=Config.RESYNC_INTERVAL)
    def deviceplugin_timer(name, **kwargs):
        """Periodic reconciliation timer."""
        logger.debug(f"Timer reconciliation for {crd.get_family(family)['kind']} {name}")
        try:
            reconcile(get_store(), family, name)
        except Exception as e:
            logger.error(f"Timer reconciliation error: {e}", exc_info=True)

    @kopf.on.delete(crd.GROUP, crd.VERSION, plural, optional=True)
    def deviceplugin_delete(name, **kwargs):
        """Handle device plugin deletion."""
        logger.info(f"{crd.get_family(family)['kind']} {name} deleted")
        # Kubernetes owner references will handle DaemonSet deletion

    return deviceplugin_handler, deviceplugin_timer, deviceplugin_delete


@kopf.on.event("apps", "v1", "daemonsets", labels={crd.MANAGED_BY_LABEL: crd.MANAGED_BY})
def daemonset_event(body, type, **kwargs):
    """Re-reconcile the owner when its DaemonSet changes or disappears."""
    if type is None:
        # Initial listing; resume handlers cover it.
        return

    owner = owner_of(body)
    if owner is None:
        return

    family, name = owner
    logger.debug(f"DaemonSet {body['metadata']['name']} {type}, reconciling {name}")
    try:
        reconcile(get_store(), family, name)
    except Exception as e:
        logger.error(f"Drift reconciliation error for {name}: {e}", exc_info=True)


HANDLERS = {family: register_family(family) for family in crd.FAMILIES}


if __name__ == "__main__":
    kopf.run()
