import logging
import sys
from datetime import timedelta
from typing import Any, Dict, Optional

import kopf
from kubernetes import client, config
from kubernetes.client.rest import ApiException
from pydantic import ValidationError

from cache import Cache, MemoryCache
from consts import GROUP, PLURAL, VERSION
from kubernetes_utils import get_custom_objects_by_kind
from models import SecretCopier
from os_utils import get_posting_level, get_retry_delay, in_cluster, watch_namespace_updates
from reconciler import find_secret_copiers_matching_namespace, reconcile_secret_copier, sync_secret_copier

# In-memory dictionary for all SecretCopiers in the Cluster. name -> SecretCopier
copiers_cache: Cache = MemoryCache()

if "unittest" not in sys.modules:
    if in_cluster():
        config.load_incluster_config()
    else:
        # Loading using the local kubeconfig.
        config.load_kube_config()

v1 = client.CoreV1Api()
custom_objects_api = client.CustomObjectsApi()


def run_pass(logger: logging.Logger, name: str) -> None:
    """Runs a pass outside of the SecretCopier's own handlers; failures wait for the next pass."""
    try:
        reconcile_secret_copier(logger, name, v1, custom_objects_api)
    except ApiException as e:
        logger.error(f'Sync of SecretCopier {name} failed, will retry on the next pass: {e}')
    except ValidationError as e:
        logger.error(f'SecretCopier {name} is invalid: {e}')


def scheduled_period(name: str) -> Optional[timedelta]:
    secret_copier = copiers_cache.get_secret_copier(name)
    if secret_copier is None or not secret_copier.spec.rules:
        return None
    if secret_copier.spec.sync_period <= timedelta(0):
        return None
    return secret_copier.spec.sync_period


@kopf.on.resume(GROUP, VERSION, PLURAL)
@kopf.on.create(GROUP, VERSION, PLURAL)
@kopf.on.update(GROUP, VERSION, PLURAL)
def create_fn(
    logger: logging.Logger,
    name: str,
    body: Dict[str, Any],
    **_,
):
    try:
        secret_copier = SecretCopier.from_body(body)
    except ValidationError as e:
        if copiers_cache.get_secret_copier(name) is not None:
            copiers_cache.remove_secret_copier(name)
        raise kopf.PermanentError(f'Invalid SecretCopier {name}: {e}')

    copiers_cache.set_secret_copier(secret_copier)

    try:
        sync_secret_copier(logger, secret_copier, v1)
    except ApiException as e:
        raise kopf.TemporaryError(f'Sync of SecretCopier {name} failed: {e}', delay=get_retry_delay())


@kopf.on.delete(GROUP, VERSION, PLURAL, optional=True)
def on_delete(
    name: str,
    logger: logging.Logger,
    **_,
):
    # Copies are not removed here: owner references take care of reclaimPolicy Delete.
    try:
        copiers_cache.remove_secret_copier(name)
        logger.debug(f'SecretCopier {name} deleted from memory ok')
    except KeyError as k:
        logger.info(f'This SecretCopier was not found in memory, maybe it was created in another run: {k}')


@kopf.daemon(GROUP, VERSION, PLURAL, cancellation_timeout=10)
def sync_daemon(
    stopped: kopf.DaemonStopped,
    name: str,
    logger: logging.Logger,
    **_,
):
    """Re-runs the pass of a SecretCopier every syncPeriod.

    The cached spec is re-read at least every retry delay, so a changed
    syncPeriod applies to the pass already being waited for. While the period
    is zero, or there are no rules, no pass is scheduled.
    """
    waited = 0.0

    while not stopped:
        period = scheduled_period(name)
        if period is None:
            waited = 0.0
            stopped.wait(get_retry_delay())
            continue

        remaining = period.total_seconds() - waited
        if remaining > 0:
            step = min(remaining, get_retry_delay())
            stopped.wait(step)
            waited += step
            continue

        logger.debug(f'Periodic sync of SecretCopier {name}')
        run_pass(logger, name)
        waited = 0.0


@kopf.on.create('', 'v1', 'namespaces')
@kopf.on.update('', 'v1', 'namespaces', when=lambda **_: watch_namespace_updates())
def namespace_watcher(
    logger: logging.Logger,
    body: Dict[str, Any],
    reason: kopf.Reason,
    **_,
):
    """Runs a pass for every SecretCopier targeting a new or changed namespace."""
    secret_copiers = find_secret_copiers_matching_namespace(logger, copiers_cache.all_secret_copiers(), body)

    for secret_copier in secret_copiers:
        logger.info(f'Namespace {body["metadata"]["name"]} {reason}: syncing SecretCopier {secret_copier.name}')
        run_pass(logger, secret_copier.name)


@kopf.on.event('', 'v1', 'secrets')
def on_secret_event(event, logger: logging.Logger, **_):
    """Watch for source secret events
    """
    event_type = event.get('type')
    obj = event.get('object')
    if not obj or event_type not in ['ADDED', 'MODIFIED', 'DELETED']:
        return

    metadata = obj.get('metadata', {})
    name = metadata.get('name')
    namespace = metadata.get('namespace')

    secret_copiers = copiers_cache.secret_copiers_for_source_secret(namespace, name)
    if not secret_copiers:
        return

    if event_type == 'DELETED':
        for secret_copier in secret_copiers:
            logger.warning(
                f'Source secret {name} in namespace {namespace} was deleted! '
                f'Copies made by SecretCopier {secret_copier.name} are left as they are.'
            )
        return

    for secret_copier in secret_copiers:
        logger.info(f'Source secret {name} in namespace {namespace} changed. Syncing SecretCopier {secret_copier.name}')
        run_pass(logger, secret_copier.name)


@kopf.on.startup()
async def startup_fn(settings: kopf.OperatorSettings, logger: logging.Logger, **_):
    settings.posting.level = getattr(logging, get_posting_level(), logging.WARNING)
    settings.persistence.progress_storage = kopf.AnnotationsProgressStorage(prefix=GROUP)
    settings.persistence.diffbase_storage = kopf.AnnotationsDiffBaseStorage(
        prefix=GROUP,
        key='last-handled-configuration',
    )

    secret_copiers = get_custom_objects_by_kind(
        group=GROUP,
        version=VERSION,
        plural=PLURAL,
        custom_objects_api=custom_objects_api,
    )

    logger.info(f'Found {len(secret_copiers)} existing SecretCopiers.')
    for item in secret_copiers:
        name = item.get('metadata', {}).get('name')
        try:
            copiers_cache.set_secret_copier(SecretCopier.from_body(item))
        except ValidationError as e:
            logger.error(f'Skipping invalid SecretCopier {name}: {e}')
