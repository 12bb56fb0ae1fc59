"""One convergence pass for a SecretCopier, and the lookups that decide which
SecretCopiers a secret or namespace event concerns.

Passes carry no state over: every pass lists namespaces afresh and
re-evaluates every rule.
"""
import logging
from collections import Counter
from datetime import timedelta
from typing import Any, Iterable, List, Mapping, Optional

from kubernetes.client import CoreV1Api, CustomObjectsApi

from kubernetes_utils import get_secret_copier, list_active_namespaces
from models import NamespaceSnapshot, SecretCopier
from sync import SyncOutcome, copy_secret_to_namespace


def reconcile_secret_copier(
    logger: logging.Logger,
    name: str,
    v1: CoreV1Api,
    custom_objects_api: CustomObjectsApi,
) -> Optional[timedelta]:
    """Fetches the SecretCopier and runs a pass for it.

    Returns the delay before the next pass, or ``None`` when no further pass
    should be scheduled.
    """
    body = get_secret_copier(logger, name, custom_objects_api)
    if body is None:
        # Copies with reclaimPolicy Delete are garbage collected through their owner reference.
        logger.debug(f'SecretCopier {name} has been deleted')
        return None

    return sync_secret_copier(logger, SecretCopier.from_body(body), v1)


def sync_secret_copier(
    logger: logging.Logger,
    secret_copier: SecretCopier,
    v1: CoreV1Api,
) -> Optional[timedelta]:
    if not secret_copier.spec.rules:
        logger.debug(f'No rules to process for SecretCopier {secret_copier.name}')
        return None

    namespaces = list_active_namespaces(logger, v1)
    logger.debug(f'Active namespaces: {[namespace.name for namespace in namespaces]}')

    outcomes: Counter = Counter()

    for index, rule in enumerate(secret_copier.spec.rules):
        target_namespaces = [
            namespace.name
            for namespace in namespaces
            if namespace.name != rule.source_secret.namespace and rule.target_namespaces.matches(namespace)
        ]

        if not target_namespaces:
            logger.debug(f'SecretCopier {secret_copier.name} rule {index}: no target namespaces')
            continue

        logger.debug(f'SecretCopier {secret_copier.name} rule {index}: target namespaces {target_namespaces}')

        for target_namespace in target_namespaces:
            outcomes[copy_secret_to_namespace(logger, secret_copier, rule, target_namespace, v1)] += 1

    if outcomes[SyncOutcome.CREATED] or outcomes[SyncOutcome.UPDATED] or outcomes[SyncOutcome.FAILED]:
        logger.info(
            f'SecretCopier {secret_copier.name}: {outcomes[SyncOutcome.CREATED]} created, '
            f'{outcomes[SyncOutcome.UPDATED]} updated, {outcomes[SyncOutcome.FAILED]} failed'
        )

    if secret_copier.spec.sync_period > timedelta(0):
        return secret_copier.spec.sync_period

    return None


def find_secret_copiers_matching_namespace(
    logger: logging.Logger,
    secret_copiers: Iterable[SecretCopier],
    body: Mapping[str, Any],
) -> List[SecretCopier]:
    """SecretCopiers with a rule targeting the namespace in ``body``."""
    if body.get('kind') != 'Namespace':
        logger.error(f'Object is not a Namespace: {body.get("kind")}')
        return []

    namespace = NamespaceSnapshot.from_body(body)
    if namespace.is_terminating:
        logger.debug(f'Namespace {namespace.name} is terminating')
        return []

    return [
        secret_copier
        for secret_copier in secret_copiers
        if any(
            rule.source_secret.namespace != namespace.name and rule.target_namespaces.matches(namespace)
            for rule in secret_copier.spec.rules
        )
    ]
