"""Copies a rule's source secret into one target namespace.

Copies are tagged with two annotations naming the SecretCopier and the source
secret. An existing secret is only ever updated when both annotations match
the copier and rule being processed; anything else in the target slot is left
alone.
"""
import logging
from enum import Enum
from typing import Dict, Optional

from kubernetes.client import CoreV1Api, V1OwnerReference, V1Secret
from kubernetes.client.rest import ApiException

from consts import SECRET_COPIER_ANNOTATION, SECRET_NAME_ANNOTATION
from kubernetes_utils import create_secret_metadata, read_secret
from models import ReclaimPolicy, SecretCopier, SecretCopierRule


class SyncOutcome(str, Enum):
    CREATED = 'created'
    UPDATED = 'updated'
    UNCHANGED = 'unchanged'
    SKIPPED = 'skipped'
    FAILED = 'failed'


def effective_labels(rule: SecretCopierRule, source: V1Secret) -> Dict[str, str]:
    """Source labels overlaid with the rule's target labels."""
    labels = dict(source.metadata.labels or {})
    labels.update(rule.target_secret.labels)
    return labels


def ownership_annotations(secret_copier: SecretCopier, rule: SecretCopierRule) -> Dict[str, str]:
    return {
        SECRET_COPIER_ANNOTATION: secret_copier.name,
        SECRET_NAME_ANNOTATION: rule.source_identity,
    }


def is_managed_by(secret_copier: SecretCopier, rule: SecretCopierRule, target: V1Secret) -> bool:
    annotations = target.metadata.annotations or {}
    return (
        annotations.get(SECRET_COPIER_ANNOTATION) == secret_copier.name
        and annotations.get(SECRET_NAME_ANNOTATION) == rule.source_identity
    )


def source_secret_has_been_updated(rule: SecretCopierRule, source: V1Secret, target: V1Secret) -> bool:
    # data of None (no data at all) and {} are different payloads.
    if source.type != target.type:
        return True

    if source.data != target.data:
        return True

    return effective_labels(rule, source) != (target.metadata.labels or {})


def owner_reference(secret_copier: SecretCopier) -> V1OwnerReference:
    return V1OwnerReference(
        api_version=secret_copier.api_version,
        kind=secret_copier.kind,
        name=secret_copier.name,
        uid=secret_copier.uid,
        controller=True,
        block_owner_deletion=True,
    )


def build_target_secret(
    secret_copier: SecretCopier,
    rule: SecretCopierRule,
    source: V1Secret,
    target_namespace: str,
) -> V1Secret:
    owner_references = []
    if rule.reclaim_policy == ReclaimPolicy.DELETE:
        owner_references.append(owner_reference(secret_copier))

    return V1Secret(
        api_version='v1',
        kind='Secret',
        metadata=create_secret_metadata(
            name=rule.target_secret_name,
            namespace=target_namespace,
            labels=effective_labels(rule, source),
            annotations=ownership_annotations(secret_copier, rule),
            owner_references=owner_references,
        ),
        type=source.type,
        data=_copy_data(source.data),
    )


def _copy_data(data: Optional[Dict[str, str]]) -> Optional[Dict[str, str]]:
    return dict(data) if data is not None else None


def copy_secret_to_namespace(
    logger: logging.Logger,
    secret_copier: SecretCopier,
    rule: SecretCopierRule,
    target_namespace: str,
    v1: CoreV1Api,
) -> SyncOutcome:
    """Creates or refreshes the copy of ``rule``'s source secret in ``target_namespace``.

    Read errors are raised to abort the pass. Write errors are logged and
    reported as ``SyncOutcome.FAILED``; the next pass will try again.
    """
    source_ref = rule.source_secret

    if target_namespace == source_ref.namespace:
        return SyncOutcome.SKIPPED

    target_name = rule.target_secret_name

    source = read_secret(logger, source_ref.namespace, source_ref.name, v1)
    if source is None:
        logger.debug(f'Source secret {rule.source_identity} does not exist')
        return SyncOutcome.SKIPPED

    target = read_secret(logger, target_namespace, target_name, v1)

    if target is None:
        body = build_target_secret(secret_copier, rule, source, target_namespace)
        try:
            v1.create_namespaced_secret(namespace=target_namespace, body=body)
        except ApiException as e:
            logger.error(f'Can not create secret {target_namespace}/{target_name}: {e}')
            return SyncOutcome.FAILED

        logger.info(f'Created secret {target_namespace}/{target_name} from {rule.source_identity}')
        return SyncOutcome.CREATED

    if not is_managed_by(secret_copier, rule, target):
        logger.debug(
            f'Secret {target_namespace}/{target_name} is not managed by '
            f'SecretCopier {secret_copier.name} for {rule.source_identity}: skipping'
        )
        return SyncOutcome.SKIPPED

    if not source_secret_has_been_updated(rule, source, target):
        return SyncOutcome.UNCHANGED

    target.metadata.labels = effective_labels(rule, source)
    target.data = _copy_data(source.data)
    target.type = source.type

    try:
        v1.replace_namespaced_secret(name=target_name, namespace=target_namespace, body=target)
    except ApiException as e:
        logger.error(f'Can not update secret {target_namespace}/{target_name}: {e}')
        return SyncOutcome.FAILED

    logger.info(f'Updated secret {target_namespace}/{target_name} from {rule.source_identity}')
    return SyncOutcome.UPDATED
