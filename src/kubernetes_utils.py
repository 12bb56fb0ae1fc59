import logging
from typing import Any, Dict, List, Optional

from kubernetes.client import CoreV1Api, CustomObjectsApi, V1ObjectMeta, V1OwnerReference, V1Secret
from kubernetes.client.rest import ApiException

from consts import GROUP, PLURAL, VERSION
from models import NamespaceSnapshot


def list_active_namespaces(
    logger: logging.Logger,
    v1: CoreV1Api,
) -> List[NamespaceSnapshot]:
    """Returns all namespaces which are not being terminated.

    Errors from the API are raised to the caller, a pass can not go on without
    the namespace list.
    """
    try:
        namespaces = v1.list_namespace().items
    except ApiException as e:
        logger.error(f'Can not list namespaces: {e}')
        raise

    snapshots = [NamespaceSnapshot.from_v1(namespace) for namespace in namespaces]
    return [snapshot for snapshot in snapshots if not snapshot.is_terminating]


def read_secret(
    logger: logging.Logger,
    namespace: str,
    name: str,
    v1: CoreV1Api,
) -> Optional[V1Secret]:
    """Reads a secret, ``None`` if it does not exist."""
    try:
        return v1.read_namespaced_secret(name=name, namespace=namespace)
    except ApiException as e:
        if e.status == 404:
            logger.debug(f'Secret {namespace}/{name} does not exist')
            return None
        logger.error(f'Can not read secret {namespace}/{name}: {e}')
        raise


def create_secret_metadata(
    name: str,
    namespace: str,
    labels: Optional[Dict[str, str]] = None,
    annotations: Optional[Dict[str, str]] = None,
    owner_references: Optional[List[V1OwnerReference]] = None,
) -> V1ObjectMeta:
    return V1ObjectMeta(
        name=name,
        namespace=namespace,
        labels=labels,
        annotations=annotations,
        owner_references=owner_references or None,
    )


def get_secret_copier(
    logger: logging.Logger,
    name: str,
    custom_objects_api: CustomObjectsApi,
) -> Optional[Dict[str, Any]]:
    """Fetches a SecretCopier body, ``None`` once it has been deleted."""
    try:
        return custom_objects_api.get_cluster_custom_object(
            group=GROUP,
            version=VERSION,
            plural=PLURAL,
            name=name,
        )
    except ApiException as e:
        if e.status == 404:
            return None
        logger.error(f'Can not read SecretCopier {name}: {e}')
        raise


def get_custom_objects_by_kind(
    group: str,
    version: str,
    plural: str,
    custom_objects_api: CustomObjectsApi,
) -> List[Dict[str, Any]]:
    """Lists all cluster scoped custom objects of a kind."""
    return custom_objects_api.list_cluster_custom_object(
        group=group,
        version=version,
        plural=plural,
    ).get('items', [])
