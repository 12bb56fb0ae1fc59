import os
from functools import cache

from consts import DEFAULT_RETRY_DELAY

SERVICE_ACCOUNT_TOKEN = '/var/run/secrets/kubernetes.io/serviceaccount/token'

TRUE_VALUES = {'true', 'yes', '1', 'y', 'on'}


@cache
def in_cluster() -> bool:
    """Whether we run inside a pod (service host exported and token mounted)."""
    return bool(os.getenv('KUBERNETES_SERVICE_HOST')) and os.path.exists(SERVICE_ACCOUNT_TOKEN)


def get_retry_delay() -> int:
    value = os.getenv('SECRET_COPIER_RETRY_DELAY', '')
    if not value.isdigit() or int(value) == 0:
        return DEFAULT_RETRY_DELAY
    return int(value)


def get_posting_level() -> str:
    return os.getenv('SECRET_COPIER_POSTING_LEVEL', 'WARNING').upper()


def watch_namespace_updates() -> bool:
    return os.getenv('SECRET_COPIER_WATCH_NAMESPACE_UPDATES', 'true').lower() in TRUE_VALUES
