"""
Constants used by the project
"""

GROUP = 'secrets-manager.advok8s.io'
VERSION = 'v1beta1'
PLURAL = 'secretcopiers'
KIND = 'SecretCopier'

SECRET_COPIER_ANNOTATION = f'{GROUP}/secret-copier'
SECRET_NAME_ANNOTATION = f'{GROUP}/secret-name'

# Used when a rule has no nameSelector: everything but the kube-* system namespaces.
DEFAULT_MATCH_NAMES = ['!kube-*']

DEFAULT_SYNC_PERIOD = '1m'
DEFAULT_RETRY_DELAY = 30

NAMESPACE_TERMINATING = 'Terminating'
