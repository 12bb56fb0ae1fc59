import re
from datetime import timedelta
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from consts import DEFAULT_SYNC_PERIOD, GROUP, KIND, NAMESPACE_TERMINATING, VERSION
from namespace_selectors import OwnerReference, TargetNamespaces

# Seconds per unit.
DURATION_UNITS = {
    'ns': 1e-9,
    'us': 1e-6,
    'µs': 1e-6,
    'μs': 1e-6,
    'ms': 1e-3,
    's': 1.0,
    'm': 60.0,
    'h': 3600.0,
}

DURATION_PART = re.compile(r'(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|μs|ms|s|m|h)')


def parse_duration(value: str) -> timedelta:
    """Parse a Kubernetes (Go) duration such as ``1m``, ``1h30m`` or ``250ms``."""
    text = value.strip()
    sign = 1
    if text[:1] in ('+', '-'):
        sign = -1 if text[0] == '-' else 1
        text = text[1:]

    if text == '0':
        return timedelta(0)

    seconds = 0.0
    position = 0
    while position < len(text):
        part = DURATION_PART.match(text, position)
        if part is None:
            raise ValueError(f'invalid duration: {value!r}')
        seconds += float(part.group(1)) * DURATION_UNITS[part.group(2)]
        position = part.end()

    if position == 0:
        raise ValueError(f'invalid duration: {value!r}')

    return timedelta(seconds=sign * seconds)


class ReclaimPolicy(str, Enum):
    DELETE = 'Delete'
    RETAIN = 'Retain'


class SourceSecret(BaseModel):
    name: str
    namespace: str


class TargetSecret(BaseModel):
    name: Optional[str] = None
    labels: Dict[str, str] = Field(default_factory=dict)


class SecretCopierRule(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    source_secret: SourceSecret = Field(alias='sourceSecret')
    target_namespaces: TargetNamespaces = Field(default_factory=TargetNamespaces, alias='targetNamespaces')
    target_secret: TargetSecret = Field(default_factory=TargetSecret, alias='targetSecret')
    reclaim_policy: ReclaimPolicy = Field(ReclaimPolicy.DELETE, alias='reclaimPolicy')

    @property
    def target_secret_name(self) -> str:
        return self.target_secret.name or self.source_secret.name

    @property
    def source_identity(self) -> str:
        """Value of the secret-name annotation on copies made by this rule."""
        return f'{self.source_secret.namespace}/{self.source_secret.name}'


class SecretCopierSpec(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    rules: List[SecretCopierRule] = Field(default_factory=list)
    sync_period: timedelta = Field(parse_duration(DEFAULT_SYNC_PERIOD), alias='syncPeriod')

    @field_validator('sync_period', mode='before')
    @classmethod
    def _parse_sync_period(cls, value: Any) -> Any:
        if isinstance(value, str):
            return parse_duration(value)
        return value


class SecretCopier(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    api_version: str = Field(f'{GROUP}/{VERSION}', alias='apiVersion')
    kind: str = KIND
    metadata: Dict[str, Any]
    spec: SecretCopierSpec = Field(default_factory=SecretCopierSpec)

    @classmethod
    def from_body(cls, body: Mapping[str, Any]) -> 'SecretCopier':
        return cls.model_validate({
            'apiVersion': body.get('apiVersion', f'{GROUP}/{VERSION}'),
            'kind': body.get('kind', KIND),
            'metadata': dict(body.get('metadata') or {}),
            'spec': dict(body.get('spec') or {}),
        })

    @property
    def name(self) -> str:
        return self.metadata.get('name', '')

    @property
    def uid(self) -> str:
        return self.metadata.get('uid', '')


class NamespaceSnapshot(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str
    uid: str = ''
    labels: Dict[str, str] = Field(default_factory=dict)
    owner_references: List[OwnerReference] = Field(default_factory=list, alias='ownerReferences')
    phase: Optional[str] = None

    @property
    def is_terminating(self) -> bool:
        return self.phase == NAMESPACE_TERMINATING

    @classmethod
    def from_v1(cls, namespace) -> 'NamespaceSnapshot':
        """Build from a ``V1Namespace`` returned by ``CoreV1Api.list_namespace``."""
        metadata = namespace.metadata
        return cls(
            name=metadata.name,
            uid=metadata.uid or '',
            labels=metadata.labels or {},
            owner_references=[
                OwnerReference(api_version=ref.api_version, kind=ref.kind, name=ref.name, uid=ref.uid)
                for ref in metadata.owner_references or []
            ],
            phase=namespace.status.phase if namespace.status else None,
        )

    @classmethod
    def from_body(cls, body: Mapping[str, Any]) -> 'NamespaceSnapshot':
        """Build from a raw namespace body as delivered by kopf."""
        metadata = body.get('metadata') or {}
        return cls(
            name=metadata['name'],
            uid=metadata.get('uid', ''),
            labels=dict(metadata.get('labels') or {}),
            owner_references=[
                OwnerReference.model_validate(dict(ref)) for ref in metadata.get('ownerReferences') or []
            ],
            phase=(body.get('status') or {}).get('phase'),
        )
