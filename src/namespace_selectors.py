"""Namespace selectors used by SecretCopier rules.

Every selector is "empty" when nothing is configured for it. An empty selector
never matches anything on its own, so callers check ``is_empty()`` first and
only apply the selectors that carry a constraint.
"""
import re
from functools import lru_cache
from typing import Dict, Iterable, List, Literal, Mapping, Optional, Pattern, Tuple

from pydantic import BaseModel, ConfigDict, Field

from consts import DEFAULT_MATCH_NAMES


def _class_char(pattern: str, i: int) -> Tuple[int, Optional[str]]:
    if i >= len(pattern) or pattern[i] in '-]':
        return i, None
    if pattern[i] == '\\':
        i += 1
        if i >= len(pattern):
            return i, None
    return i + 1, pattern[i]


def _translate_class(pattern: str, i: int) -> Tuple[int, Optional[str]]:
    """Translates ``[...]`` starting right after the ``[``; ``^`` negates."""
    negate = pattern.startswith('^', i)
    if negate:
        i += 1

    ranges = []
    seen_any = False
    while not (seen_any and pattern.startswith(']', i)):
        i, lo = _class_char(pattern, i)
        if lo is None:
            return i, None
        hi = lo
        if pattern.startswith('-', i):
            i, hi = _class_char(pattern, i + 1)
            if hi is None:
                return i, None
        seen_any = True
        # A reversed range matches nothing.
        if lo <= hi:
            ranges.append(f'{re.escape(lo)}-{re.escape(hi)}')

    if not ranges:
        return i + 1, '.' if negate else '(?!)'
    return i + 1, f'[{"^" if negate else ""}{"".join(ranges)}]'


@lru_cache(maxsize=512)
def compile_glob(pattern: str) -> Optional[Pattern[str]]:
    """Compiles a path-style glob: ``*``, ``?``, ``[...]`` with ``^`` negation
    and ``\\`` escapes. ``*`` and ``?`` do not match ``/``.

    Returns ``None`` for a malformed pattern, which then matches nothing.
    """
    parts = []
    i = 0
    while i < len(pattern):
        c = pattern[i]
        i += 1
        if c == '*':
            parts.append('[^/]*')
        elif c == '?':
            parts.append('[^/]')
        elif c == '\\':
            if i >= len(pattern):
                return None
            parts.append(re.escape(pattern[i]))
            i += 1
        elif c == '[':
            i, char_class = _translate_class(pattern, i)
            if char_class is None:
                return None
            parts.append(char_class)
        else:
            parts.append(re.escape(c))
    return re.compile(''.join(parts), re.DOTALL)


def glob_match_any(value: str, patterns: Iterable[str]) -> bool:
    for pattern in patterns:
        compiled = compile_glob(pattern)
        if compiled is not None and compiled.fullmatch(value):
            return True
    return False


class NameSelector(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    match_names: List[str] = Field(default_factory=list, alias='matchNames')

    def is_empty(self) -> bool:
        return len(self.match_names) == 0

    def matches(self, name: str) -> bool:
        """Glob match against include patterns and ``!``-prefixed exclude patterns.

        A name must match one of the includes (when there are any) and none of
        the excludes (when there are any).
        """
        if self.is_empty():
            return False

        include = [pattern for pattern in self.match_names if not pattern.startswith('!')]
        exclude = [pattern[1:] for pattern in self.match_names if pattern.startswith('!')]

        if include and not glob_match_any(name, include):
            return False

        if exclude and glob_match_any(name, exclude):
            return False

        return True


DEFAULT_NAME_SELECTOR = NameSelector(match_names=DEFAULT_MATCH_NAMES)


class LabelSelectorRequirement(BaseModel):
    key: str
    operator: Literal['In', 'NotIn', 'Exists', 'DoesNotExist']
    values: List[str] = Field(default_factory=list)

    def matches(self, labels: Mapping[str, str]) -> bool:
        if self.key not in labels:
            return self.operator in ('NotIn', 'DoesNotExist')

        value = labels[self.key]
        if self.operator == 'In':
            return glob_match_any(value, self.values)
        if self.operator == 'NotIn':
            return not glob_match_any(value, self.values)
        return self.operator == 'Exists'


class LabelSelector(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    match_labels: Dict[str, str] = Field(default_factory=dict, alias='matchLabels')
    match_expressions: List[LabelSelectorRequirement] = Field(default_factory=list, alias='matchExpressions')

    def is_empty(self) -> bool:
        return not self.match_labels and not self.match_expressions

    def matches(self, labels: Mapping[str, str]) -> bool:
        """Exact match on matchLabels, glob match for In/NotIn expressions."""
        if self.is_empty():
            return False

        for key, value in self.match_labels.items():
            if labels.get(key) != value:
                return False

        return all(expression.matches(labels) for expression in self.match_expressions)


class UIDSelector(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    match_uids: List[str] = Field(default_factory=list, alias='matchUids')

    def is_empty(self) -> bool:
        return len(self.match_uids) == 0

    def matches(self, uid: str) -> bool:
        return uid in self.match_uids


class OwnerReference(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    api_version: str = Field(alias='apiVersion')
    kind: str
    name: str
    uid: str


class OwnerSelector(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    match_owners: List[OwnerReference] = Field(default_factory=list, alias='matchOwners')

    def is_empty(self) -> bool:
        return len(self.match_owners) == 0

    def matches(self, owner_references: Iterable[OwnerReference]) -> bool:
        return any(owner in self.match_owners for owner in owner_references)


class TargetNamespaces(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name_selector: NameSelector = Field(default_factory=NameSelector, alias='nameSelector')
    uid_selector: UIDSelector = Field(default_factory=UIDSelector, alias='uidSelector')
    owner_selector: OwnerSelector = Field(default_factory=OwnerSelector, alias='ownerSelector')
    label_selector: LabelSelector = Field(default_factory=LabelSelector, alias='labelSelector')

    def matches(self, namespace) -> bool:
        """Match a ``NamespaceSnapshot``; gives up on the first failing selector."""
        name_selector = self.name_selector
        if name_selector.is_empty():
            name_selector = DEFAULT_NAME_SELECTOR

        if not name_selector.matches(namespace.name):
            return False

        if not self.uid_selector.is_empty() and not self.uid_selector.matches(namespace.uid):
            return False

        if not self.owner_selector.is_empty() and not self.owner_selector.matches(namespace.owner_references):
            return False

        if not self.label_selector.is_empty() and not self.label_selector.matches(namespace.labels):
            return False

        return True
