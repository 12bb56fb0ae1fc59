import threading
from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Set, Tuple

from models import SecretCopier

SecretKey = Tuple[str, str]


class Cache(ABC):
    """Known SecretCopiers, keyed by name."""

    @abstractmethod
    def get_secret_copier(self, name: str) -> Optional[SecretCopier]:
        pass

    @abstractmethod
    def set_secret_copier(self, secret_copier: SecretCopier) -> None:
        pass

    @abstractmethod
    def remove_secret_copier(self, name: str) -> None:
        pass

    @abstractmethod
    def all_secret_copiers(self) -> List[SecretCopier]:
        pass

    @abstractmethod
    def secret_copiers_for_source_secret(self, namespace: str, name: str) -> List[SecretCopier]:
        pass


class MemoryCache(Cache):
    """In-process cache with a reverse index of source secret -> copier names.

    kopf runs sync handlers in a thread pool, so every operation holds the
    lock. A copier's index entries are replaced in the same critical section
    that stores it.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self.copiers: Dict[str, SecretCopier] = {}
        self.by_source: Dict[SecretKey, Set[str]] = {}

    def get_secret_copier(self, name: str) -> Optional[SecretCopier]:
        with self._lock:
            return self.copiers.get(name)

    def set_secret_copier(self, secret_copier: SecretCopier) -> None:
        with self._lock:
            self._unindex(secret_copier.name)
            self.copiers[secret_copier.name] = secret_copier
            for rule in secret_copier.spec.rules:
                key = (rule.source_secret.namespace, rule.source_secret.name)
                self.by_source.setdefault(key, set()).add(secret_copier.name)

    def remove_secret_copier(self, name: str) -> None:
        """Raises ``KeyError`` when the copier is unknown."""
        with self._lock:
            self._unindex(name)
            del self.copiers[name]

    def all_secret_copiers(self) -> List[SecretCopier]:
        with self._lock:
            return list(self.copiers.values())

    def secret_copiers_for_source_secret(self, namespace: str, name: str) -> List[SecretCopier]:
        with self._lock:
            names = sorted(self.by_source.get((namespace, name), ()))
            return [self.copiers[copier_name] for copier_name in names if copier_name in self.copiers]

    def _unindex(self, name: str) -> None:
        # Caller holds the lock.
        for key in [key for key, names in self.by_source.items() if name in names]:
            self.by_source[key].discard(name)
            if not self.by_source[key]:
                del self.by_source[key]
