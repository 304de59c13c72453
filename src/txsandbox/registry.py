from __future__ import annotations

from typing import TYPE_CHECKING, Dict, Optional

if TYPE_CHECKING:
    from txsandbox.context import Namespace


class NamespaceRegistry:
    _singleton = None
    _namespaces: Dict[str, Namespace]

    def __new__(cls, *args, **kwargs):
        if cls._singleton is None:
            cls.reset()
        return cls._singleton

    @classmethod
    def add(cls, namespace: Namespace) -> None:
        instance = cls()
        instance._namespaces[namespace.name] = namespace

    @classmethod
    def get(cls, name: str) -> Optional[Namespace]:
        return cls()._namespaces.get(name, None)

    def __contains__(self, name: str) -> bool:
        return name in self._namespaces

    def __iter__(self):
        return iter(self._namespaces.values())

    @classmethod
    def reset(cls):
        cls._singleton = super().__new__(cls)
        cls._singleton._namespaces = {}
