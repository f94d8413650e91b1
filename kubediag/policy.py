"""Namespace visibility gating.

Every entry point asks the :class:`Authorizer` whether the requesting user
may see the target namespace (or cluster scope) before any cluster read.
kubediag does not evaluate RBAC itself; the user's role and namespace list
come from the API key configuration.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from enum import StrEnum

from kubediag.errors import PolicyError, ValidationError


class Role(StrEnum):
    CLUSTER = "cluster"
    NAMESPACE = "namespace"


@dataclass(frozen=True)
class User:
    """Per-request caller identity.  Never persisted."""

    id: str
    role: Role = Role.NAMESPACE
    allowed_namespaces: frozenset[str] = field(default_factory=frozenset)

    @classmethod
    def cluster_admin(cls, user_id: str = "local") -> User:
        return cls(id=user_id, role=Role.CLUSTER)

    @classmethod
    def namespaced(cls, user_id: str, namespaces: Iterable[str]) -> User:
        return cls(id=user_id, role=Role.NAMESPACE, allowed_namespaces=frozenset(namespaces))


def parse_api_keys(entries: Iterable[str]) -> dict[str, User]:
    """Parse ``key=cluster`` / ``key=namespace:ns1|ns2`` entries."""
    users: dict[str, User] = {}
    for index, entry in enumerate(entries):
        key, sep, spec = entry.partition("=")
        if not sep or not key:
            raise ValueError(f"Invalid api key entry #{index}: expected key=role")
        role, _, namespaces = spec.partition(":")
        user_id = f"apikey-{index}"
        if role == Role.CLUSTER:
            users[key] = User.cluster_admin(user_id)
        elif role == Role.NAMESPACE:
            allowed = [ns for ns in namespaces.split("|") if ns]
            if not allowed:
                raise ValueError(f"Invalid api key entry #{index}: namespace role needs namespaces")
            users[key] = User.namespaced(user_id, allowed)
        else:
            raise ValueError(f"Invalid api key entry #{index}: unknown role {role!r}")
    return users


class Authorizer:
    """Maps API keys to users and gates namespace access."""

    def __init__(self, api_keys: dict[str, User] | None = None) -> None:
        self._api_keys = api_keys or {}

    def authenticate(self, api_key: str | None) -> User:
        """Return the user for ``api_key``.

        With no keys configured every caller is the local cluster user.
        """
        if not self._api_keys:
            return User.cluster_admin()
        user = self._api_keys.get(api_key or "")
        if user is None:
            raise PolicyError("invalid or missing api key")
        return user

    @staticmethod
    def has_cluster_access(user: User) -> bool:
        return user.role == Role.CLUSTER

    def check_namespace(self, user: User, namespace: str, namespaced: bool = True) -> None:
        """Raise :class:`PolicyError` unless ``user`` may read ``namespace``.

        ``namespaced=False`` means a cluster-scoped read, which only the
        cluster role may perform.
        """
        if self.has_cluster_access(user):
            return
        if not namespaced:
            raise PolicyError("cluster-scoped access denied for namespace role")
        if not namespace:
            raise ValidationError("namespace required for namespace role")
        if namespace not in user.allowed_namespaces:
            raise PolicyError(f"namespace not allowed: {namespace}")

    def require_cluster(self, user: User) -> None:
        self.check_namespace(user, "", namespaced=False)

    def filter_namespaces(self, user: User, namespaces: Iterable[str]) -> list[str]:
        if self.has_cluster_access(user):
            return sorted(namespaces)
        return sorted(ns for ns in namespaces if ns in user.allowed_namespaces)
