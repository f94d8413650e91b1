"""Tests for API key parsing and namespace gating."""

from __future__ import annotations

import pytest

from kubediag.errors import PolicyError, ValidationError
from kubediag.policy import Authorizer, Role, User, parse_api_keys


class TestParseApiKeys:
    def test_cluster_and_namespace_entries(self) -> None:
        users = parse_api_keys(["admin=cluster", "dev=namespace:default|staging"])
        assert users["admin"].role == Role.CLUSTER
        assert users["dev"].allowed_namespaces == frozenset({"default", "staging"})

    @pytest.mark.parametrize("entry", ["nokey", "=cluster", "k=namespace", "k=namespace:", "k=owner"])
    def test_invalid_entries(self, entry: str) -> None:
        with pytest.raises(ValueError, match="Invalid api key entry #0"):
            parse_api_keys([entry])


class TestAuthenticate:
    def test_no_keys_means_local_cluster_user(self) -> None:
        user = Authorizer().authenticate(None)
        assert user.role == Role.CLUSTER
        assert user.id == "local"

    def test_unknown_key_rejected(self) -> None:
        authorizer = Authorizer({"good": User.cluster_admin("a")})
        with pytest.raises(PolicyError):
            authorizer.authenticate("bad")
        with pytest.raises(PolicyError):
            authorizer.authenticate(None)


class TestCheckNamespace:
    def setup_method(self) -> None:
        self.authorizer = Authorizer()
        self.dev = User.namespaced("dev", ["default"])

    def test_cluster_role_sees_everything(self) -> None:
        admin = User.cluster_admin()
        self.authorizer.check_namespace(admin, "kube-system")
        self.authorizer.require_cluster(admin)

    def test_allowed_namespace(self) -> None:
        self.authorizer.check_namespace(self.dev, "default")

    def test_other_namespace_denied(self) -> None:
        with pytest.raises(PolicyError, match="namespace not allowed: prod"):
            self.authorizer.check_namespace(self.dev, "prod")

    def test_empty_namespace_is_validation_error(self) -> None:
        with pytest.raises(ValidationError):
            self.authorizer.check_namespace(self.dev, "")

    def test_cluster_scope_denied_for_namespace_role(self) -> None:
        with pytest.raises(PolicyError):
            self.authorizer.require_cluster(self.dev)

    def test_filter_namespaces(self) -> None:
        assert self.authorizer.filter_namespaces(self.dev, ["prod", "default"]) == ["default"]
        assert self.authorizer.filter_namespaces(User.cluster_admin(), ["prod", "default"]) == ["default", "prod"]
