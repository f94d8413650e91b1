"""Shared fixtures for kubediag tests.

Every test runs against an in-memory :class:`tests.fakes.FakeCluster`; no
test touches a real Kubernetes API server.
"""

from __future__ import annotations

import pytest

from kubediag.tools.invoker import ToolInvoker
from tests.fakes import FakeCluster, make_invoker


@pytest.fixture
def cluster() -> FakeCluster:
    return FakeCluster()


@pytest.fixture
def invoker(cluster: FakeCluster) -> ToolInvoker:
    return make_invoker(cluster)
