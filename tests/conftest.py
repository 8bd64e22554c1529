"""Shared pytest fixtures for docgraph tests.

Every store in the suite runs against a temporary directory and a
controllable clock, so timestamps, dedup windows and trend buckets are
deterministic.
"""

from collections.abc import Callable, Generator
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

import pytest

from docgraph.graph.models import Node
from docgraph.graph.store import GraphStore
from docgraph.resolver import ProjectDescriptor
from docgraph.service import DocGraph

START_TIME = datetime(2025, 6, 1, 12, 0, 0, tzinfo=timezone.utc)


class FixedClock:
    """Clock that only moves when a test advances it."""

    def __init__(self, start: datetime = START_TIME):
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs: float) -> datetime:
        self.current = self.current + timedelta(**kwargs)
        return self.current


# =============================================================================
# Clock / Path Fixtures
# =============================================================================


@pytest.fixture
def clock() -> FixedClock:
    """Return a clock pinned to START_TIME."""
    return FixedClock()


@pytest.fixture
def storage_dir(tmp_path: Path) -> Path:
    """Return an empty storage directory for the knowledge graph."""
    return tmp_path / "memory"


# =============================================================================
# Store / Facade Fixtures
# =============================================================================


@pytest.fixture
def store(storage_dir: Path, clock: FixedClock) -> Generator[GraphStore, None, None]:
    """Provide a writable GraphStore, closed after the test."""
    graph_store = GraphStore(storage_dir, clock=clock)
    yield graph_store
    graph_store.close()


@pytest.fixture
def graph(store: GraphStore) -> DocGraph:
    """Provide a DocGraph facade over the test store with default config."""
    return DocGraph(store, {})


@pytest.fixture
def make_project(graph: DocGraph, tmp_path: Path) -> Callable[..., Node]:
    """Factory creating a project node from a short description.

    Usage:
        project = make_project("site", ecosystem="python", languages={"python": 10})
    """

    def _make(name: str, **fields: Any) -> Node:
        fields.setdefault("path", str(tmp_path / "repos" / name))
        descriptor = ProjectDescriptor(name=name, **fields)
        return graph.create_or_update_project(descriptor)

    return _make
