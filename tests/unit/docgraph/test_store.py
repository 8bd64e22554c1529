"""Unit tests for the knowledge graph store.

Tests persistence round-trips, natural-key upserts, referential integrity,
the single-writer lock, corruption handling, backups and concurrent writes.
"""

import json
from concurrent.futures import ThreadPoolExecutor, as_completed

import pytest

from docgraph.errors import (
    EdgeNotFoundError,
    LockContentionError,
    NodeNotFoundError,
    StorageCorruptionError,
    StorageWriteError,
    ValidationError,
)
from docgraph.graph.models import EdgeFilter, EdgeType, NodeFilter, NodeType
from docgraph.graph.store import (
    GRAPH_FILENAME,
    SCHEMA_VERSION,
    GraphStore,
    project_node_id,
    scan_document,
)


def _project(store, name, **extra):
    path = f"/repos/{name}"
    return store.add_node(
        NodeType.PROJECT, {"name": name, "path": path, "path_key": path, **extra}
    )


def _config(store, ssg):
    return store.add_node(NodeType.CONFIGURATION, {"ssg": ssg})


def _deploy(store, project, config, success=True, created_at=None):
    return store.add_edge(
        EdgeType.PROJECT_DEPLOYED_WITH,
        project.id,
        config.id,
        {
            "ssg": config.properties["ssg"],
            "success": success,
            "timestamp": created_at or store.timestamp(),
        },
        created_at=created_at,
    )


def _snapshot_dicts(store):
    return (
        [n.to_dict() for n in store.get_all_nodes()],
        [e.to_dict() for e in store.get_all_edges()],
    )


class TestRoundTrip:
    """Tests for persisting and reloading the graph."""

    def test_reload_yields_identical_graph(self, store, storage_dir, clock):
        """Reopening the store should reproduce every node and edge."""
        project = _project(store, "site", languages=["python"])
        mkdocs = _config(store, "mkdocs")
        clock.advance(minutes=1)
        _deploy(store, project, mkdocs, success=True)
        _deploy(store, project, mkdocs, success=False, created_at="2025-05-01T00:00:00Z")
        before = _snapshot_dicts(store)
        store.close()

        with GraphStore(storage_dir, clock=clock) as reopened:
            assert _snapshot_dicts(reopened) == before

    def test_file_is_versioned_document(self, store):
        """The persisted file should carry the schema version."""
        _config(store, "hugo")

        document = json.loads(store.graph_path.read_text())

        assert document["version"] == SCHEMA_VERSION
        assert len(document["nodes"]) == 1
        assert document["edges"] == []

    def test_timestamps_are_utc_iso8601(self, store):
        """Timestamps should be UTC ISO-8601 with microseconds."""
        node = _config(store, "hugo")

        assert node.created_at == "2025-06-01T12:00:00.000000+00:00"
        assert node.updated_at == node.created_at

    def test_missing_file_starts_empty(self, store):
        """A fresh directory should load as an empty graph."""
        assert store.get_all_nodes() == []
        assert store.get_all_edges() == []
        assert not store.graph_path.exists()


class TestNodes:
    """Tests for node creation, upsert and updates."""

    def test_configuration_upserts_by_ssg(self, store):
        """Adding the same SSG twice should yield one node."""
        first = _config(store, "MkDocs")
        second = store.add_node(NodeType.CONFIGURATION, {"ssg": "mkdocs", "label": "docs"})

        assert first.id == second.id == "configuration:mkdocs"
        assert second.properties["label"] == "docs"
        assert len(store.find_nodes(type=NodeType.CONFIGURATION)) == 1

    def test_project_id_from_analysis_id(self, store):
        """Projects with an analysis id should use it as their node id."""
        node = _project(store, "site", analysis_id="abc123")

        assert node.id == "project:abc123"

    def test_project_id_from_path_hash(self, store):
        """Projects without an analysis id should hash their path key."""
        node = _project(store, "site")

        assert node.id == project_node_id("/repos/site")
        assert len(node.id) == len("project:") + 16

    def test_analysis_nodes_get_unique_ids(self, store):
        """Analysis nodes have no natural key and are never merged."""
        props = {"project_path": "/repos/a", "observed_at": store.timestamp()}

        first = store.add_node(NodeType.ANALYSIS, props)
        second = store.add_node(NodeType.ANALYSIS, props)

        assert first.id != second.id
        assert first.id.startswith("analysis:")

    def test_update_node_merges_properties(self, store, clock):
        """update_node should merge and advance updated_at."""
        node = _config(store, "hugo")
        clock.advance(seconds=5)

        updated = store.update_node(node.id, {"label": "Hugo"})

        assert updated.properties["label"] == "Hugo"
        assert updated.properties["ssg"] == "hugo"
        assert updated.created_at == node.created_at
        assert updated.updated_at > node.updated_at

    def test_updated_at_never_moves_backwards(self, store, clock):
        """A clock stepping backwards should not decrease updated_at."""
        node = _config(store, "hugo")
        clock.advance(hours=-1)

        updated = store.update_node(node.id, {"label": "Hugo"})

        assert updated.updated_at == node.updated_at

    def test_update_missing_node_raises(self, store):
        """Updating an unknown node should raise NodeNotFoundError."""
        with pytest.raises(NodeNotFoundError):
            store.update_node("configuration:nope", {"label": "x"})

    def test_modify_node_reads_current_properties(self, store):
        """modify_node should hand the mutator the committed properties."""
        node = _config(store, "hugo")

        updated = store.modify_node(node.id, lambda props: {"label": props["ssg"].upper()})

        assert updated.properties["label"] == "HUGO"

    def test_upsert_node_creates_then_merges(self, store):
        """upsert_node should pass None first, then the stored properties."""
        seen = []

        def merge(existing):
            seen.append(existing)
            count = (existing or {}).get("total_files", 0)
            return {
                "name": "site",
                "path": "/repos/site",
                "path_key": "/repos/site",
                "total_files": count + 1,
            }

        first, created = store.upsert_node(NodeType.PROJECT, {"path_key": "/repos/site"}, merge)
        second, created_again = store.upsert_node(
            NodeType.PROJECT, {"path_key": "/repos/site"}, merge
        )

        assert created is True
        assert created_again is False
        assert second.id == first.id
        assert second.properties["total_files"] == 2
        assert seen[0] is None
        assert seen[1]["total_files"] == 1

    def test_upsert_node_validates_new_nodes(self, store):
        """A merge result violating the schema should not be written."""
        with pytest.raises(ValidationError):
            store.upsert_node(NodeType.CONFIGURATION, {"ssg": "hugo"}, lambda _: {"ssg": ""})

        assert store.get_all_nodes() == []

    def test_get_node_returns_none_when_absent(self, store):
        """Expected absence should be a None return, not an exception."""
        assert store.get_node("project:missing") is None
        assert store.get_edge("missing") is None

    def test_require_helpers_raise(self, store):
        """require_node/require_edge should raise lookup errors."""
        with pytest.raises(NodeNotFoundError):
            store.require_node("project:missing")
        with pytest.raises(EdgeNotFoundError):
            store.require_edge("missing")
        with pytest.raises(LookupError):
            store.require_node("project:missing")

    def test_returned_nodes_are_copies(self, store):
        """Mutating a returned node should not affect the store."""
        node = _config(store, "hugo")
        node.properties["label"] = "mutated"

        assert store.get_node(node.id).properties.get("label") is None


class TestValidation:
    """Tests for schema validation on write."""

    def test_namespaced_extra_property_allowed(self, store):
        """Namespaced unknown keys should be stored."""
        node = store.add_node(NodeType.CONFIGURATION, {"ssg": "hugo", "ci:provider": "gha"})

        assert node.properties["ci:provider"] == "gha"

    def test_unnamespaced_extra_property_rejected(self, store):
        """Un-namespaced unknown keys should raise ValidationError."""
        with pytest.raises(ValidationError) as exc_info:
            store.add_node(NodeType.CONFIGURATION, {"ssg": "hugo", "provider": "gha"})

        assert "provider" in str(exc_info.value)

    def test_missing_required_field_rejected(self, store):
        """Project nodes require a name and path."""
        with pytest.raises(ValidationError) as exc_info:
            store.add_node(NodeType.PROJECT, {"name": "site"})

        assert "path" in exc_info.value.fields

    def test_validation_error_is_value_error(self, store):
        """ValidationError should be catchable as ValueError."""
        with pytest.raises(ValueError):
            _project(store, "site", size="huge")

    def test_invalid_write_leaves_graph_unchanged(self, store):
        """A rejected write should not be persisted."""
        _config(store, "hugo")
        before = store.graph_path.read_text()

        with pytest.raises(ValidationError):
            store.add_node(NodeType.CONFIGURATION, {"ssg": ""})

        assert store.graph_path.read_text() == before
        assert len(store.get_all_nodes()) == 1

    def test_failed_disk_write_is_not_applied(self, store, storage_dir, monkeypatch):
        """An OSError while persisting raises StorageWriteError and publishes nothing."""
        _config(store, "hugo")
        before = store.graph_path.read_text()

        def fail_replace(src, dst):
            raise OSError("disk full")

        monkeypatch.setattr("docgraph.graph.store.os.replace", fail_replace)
        with pytest.raises(StorageWriteError, match="disk full"):
            _config(store, "jekyll")
        monkeypatch.undo()

        assert [n.id for n in store.get_all_nodes()] == ["configuration:hugo"]
        assert store.graph_path.read_text() == before
        assert list(storage_dir.glob(f".{GRAPH_FILENAME}.tmp-*")) == []

        _config(store, "jekyll")
        assert len(store.get_all_nodes()) == 2


class TestEdges:
    """Tests for edge creation and queries."""

    def test_edge_requires_existing_endpoints(self, store):
        """Edges to missing nodes should raise NodeNotFoundError."""
        project = _project(store, "site")

        with pytest.raises(NodeNotFoundError) as exc_info:
            store.add_edge(
                EdgeType.PROJECT_DEPLOYED_WITH,
                project.id,
                "configuration:missing",
                {"ssg": "missing", "success": True, "timestamp": store.timestamp()},
            )

        assert exc_info.value.node_id == "configuration:missing"
        assert store.get_all_edges() == []

    def test_edge_endpoint_types_checked(self, store):
        """A deployment edge must run project -> configuration."""
        project = _project(store, "site")
        hugo = _config(store, "hugo")

        with pytest.raises(ValidationError):
            store.add_edge(
                EdgeType.PROJECT_DEPLOYED_WITH,
                hugo.id,
                project.id,
                {"ssg": "hugo", "success": True, "timestamp": store.timestamp()},
            )

    def test_find_edges_ordered_by_created_at(self, store):
        """Edges should come back ordered by their event time."""
        project = _project(store, "site")
        hugo = _config(store, "hugo")
        late = _deploy(store, project, hugo, created_at="2025-05-03T00:00:00Z")
        early = _deploy(store, project, hugo, created_at="2025-05-01T00:00:00Z")

        edges = store.edges_from(EdgeType.PROJECT_DEPLOYED_WITH, project.id)

        assert [e.id for e in edges] == [early.id, late.id]

    def test_find_edges_time_range(self, store):
        """since is inclusive and until is exclusive."""
        project = _project(store, "site")
        hugo = _config(store, "hugo")
        for day in (1, 2, 3):
            _deploy(store, project, hugo, created_at=f"2025-05-0{day}T00:00:00Z")

        edges = store.find_edges(
            EdgeFilter(
                type=EdgeType.PROJECT_DEPLOYED_WITH,
                since="2025-05-02T00:00:00.000000+00:00",
                until="2025-05-03T00:00:00.000000+00:00",
            )
        )

        assert len(edges) == 1
        assert edges[0].created_at.startswith("2025-05-02")

    def test_find_edges_by_property(self, store):
        """Property criteria should filter edges."""
        project = _project(store, "site")
        hugo = _config(store, "hugo")
        _deploy(store, project, hugo, success=True)
        _deploy(store, project, hugo, success=False)

        failures = store.find_edges(type=EdgeType.PROJECT_DEPLOYED_WITH, properties={"success": False})

        assert len(failures) == 1

    def test_get_all_edges_limit(self, store):
        """get_all_edges should honor the limit."""
        project = _project(store, "site")
        hugo = _config(store, "hugo")
        for _ in range(3):
            _deploy(store, project, hugo)

        assert len(store.get_all_edges(limit=2)) == 2

    def test_find_or_add_edge_returns_duplicate(self, store):
        """A matching predicate should return the existing edge."""
        project = _project(store, "site")
        hugo = _config(store, "hugo")
        props = {"ssg": "hugo", "success": True, "timestamp": store.timestamp()}

        first, created_first = store.find_or_add_edge(
            EdgeType.PROJECT_DEPLOYED_WITH, project.id, hugo.id, props
        )
        second, created_second = store.find_or_add_edge(
            EdgeType.PROJECT_DEPLOYED_WITH,
            project.id,
            hugo.id,
            props,
            duplicate_of=lambda edge: edge.target == hugo.id,
        )

        assert created_first is True
        assert created_second is False
        assert second.id == first.id
        assert len(store.get_all_edges()) == 1


class TestArchive:
    """Tests for soft archival."""

    def test_archived_nodes_hidden_by_default(self, store):
        """find_nodes should skip archived nodes unless asked."""
        project = _project(store, "site")
        _project(store, "other")

        archived = store.archive_node(project.id, reason="deleted repo")

        assert archived.properties["archived"] is True
        assert archived.properties["archive_reason"] == "deleted repo"
        assert [n.properties["name"] for n in store.find_nodes(type=NodeType.PROJECT)] == ["other"]
        assert len(store.find_nodes(NodeFilter(type=NodeType.PROJECT, include_archived=True))) == 2
        assert store.get_node(project.id) is not None


class TestWriterLock:
    """Tests for single-writer locking and read-only stores."""

    def test_second_writer_rejected(self, store, storage_dir):
        """Opening a second writer on the same directory should fail fast."""
        with pytest.raises(LockContentionError) as exc_info:
            GraphStore(storage_dir)

        assert exc_info.value.lock_path == store.lock_path

    def test_lock_released_on_close(self, store, storage_dir, clock):
        """A closed store should let the next writer in."""
        _config(store, "hugo")
        store.close()

        with GraphStore(storage_dir, clock=clock) as second:
            assert second.get_node("configuration:hugo") is not None

    def test_closed_store_rejects_writes(self, store):
        """Writes after close should raise StorageWriteError."""
        store.close()

        with pytest.raises(StorageWriteError):
            _config(store, "hugo")

    def test_read_only_store_rejects_writes(self, store, storage_dir):
        """A read-only store should open alongside a writer and refuse writes."""
        _config(store, "hugo")

        with GraphStore(storage_dir, read_only=True) as reader:
            assert reader.get_node("configuration:hugo") is not None
            with pytest.raises(StorageWriteError):
                _config(reader, "mkdocs")

    def test_reader_reload_sees_new_commits(self, store, storage_dir):
        """reload() should publish another writer's commits."""
        with GraphStore(storage_dir, read_only=True) as reader:
            _config(store, "hugo")
            assert reader.get_node("configuration:hugo") is None

            reader.reload()

            assert reader.get_node("configuration:hugo") is not None

    def test_view_is_stable_across_writes(self, store):
        """A view should keep showing the snapshot it was taken from."""
        _config(store, "hugo")
        view = store.view()

        _config(store, "mkdocs")

        assert view.node_count == 1
        assert store.view().node_count == 2


class TestCorruption:
    """Tests for refusing to load invalid documents."""

    def test_invalid_json_raises(self, tmp_path):
        """Unparseable JSON should raise StorageCorruptionError."""
        (tmp_path / GRAPH_FILENAME).write_text("{not json")

        with pytest.raises(StorageCorruptionError) as exc_info:
            GraphStore(tmp_path)

        assert exc_info.value.path == tmp_path / GRAPH_FILENAME

    def test_future_major_version_raises(self, tmp_path):
        """A newer major version should be refused."""
        (tmp_path / GRAPH_FILENAME).write_text(
            json.dumps({"version": "2.0.0", "nodes": [], "edges": []})
        )

        with pytest.raises(StorageCorruptionError) as exc_info:
            GraphStore(tmp_path)

        assert "unsupported version" in exc_info.value.reason

    def test_orphan_edge_raises(self, tmp_path):
        """Edges referencing missing nodes should be refused on load."""
        document = {
            "version": SCHEMA_VERSION,
            "nodes": [],
            "edges": [
                {
                    "id": "e1",
                    "type": "project_deployed_with",
                    "source": "project:a",
                    "target": "configuration:hugo",
                    "properties": {"ssg": "hugo", "success": True, "timestamp": "2025-01-01T00:00:00Z"},
                    "createdAt": "2025-01-01T00:00:00.000000+00:00",
                }
            ],
        }
        (tmp_path / GRAPH_FILENAME).write_text(json.dumps(document))

        with pytest.raises(StorageCorruptionError) as exc_info:
            GraphStore(tmp_path)

        assert "references missing node" in exc_info.value.reason

    def test_failed_open_releases_lock(self, tmp_path):
        """A corrupt file should not leave the writer lock held."""
        (tmp_path / GRAPH_FILENAME).write_text("[]")
        with pytest.raises(StorageCorruptionError):
            GraphStore(tmp_path)

        (tmp_path / GRAPH_FILENAME).unlink()
        with GraphStore(tmp_path) as store:
            assert store.get_all_nodes() == []

    def test_scan_document_reports_without_raising(self):
        """scan_document should collect errors instead of raising."""
        nodes, edges, errors, warnings = scan_document({"version": "1.0.0", "nodes": {}, "edges": []})

        assert nodes == [] and edges == []
        assert errors == ["'nodes' and 'edges' must both be lists"]
        assert warnings == []


class TestBackups:
    """Tests for write backups and restore."""

    def test_backup_created_before_overwrite(self, store):
        """Each write after the first should back up the previous file."""
        _config(store, "hugo")
        assert store.list_backups() == []

        _config(store, "mkdocs")

        backups = store.list_backups()
        assert len(backups) == 1
        saved = json.loads(backups[0].read_text())
        assert [n["id"] for n in saved["nodes"]] == ["configuration:hugo"]

    def test_backups_pruned_to_keep(self, storage_dir, clock):
        """Only the newest backup_keep backups should remain."""
        with GraphStore(storage_dir, backup_keep=2, clock=clock) as store:
            for ssg in ("a", "b", "c", "d", "e"):
                _config(store, ssg)

            assert len(store.list_backups()) == 2

    def test_no_backups_when_disabled(self, storage_dir, clock):
        """backup_on_write=False should skip backups."""
        with GraphStore(storage_dir, backup_on_write=False, clock=clock) as store:
            _config(store, "a")
            _config(store, "b")

            assert store.list_backups() == []

    def test_restore_latest_backup(self, store):
        """Restoring should roll the graph back to the newest backup."""
        _config(store, "hugo")
        _config(store, "mkdocs")

        restored = store.restore_from_backup()

        assert restored.name.startswith("knowledge-graph-")
        assert store.get_node("configuration:mkdocs") is None
        assert store.get_node("configuration:hugo") is not None

    def test_restore_without_backups_raises(self, store):
        """Restoring with no backups should raise FileNotFoundError."""
        with pytest.raises(FileNotFoundError):
            store.restore_from_backup()


class TestMaintenance:
    """Tests for integrity verification, statistics and export."""

    def test_verify_integrity_valid(self, store):
        """A store written normally should verify clean."""
        project = _project(store, "site")
        _deploy(store, project, _config(store, "hugo"))

        result = store.verify_integrity()

        assert result == {"valid": True, "errors": [], "warnings": []}

    def test_verify_integrity_detects_tampering(self, store):
        """Removing a node on disk should surface an orphan edge error."""
        project = _project(store, "site")
        _deploy(store, project, _config(store, "hugo"))
        document = json.loads(store.graph_path.read_text())
        document["nodes"] = [n for n in document["nodes"] if n["type"] != "configuration"]
        store.graph_path.write_text(json.dumps(document))

        result = store.verify_integrity()

        assert result["valid"] is False
        assert any("references missing node" in e for e in result["errors"])

    def test_statistics_counts_by_type(self, store):
        """get_statistics should count nodes and edges per type."""
        project = _project(store, "site")
        _deploy(store, project, _config(store, "hugo"))

        stats = store.get_statistics()

        assert stats["node_count"] == 2
        assert stats["edge_count"] == 1
        assert stats["nodes_by_type"] == {"configuration": 1, "project": 1}
        assert stats["edges_by_type"] == {"project_deployed_with": 1}
        assert stats["storage_exists"] is True
        assert stats["file_size_bytes"] > 0

    def test_export_json_metadata(self, store):
        """export_json should include counts and the schema version."""
        _config(store, "hugo")

        exported = json.loads(store.export_json())

        assert exported["metadata"]["version"] == SCHEMA_VERSION
        assert exported["metadata"]["nodeCount"] == 1
        assert exported["metadata"]["edgeCount"] == 0


class TestConcurrentWrites:
    """Tests for concurrent writers sharing one store."""

    def test_multiple_threads_can_write(self, store, storage_dir, clock):
        """Concurrent add_edge calls should all land without loss."""
        project = _project(store, "site")
        hugo = _config(store, "hugo")
        num_threads = 8
        edges_per_thread = 10

        def write_edges(thread_id: int) -> int:
            """Write several deployment edges from one thread."""
            for i in range(edges_per_thread):
                _deploy(
                    store,
                    project,
                    hugo,
                    success=bool(i % 2),
                    created_at=f"2025-05-01T00:{thread_id:02d}:{i:02d}Z",
                )
            return edges_per_thread

        with ThreadPoolExecutor(max_workers=num_threads) as executor:
            futures = [executor.submit(write_edges, i) for i in range(num_threads)]
            written = sum(future.result() for future in as_completed(futures))

        assert written == num_threads * edges_per_thread
        assert len(store.get_all_edges()) == written
        store.close()

        with GraphStore(storage_dir, clock=clock) as reopened:
            assert len(reopened.get_all_edges()) == written
            assert reopened.verify_integrity()["valid"] is True
