"""Unit tests for the docgraph command line.

Each test points the CLI at a temporary storage directory through the
environment and invokes commands with typer's CliRunner.
"""

import json

import pytest
from typer.testing import CliRunner

from cli import __version__
from cli.main import app
from docgraph.graph.store import GRAPH_FILENAME
from docgraph.resolver import ProjectDescriptor
from docgraph.service import open_graph

runner = CliRunner()


@pytest.fixture(autouse=True)
def cli_env(tmp_path, storage_dir, monkeypatch):
    """Isolate the CLI from the user's environment."""
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("DOCGRAPH_CONFIG_PATH", raising=False)
    monkeypatch.setenv("DOCGRAPH_STORAGE_DIR", str(storage_dir))
    monkeypatch.setenv("DOCGRAPH_LOG_LEVEL", "WARNING")


@pytest.fixture
def seeded(storage_dir, tmp_path):
    """Write a graph with one Python project and two deployments."""
    with open_graph({"storage": {"dir": str(storage_dir)}}) as graph:
        project = graph.create_or_update_project(
            ProjectDescriptor(path=str(tmp_path / "site"), ecosystem="python")
        )
        graph.record_deployment(project.id, "mkdocs", True)
        graph.record_deployment(project.id, "mkdocs", False)
    return project.id


class TestVersion:
    """Tests for --version."""

    def test_version_flag(self):
        """--version should print the package version and exit 0."""
        result = runner.invoke(app, ["--version"])

        assert result.exit_code == 0
        assert f"docgraph version {__version__}" in result.stdout


class TestConfigOption:
    """Tests for --config handling."""

    def test_invalid_config_exits_2(self, tmp_path):
        """A broken explicit config file should exit with status 2."""
        config_path = tmp_path / "bad.yaml"
        config_path.write_text("invalid: yaml: content: [")

        result = runner.invoke(app, ["--config", str(config_path), "stats"])

        assert result.exit_code == 2


class TestStats:
    """Tests for the stats command."""

    def test_stats_table(self, seeded):
        """stats should render node and deployment counts."""
        result = runner.invoke(app, ["stats"])

        assert result.exit_code == 0
        assert "Knowledge Graph" in result.stdout
        assert "Deployments" in result.stdout


class TestRecommend:
    """Tests for the recommend command."""

    def test_recommend_json(self, seeded):
        """--json should print the recommendation document."""
        result = runner.invoke(app, ["recommend", seeded, "--json"])

        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert data["recommended"] == "mkdocs"
        assert data["project_id"] == seeded
        assert "Python ecosystem detected" in data["reasoning"]

    def test_recommend_priority(self, seeded):
        """--priority should force the mapped SSG."""
        result = runner.invoke(app, ["recommend", seeded, "--priority", "performance", "--json"])

        assert result.exit_code == 0
        assert json.loads(result.stdout)["recommended"] == "hugo"

    def test_recommend_human_output(self, seeded):
        """Without --json the recommendation is printed for humans."""
        result = runner.invoke(app, ["recommend", seeded])

        assert result.exit_code == 0
        assert "mkdocs" in result.stdout
        assert "Alternatives" in result.stdout

    def test_recommend_global_on_empty_graph(self):
        """Recommending without a graph falls back to the default SSG."""
        result = runner.invoke(app, ["recommend", "--json"])

        assert result.exit_code == 0
        assert json.loads(result.stdout)["recommended"] == "docusaurus"


class TestHealth:
    """Tests for the health command."""

    def test_health_json(self, seeded):
        """A valid graph should report healthy with a deployment score."""
        result = runner.invoke(app, ["health", "--json"])

        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert data["status"] == "healthy"
        assert 0 <= data["deployment_health"]["score"] <= 100

    def test_health_missing_graph_is_degraded(self):
        """An unwritten graph is degraded but not a failure."""
        result = runner.invoke(app, ["health", "--json"])

        assert result.exit_code == 0
        assert json.loads(result.stdout)["status"] == "degraded"

    def test_health_corrupt_graph_fails(self, storage_dir):
        """A corrupt graph should exit 1."""
        storage_dir.mkdir(parents=True)
        (storage_dir / GRAPH_FILENAME).write_text("{bad")

        result = runner.invoke(app, ["health"])

        assert result.exit_code == 1


class TestTrendsReportVerify:
    """Tests for trends, report and verify."""

    def test_trends(self, seeded):
        """trends should print the trend direction."""
        result = runner.invoke(app, ["trends"])

        assert result.exit_code == 0
        assert "Direction" in result.stdout

    def test_trends_without_history(self):
        """trends should say so when nothing has been deployed."""
        result = runner.invoke(app, ["trends"])

        assert result.exit_code == 0
        assert "No deployments recorded yet" in result.stdout

    def test_trends_rejects_non_positive_period(self, seeded):
        """--period must be positive."""
        result = runner.invoke(app, ["trends", "--period", "0"])

        assert result.exit_code == 2

    def test_report_json(self, seeded):
        """report should print the analytics report as JSON."""
        result = runner.invoke(app, ["report"])

        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert data["summary"]["total_deployments"] == 2
        assert data["summary"]["most_used_ssg"] == "mkdocs"

    def test_verify_valid(self, seeded):
        """verify should succeed on a clean graph."""
        result = runner.invoke(app, ["verify"])

        assert result.exit_code == 0
        assert "Knowledge graph is valid" in result.stdout

    def test_verify_corrupt_exits_1(self, storage_dir):
        """A corrupt graph cannot be opened for verification."""
        storage_dir.mkdir(parents=True)
        (storage_dir / GRAPH_FILENAME).write_text("{bad")

        result = runner.invoke(app, ["verify"])

        assert result.exit_code == 1
