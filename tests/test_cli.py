"""Tests for the Build Planner CLI."""

import json
from unittest.mock import patch

import docker
import pytest
from click.testing import CliRunner

from tools.build_planner.cli import build_lookup, create_size_bar, main
from tools.build_planner.config import PlannerConfig
from tools.build_planner.sizing import CachedSizeLookup

DEV_SERVER = """\
FROM node:12
WORKDIR /app
COPY . .
CMD yarn start
"""

BROKEN = """\
FROM node:12-alpine AS build
RUN yarn build
FROM nginx:stable-alpine
COPY --from=nonexistent /app/build /usr/share/nginx/html
"""


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def dockerfile(tmp_path):
    path = tmp_path / "Dockerfile"
    path.write_text(DEV_SERVER)
    return path


class TestCreateSizeBar:
    """Test the size bar helper."""

    def test_full_and_empty(self):
        """Test bar fill proportions."""
        assert create_size_bar(10, 10, width=4) == "████"
        assert create_size_bar(0, 10, width=4) == "░░░░"
        assert create_size_bar(5, 0) == ""


class TestMain:
    """Test the click command."""

    def test_rich_output(self, runner, dockerfile):
        """Test the default output mode."""
        result = runner.invoke(main, [str(dockerfile)])

        assert result.exit_code == 0
        assert "Final image" in result.output
        assert "Analysis completed" in result.output

    def test_json_output(self, runner, dockerfile):
        """Test JSON output is machine-readable."""
        result = runner.invoke(main, [str(dockerfile), "--output", "json"])

        assert result.exit_code == 0
        report = json.loads(result.stdout)
        assert report["final_stage"] == "0"
        assert [s["category"] for s in report["suggestions"]] == [
            "SERVER_SWAP",
            "BASE_IMAGE_SWAP",
            "INTRODUCE_MULTISTAGE",
        ]

    @pytest.mark.filterwarnings("error::DeprecationWarning")
    def test_stdin(self, runner):
        """Test reading the build description from stdin."""
        result = runner.invoke(main, ["-", "-o", "json"], input=DEV_SERVER)

        assert result.exit_code == 0
        assert json.loads(result.stdout)["final_stage"] == "0"

    def test_structural_error(self, runner, tmp_path):
        """Test invalid descriptions exit with an error."""
        path = tmp_path / "Dockerfile"
        path.write_text(BROKEN)

        result = runner.invoke(main, [str(path)])

        assert result.exit_code == 1
        assert "nonexistent" in result.output

    def test_missing_file(self, runner, tmp_path):
        """Test a missing Dockerfile exits with an error."""
        result = runner.invoke(main, [str(tmp_path / "Dockerfile")])

        assert result.exit_code == 1
        assert "File not found" in result.output

    def test_unknown_target(self, runner, dockerfile):
        """Test an unknown --target exits with an error."""
        result = runner.invoke(main, [str(dockerfile), "--target", "release"])

        assert result.exit_code == 1
        assert "Unknown target stage" in result.output

    @patch("tools.build_planner.cli.BuildPlanner.analyze")
    def test_internal_key_error_is_not_a_target_error(self, mock_analyze, runner, dockerfile):
        """Test unrelated KeyErrors are reported as unexpected errors."""
        mock_analyze.side_effect = KeyError("layers")

        result = runner.invoke(main, [str(dockerfile)])

        assert result.exit_code == 1
        assert "Unexpected error" in result.output
        assert "Unknown target stage" not in result.output

    def test_size_hint_option(self, runner, dockerfile):
        """Test size hints are parsed and applied."""
        result = runner.invoke(main, [str(dockerfile), "-o", "json", "--context-size", "20MB"])

        assert result.exit_code == 0
        report = json.loads(result.stdout)
        assert report["final_size_bytes"] == (918 + 20) * 1024 * 1024

    def test_invalid_size_option(self, runner, dockerfile):
        """Test malformed size options are a usage error."""
        result = runner.invoke(main, [str(dockerfile), "--context-size", "lots"])

        assert result.exit_code == 2

    def test_config_file(self, runner, dockerfile, tmp_path):
        """Test a config file overrides estimator defaults."""
        config = tmp_path / "planner.json"
        config.write_text(json.dumps({"default_context_bytes": "10MB"}))

        result = runner.invoke(main, [str(dockerfile), "-o", "json", "--config", str(config)])

        assert result.exit_code == 0
        report = json.loads(result.stdout)
        assert report["final_size_bytes"] == (918 + 10) * 1024 * 1024

    def test_invalid_config_file(self, runner, dockerfile, tmp_path):
        """Test an invalid config file exits with an error."""
        config = tmp_path / "planner.json"
        config.write_text(json.dumps({"bogus": 1}))

        result = runner.invoke(main, [str(dockerfile), "--config", str(config)])

        assert result.exit_code == 1
        assert "Invalid config" in result.output


class TestBuildLookup:
    """Test lookup selection."""

    def test_static_by_default(self):
        """Test the built-in table is used without --docker."""
        lookup = build_lookup(PlannerConfig(), use_docker=False, pull=False)

        assert isinstance(lookup, CachedSizeLookup)
        assert lookup.lookup("node:12").estimated_bytes == 918 * 1024 * 1024

    @patch("docker.from_env")
    def test_docker_unavailable(self, mock_docker):
        """Test falling back to the table when Docker is not reachable."""
        mock_docker.side_effect = docker.errors.DockerException("no daemon")

        lookup = build_lookup(PlannerConfig(), use_docker=True, pull=False)
        assert lookup.lookup("nginx:stable-alpine").estimated_bytes == 43 * 1024 * 1024

    @patch("docker.from_env")
    def test_docker_first(self, mock_docker):
        """Test the daemon answers before the table."""
        image = mock_docker.return_value.images.get.return_value
        image.attrs = {"Size": 12345}

        lookup = build_lookup(PlannerConfig(), use_docker=True, pull=False)
        assert lookup.lookup("node:12").estimated_bytes == 12345
