"""Tests for report rendering and the build planner."""

import json

import pytest

from tools.build_planner.config import PlannerConfig, SizeHints
from tools.build_planner.errors import DuplicateStageNameError, LookupUnavailableError, UnknownTargetError
from tools.build_planner.models import Suggestion, SuggestionCategory
from tools.build_planner.planner import BuildAnalysis, BuildPlanner
from tools.build_planner.report import render_report, render_suggestion, render_suggestions, to_json

MB = 1024 * 1024

DEV_SERVER = """\
FROM node:12
WORKDIR /app
COPY . .
CMD yarn start
"""

MULTI_STAGE = """\
FROM node:12-alpine AS build
WORKDIR /app
COPY package.json yarn.lock ./
RUN yarn install --frozen-lockfile
COPY . .
RUN yarn build

FROM nginx:stable-alpine
COPY --from=build /app/build /usr/share/nginx/html
EXPOSE 80
CMD ["nginx", "-g", "daemon off;"]
"""


class OfflineLookup:
    def lookup(self, reference):
        raise LookupUnavailableError(reference, "offline")


class TestRenderSuggestion:
    """Test suggestion rendering."""

    def test_fields(self):
        """Test every suggestion field is rendered."""
        suggestion = Suggestion(
            category=SuggestionCategory.DROP_UNUSED_COPY,
            target_stage="1",
            estimated_savings_bytes=5 * MB,
            rationale="unused",
            line=8,
            low_confidence=True,
        )

        assert render_suggestion(suggestion) == {
            "category": "DROP_UNUSED_COPY",
            "target_stage": "1",
            "estimated_savings_bytes": 5 * MB,
            "estimated_savings_human": "5.00 MB",
            "rationale_text": "unused",
            "line": 8,
            "low_confidence": True,
        }

    def test_order_preserved(self):
        """Test rendering keeps the ranked order."""
        suggestions = [
            Suggestion(SuggestionCategory.SERVER_SWAP, "0", 30, "a"),
            Suggestion(SuggestionCategory.BASE_IMAGE_SWAP, "0", 20, "b"),
            Suggestion(SuggestionCategory.INTRODUCE_MULTISTAGE, "0", 10, "c"),
        ]

        rendered = render_suggestions(suggestions)
        assert [r["rationale_text"] for r in rendered] == ["a", "b", "c"]

    def test_empty(self):
        """Test an empty list renders as an empty list."""
        assert render_suggestions([]) == []


class TestRenderReport:
    """Test full report rendering."""

    def test_report_structure(self):
        """Test the report lists stages, layers and suggestions."""
        analysis = BuildPlanner().analyze(MULTI_STAGE)
        report = render_report(analysis.build, analysis.suggestions)

        assert report["final_stage"] == "1"
        assert report["final_size_bytes"] == 43 * MB + PlannerConfig().default_artifact_bytes
        assert report["suggestions"] == []
        assert report["total_savings_bytes"] == 0

        build, serve = report["stages"]
        assert build["identifier"] == "build"
        assert build["base_image"] == "node:12-alpine"
        assert build["line"] == 1
        assert [layer["line"] for layer in build["layers"]] == [1, 3, 4, 5, 6]
        assert serve["copy_from"] == ["build"]
        assert serve["layers"][1]["provenance"] == "ARTIFACT_COPY"

    def test_report_is_json_serializable(self):
        """Test the rendered report survives a JSON round trip."""
        analysis = BuildPlanner().analyze(DEV_SERVER)
        report = analysis.to_dict()

        assert json.loads(to_json(report)) == report

    def test_total_savings(self):
        """Test total savings add up the suggestions."""
        analysis = BuildPlanner().analyze(DEV_SERVER)
        report = analysis.to_dict()

        assert report["total_savings_bytes"] == sum(
            s["estimated_savings_bytes"] for s in report["suggestions"]
        )
        assert report["total_savings_bytes"] == analysis.total_savings


class TestBuildPlanner:
    """Test the end-to-end planner."""

    def test_analyze(self):
        """Test a full analysis of a single-stage build."""
        analysis = BuildPlanner().analyze(DEV_SERVER)

        assert isinstance(analysis, BuildAnalysis)
        assert analysis.final_size == 918 * MB + PlannerConfig().default_context_bytes
        assert "MB" in analysis.final_size_human
        assert analysis.suggestions[0].category == SuggestionCategory.SERVER_SWAP

    def test_target_stage(self):
        """Test analysis against an earlier target stage."""
        analysis = BuildPlanner().analyze(MULTI_STAGE, target="BUILD")

        assert analysis.target == "build"
        assert analysis.to_dict()["final_stage"] == "build"
        assert analysis.final_size == analysis.build.stage_size("build")

    def test_unknown_target(self):
        """Test an unknown target raises UnknownTargetError."""
        with pytest.raises(UnknownTargetError) as exc_info:
            BuildPlanner().analyze(MULTI_STAGE, target="release")

        assert exc_info.value.target == "release"

    def test_structural_error_propagates(self):
        """Test structural errors abort the analysis."""
        with pytest.raises(DuplicateStageNameError):
            BuildPlanner().analyze("FROM alpine AS a\nFROM alpine AS a\n")

    def test_hints(self):
        """Test size hints flow into the estimates."""
        planner = BuildPlanner(hints=SizeHints(artifact_bytes=3 * MB))
        analysis = planner.analyze(MULTI_STAGE)

        assert analysis.final_size == 46 * MB

    def test_config_image_sizes(self):
        """Test extra image sizes from the config are used."""
        config = PlannerConfig(image_sizes={"registry.example.com/base:1": 12 * MB})
        analysis = BuildPlanner(config=config).analyze("FROM registry.example.com/base:1\n")

        assert analysis.final_size == 12 * MB
        assert analysis.build.low_confidence is False

    def test_offline_lookup(self):
        """Test analysis completes with every lookup failing."""
        analysis = BuildPlanner(lookup=OfflineLookup()).analyze(DEV_SERVER)

        assert analysis.build.low_confidence is True
        assert analysis.suggestions
        assert all(s.low_confidence for s in analysis.suggestions)

    def test_planner_is_reusable(self):
        """Test one planner gives identical results across runs."""
        planner = BuildPlanner()

        first = planner.analyze(DEV_SERVER)
        planner.analyze(MULTI_STAGE)
        second = planner.analyze(DEV_SERVER)

        assert first.to_dict() == second.to_dict()

    def test_analyze_file(self, tmp_path):
        """Test analyzing a file on disk."""
        path = tmp_path / "Dockerfile"
        path.write_text(MULTI_STAGE)

        analysis = BuildPlanner().analyze_file(path)
        assert analysis.suggestions == []

    def test_analyze_missing_file(self, tmp_path):
        """Test a missing file raises FileNotFoundError."""
        with pytest.raises(FileNotFoundError):
            BuildPlanner().analyze_file(tmp_path / "Dockerfile")
