"""End-to-end analysis of a build description."""

from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from shared.logger import get_logger

from .advisor import OptimizationAdvisor
from .config import PlannerConfig, SizeHints
from .errors import UnknownTargetError
from .graph import parse_build_description
from .models import EstimatedBuild, Suggestion, format_bytes
from .report import render_report
from .sizing import CachedSizeLookup, SizeEstimator, SizeLookup, StaticSizeTable

logger = get_logger(__name__)


@dataclass
class BuildAnalysis:
    """Result of analyzing one build description."""

    build: EstimatedBuild
    suggestions: List[Suggestion]
    target: Optional[str] = None

    @property
    def final_size(self) -> int:
        """Estimated size of the final image."""
        return self.build.final_size(self.target)

    @property
    def final_size_human(self) -> str:
        return format_bytes(self.final_size)

    @property
    def total_savings(self) -> int:
        """Sum of all suggestions' savings (rules are not mutually exclusive)."""
        return sum(s.estimated_savings_bytes for s in self.suggestions)

    def to_dict(self) -> dict:
        return render_report(self.build, self.suggestions, self.target)


class BuildPlanner:
    """
    Parse, size and advise on multi-stage build descriptions.

    A planner can be reused across analyses; each analysis builds its own
    graph and layer model. Only the size lookup (and its cache) is shared.

    Attributes:
        lookup: Size lookup shared by the estimator and the advisor
        config: Planner configuration
        hints: Caller-supplied size hints
    """

    def __init__(
        self,
        lookup: Optional[SizeLookup] = None,
        config: Optional[PlannerConfig] = None,
        hints: Optional[SizeHints] = None,
    ):
        self.config = config or PlannerConfig()
        if lookup is None:
            lookup = CachedSizeLookup(StaticSizeTable(self.config.image_sizes))
        self.lookup = lookup
        self.hints = hints or SizeHints()

    def analyze(self, text: str, target: Optional[str] = None) -> BuildAnalysis:
        """
        Analyze a build description.

        Args:
            text: Build description text
            target: Stage to treat as the final image (defaults to the last)

        Returns:
            BuildAnalysis with the sized build and ranked suggestions

        Raises:
            StructuralError: If the description is structurally invalid
            UnknownTargetError: If the target stage does not exist
        """
        graph = parse_build_description(text)
        if target is not None:
            try:
                target = graph.final_stage(target).identifier
            except KeyError:
                raise UnknownTargetError(target)

        build = SizeEstimator(self.lookup, self.config, self.hints).estimate(graph)
        suggestions = OptimizationAdvisor(self.lookup, self.config, target=target).advise(build)

        logger.info(
            f"Analyzed {len(graph.stages)} stage(s): final image ~{format_bytes(build.final_size(target))}, "
            f"{len(suggestions)} suggestion(s)"
        )
        return BuildAnalysis(build=build, suggestions=suggestions, target=target)

    def analyze_file(self, path: Path, target: Optional[str] = None) -> BuildAnalysis:
        """Analyze a build description file."""
        if not path.exists():
            raise FileNotFoundError(f"File not found: {path}")

        logger.info(f"Analyzing build description: {path}")
        return self.analyze(path.read_text(), target=target)
