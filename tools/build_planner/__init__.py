"""Build Planner - Estimate image size and plan multi-stage builds."""

from .advisor import OptimizationAdvisor
from .errors import (
    DuplicateStageNameError,
    LookupUnavailableError,
    MalformedInstructionError,
    PlannerError,
    StructuralError,
    UnknownStageReferenceError,
    UnknownTargetError,
)
from .graph import StageGraphBuilder, parse_build_description
from .models import (
    EstimatedBuild,
    Instruction,
    InstructionKind,
    Layer,
    LayerProvenance,
    Stage,
    StageGraph,
    Suggestion,
    SuggestionCategory,
)
from .planner import BuildAnalysis, BuildPlanner
from .report import render_report, render_suggestions
from .sizing import (
    CachedSizeLookup,
    Confidence,
    DockerSizeLookup,
    SizeEstimator,
    SizeResult,
    StaticSizeTable,
)

__all__ = [
    "BuildAnalysis",
    "BuildPlanner",
    "CachedSizeLookup",
    "Confidence",
    "DockerSizeLookup",
    "DuplicateStageNameError",
    "EstimatedBuild",
    "Instruction",
    "InstructionKind",
    "Layer",
    "LayerProvenance",
    "LookupUnavailableError",
    "MalformedInstructionError",
    "OptimizationAdvisor",
    "PlannerError",
    "SizeEstimator",
    "SizeResult",
    "Stage",
    "StageGraph",
    "StageGraphBuilder",
    "StaticSizeTable",
    "StructuralError",
    "Suggestion",
    "SuggestionCategory",
    "UnknownStageReferenceError",
    "UnknownTargetError",
    "parse_build_description",
    "render_report",
    "render_suggestions",
]
