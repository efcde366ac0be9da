"""Structured rendering of analysis results."""

import json
from typing import Any, Dict, List, Optional, Sequence

from .models import EstimatedBuild, Suggestion, format_bytes


def render_suggestion(suggestion: Suggestion) -> Dict[str, Any]:
    """
    Render one suggestion as a plain mapping.

    Args:
        suggestion: Suggestion to render

    Returns:
        Mapping with category, target_stage, estimated_savings_bytes,
        rationale_text and display helpers
    """
    return {
        "category": suggestion.category.value,
        "target_stage": suggestion.target_stage,
        "estimated_savings_bytes": suggestion.estimated_savings_bytes,
        "estimated_savings_human": format_bytes(suggestion.estimated_savings_bytes),
        "rationale_text": suggestion.rationale,
        "line": suggestion.line,
        "low_confidence": suggestion.low_confidence,
    }


def render_suggestions(suggestions: Sequence[Suggestion]) -> List[Dict[str, Any]]:
    """Render suggestions in their given order."""
    return [render_suggestion(s) for s in suggestions]


def render_report(
    build: EstimatedBuild, suggestions: Sequence[Suggestion], target: Optional[str] = None
) -> Dict[str, Any]:
    """
    Render a full analysis report.

    Args:
        build: Size-annotated build
        suggestions: Ranked suggestions for the build
        target: Target stage, if not the last one

    Returns:
        JSON-serializable report
    """
    final_stage = build.graph.final_stage(target)
    final_size = build.stage_size(final_stage.identifier)
    total_savings = sum(s.estimated_savings_bytes for s in suggestions)

    stages = []
    for stage in build.graph.stages:
        size = build.stage_size(stage.identifier)
        stages.append(
            {
                "identifier": stage.identifier,
                "base_image": stage.base_image,
                "base_stage": stage.base_stage,
                "line": stage.line,
                "copy_from": list(stage.copy_from),
                "size_bytes": size,
                "size_human": format_bytes(size),
                "low_confidence": build.stage_low_confidence(stage.identifier),
                "layers": [
                    {
                        "line": layer.instruction.line,
                        "instruction": layer.instruction.text,
                        "provenance": layer.provenance.value,
                        "size_bytes": layer.size_bytes,
                        "size_human": layer.size_human,
                        "low_confidence": layer.low_confidence,
                    }
                    for layer in build.layers_for(stage.identifier)
                ],
            }
        )

    return {
        "final_stage": final_stage.identifier,
        "final_size_bytes": final_size,
        "final_size_human": format_bytes(final_size),
        "low_confidence": build.low_confidence,
        "total_savings_bytes": total_savings,
        "total_savings_human": format_bytes(total_savings),
        "stages": stages,
        "suggestions": render_suggestions(suggestions),
    }


def to_json(report: Any) -> str:
    """Serialize a rendered report to JSON text."""
    return json.dumps(report, indent=2)
