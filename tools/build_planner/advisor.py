"""Size optimization rules over an estimated build."""

import posixpath
import re
from typing import Callable, List, Optional

from shared.logger import get_logger

from .config import PlannerConfig
from .models import (
    EstimatedBuild,
    Instruction,
    InstructionKind,
    LayerProvenance,
    Stage,
    Suggestion,
    SuggestionCategory,
    format_bytes,
)
from .sizing import Confidence, SizeLookup, sibling_references, split_reference, try_lookup

logger = get_logger(__name__)


CATEGORY_PRIORITY = {category: rank for rank, category in enumerate(SuggestionCategory)}

# Images that ship a whole language runtime
GENERAL_RUNTIMES = {
    "node",
    "python",
    "ruby",
    "php",
    "openjdk",
    "eclipse-temurin",
    "golang",
    "deno",
    "bun",
}

STATIC_SERVE_PATTERNS = [
    re.compile(r"\b(yarn|npm|pnpm)\s+(run\s+)?start\b"),
    re.compile(r"\breact-scripts\s+start\b"),
    re.compile(r"\bvite\s+preview\b"),
    re.compile(r"(^|\s)(npx\s+)?serve\b"),
    re.compile(r"\b(http-server|live-server)\b"),
    re.compile(r"\bhttp\.server\b"),
    re.compile(r"\bSimpleHTTPServer\b"),
]

LONG_RUNNING_PATTERN = re.compile(
    r"\b(start|serve|server|nginx|httpd|apache2|caddy|gunicorn|uvicorn|hypercorn|daphne|"
    r"flask|rails|puma|php-fpm|java|node|deno|bun|dotnet|python\d*(\.\d+)?)\b"
)

# Directories static-file servers serve from
SERVING_ROOTS = (
    "/usr/share/nginx/html",
    "/usr/local/apache2/htdocs",
    "/usr/share/caddy",
    "/var/www",
    "/srv",
)


def suggestion_sort_key(suggestion: Suggestion, build: EstimatedBuild):
    """Descending savings, then category priority, stage order and line."""
    return (
        -suggestion.estimated_savings_bytes,
        CATEGORY_PRIORITY[suggestion.category],
        build.graph.stage(suggestion.target_stage).index,
        suggestion.line or 0,
    )


def serves_static_files(command: Optional[str]) -> bool:
    """Whether a command looks like a static-file or dev server."""
    return bool(command) and any(p.search(command) for p in STATIC_SERVE_PATTERNS)


def is_long_running(command: Optional[str]) -> bool:
    """Whether a command looks like a long-running service."""
    return bool(command) and bool(LONG_RUNNING_PATTERN.search(command))


def in_serving_root(path: str) -> bool:
    """Whether an absolute path is inside a static-file server's document root."""
    return any(path == root or path.startswith(root + "/") for root in SERVING_ROOTS)


def copy_target(stage: Stage, position: int) -> str:
    """Absolute path the COPY at ``position`` writes to."""
    instruction = stage.instructions[position]
    return posixpath.normpath(posixpath.join(workdir_at(stage, position), instruction.destination))


def workdir_at(stage: Stage, position: int) -> str:
    """Working directory in effect before the instruction at ``position``."""
    workdir = "/"
    for instruction in stage.instructions[:position]:
        if instruction.keyword == "WORKDIR" and instruction.arguments.strip():
            workdir = posixpath.normpath(posixpath.join(workdir, instruction.arguments.strip()))
    return workdir


class OptimizationAdvisor:
    """
    Produce ranked size-optimization suggestions for an estimated build.

    Rules are evaluated independently over the same snapshot; applying one
    suggestion is not assumed by any other.

    Attributes:
        lookup: Size lookup used to price alternative images
        config: Planner configuration
        target: Stage treated as the final image (defaults to the last one)
    """

    def __init__(
        self,
        lookup: SizeLookup,
        config: Optional[PlannerConfig] = None,
        target: Optional[str] = None,
    ):
        self.lookup = lookup
        self.config = config or PlannerConfig()
        self.target = target

    @property
    def rules(self) -> List[Callable[[EstimatedBuild], List[Suggestion]]]:
        return [
            self.base_image_swap,
            self.introduce_multistage,
            self.drop_unused_copies,
            self.server_swap,
        ]

    def advise(self, build: EstimatedBuild) -> List[Suggestion]:
        """
        Run every rule and rank the results.

        Args:
            build: Size-annotated build

        Returns:
            Suggestions sorted by descending estimated savings
        """
        suggestions: List[Suggestion] = []
        for rule in self.rules:
            found = rule(build)
            logger.debug(f"{rule.__name__}: {len(found)} suggestion(s)")
            suggestions.extend(found)

        return sorted(suggestions, key=lambda s: suggestion_sort_key(s, build))

    def base_image_swap(self, build: EstimatedBuild) -> List[Suggestion]:
        """Suggest a smaller variant of each stage's base image."""
        graph = build.graph
        stages = graph.stages
        if self.target is not None:
            # Stages the target never builds do not matter
            stages = graph.required_stages(graph.final_stage(self.target).identifier)

        suggestions = []
        for stage in stages:
            image = stage.base_image
            if stage.base_stage is not None or image.lower() == "scratch" or "$" in image:
                continue

            base = build.base_layer(stage.identifier)
            best = None
            for candidate in sibling_references(image):
                result = try_lookup(self.lookup, candidate)
                if result is None or result.estimated_bytes >= base.size_bytes:
                    continue
                if best is None or result.estimated_bytes < best[1].estimated_bytes:
                    best = (candidate, result)

            if best is None:
                continue

            candidate, result = best
            savings = base.size_bytes - result.estimated_bytes
            suggestions.append(
                Suggestion(
                    category=SuggestionCategory.BASE_IMAGE_SWAP,
                    target_stage=stage.identifier,
                    estimated_savings_bytes=savings,
                    rationale=(
                        f"Base image {image} (~{format_bytes(base.size_bytes)}) has a smaller "
                        f"variant {candidate} (~{format_bytes(result.estimated_bytes)}); "
                        f"switching saves about {format_bytes(savings)}."
                    ),
                    line=stage.line,
                    low_confidence=base.low_confidence or result.confidence == Confidence.LOW,
                )
            )

        return suggestions

    def introduce_multistage(self, build: EstimatedBuild) -> List[Suggestion]:
        """Suggest splitting a single stage that both builds and serves."""
        graph = build.graph
        if graph.is_multistage:
            return []

        stage = graph.stages[0]
        # Copying the context straight into a document root is serving, not building
        builds = any(
            i.installs_dependencies
            or (i.copies_whole_context and not in_serving_root(copy_target(stage, position)))
            for position, i in enumerate(stage.instructions)
        )
        command = stage.command
        if not builds or not is_long_running(command):
            return []

        excluded = [
            layer
            for layer in build.layers_for(stage.identifier)
            if layer.provenance in (LayerProvenance.SOURCE_COPY, LayerProvenance.DEPENDENCY_INSTALL)
        ]
        savings = sum(layer.size_bytes for layer in excluded)
        if savings <= 0:
            return []

        return [
            Suggestion(
                category=SuggestionCategory.INTRODUCE_MULTISTAGE,
                target_stage=stage.identifier,
                estimated_savings_bytes=savings,
                rationale=(
                    f"The only stage both builds the application and serves it with `{command}`. "
                    f"Build in a separate stage and copy just the build output into a slim "
                    f"serving stage to leave about {format_bytes(savings)} of sources and "
                    f"build dependencies behind."
                ),
                line=stage.line,
                low_confidence=any(layer.low_confidence for layer in excluded),
            )
        ]

    def drop_unused_copies(self, build: EstimatedBuild) -> List[Suggestion]:
        """Flag final-stage COPY instructions whose content nothing uses."""
        stage = build.graph.final_stage(self.target)
        layers = {layer.instruction.line: layer for layer in build.layers_for(stage.identifier)}
        suggestions = []

        for position, instruction in enumerate(stage.instructions):
            if instruction.kind != InstructionKind.COPY:
                continue
            if self._copy_is_used(stage, position, instruction):
                continue

            layer = layers[instruction.line]
            if not layer.size_bytes:
                continue

            suggestions.append(
                Suggestion(
                    category=SuggestionCategory.DROP_UNUSED_COPY,
                    target_stage=stage.identifier,
                    estimated_savings_bytes=layer.size_bytes,
                    rationale=(
                        f"`{instruction.text}` copies content into {instruction.destination} "
                        f"that no later instruction or the container command uses; dropping it "
                        f"saves about {format_bytes(layer.size_bytes)}."
                    ),
                    line=instruction.line,
                    low_confidence=layer.low_confidence,
                )
            )

        return suggestions

    def _copy_is_used(self, stage: Stage, position: int, instruction: Instruction) -> bool:
        target = copy_target(stage, position)

        if in_serving_root(target):
            return True

        later = stage.instructions[position + 1 :]
        final_workdir = workdir_at(stage, len(stage.instructions))
        has_commands = stage.command is not None or any(
            i.kind == InstructionKind.RUN for i in later
        )
        if has_commands:
            if target == final_workdir:
                return True
            if final_workdir != "/" and target.startswith(final_workdir + "/"):
                return True

        tokens = {target, instruction.destination.rstrip("/")}
        for source in instruction.sources:
            name = posixpath.basename(source.rstrip("/"))
            if name and name not in (".", "..") and "*" not in name:
                tokens.add(name)
        tokens -= {"", "/", ".", ".."}

        texts = [i.text for i in later] + [stage.command or ""]
        return any(token in text for token in tokens for text in texts)

    def server_swap(self, build: EstimatedBuild) -> List[Suggestion]:
        """Suggest a dedicated static-file server instead of a language runtime."""
        graph = build.graph
        stage = graph.final_stage(self.target)
        command = stage.command
        if not serves_static_files(command):
            return []

        repository, _, _ = split_reference(graph.root_image(stage.identifier).lower())
        runtime = repository.rsplit("/", 1)[-1]
        if runtime not in GENERAL_RUNTIMES:
            return []

        runtime_layers = [
            layer
            for layer in build.layers_for(stage.identifier)
            if layer.provenance in (LayerProvenance.BASE_IMAGE, LayerProvenance.DEPENDENCY_INSTALL)
        ]
        runtime_size = sum(layer.size_bytes for layer in runtime_layers)

        server_image = self.config.static_server_image
        result = try_lookup(self.lookup, server_image)
        if result is None:
            server_size, server_low = self.config.static_server_bytes, True
        else:
            server_size, server_low = result.estimated_bytes, result.confidence == Confidence.LOW

        savings = runtime_size - server_size
        if savings <= 0:
            return []

        return [
            Suggestion(
                category=SuggestionCategory.SERVER_SWAP,
                target_stage=stage.identifier,
                estimated_savings_bytes=savings,
                rationale=(
                    f"The final stage serves static files with `{command}` on the {runtime} "
                    f"runtime (~{format_bytes(runtime_size)}). Serving the built files from "
                    f"{server_image} (~{format_bytes(server_size)}) saves about "
                    f"{format_bytes(savings)}."
                ),
                line=stage.line,
                low_confidence=server_low or any(layer.low_confidence for layer in runtime_layers),
            )
        ]
