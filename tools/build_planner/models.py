"""Data model for build stages, layers and suggestions."""

import json
import re
import shlex
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Tuple, Union


class InstructionKind(str, Enum):
    """Kinds of build instructions the planner distinguishes."""

    BASE = "BASE"
    COPY = "COPY"
    RUN = "RUN"
    EXPOSE = "EXPOSE"
    CMD = "CMD"
    OTHER = "OTHER"


class LayerProvenance(str, Enum):
    """Where the content of a layer comes from."""

    BASE_IMAGE = "BASE_IMAGE"
    DEPENDENCY_INSTALL = "DEPENDENCY_INSTALL"
    SOURCE_COPY = "SOURCE_COPY"
    ARTIFACT_COPY = "ARTIFACT_COPY"


class SuggestionCategory(str, Enum):
    """Optimization suggestion categories, in tie-break priority order."""

    BASE_IMAGE_SWAP = "BASE_IMAGE_SWAP"
    INTRODUCE_MULTISTAGE = "INTRODUCE_MULTISTAGE"
    DROP_UNUSED_COPY = "DROP_UNUSED_COPY"
    SERVER_SWAP = "SERVER_SWAP"


LAYER_KINDS = {InstructionKind.BASE, InstructionKind.COPY, InstructionKind.RUN}

WHOLE_CONTEXT_SOURCES = {".", "./", "*", "./*"}

# Command prefixes that install dependencies. A bare "yarn" also installs.
INSTALL_COMMANDS = [
    ("npm", "install"),
    ("npm", "i"),
    ("npm", "ci"),
    ("yarn", "install"),
    ("pnpm", "install"),
    ("pnpm", "i"),
    ("pip", "install"),
    ("pip3", "install"),
    ("python", "-m", "pip", "install"),
    ("python3", "-m", "pip", "install"),
    ("poetry", "install"),
    ("bundle", "install"),
    ("composer", "install"),
    ("go", "mod", "download"),
    ("apt-get", "install"),
    ("apt", "install"),
    ("apk", "add"),
    ("yum", "install"),
    ("dnf", "install"),
]

SIZE_UNITS = {
    "": 1,
    "b": 1,
    "k": 1024,
    "kb": 1024,
    "kib": 1024,
    "m": 1024**2,
    "mb": 1024**2,
    "mib": 1024**2,
    "g": 1024**3,
    "gb": 1024**3,
    "gib": 1024**3,
    "t": 1024**4,
    "tb": 1024**4,
    "tib": 1024**4,
}

SIZE_PATTERN = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*([a-zA-Z]*)\s*$")


def format_bytes(bytes_val: int) -> str:
    """
    Format bytes into human-readable string.

    Args:
        bytes_val: Number of bytes

    Returns:
        Human-readable string (e.g., "1.5 GB")
    """
    for unit in ["B", "KB", "MB", "GB", "TB"]:
        if abs(bytes_val) < 1024.0:
            return f"{bytes_val:.2f} {unit}"
        bytes_val /= 1024.0
    return f"{bytes_val:.2f} PB"


def parse_size(value: Union[int, float, str]) -> int:
    """
    Parse a size such as ``1048576``, ``"150MB"`` or ``"1.5 GiB"`` into bytes.

    Units are 1024-based, matching format_bytes.

    Raises:
        ValueError: If the value is negative or not a size
    """
    if isinstance(value, bool):
        raise ValueError(f"Invalid size: {value!r}")

    if isinstance(value, (int, float)):
        if value < 0:
            raise ValueError(f"Size must not be negative: {value}")
        return int(value)

    match = SIZE_PATTERN.match(str(value))
    if not match:
        raise ValueError(f"Invalid size: {value!r}")

    number, unit = match.groups()
    multiplier = SIZE_UNITS.get(unit.lower())
    if multiplier is None:
        raise ValueError(f"Unknown size unit '{unit}' in {value!r}")

    return int(float(number) * multiplier)


def split_commands(text: str) -> List[List[str]]:
    """Split a shell command line on ``&&``, ``||`` and ``;`` into word lists."""
    segments = []
    for segment in re.split(r"&&|\|\||;", text):
        words = segment.split()
        # Drop leading VAR=value assignments and sudo
        while words and ("=" in words[0] or words[0] == "sudo"):
            words = words[1:]
        if words:
            segments.append(words)
    return segments


@dataclass(frozen=True)
class Instruction:
    """One build step of a stage."""

    kind: InstructionKind
    keyword: str
    arguments: str
    line: int
    sources: Tuple[str, ...] = ()
    destination: Optional[str] = None
    copy_from: Optional[str] = None

    @property
    def produces_layer(self) -> bool:
        """Whether this instruction produces a filesystem layer worth sizing."""
        return self.kind in LAYER_KINDS

    @property
    def text(self) -> str:
        """The instruction as written (continuations joined)."""
        return f"{self.keyword} {self.arguments}".strip()

    @property
    def command_words(self) -> List[str]:
        """Words of a RUN/CMD/ENTRYPOINT command, exec form or shell form."""
        args = self.arguments.strip()
        if args.startswith("["):
            try:
                parsed = json.loads(args)
            except ValueError:
                parsed = None
            if isinstance(parsed, list):
                return [str(word) for word in parsed]

        try:
            return shlex.split(args)
        except ValueError:
            return args.split()

    @property
    def installs_dependencies(self) -> bool:
        """Whether this is a RUN step that installs packages."""
        if self.kind != InstructionKind.RUN:
            return False

        for words in split_commands(" ".join(self.command_words)):
            if words == ["yarn"] or (words[0] == "yarn" and words[1].startswith("-")):
                return True
            for prefix in INSTALL_COMMANDS:
                if tuple(words[: len(prefix)]) == prefix:
                    return True
        return False

    @property
    def copies_whole_context(self) -> bool:
        """Whether this COPY takes the whole build context (``COPY . .``)."""
        return (
            self.kind == InstructionKind.COPY
            and self.copy_from is None
            and any(src in WHOLE_CONTEXT_SOURCES for src in self.sources)
        )


@dataclass(frozen=True)
class Stage:
    """A named build phase starting from a base image."""

    identifier: str
    index: int
    base_image: str
    instructions: Tuple[Instruction, ...]
    name: Optional[str] = None
    base_stage: Optional[str] = None

    @property
    def line(self) -> int:
        """Line of the stage's FROM instruction."""
        return self.instructions[0].line

    @property
    def copy_from(self) -> Tuple[str, ...]:
        """Stages this stage copies from, in first-use order."""
        seen: List[str] = []
        for instruction in self.instructions:
            if instruction.copy_from is not None and instruction.copy_from not in seen:
                seen.append(instruction.copy_from)
        return tuple(seen)

    @property
    def command(self) -> Optional[str]:
        """
        The command the stage's container runs, if any.

        Combines the last ENTRYPOINT with the last CMD the way a container
        runtime does.
        """
        entrypoint: List[str] = []
        cmd: List[str] = []
        for instruction in self.instructions:
            if instruction.kind != InstructionKind.CMD:
                continue
            if instruction.keyword == "ENTRYPOINT":
                entrypoint = instruction.command_words
            else:
                cmd = instruction.command_words

        words = entrypoint + cmd
        return " ".join(words) if words else None


@dataclass(frozen=True)
class StageGraph:
    """Stages of a build in declaration order, with their copy-from edges."""

    stages: Tuple[Stage, ...]

    @property
    def edges(self) -> Tuple[Tuple[str, str], ...]:
        """Copy-from edges as ``(source_stage, dependent_stage)`` pairs."""
        return tuple(
            (source, stage.identifier) for stage in self.stages for source in stage.copy_from
        )

    @property
    def is_multistage(self) -> bool:
        return len(self.stages) > 1

    def stage(self, identifier: str) -> Stage:
        """
        Get a stage by identifier.

        Raises:
            KeyError: If no stage has this identifier
        """
        for stage in self.stages:
            if stage.identifier == identifier:
                return stage
        raise KeyError(identifier)

    def final_stage(self, target: Optional[str] = None) -> Stage:
        """The stage that produces the image: the target, or the last one declared."""
        if target is not None:
            return self.stage(target.lower())
        return self.stages[-1]

    def dependencies(self, identifier: str) -> Tuple[str, ...]:
        """Stages the given stage depends on, through FROM or copy-from."""
        stage = self.stage(identifier)
        deps = list(stage.copy_from)
        if stage.base_stage is not None and stage.base_stage not in deps:
            deps.insert(0, stage.base_stage)
        return tuple(deps)

    def required_stages(self, identifier: str) -> Tuple[Stage, ...]:
        """The stage and every stage it transitively depends on, in declaration order."""
        needed = set()
        pending = [identifier]
        while pending:
            current = pending.pop()
            if current not in needed:
                needed.add(current)
                pending.extend(self.dependencies(current))
        return tuple(stage for stage in self.stages if stage.identifier in needed)

    def root_image(self, identifier: str) -> str:
        """The external image a stage ultimately builds on."""
        stage = self.stage(identifier)
        while stage.base_stage is not None:
            stage = self.stage(stage.base_stage)
        return stage.base_image


def provenance_for(instruction: Instruction) -> LayerProvenance:
    """Provenance of the layer an instruction produces."""
    if instruction.kind == InstructionKind.BASE:
        return LayerProvenance.BASE_IMAGE
    if instruction.kind == InstructionKind.RUN:
        return LayerProvenance.DEPENDENCY_INSTALL
    if instruction.copy_from is not None:
        return LayerProvenance.ARTIFACT_COPY
    return LayerProvenance.SOURCE_COPY


@dataclass(frozen=True)
class Layer:
    """Sizing unit attached to a layer-producing instruction."""

    stage: str
    instruction: Instruction
    provenance: LayerProvenance
    size_bytes: Optional[int] = None
    low_confidence: bool = False

    @property
    def size_human(self) -> str:
        """Get human-readable size."""
        if self.size_bytes is None:
            return "unknown"
        return format_bytes(self.size_bytes)


def materialize_layers(graph: StageGraph) -> Tuple[Layer, ...]:
    """Create unsized layers for every layer-producing instruction of a graph."""
    return tuple(
        Layer(
            stage=stage.identifier,
            instruction=instruction,
            provenance=provenance_for(instruction),
        )
        for stage in graph.stages
        for instruction in stage.instructions
        if instruction.produces_layer
    )


@dataclass(frozen=True)
class EstimatedBuild:
    """A stage graph together with its size-annotated layers."""

    graph: StageGraph
    layers: Tuple[Layer, ...]

    def layers_for(self, identifier: str) -> List[Layer]:
        """Layers of one stage, in instruction order."""
        return [layer for layer in self.layers if layer.stage == identifier]

    def base_layer(self, identifier: str) -> Layer:
        """The BASE_IMAGE layer of a stage."""
        for layer in self.layers_for(identifier):
            if layer.provenance == LayerProvenance.BASE_IMAGE:
                return layer
        raise KeyError(identifier)

    def stage_size(self, identifier: str) -> int:
        """Total estimated size of the image a stage produces."""
        return sum(layer.size_bytes or 0 for layer in self.layers_for(identifier))

    def stage_low_confidence(self, identifier: str) -> bool:
        return any(layer.low_confidence for layer in self.layers_for(identifier))

    def final_size(self, target: Optional[str] = None) -> int:
        """Estimated size of the final image."""
        return self.stage_size(self.graph.final_stage(target).identifier)

    @property
    def low_confidence(self) -> bool:
        """Whether any layer estimate is low-confidence."""
        return any(layer.low_confidence for layer in self.layers)

    def size_by_provenance(self, identifier: str) -> Dict[LayerProvenance, int]:
        """Per-provenance size totals for one stage."""
        totals: Dict[LayerProvenance, int] = {}
        for layer in self.layers_for(identifier):
            totals[layer.provenance] = totals.get(layer.provenance, 0) + (layer.size_bytes or 0)
        return totals


@dataclass(frozen=True)
class Suggestion:
    """An optimization recommendation with its estimated impact."""

    category: SuggestionCategory
    target_stage: str
    estimated_savings_bytes: int
    rationale: str
    line: Optional[int] = None
    low_confidence: bool = False

    @property
    def savings_human(self) -> str:
        """Get human-readable savings."""
        return format_bytes(self.estimated_savings_bytes)
