"""Parse a multi-stage build description into a stage graph."""

import json
import re
import shlex
from typing import Dict, Iterator, List, Optional, Tuple

from shared.logger import get_logger

from .errors import DuplicateStageNameError, MalformedInstructionError, UnknownStageReferenceError
from .models import Instruction, InstructionKind, Stage, StageGraph

logger = get_logger(__name__)


KEYWORD_KINDS = {
    "FROM": InstructionKind.BASE,
    "COPY": InstructionKind.COPY,
    "ADD": InstructionKind.COPY,
    "RUN": InstructionKind.RUN,
    "EXPOSE": InstructionKind.EXPOSE,
    "CMD": InstructionKind.CMD,
    "ENTRYPOINT": InstructionKind.CMD,
}

STAGE_NAME_PATTERN = re.compile(r"^[a-z][a-z0-9_.-]*$")
ARG_REFERENCE_PATTERN = re.compile(r"\$\{?([A-Za-z_][A-Za-z0-9_]*)\}?")


def logical_lines(text: str) -> Iterator[Tuple[int, str]]:
    """
    Yield ``(line_number, content)`` for each instruction in the text.

    Backslash continuations are joined, and blank and comment lines skipped.
    The line number is the one the instruction starts on.
    """
    buffer: List[str] = []
    start: Optional[int] = None

    for number, raw in enumerate(text.splitlines(), 1):
        line = raw.strip()
        if not line or line.startswith("#"):
            continue

        if start is None:
            start = number

        if line.endswith("\\"):
            buffer.append(line[:-1].strip())
            continue

        buffer.append(line)
        yield start, " ".join(part for part in buffer if part)
        buffer = []
        start = None

    # Trailing continuation at end of file
    if buffer:
        yield start, " ".join(part for part in buffer if part)


def split_flags(tokens: List[str]) -> Tuple[Dict[str, str], List[str]]:
    """Split leading ``--name=value`` flags from the remaining tokens."""
    flags: Dict[str, str] = {}
    index = 0
    while index < len(tokens) and tokens[index].startswith("--"):
        name, _, value = tokens[index][2:].partition("=")
        flags[name.lower()] = value
        index += 1
    return flags, tokens[index:]


class StageGraphBuilder:
    """
    Build a StageGraph from the text of a build description.

    Each call to build starts from a clean state, so a builder can be
    reused; parse_build_description is the one-off shortcut.
    """

    def __init__(self):
        self._reset()

    def _reset(self) -> None:
        self._stages: List[Stage] = []
        self._names: Dict[str, int] = {}
        self._global_args: Dict[str, str] = {}
        self._current: Optional[dict] = None

    def build(self, text: str) -> StageGraph:
        """
        Parse a build description.

        Args:
            text: Build description text

        Returns:
            StageGraph with stages in declaration order

        Raises:
            StructuralError: If the description is malformed or references
                unknown or duplicate stages
        """
        self._reset()
        for line, content in logical_lines(text):
            parts = content.split(None, 1)
            keyword = parts[0].upper()
            arguments = parts[1] if len(parts) > 1 else ""

            if keyword == "FROM":
                self._close_stage()
                self._open_stage(arguments, line, content)
            elif self._current is None:
                if keyword != "ARG":
                    raise MalformedInstructionError(
                        f"{keyword} before the first FROM", line=line, instruction=content
                    )
                self._add_global_arg(arguments, line, content)
            else:
                self._add_instruction(keyword, arguments, line, content)

        self._close_stage()

        if not self._stages:
            raise MalformedInstructionError("build description declares no stages")

        logger.debug(f"Parsed {len(self._stages)} stage(s)")
        return StageGraph(stages=tuple(self._stages))

    def _add_global_arg(self, arguments: str, line: int, content: str) -> None:
        name, _, default = arguments.strip().partition("=")
        if not name:
            raise MalformedInstructionError("ARG without a name", line=line, instruction=content)
        self._global_args[name] = default.strip().strip('"').strip("'")

    def _substitute_args(self, value: str) -> str:
        def replace(match: re.Match) -> str:
            return self._global_args.get(match.group(1), match.group(0))

        return ARG_REFERENCE_PATTERN.sub(replace, value)

    def _open_stage(self, arguments: str, line: int, content: str) -> None:
        index = len(self._stages)
        _, tokens = split_flags(arguments.split())

        if len(tokens) == 1:
            image, name = tokens[0], None
        elif len(tokens) == 3 and tokens[1].lower() == "as":
            image, name = tokens[0], tokens[2].lower()
        elif not tokens:
            raise MalformedInstructionError("FROM without an image", line=line, instruction=content)
        else:
            raise MalformedInstructionError(
                "expected 'FROM <image> [AS <name>]'", line=line, instruction=content
            )

        if name is not None:
            if not STAGE_NAME_PATTERN.match(name):
                raise MalformedInstructionError(
                    f"invalid stage name '{name}'", line=line, instruction=content
                )
            if name in self._names:
                raise DuplicateStageNameError(name, line=line, instruction=content)

        image = self._substitute_args(image)
        base_stage = None
        if image.lower() in self._names:
            base_stage = image.lower()

        instruction = Instruction(
            kind=InstructionKind.BASE,
            keyword="FROM",
            arguments=arguments,
            line=line,
        )
        self._current = {
            "identifier": name if name is not None else str(index),
            "index": index,
            "name": name,
            "base_image": image,
            "base_stage": base_stage,
            "instructions": [instruction],
        }

        if name is not None:
            self._names[name] = index

    def _close_stage(self) -> None:
        if self._current is None:
            return

        current = self._current
        self._stages.append(
            Stage(
                identifier=current["identifier"],
                index=current["index"],
                base_image=current["base_image"],
                instructions=tuple(current["instructions"]),
                name=current["name"],
                base_stage=current["base_stage"],
            )
        )
        logger.debug(
            f"Stage {current['identifier']} from {current['base_image']} "
            f"with {len(current['instructions'])} instruction(s)"
        )
        self._current = None

    def _add_instruction(self, keyword: str, arguments: str, line: int, content: str) -> None:
        kind = KEYWORD_KINDS.get(keyword, InstructionKind.OTHER)

        if kind == InstructionKind.COPY:
            instruction = self._parse_copy(keyword, arguments, line, content)
        else:
            instruction = Instruction(kind=kind, keyword=keyword, arguments=arguments, line=line)

        self._current["instructions"].append(instruction)

    def _parse_copy(self, keyword: str, arguments: str, line: int, content: str) -> Instruction:
        try:
            tokens = shlex.split(arguments)
        except ValueError as e:
            raise MalformedInstructionError(f"cannot parse {keyword}: {e}", line=line, instruction=content)

        flags, paths = split_flags(tokens)

        # Exec form: COPY ["src", "dst"]
        if paths and paths[0].startswith("["):
            rest = arguments[arguments.index("[") :]
            try:
                parsed = json.loads(rest)
            except ValueError:
                raise MalformedInstructionError(
                    f"invalid JSON array in {keyword}", line=line, instruction=content
                )
            paths = [str(p) for p in parsed]

        if len(paths) < 2:
            raise MalformedInstructionError(
                f"{keyword} needs at least one source and a destination",
                line=line,
                instruction=content,
            )

        copy_from = None
        if "from" in flags:
            copy_from = self._resolve_reference(flags["from"], line, content)

        return Instruction(
            kind=InstructionKind.COPY,
            keyword=keyword,
            arguments=arguments,
            line=line,
            sources=tuple(paths[:-1]),
            destination=paths[-1],
            copy_from=copy_from,
        )

    def _resolve_reference(self, reference: str, line: int, content: str) -> str:
        """Resolve a ``--from`` value to the identifier of an earlier stage."""
        if not reference:
            raise MalformedInstructionError("empty --from reference", line=line, instruction=content)

        key = reference.lower()
        if key in self._names:
            index = self._names[key]
        elif key.isdigit():
            index = int(key)
        else:
            raise UnknownStageReferenceError(reference, line=line, instruction=content)

        # The stage being declared is not in self._stages yet, so this also
        # rejects self references.
        if index >= len(self._stages):
            raise UnknownStageReferenceError(reference, line=line, instruction=content)

        return self._stages[index].identifier


def parse_build_description(text: str) -> StageGraph:
    """
    Parse a multi-stage build description into a StageGraph.

    Args:
        text: Build description (Dockerfile syntax)

    Returns:
        Parsed StageGraph

    Raises:
        StructuralError: If the description is structurally invalid
    """
    return StageGraphBuilder().build(text)
