"""Exceptions raised by the build planner."""

from typing import Optional


class PlannerError(Exception):
    """Base class for build planner errors."""


class StructuralError(PlannerError):
    """
    The build description is structurally invalid.

    Attributes:
        line: 1-based line of the offending instruction, if known
        instruction: Text of the offending instruction, if known
    """

    def __init__(self, message: str, line: Optional[int] = None, instruction: Optional[str] = None):
        self.reason = message
        self.line = line
        self.instruction = instruction
        if line is not None:
            message = f"line {line}: {message}"
        super().__init__(message)


class UnknownStageReferenceError(StructuralError):
    """A ``--from`` reference names no previously declared stage."""

    def __init__(self, reference: str, line: Optional[int] = None, instruction: Optional[str] = None):
        self.reference = reference
        super().__init__(
            f"unknown stage reference '{reference}' (stages must be declared before use)",
            line=line,
            instruction=instruction,
        )


class DuplicateStageNameError(StructuralError):
    """Two stages share the same name."""

    def __init__(self, name: str, line: Optional[int] = None, instruction: Optional[str] = None):
        self.name = name
        super().__init__(f"duplicate stage name '{name}'", line=line, instruction=instruction)


class MalformedInstructionError(StructuralError):
    """An instruction cannot be parsed."""


class LookupUnavailableError(PlannerError):
    """A size lookup could not produce an answer for an image reference."""

    def __init__(self, reference: str, reason: str = "no size information"):
        self.reference = reference
        self.reason = reason
        super().__init__(f"size lookup unavailable for {reference}: {reason}")


class UnknownTargetError(PlannerError):
    """The requested target stage does not exist."""

    def __init__(self, target: str):
        self.target = target
        super().__init__(f"unknown target stage '{target}'")
