"""Function bodies, the command registry and the interpreter."""

from .program import Op, Instruction, Program, FunctionBody
from .commands import CommandRegistry, register_settings_commands
from .interpreter import (
    FunctionInterpreter,
    FunctionOutcome,
    FunctionResult,
    parse_invocation,
    expand,
)

__all__ = [
    "Op",
    "Instruction",
    "Program",
    "FunctionBody",
    "CommandRegistry",
    "register_settings_commands",
    "FunctionInterpreter",
    "FunctionOutcome",
    "FunctionResult",
    "parse_invocation",
    "expand",
]
