"""
Function interpreter.

Runs a named function body one line at a time. Literal lines are
expanded and handed to an evaluator; block lines steer control flow
using the success of the last command.
"""

import re
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

import structlog

from ..core.config import SafetyConfig
from ..core.errors import (
    ArgumentError,
    FunctionError,
    FunctionNotFound,
    LoopLimitError,
    ScriptInterrupted,
)
from ..core.settings import Settings, persists_changes, preserved
from ..rcfile.preprocess import LOOP, UNTIL_OK, WHILE_OK
from ..rules.table import Rule, RuleTable
from .program import Op, Program


logger = structlog.get_logger()

MAX_ARGS = 9

_PLACEHOLDER = re.compile(r"~(\d)")


class FunctionOutcome(Enum):
    SUCCESS = "success"
    SOFT_FAILURE = "soft_failure"   # a nofail function had a command fail
    FAILED = "failed"
    NOT_FOUND = "not_found"


@dataclass
class FunctionResult:
    """Result of one function invocation."""
    function: str
    outcome: FunctionOutcome
    error: Optional[FunctionError] = None
    commands_run: int = 0
    duration_ms: float = 0

    @property
    def ok(self) -> bool:
        return self.outcome is FunctionOutcome.SUCCESS


def parse_invocation(line: str) -> tuple[str, list[Optional[str]]]:
    """
    Split "name arg1 arg2 ..." into the name and the argument slots.

    Runs of whitespace collapse to one space. Slot 0 holds everything
    after the name, slots 1-9 the individual words; unused slots are None.
    """
    crunched = " ".join(line.split())
    name, _, rest = crunched.partition(" ")

    args: list[Optional[str]] = [None] * (MAX_ARGS + 1)
    args[0] = rest
    words = rest.split(" ") if rest else []
    if len(words) > MAX_ARGS:
        logger.warning(
            "function_extra_arguments",
            function=name,
            given=len(words),
            used=MAX_ARGS,
        )
    for i, word in enumerate(words[:MAX_ARGS], 1):
        args[i] = word
    return name, args


def expand(template: str, args: list[Optional[str]], function: str) -> str:
    """Replace ~0 through ~9 with the bound arguments."""

    def substitute(m: re.Match) -> str:
        index = int(m.group(1))
        if args[index] is None:
            raise ArgumentError(index, function=function)
        return args[index]

    return _PLACEHOLDER.sub(substitute, template)


class FunctionInterpreter:
    """
    Executes function bodies from the rule table.

    The evaluator receives each expanded command line and reports whether
    it succeeded. Functions may call functions through the evaluator, so
    run() is re-entrant up to the configured call depth.
    """

    def __init__(
        self,
        rules: Callable[[], RuleTable],
        settings: Settings,
        evaluator: Callable[[str], bool],
        interrupt: Optional[threading.Event] = None,
        safety: Optional[SafetyConfig] = None,
    ):
        self.rules = rules
        self.settings = settings
        self.evaluator = evaluator
        self.interrupt = interrupt or threading.Event()
        self.safety = safety or SafetyConfig()
        self._depth = 0

    def resolve(self, name: str) -> Rule:
        """Look up a function by name, raising FunctionNotFound."""
        if not name:
            raise FunctionNotFound("no function specified")
        if not (name.isascii() and name.isalnum()):
            raise FunctionNotFound("bad function name", function=name)
        rule = self.rules().find_function(name)
        if rule is None:
            raise FunctionNotFound(f"no such function {name}", function=name)
        return rule

    def run(self, line: str) -> FunctionResult:
        """
        Invoke a function given "name args...".

        Never raises for script errors; the outcome says what happened.
        Settings are restored afterwards unless the function is init or
        its name starts with set.
        """
        start_time = time.monotonic()
        name, args = parse_invocation(line)

        try:
            rule = self.resolve(name)
        except FunctionNotFound as e:
            logger.warning("function_not_found", function=name, error=e.message)
            return FunctionResult(
                function=name,
                outcome=FunctionOutcome.NOT_FOUND,
                error=e,
                duration_ms=(time.monotonic() - start_time) * 1000,
            )

        counter = [0]
        try:
            if self._depth >= self.safety.max_call_depth:
                raise FunctionError("functions nested too deeply", function=rule.pattern)
            self._depth += 1
            try:
                with preserved(self.settings, enabled=not persists_changes(rule.pattern)):
                    soft_failed = self._execute(rule, args, counter)
            finally:
                self._depth -= 1

        except FunctionError as e:
            logger.warning("function_failed", function=rule.pattern, **e.to_dict())
            return FunctionResult(
                function=rule.pattern,
                outcome=FunctionOutcome.FAILED,
                error=e,
                commands_run=counter[0],
                duration_ms=(time.monotonic() - start_time) * 1000,
            )

        outcome = FunctionOutcome.SOFT_FAILURE if soft_failed else FunctionOutcome.SUCCESS
        duration_ms = (time.monotonic() - start_time) * 1000
        logger.info(
            "function_finished",
            function=rule.pattern,
            outcome=outcome.value,
            commands=counter[0],
            duration_ms=round(duration_ms, 2),
        )
        return FunctionResult(
            function=rule.pattern,
            outcome=outcome,
            commands_run=counter[0],
            duration_ms=duration_ms,
        )

    def _execute(self, rule: Rule, args: list[Optional[str]], counter: list[int]) -> bool:
        """Run the body; True if a nofail function saw a command fail."""
        program: Program = rule.body.program
        name = rule.pattern
        limit = self.safety.max_loop_iterations

        ok = True
        soft_failed = False
        kinds: list[str] = []
        counts: list[int] = []
        jumps = 0
        ip = 0

        def skip_block(ip: int) -> int:
            end = program.balance(ip, 1)
            if program[end].op is Op.CLOSE:
                kinds.pop()
                counts.pop()
            return end + 1

        def jump_back(ip: int, guarded: bool = False) -> int:
            nonlocal jumps
            if guarded:
                jumps += 1
                if limit and jumps > limit:
                    raise LoopLimitError(limit, function=name)
            return program.balance(ip, -1) + 1

        while ip < len(program):
            if self.interrupt.is_set():
                raise ScriptInterrupted(function=name)

            instruction = program[ip]

            if instruction.op is Op.ELSE:
                # reached the end of the taken branch; else is closed by its own brace
                ip = program.balance(ip, 1) + 1
                kinds.pop()
                counts.pop()
                continue

            if instruction.op is Op.CLOSE:
                kind = kinds[-1]
                if kind == LOOP:
                    counts[-1] -= 1
                    if counts[-1] > 0:
                        ip = jump_back(ip)
                        continue
                elif kind.upper() in (WHILE_OK, UNTIL_OK):
                    again = ok
                    if kind.islower():
                        again = not again
                    if kind.upper() == UNTIL_OK:
                        again = not again
                    ok = True
                    if again:
                        ip = jump_back(ip, guarded=True)
                        continue
                kinds.pop()
                counts.pop()
                ip += 1
                continue

            if instruction.op is Op.OPEN:
                kind = instruction.kind
                kinds.append(kind)
                counts.append(instruction.count)

                if kind == LOOP:
                    ip = ip + 1 if instruction.count else skip_block(ip)
                    continue
                if kind.upper() == UNTIL_OK:
                    ip += 1
                    continue

                skip = ok
                if kind.isupper():
                    skip = not skip
                ok = True
                ip = skip_block(ip) if skip else ip + 1
                continue

            if not ok and rule.nofail:
                soft_failed = True

            command = expand(instruction.text, args, name)
            logger.debug("function_command", function=name, command=command)
            ok = bool(self.evaluator(command))
            counter[0] += 1
            ip += 1

        if not ok and rule.nofail:
            soft_failed = True
        return soft_failed
