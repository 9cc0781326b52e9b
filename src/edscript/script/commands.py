"""Command registry: the evaluator that function lines are handed to."""

import re
from typing import Callable, Optional

import structlog

from ..core.settings import Settings


logger = structlog.get_logger()

# Handlers get the text after the command word and report success
CommandHandler = Callable[[str], bool]

FUNCTION_CALL = "<"

_COMMAND = re.compile(r"\s*([A-Za-z]+|\S)?(.*)", re.DOTALL)


def split_command(line: str) -> tuple[str, str]:
    """
    Split a command line into its command word and the rest.

    The command word is a run of letters (db3 is db with argument 3) or
    else a single punctuation character (<fn args is < with fn args).
    """
    m = _COMMAND.match(line)
    word = m.group(1) or ""
    return word, m.group(2).strip()


class CommandRegistry:
    """
    Registry of command handlers.

    Lines that no handler claims go to the fallback evaluator, normally
    the host editor. Without a fallback they fail.
    """

    def __init__(self, fallback: Optional[CommandHandler] = None):
        self._handlers: dict[str, CommandHandler] = {}
        self.fallback = fallback
        self._register_builtin_commands()

    def register(self, command: str, handler: CommandHandler) -> None:
        """Register a command handler."""
        self._handlers[command] = handler

    def __call__(self, line: str) -> bool:
        return self.evaluate(line)

    def evaluate(self, line: str) -> bool:
        """
        Run one expanded command line.

        Returns the command's success, which drives if/while/until in
        the calling function. A handler that raises counts as a failure.
        """
        word, rest = split_command(line)
        handler = self._handlers.get(word)

        if handler is None:
            if self.fallback is None:
                logger.warning("unknown_command", command=line)
                return False
            handler, rest = self.fallback, line

        try:
            return bool(handler(rest))
        except Exception:
            logger.exception("command_error", command=line)
            return False

    def _register_builtin_commands(self) -> None:
        """Register built-in commands."""
        self.register("echo", self._command_echo)
        self.register("noop", self._command_noop)

    def _command_echo(self, text: str) -> bool:
        logger.info("echo", text=text)
        return True

    def _command_noop(self, text: str) -> bool:
        return True


def _toggle(value: str, current: bool) -> Optional[bool]:
    if value == "":
        return not current
    if value == "+":
        return True
    if value == "-":
        return False
    return None


def register_settings_commands(
    registry: CommandRegistry,
    settings: Settings,
    agents: Callable[[], list[str]],
) -> None:
    """
    Commands that change the interpreter-visible settings.

    js, vs, rd, ci and sg toggle, or set with + and -; db N sets the
    debug level; ua N selects a user agent.
    """

    def toggler(field: str) -> CommandHandler:
        def handler(arg: str) -> bool:
            value = _toggle(arg, getattr(settings, field))
            if value is None:
                return False
            setattr(settings, field, value)
            return True
        return handler

    def debug(arg: str) -> bool:
        if not arg.isdigit() or int(arg) > 9:
            return False
        settings.debug_level = int(arg)
        return True

    def agent(arg: str) -> bool:
        table = agents()
        if not arg.isdigit() or int(arg) >= len(table):
            return False
        settings.agent_index = int(arg)
        settings.current_agent = table[int(arg)]
        return True

    registry.register("js", toggler("allow_js"))
    registry.register("vs", toggler("verify_certificates"))
    registry.register("rd", toggler("allow_redirection"))
    registry.register("ci", toggler("case_insensitive"))
    registry.register("sg", toggler("search_strings_all"))
    registry.register("db", debug)
    registry.register("ua", agent)
