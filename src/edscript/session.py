"""Session: one loaded rc file plus everything needed to run its functions."""

import threading
from pathlib import Path
from typing import Callable, Optional, Union

import structlog

from .core.config import AppConfig
from .core.errors import ConfigError
from .core.settings import INIT_FUNCTION, Settings
from .core.state import ConfigState
from .rcfile.loader import RcLoader
from .rules.policy import RulePolicy
from .rules.replacements import ReplacementTable
from .script.commands import FUNCTION_CALL, CommandRegistry, register_settings_commands
from .script.interpreter import FunctionInterpreter, FunctionOutcome, FunctionResult


logger = structlog.get_logger()


class Session:
    """
    Wires configuration, settings, loaded state and the interpreter.

    Reloads and function runs must not overlap; the caller serializes
    them. The interrupt event is the one thing safe to touch from a
    signal handler.
    """

    def __init__(
        self,
        config: Optional[AppConfig] = None,
        fallback: Optional[Callable[[str], bool]] = None,
    ):
        self.config = config or AppConfig()
        self.settings = Settings()
        self.state = ConfigState(default_agent=self.config.default_agent)
        self.interrupt = threading.Event()
        self.replacements = ReplacementTable()

        self.loader = RcLoader(self.config.limits)
        self.policy = RulePolicy(
            rules=lambda: self.state.rules,
            settings=self.settings,
            agents=lambda: self.state.agents,
        )

        self.commands = CommandRegistry(fallback=fallback)
        register_settings_commands(self.commands, self.settings, lambda: self.state.agents)

        self.interpreter = FunctionInterpreter(
            rules=lambda: self.state.rules,
            settings=self.settings,
            evaluator=self.commands,
            interrupt=self.interrupt,
            safety=self.config.safety,
        )
        self.commands.register(FUNCTION_CALL, lambda rest: self.interpreter.run(rest).ok)

    # ==================== Loading ====================

    def reload(self, path: Optional[Union[str, Path]] = None) -> ConfigState:
        """
        Reset and load the rc file, the configured one by default.

        On error the state is left empty and the ConfigError propagates.
        """
        path = Path(path) if path is not None else self.config.rc_path()
        try:
            self.loader.load(path, self.state)
        except ConfigError as e:
            logger.error("rc_file_failed", error=str(e), **e.to_dict())
            raise

        self.settings.current_agent = self.state.agents[0]
        self.settings.agent_index = 0
        return self.state

    def load_text(self, text: str, path: str = "config") -> ConfigState:
        """Load rc-file text from memory; a failed load leaves the state empty."""
        return self.loader.load_text(text, self.state, path=path)

    def load_replacements(self, path: Optional[Union[str, Path]] = None) -> int:
        path = path or Path(self.config.replacements_file).expanduser()
        if not Path(path).exists():
            return 0
        return self.replacements.load(path)

    # ==================== Functions ====================

    def run_function(self, line: str) -> FunctionResult:
        """Run a top-level function invocation."""
        self.interrupt.clear()
        return self.interpreter.run(line)

    def run_init(self) -> Optional[FunctionResult]:
        """Run the init function if the rc file defines one."""
        if self.state.rules.find_function(INIT_FUNCTION) is None:
            return None
        result = self.run_function(INIT_FUNCTION)
        if result.outcome is not FunctionOutcome.SUCCESS:
            logger.warning("init_function_failed", outcome=result.outcome.value)
        return result

    # ==================== Policy ====================

    def java_ok(self, url: str) -> bool:
        return self.policy.java_ok(url)

    def must_verify_host(self, url: str) -> bool:
        return self.policy.must_verify_host(url)

    def find_proxy_for_url(self, url: str) -> str:
        return self.policy.find_proxy_for_url(url)

    def find_agent_for_url(self, url: str) -> Optional[str]:
        return self.policy.find_agent_for_url(url)

    def mail_redirect(self, to: str, from_: str, reply: str, subject: str) -> Optional[str]:
        return self.policy.mail_redirect(to, from_, reply, subject)

    def fetch_replace(self, url: str) -> Optional[str]:
        return self.replacements.fetch_replace(url)
