"""Everything an rc-file load produces, reset as a whole on every reload."""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from ..rcfile.records import DataSource, DbTable, MailAccount, MimeType
from ..rules.table import RuleTable
from .config import LimitsConfig
from .errors import ConfigError, ErrorCategory


@dataclass
class ConfigState:
    """
    Global configuration built from the rc file.

    Nothing here is merged across loads: reset() clears it all and the
    loader rebuilds it from scratch.
    """
    default_agent: str = "edscript/0.1.0"

    rules: RuleTable = field(default_factory=RuleTable)
    accounts: list[MailAccount] = field(default_factory=list)
    local_account: int = 0          # 1-based, 0 when there are no accounts
    mime_types: list[MimeType] = field(default_factory=list)
    tables: list[DbTable] = field(default_factory=list)
    agents: list[str] = field(default_factory=list)

    down_dir: Optional[Path] = None
    mail_dir: Optional[Path] = None
    mail_unread: Optional[Path] = None
    mail_reply: Optional[Path] = None
    cookie_file: Optional[Path] = None
    ssl_certs: Optional[Path] = None
    address_file: Optional[Path] = None
    emoji_file: Optional[Path] = None
    cache_dir: Optional[str] = None
    cache_size: int = 1000
    web_timeout: int = 0
    mail_timeout: int = 0
    imap_fetch: int = 100
    data_source: DataSource = field(default_factory=DataSource)
    http_language: Optional[str] = None
    envelope_format: Optional[str] = None

    files: list[str] = field(default_factory=list)

    def __post_init__(self):
        if not self.agents:
            self.agents = [self.default_agent]

    def reset(self) -> None:
        """Forget everything a previous load produced."""
        fresh = ConfigState(default_agent=self.default_agent)
        self.__dict__.update(fresh.__dict__)

    @property
    def default_account(self) -> Optional[MailAccount]:
        if not self.local_account:
            return None
        return self.accounts[self.local_account - 1]

    def find_table(self, shortname: str) -> Optional[DbTable]:
        return next((t for t in self.tables if t.shortname == shortname), None)

    def new_table(self, name: str, limits: Optional[LimitsConfig] = None) -> DbTable:
        """Add a table descriptor outside the rc file, e.g. from the sql layer."""
        limit = (limits or LimitsConfig()).max_tables
        if len(self.tables) >= limit:
            raise ConfigError(
                f"too many sql tables, limit {limit}",
                category=ErrorCategory.SEMANTIC,
            )
        table = DbTable(name=name, shortname=name)
        self.tables.append(table)
        return table
