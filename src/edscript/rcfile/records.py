"""Typed records filled in from rc-file blocks, and the keyword vocabulary."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


# Order is important: mail{}, mime{}, table{}, then global keywords.
KEYWORDS = (
    # mail account
    "inserver", "outserver", "login", "password", "from", "reply",
    "inport", "outport",
    "to", "cc", "bcc", "attach",
    # mime / plugin
    "type", "desc", "suffix", "protocol", "program",
    "content", "outtype", "urlmatch",
    # table
    "tname", "tshort", "cols", "keycol",
    # global
    "downdir", "maildir", "agent",
    "jar", "nojs", "cachedir",
    "webtimer", "mailtimer", "certfile", "datasource", "proxy",
    "agentsite", "localizeweb", "imapfetch", "novs", "cachesize",
    "adbook", "envelope", "emojis", "emoji",
    "include",
)

MAILWORDS = 0
MIMEWORDS = 12
TABLEWORDS = 20
GLOBALWORDS = 24


class Section(Enum):
    MAIL = "mail"
    MIME = "mime"
    TABLE = "table"
    GLOBAL = "global"


def keyword_section(keyword: str) -> Optional[Section]:
    """Which block a keyword belongs in, None for an unknown word."""
    try:
        n = KEYWORDS.index(keyword)
    except ValueError:
        return None
    if n < MIMEWORDS:
        return Section.MAIL
    if n < TABLEWORDS:
        return Section.MIME
    if n < GLOBALWORDS:
        return Section.TABLE
    return Section.GLOBAL


class TlsMode(Enum):
    NONE = "none"
    SSL = "ssl"                     # implicit TLS, marked *
    STARTTLS = "starttls"           # marked ^
    OPPORTUNISTIC = "opportunistic" # marked +


class RecipientKind(Enum):
    TO = "to"
    CC = "cc"
    BCC = "bcc"
    ATTACH = "attach"


@dataclass
class Recipient:
    value: str
    kind: RecipientKind


@dataclass
class MailAccount:
    """A mail{} block."""
    inurl: Optional[str] = None
    outurl: Optional[str] = None
    login: Optional[str] = None
    password: Optional[str] = None
    from_: Optional[str] = None
    reply: Optional[str] = None
    inport: int = 0
    outport: int = 0
    in_tls: TlsMode = TlsMode.NONE
    out_tls: TlsMode = TlsMode.NONE
    recipients: list[Recipient] = field(default_factory=list)
    secure: bool = False
    imap: bool = False
    nofetch: bool = False

    REQUIRED = (
        ("inurl", "inserver"),
        ("outurl", "outserver"),
        ("login", "login"),
        ("password", "password"),
        ("from_", "from"),
        ("reply", "reply"),
    )

    def missing(self) -> Optional[str]:
        """First mandatory keyword not given, if any."""
        for attr, keyword in self.REQUIRED:
            if not getattr(self, attr):
                return keyword
        return None

    def apply_defaults(self) -> None:
        """Ports and TLS derived from secure and imap."""
        if self.secure:
            self.in_tls = self.out_tls = TlsMode.SSL
        if not self.inport:
            if self.secure:
                self.inport = 993 if self.imap else 995
            else:
                self.inport = 143 if self.imap else 110
        if not self.outport:
            self.outport = 465 if self.secure else 25


@dataclass
class MimeType:
    """A plugin{} or mime{} block."""
    type: Optional[str] = None
    desc: Optional[str] = None
    suffix: Optional[str] = None
    prot: Optional[str] = None
    program: Optional[str] = None
    content: Optional[str] = None
    outtype: Optional[str] = None
    urlmatch: Optional[str] = None
    from_file: bool = False
    down_url: bool = False

    def missing(self) -> Optional[str]:
        if not self.type:
            return "type"
        if not self.desc:
            return "desc"
        if not (self.suffix or self.prot or self.content):
            return "suffix, protocol or content"
        if not self.program:
            return "program"
        return None


@dataclass
class DbTable:
    """A table{} block describing a database table."""
    name: Optional[str] = None
    shortname: Optional[str] = None
    cols: list[str] = field(default_factory=list)
    key1: int = 0
    key2: int = 0

    def missing(self) -> Optional[str]:
        if not self.name:
            return "tname"
        if not self.shortname:
            return "tshort"
        if not self.cols:
            return "cols"
        return None


@dataclass
class DataSource:
    area: Optional[str] = None
    login: Optional[str] = None
    password: Optional[str] = None

    @classmethod
    def parse(cls, value: str) -> "DataSource":
        """area[,login[,password]]"""
        if not value:
            return cls()
        parts = value.split(",", 2)
        parts += [None] * (3 - len(parts))
        return cls(*parts)
