"""
Second pass over an rc file.

Walks the encoded lines produced by preprocess(), fills in mail accounts,
plugins, sql tables and global settings, and appends to the rule table.
Included files are handled with an explicit stack of file contexts, so
parsing resumes in the parent exactly where the include line was.
"""

import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import NoReturn, Optional, Union

import structlog

from ..core.config import LimitsConfig
from ..core.errors import ConfigError, ErrorCategory
from ..core.state import ConfigState
from ..rules.table import Rule, RuleKind
from ..script.program import FunctionBody
from .preprocess import (
    BLOCK_OPEN,
    BLOCK_CLOSE,
    BLOCK_ELSE,
    MAIL,
    MIME,
    TABLE,
    FROM_FILTER,
    TO_FILTER,
    SUBJECT_FILTER,
    FUNCTION,
    IF_OK,
    NOFAIL_MARK,
    is_control,
    preprocess,
    split_encoded,
)
from .records import (
    DataSource,
    DbTable,
    MailAccount,
    MimeType,
    Recipient,
    RecipientKind,
    Section,
    TlsMode,
    keyword_section,
)


logger = structlog.get_logger()

# mail-block state: 0 none, 1 account, 2..4 filter categories
NO_MAIL = 0
ACCOUNT = 1
FILTER_KINDS = {
    FROM_FILTER: (2, RuleKind.REDIRECT_SENDER),
    TO_FILTER: (3, RuleKind.REDIRECT_RECIPIENT),
    SUBJECT_FILTER: (4, RuleKind.REDIRECT_SUBJECT),
}

# blocks that may only start at top level
TOP_LEVEL_BLOCKS = FUNCTION + MAIL + MIME + TABLE + FROM_FILTER + TO_FILTER + SUBJECT_FILTER

_KEYWORD = re.compile(r"[A-Za-z]+")
_LEADING_INT = re.compile(r"\s*[+-]?\d+")
_UNDEFINED_VAR = re.compile(r"\$(\w+|\{[^}]*\})")

_ACCOUNT_FIELDS = {
    "inserver": "inurl",
    "outserver": "outurl",
    "login": "login",
    "password": "password",
    "from": "from_",
    "reply": "reply",
}
_MIME_FIELDS = {
    "type": "type",
    "desc": "desc",
    "suffix": "suffix",
    "protocol": "prot",
    "program": "program",
    "content": "content",
    "urlmatch": "urlmatch",
}
_RECIPIENT_KINDS = {
    "to": RecipientKind.TO,
    "cc": RecipientKind.CC,
    "bcc": RecipientKind.BCC,
    "attach": RecipientKind.ATTACH,
}


def atoi(value: str) -> int:
    """Leading integer of a string, 0 if there is none."""
    m = _LEADING_INT.match(value)
    return int(m.group()) if m else 0


@dataclass
class FileContext:
    """One rc file being read: the root file or an include."""
    path: str
    lines: list[str]
    parent: Optional["FileContext"] = None
    pos: int = 0
    depth: int = field(init=False)

    def __post_init__(self):
        self.depth = self.parent.depth + 1 if self.parent else 0

    @property
    def line(self) -> int:
        """Line number of the line last read."""
        return self.pos

    def next_line(self) -> Optional[str]:
        if self.pos >= len(self.lines):
            return None
        line = self.lines[self.pos]
        self.pos += 1
        return line


class RcLoader:
    """
    Reads an rc file and everything it includes into a ConfigState.

    Every error raises ConfigError naming the file and line. The state is
    reset before anything is read, so a failed load leaves it empty rather
    than half old and half new.
    """

    def __init__(self, limits: Optional[LimitsConfig] = None):
        self.limits = limits or LimitsConfig()
        self._begin(ConfigState())

    def _begin(self, state: ConfigState) -> None:
        self.state = state
        self._ctx: Optional[FileContext] = None
        self._stack: list[str] = []
        self._mailblock = NO_MAIL
        self._filter_kind: Optional[RuleKind] = None
        self._account: Optional[MailAccount] = None
        self._mime: Optional[MimeType] = None
        self._table: Optional[DbTable] = None
        self._function: Optional[Rule] = None
        self._function_ctx: Optional[FileContext] = None
        self._function_start = 0

    # ==================== Entry points ====================

    def load(self, path: Union[str, Path], state: ConfigState) -> ConfigState:
        """Reset state and load the rc file at path into it."""
        state.reset()
        self._begin(state)
        path = str(path)

        try:
            text = Path(path).read_text(encoding="utf-8", errors="replace")
        except OSError as e:
            raise ConfigError(
                f"cannot read config file: {e.strerror or e}",
                config_path=path,
                category=ErrorCategory.RESOURCE,
            )

        return self.load_text(text, state, path=path, reset=False)

    def load_text(
        self,
        text: str,
        state: ConfigState,
        path: str = "config",
        reset: bool = True,
    ) -> ConfigState:
        """Load rc-file text that is already in memory; on error the state is left empty."""
        if reset:
            state.reset()
            self._begin(state)

        try:
            encoded = preprocess(text, path, self.limits.max_function_name)
            root = FileContext(path=path, lines=split_encoded(encoded))
            state.files.append(path)
            self._run(root)
        except ConfigError:
            state.reset()
            raise

        logger.info(
            "rc_file_loaded",
            file=path,
            includes=len(state.files) - 1,
            rules=state.rules.counts(),
            accounts=len(state.accounts),
            plugins=len(state.mime_types),
            tables=len(state.tables),
        )
        return state

    # ==================== Main loop ====================

    def _run(self, root: FileContext) -> None:
        ctx: Optional[FileContext] = root
        while ctx is not None:
            self._ctx = ctx
            line = ctx.next_line()
            if line is None:
                self._end_of_file(ctx)
                ctx = ctx.parent
                continue
            child = self._line(ctx, line)
            if child is not None:
                ctx = child

        if self._mailblock or self._mime or self._table:
            raise ConfigError(
                "mail, plugin or table block not closed",
                config_path=root.path,
            )

        if self.state.accounts and not self.state.local_account:
            self.state.local_account = 1

    def _end_of_file(self, ctx: FileContext) -> None:
        if self._function_ctx is ctx and self._stack:
            raise ConfigError(
                f"function {self._function.pattern} not closed",
                config_path=ctx.path,
                line=self._function.line,
            )
        if ctx.parent is not None:
            logger.debug("include_finished", file=ctx.path, resume=ctx.parent.path)

    def _fail(self, message: str, semantic: bool = False, line: bool = True) -> NoReturn:
        ctx = self._ctx
        raise ConfigError(
            message,
            config_path=ctx.path if ctx else None,
            line=ctx.line if (ctx and line) else None,
            category=ErrorCategory.SEMANTIC if semantic else ErrorCategory.SYNTAX,
        )

    def _line(self, ctx: FileContext, s: str) -> Optional[FileContext]:
        if not s or s == "#":
            return None

        if self._mailblock > ACCOUNT and not is_control(s):
            self._filter_line(s)
            return None

        kv = self._split_keyword(s)
        if kv is not None:
            keyword, value = kv
            section = keyword_section(keyword)
            if section is None:
                if not self._stack:
                    self._fail(f"unrecognized keyword {keyword}")
            else:
                self._check_section(keyword, section)
                if not value:
                    self._fail(f"keyword {keyword} has no value")
                return self._keyword(ctx, keyword, value)

        self._no_keyword(ctx, s)
        return None

    @staticmethod
    def _split_keyword(s: str) -> Optional[tuple[str, str]]:
        eq = s.find("=")
        if eq < 0:
            return None
        key = s[:eq].rstrip(" \t")
        if not _KEYWORD.fullmatch(key):
            return None
        return key, s[eq + 1:].strip(" \t")

    def _check_section(self, keyword: str, section: Section) -> None:
        if self._stack:
            self._fail(f"keyword {keyword} inside a function")

        if section is Section.MAIL and self._mailblock != ACCOUNT:
            self._fail(f"mail attribute {keyword} outside a mail block")
        if section is Section.MIME and not self._mime:
            self._fail(f"plugin attribute {keyword} outside a plugin block")
        if section is Section.TABLE and not self._table:
            self._fail(f"table attribute {keyword} outside a table block")

        if section is not Section.MAIL and self._mailblock:
            self._fail(f"keyword {keyword} inside a mail or filter block")
        if section is not Section.MIME and self._mime:
            self._fail(f"keyword {keyword} inside a plugin block")
        if section is not Section.TABLE and self._table:
            self._fail(f"keyword {keyword} inside a table block")

    # ==================== Blocks ====================

    def _no_keyword(self, ctx: FileContext, s: str) -> None:
        if self._mailblock == ACCOUNT and s in ("default", "nofetch", "secure", "imap"):
            self._account_flag(s)
            return

        if self._mime and s in ("from_file", "down_url"):
            setattr(self._mime, s, True)
            return

        if s == BLOCK_CLOSE:
            self._close(ctx)
            return

        if s == BLOCK_ELSE:
            if not self._stack or self._stack[-1].upper() != IF_OK:
                self._fail("else without if")
            return

        if s[0] != BLOCK_OPEN:
            if not self._stack:
                self._fail("text outside of any block or function")
            return

        self._open(ctx, s)

    def _account_flag(self, flag: str) -> None:
        act = self._account
        if flag == "default":
            current = len(self.state.accounts) + 1
            if self.state.local_account == current:
                return
            if self.state.local_account:
                self._fail("more than one default mail account", semantic=True)
            self.state.local_account = current
        elif flag == "nofetch":
            act.nofetch = True
        elif flag == "secure":
            act.secure = True
        elif flag == "imap":
            act.imap = act.nofetch = True

    def _current_block(self) -> str:
        if self._mailblock == ACCOUNT:
            return "a mail descriptor"
        if self._mailblock:
            return "a filter block"
        if self._mime:
            return "a plugin descriptor"
        if self._table:
            return "a table descriptor"
        return "another function"

    def _open(self, ctx: FileContext, s: str) -> None:
        kind = s[1:2]
        busy = self._stack or self._mailblock or self._mime or self._table

        if busy and kind in TOP_LEVEL_BLOCKS:
            self._fail(f"cannot start a block inside {self._current_block()}")

        if kind not in TOP_LEVEL_BLOCKS and not self._stack:
            self._fail("control statement outside a function")

        if kind == MAIL:
            if len(self.state.accounts) >= self.limits.max_accounts:
                self._fail(f"too many mail accounts, limit {self.limits.max_accounts}", semantic=True)
            self._account = MailAccount()
            self._mailblock = ACCOUNT
            return

        if kind == MIME:
            if len(self.state.mime_types) >= self.limits.max_mime:
                self._fail(f"too many plugins, limit {self.limits.max_mime}", semantic=True)
            self._mime = MimeType()
            return

        if kind == TABLE:
            if len(self.state.tables) >= self.limits.max_tables:
                self._fail(f"too many sql tables, limit {self.limits.max_tables}", semantic=True)
            self._table = DbTable()
            return

        if kind in FILTER_KINDS:
            self._mailblock, self._filter_kind = FILTER_KINDS[kind]
            return

        if kind == FUNCTION:
            self._stack.append(kind)
            body = FunctionBody()
            self._function = self.state.rules.append(Rule(
                kind=RuleKind.FUNCTION,
                pattern=s[3:],
                body=body,
                nofail=s[2:3] == NOFAIL_MARK,
                line=ctx.line,
            ))
            self._function_ctx = ctx
            self._function_start = ctx.pos
            return

        if len(self._stack) + 1 >= self.limits.max_nest:
            self._fail("blocks nested too deeply")
        self._stack.append(kind)

    def _close(self, ctx: FileContext) -> None:
        if self._mailblock == ACCOUNT:
            act = self._account
            missing = act.missing()
            if missing:
                self._fail(f"mail account has no {missing}", semantic=True)
            act.apply_defaults()
            self.state.accounts.append(act)
            self._account = None
            self._mailblock = NO_MAIL
            return

        if self._mailblock:
            self._mailblock = NO_MAIL
            self._filter_kind = None
            return

        if self._mime:
            missing = self._mime.missing()
            if missing:
                self._fail(f"plugin has no {missing}", semantic=True)
            self.state.mime_types.append(self._mime)
            self._mime = None
            return

        if self._table:
            missing = self._table.missing()
            if missing:
                self._fail(f"table has no {missing}", semantic=True)
            self.state.tables.append(self._table)
            self._table = None
            return

        if not self._stack:
            self._fail("unexpected }")
        self._stack.pop()
        if self._stack:
            return

        # end of the function; its body runs up to, not including, this line
        body = [
            line for line in ctx.lines[self._function_start:ctx.pos - 1]
            if line and line != "#"
        ]
        self._function.body.seal(body)
        logger.debug(
            "function_defined",
            name=self._function.pattern,
            nofail=self._function.nofail,
            lines=len(body),
        )
        self._function = None
        self._function_ctx = None

    def _filter_line(self, s: str) -> None:
        gt = s.find(">")
        if gt < 0:
            self._fail("filter line has no >")
        match = s[:gt].rstrip(" \t")
        if not match:
            self._fail("filter line has no match string")
        dest = s[gt + 1:].strip(" \t")
        if not dest:
            self._fail(f"nowhere to redirect {match}")
        self.state.rules.append(Rule(
            kind=self._filter_kind,
            pattern=match,
            destination=dest,
            line=self._ctx.line,
        ))

    # ==================== Keywords ====================

    def _keyword(self, ctx: FileContext, keyword: str, v: str) -> Optional[FileContext]:
        if keyword in _ACCOUNT_FIELDS:
            setattr(self._account, _ACCOUNT_FIELDS[keyword], v)
        elif keyword in _MIME_FIELDS:
            setattr(self._mime, _MIME_FIELDS[keyword], v)
        elif keyword in _RECIPIENT_KINDS:
            self._recipient(keyword, v)
        elif keyword == "include":
            return self._include(ctx, v)
        else:
            getattr(self, f"_kw_{keyword}")(v)
        return None

    def _recipient(self, keyword: str, v: str) -> None:
        recipients = self._account.recipients
        if len(recipients) >= self.limits.max_recipients:
            self._fail(
                f"too many automatic recipients or attachments, limit {self.limits.max_recipients}",
                semantic=True,
            )
        recipients.append(Recipient(v, _RECIPIENT_KINDS[keyword]))

    def _kw_inport(self, v: str) -> None:
        if v.startswith("*"):
            self._account.in_tls = TlsMode.SSL
            v = v[1:]
        self._account.inport = atoi(v)

    def _kw_outport(self, v: str) -> None:
        act = self._account
        if v.startswith("+"):
            act.out_tls = TlsMode.OPPORTUNISTIC
            v = v[1:]
        if v.startswith("^"):
            act.out_tls = TlsMode.STARTTLS
            v = v[1:]
        if v.startswith("*"):
            act.out_tls = TlsMode.SSL
            v = v[1:]
        act.outport = atoi(v)

    def _kw_outtype(self, v: str) -> None:
        c = v[0].lower()
        if c not in ("h", "t"):
            self._fail("outtype must be h or t")
        self._mime.outtype = c

    def _kw_tname(self, v: str) -> None:
        self._table.name = v

    def _kw_tshort(self, v: str) -> None:
        self._table.shortname = v

    def _kw_cols(self, v: str) -> None:
        for col in v.split(","):
            if len(self._table.cols) >= self.limits.max_columns:
                self._fail(f"too many columns, limit {self.limits.max_columns}", semantic=True)
            self._table.cols.append(col)

    def _kw_keycol(self, v: str) -> None:
        m = re.match(r"(\d+)(?:,(\d+))?", v)
        if not m:
            self._fail("keycol must be a number")
        td = self._table
        td.key1 = int(m.group(1))
        if m.group(2):
            td.key2 = int(m.group(2))
        if td.key1 > len(td.cols) or td.key2 > len(td.cols):
            self._fail(f"key column out of range, table has {len(td.cols)} columns", semantic=True)

    def _expand(self, v: str) -> Optional[Path]:
        """Expand ~ and environment variables in a path value."""
        expanded = os.path.expandvars(v)
        m = _UNDEFINED_VAR.search(expanded)
        if m:
            logger.warning(
                "rc_undefined_variable",
                file=self._ctx.path,
                line=self._ctx.line,
                variable=m.group(1).strip("{}"),
            )
            return None
        return Path(expanded).expanduser()

    def _require_dir(self, path: Path) -> None:
        if not path.is_dir():
            self._fail(f"{path} is not a directory", semantic=True, line=False)

    def _require_file(self, path: Path, what: str) -> None:
        if not path.is_file():
            self._fail(f"{what} {path} is not a regular file", semantic=True, line=False)

    def _kw_downdir(self, v: str) -> None:
        self.state.down_dir = None
        path = self._expand(v)
        if path is None:
            return
        self._require_dir(path)
        self.state.down_dir = path

    def _kw_maildir(self, v: str) -> None:
        st = self.state
        st.mail_dir = st.mail_unread = st.mail_reply = None
        path = self._expand(v)
        if path is None:
            return
        self._require_dir(path)
        unread = path / "unread"
        # we can't fetch mail without the unread directory
        if not unread.is_dir():
            try:
                unread.mkdir(mode=0o700)
            except OSError:
                self._fail(f"{unread} is not a directory", semantic=True, line=False)
        st.mail_dir = path
        st.mail_unread = unread
        st.mail_reply = path / ".reply"

    def _kw_agent(self, v: str) -> None:
        if len(self.state.agents) >= self.limits.max_agents:
            self._fail(f"too many user agents, limit {self.limits.max_agents}", semantic=True)
        self.state.agents.append(v)

    def _kw_jar(self, v: str) -> None:
        self.state.cookie_file = None
        path = self._expand(v)
        if path is None:
            return
        if path.exists() and not path.is_file():
            self._fail(f"cookie jar {path} is not a regular file", semantic=True, line=False)
        try:
            fd = os.open(path, os.O_WRONLY | os.O_APPEND | os.O_CREAT, 0o600)
        except OSError:
            self._fail(f"cannot create or write to cookie jar {path}", semantic=True, line=False)
        os.close(fd)
        self.state.cookie_file = path

    def _domain_rule(self, kind: RuleKind, v: str) -> None:
        if v.startswith("."):
            v = v[1:]
        dot = v.find(".")
        if dot < 0 or dot == len(v) - 1:
            self._fail(f"domain {v} does not contain a dot")
        self.state.rules.append(Rule(kind=kind, pattern=v, line=self._ctx.line))

    def _kw_nojs(self, v: str) -> None:
        self._domain_rule(RuleKind.NOJS, v)

    def _kw_novs(self, v: str) -> None:
        self._domain_rule(RuleKind.NOVERIFY, v)

    def _kw_cachedir(self, v: str) -> None:
        self.state.cache_dir = v

    def _kw_webtimer(self, v: str) -> None:
        self.state.web_timeout = atoi(v)

    def _kw_mailtimer(self, v: str) -> None:
        self.state.mail_timeout = atoi(v)

    def _kw_certfile(self, v: str) -> None:
        self.state.ssl_certs = None
        path = self._expand(v)
        if path is None:
            return
        if path.exists() and not path.is_file():
            self._fail(f"certificate file {path} is not a regular file", semantic=True, line=False)
        if not os.access(path, os.R_OK):
            self._fail(f"cannot read certificate file {path}", semantic=True, line=False)
        self.state.ssl_certs = path

    def _kw_datasource(self, v: str) -> None:
        self.state.data_source = DataSource.parse(v)

    def _kw_proxy(self, v: str) -> None:
        """
        proxy = protocols [domain] proxy

        * stands for any protocol or domain, direct for no proxy.
        A trailing port number belongs to the host before it.
        """
        tokens = v.split()
        if len(tokens) >= 2 and tokens[-1].isdigit():
            tokens[-2:] = [f"{tokens[-2]}:{tokens[-1]}"]

        prot = domain = None
        if len(tokens) >= 2:
            prot = tokens.pop(0)
        if len(tokens) >= 2:
            domain = tokens.pop(0)
        proxy = " ".join(tokens)

        protocols = None
        if prot and prot != "*":
            protocols = tuple(p.lower() for p in prot.split("|") if p)
        if domain == "*":
            domain = None
        if proxy.lower() == "direct":
            proxy = None

        self.state.rules.append(Rule(
            kind=RuleKind.PROXY,
            pattern=domain,
            protocols=protocols,
            proxy=proxy,
            line=self._ctx.line,
        ))

    def _kw_agentsite(self, v: str) -> None:
        parts = v.split()
        if len(parts) != 2 or not parts[1].isdigit():
            self._fail("agentsite needs a domain and an agent number")
        n = int(parts[1])
        if n >= len(self.state.agents):
            self._fail(f"no user agent number {n}", semantic=True)
        self.state.rules.append(Rule(
            kind=RuleKind.AGENT_SITE,
            pattern=parts[0],
            agent_index=n,
            line=self._ctx.line,
        ))

    def _kw_localizeweb(self, v: str) -> None:
        self.state.http_language = v

    def _kw_imapfetch(self, v: str) -> None:
        self.state.imap_fetch = min(max(atoi(v), 10), 1000)

    def _kw_cachesize(self, v: str) -> None:
        self.state.cache_size = min(max(atoi(v), 0), 10000)

    def _kw_adbook(self, v: str) -> None:
        self.state.address_file = None
        path = self._expand(v)
        if path is None:
            return
        self._require_file(path, "address book")
        self.state.address_file = path

    def _kw_envelope(self, v: str) -> None:
        self.state.envelope_format = v

    def _kw_emojis(self, v: str) -> None:
        self.state.emoji_file = None
        path = self._expand(v)
        if path is None:
            return
        self._require_file(path, "emoji file")
        self.state.emoji_file = path

    _kw_emoji = _kw_emojis

    # ==================== Includes ====================

    def _include(self, ctx: FileContext, v: str) -> Optional[FileContext]:
        path = self._expand(v)
        if path is None:
            return None
        if not path.is_absolute():
            path = Path(ctx.path).parent / path

        if ctx.depth + 1 > self.limits.max_include_depth:
            self._fail(f"includes nested more than {self.limits.max_include_depth} deep")

        try:
            text = path.read_text(encoding="utf-8", errors="replace")
        except OSError as e:
            logger.error(
                "include_skipped",
                file=ctx.path,
                line=ctx.line,
                include=str(path),
                error=e.strerror or str(e),
            )
            return None

        try:
            encoded = preprocess(text, str(path), self.limits.max_function_name)
        except ConfigError as e:
            logger.error(
                "include_skipped",
                file=ctx.path,
                line=ctx.line,
                include=str(path),
                error=str(e),
            )
            return None

        self.state.files.append(str(path))
        logger.debug("include_started", file=str(path), parent=ctx.path, line=ctx.line)
        return FileContext(path=str(path), lines=split_encoded(encoded), parent=ctx)
