"""Tests for rc-file preprocessing and loading."""

import os
import sys

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from edscript.core.config import LimitsConfig
from edscript.core.errors import ConfigError, ErrorCategory
from edscript.core.state import ConfigState
from edscript.rcfile.loader import RcLoader
from edscript.rcfile.preprocess import preprocess, split_encoded
from edscript.rcfile.records import RecipientKind, TlsMode
from edscript.rules.table import RuleKind
from edscript.script.program import Op


def load(text, **limits):
    state = ConfigState(default_agent="test/1.0")
    RcLoader(LimitsConfig(**limits)).load_text(text, state, path="ebrc")
    return state


class TestPreprocess:
    """Test the encoding pass."""

    def test_block_headers(self):
        encoded = preprocess(
            "mail {\n"
            "}\n"
            "  plugin{\n"
            "} else {\n"
            "loop( 3 ) {\n"
            "if(*){\n"
            "while (?) {\n"
            "until(*){\n"
            "fromfilter {\n"
        )

        assert split_encoded(encoded) == [
            "\x81m",
            "\x82",
            "\x81e",
            "\x83",
            "\x81l3",
            "\x81I",
            "\x81w",
            "\x81U",
            "\x81r",
        ]

    def test_function_headers(self):
        assert preprocess("function+greet {\n") == "\x81f+greet\n"
        assert preprocess("function : Say2{\n") == "\x81f:Say2\n"

    def test_comments_and_indentation(self):
        encoded = preprocess("  # a comment\n\n\techo hello  \n")
        assert split_encoded(encoded) == ["#", "", "echo hello  "]

    def test_crlf(self):
        assert preprocess("mail{\r\n}\r\n") == "\x81m\n\x82\n"

    def test_empty(self):
        assert preprocess("") == ""

    def test_long_literal_untouched(self):
        line = "s/a very long substitution command/with a replacement/g"
        assert preprocess(line + "\n") == line + "\n"

    def test_null_character(self):
        with pytest.raises(ConfigError) as exc:
            preprocess("echo\nbad\0line\n", "ebrc")
        assert exc.value.line == 2
        assert exc.value.config_path == "ebrc"

    @pytest.mark.parametrize("header,message", [
        ("function:{", "function has no name"),
        ("function+ (x) {", "function has no name"),
        ("function:abcdefghijk{", "function name longer than 10 characters"),
        ("function:greet(x){", "syntax error in function header"),
        ("function:gr-eet{", "syntax error in function header"),
    ])
    def test_bad_function_headers(self, header, message):
        with pytest.raises(ConfigError) as exc:
            preprocess("# first\n" + header + "\n")
        assert exc.value.message == message
        assert exc.value.line == 2


class TestLoaderBlocks:
    """Test mail, plugin, table and filter blocks."""

    def test_mail_account(self):
        state = load(
            "mail {\n"
            "  inserver = imap.example.com\n"
            "  outserver = smtp.example.com\n"
            "  login = fred\n"
            "  password = secret\n"
            "  from = Fred Flintstone\n"
            "  reply = fred@example.com\n"
            "  imap\n"
            "  secure\n"
            "  to = wilma@example.com\n"
            "  attach = ~/sig.txt\n"
            "}\n"
        )

        assert len(state.accounts) == 1
        act = state.accounts[0]
        assert act.inurl == "imap.example.com"
        assert act.from_ == "Fred Flintstone"
        assert act.imap and act.nofetch and act.secure
        assert act.inport == 993
        assert act.outport == 465
        assert act.in_tls is TlsMode.SSL
        assert [r.kind for r in act.recipients] == [RecipientKind.TO, RecipientKind.ATTACH]
        assert state.local_account == 1
        assert state.default_account is act

    def test_default_account(self):
        account = (
            "mail {{\n"
            "inserver = in{0}\noutserver = out{0}\nlogin = u\npassword = p\n"
            "from = f\nreply = r@x\n{1}"
            "}}\n"
        )
        state = load(account.format(1, "") + account.format(2, "default\n"))

        assert state.local_account == 2
        assert state.default_account.inurl == "in2"

    def test_two_defaults(self):
        account = (
            "mail {\n"
            "inserver = in\noutserver = out\nlogin = u\npassword = p\n"
            "from = f\nreply = r@x\ndefault\n"
            "}\n"
        )
        with pytest.raises(ConfigError) as exc:
            load(account + account)
        assert exc.value.category is ErrorCategory.SEMANTIC

    def test_port_markers(self):
        state = load(
            "mail {\n"
            "inserver = in\noutserver = out\nlogin = u\npassword = p\n"
            "from = f\nreply = r@x\n"
            "inport = *1993\n"
            "outport = ^587\n"
            "}\n"
        )
        act = state.accounts[0]
        assert act.inport == 1993
        assert act.in_tls is TlsMode.SSL
        assert act.outport == 587
        assert act.out_tls is TlsMode.STARTTLS

    def test_missing_mail_field(self):
        with pytest.raises(ConfigError) as exc:
            load(
                "mail {\n"
                "inserver = in\noutserver = out\nlogin = u\n"
                "from = f\nreply = r@x\n"
                "}\n"
            )
        assert exc.value.message == "mail account has no password"
        assert exc.value.line == 7

    def test_plugin(self):
        state = load(
            "plugin {\n"
            "  type = audio/mp3\n"
            "  desc = audio file\n"
            "  suffix = mp3\n"
            "  program = mpg123 -q %i\n"
            "  outtype = Text\n"
            "  down_url\n"
            "}\n"
        )

        mt = state.mime_types[0]
        assert mt.type == "audio/mp3"
        assert mt.program == "mpg123 -q %i"
        assert mt.outtype == "t"
        assert mt.down_url is True

    def test_plugin_needs_match(self):
        with pytest.raises(ConfigError) as exc:
            load("plugin {\ntype = a/b\ndesc = d\nprogram = p\n}\n")
        assert exc.value.message == "plugin has no suffix, protocol or content"

    def test_table(self):
        state = load(
            "table {\n"
            "  tname = people\n"
            "  tshort = pp\n"
            "  cols = id,name,email\n"
            "  keycol = 1\n"
            "}\n"
        )

        td = state.find_table("pp")
        assert td.name == "people"
        assert td.cols == ["id", "name", "email"]
        assert td.key1 == 1

    def test_table_key_out_of_range(self):
        with pytest.raises(ConfigError):
            load("table {\ntname = t\ntshort = t\ncols = a,b\nkeycol = 3\n}\n")

    def test_too_many_columns(self):
        with pytest.raises(ConfigError):
            load("table {\ntname = t\ntshort = t\ncols = a,b,c\n}\n", max_columns=2)

    def test_filters(self):
        state = load(
            "fromfilter {\n"
            "  boss@work.com > urgent\n"
            "}\n"
            "subjfilter {\n"
            "  weekly report>reports\n"
            "}\n"
        )

        rules = list(state.rules)
        assert [r.kind for r in rules] == [RuleKind.REDIRECT_SENDER, RuleKind.REDIRECT_SUBJECT]
        assert rules[0].pattern == "boss@work.com"
        assert rules[0].destination == "urgent"
        assert rules[1].pattern == "weekly report"

    def test_filter_without_destination(self):
        with pytest.raises(ConfigError) as exc:
            load("tofilter {\nsomeone@x.com >\n}\n")
        assert exc.value.message == "nowhere to redirect someone@x.com"


class TestLoaderGlobals:
    """Test global keywords."""

    def test_domain_rules(self):
        state = load("nojs = .ads.example.\nnovs = intranet.local\n")

        rules = list(state.rules)
        assert rules[0].kind is RuleKind.NOJS
        assert rules[0].pattern == "ads.example."
        assert rules[1].kind is RuleKind.NOVERIFY

    def test_domain_without_dot(self):
        with pytest.raises(ConfigError):
            load("nojs = localhost\n")

    def test_proxy_rules(self):
        state = load(
            "proxy = http myproxy.example 8080\n"
            "proxy = * internal.example direct\n"
            "proxy = https|ftp * gateway.example:3128\n"
        )

        rules = list(state.rules.of_kind(RuleKind.PROXY))
        assert rules[0].protocols == ("http",)
        assert rules[0].pattern is None
        assert rules[0].proxy == "myproxy.example:8080"
        assert rules[1].protocols is None
        assert rules[1].pattern == "internal.example"
        assert rules[1].proxy is None
        assert rules[2].protocols == ("https", "ftp")
        assert rules[2].proxy == "gateway.example:3128"

    def test_agents(self):
        state = load("agent = phone/2\nagentsite = mobile.example.com 1\n")

        assert state.agents == ["test/1.0", "phone/2"]
        rule = state.rules[0]
        assert rule.kind is RuleKind.AGENT_SITE
        assert rule.agent_index == 1

    def test_agentsite_unknown_agent(self):
        with pytest.raises(ConfigError) as exc:
            load("agentsite = mobile.example.com 3\n")
        assert exc.value.category is ErrorCategory.SEMANTIC

    def test_too_many_agents(self):
        with pytest.raises(ConfigError):
            load("agent = a\nagent = b\n", max_agents=2)

    def test_numeric_settings(self):
        state = load("imapfetch = 5\ncachesize = 20000\nwebtimer = 30\n")

        assert state.imap_fetch == 10
        assert state.cache_size == 10000
        assert state.web_timeout == 30

    def test_datasource(self):
        state = load("datasource = mydb,scott,tiger\n")
        assert state.data_source.area == "mydb"
        assert state.data_source.password == "tiger"

    def test_directories(self, tmp_path):
        maildir = tmp_path / "mail"
        maildir.mkdir()
        state = load(f"downdir = {tmp_path}\nmaildir = {maildir}\n")

        assert state.down_dir == tmp_path
        assert state.mail_unread == maildir / "unread"
        assert state.mail_unread.is_dir()

    def test_downdir_not_a_directory(self, tmp_path):
        with pytest.raises(ConfigError):
            load(f"downdir = {tmp_path / 'missing'}\n")

    def test_undefined_variable_skipped(self, monkeypatch):
        monkeypatch.delenv("EDSCRIPT_NOT_SET", raising=False)
        state = load("downdir = $EDSCRIPT_NOT_SET/downloads\n")
        assert state.down_dir is None

    def test_cookie_jar_created(self, tmp_path):
        jar = tmp_path / "cookies"
        state = load(f"jar = {jar}\n")

        assert state.cookie_file == jar
        assert jar.is_file()


class TestLoaderErrors:
    """Test syntax and structure errors."""

    @pytest.mark.parametrize("text,message,line", [
        ("}\n", "unexpected }", 1),
        ("nojs = a.com\nfrobnicate = 1\n", "unrecognized keyword frobnicate", 2),
        ("hello there\n", "text outside of any block or function", 1),
        ("inserver = x\n", "mail attribute inserver outside a mail block", 1),
        ("if(*){\n}\n", "control statement outside a function", 1),
        ("function:f{\nnojs = a.com\n}\n", "keyword nojs inside a function", 2),
        ("function:f{\nfunction:g{\n}\n}\n", "cannot start a block inside another function", 2),
        ("function:f{\nloop(2){\n}else{\n}\n}\n", "else without if", 3),
        ("mail{\nnojs = a.com\n}\n", "keyword nojs inside a mail or filter block", 2),
        ("nojs =\n", "keyword nojs has no value", 1),
    ])
    def test_errors(self, text, message, line):
        with pytest.raises(ConfigError) as exc:
            load(text)
        assert exc.value.message == message
        assert exc.value.line == line
        assert exc.value.config_path == "ebrc"

    def test_function_not_closed(self):
        with pytest.raises(ConfigError) as exc:
            load("nojs = a.com\nfunction:f{\necho\n")
        assert exc.value.message == "function f not closed"
        assert exc.value.line == 2

    def test_block_not_closed(self):
        with pytest.raises(ConfigError):
            load("plugin {\ntype = a/b\n")

    def test_nesting_limit(self):
        body = "".join("if(*){\n" for _ in range(3)) + "".join("}\n" for _ in range(3))
        with pytest.raises(ConfigError) as exc:
            load("function:f{\n" + body + "}\n", max_nest=3)
        assert exc.value.message == "blocks nested too deeply"

    def test_unreadable_file(self, tmp_path):
        with pytest.raises(ConfigError) as exc:
            RcLoader().load(tmp_path / "missing.rc", ConfigState())
        assert exc.value.category is ErrorCategory.RESOURCE

    def test_reload_resets(self, tmp_path):
        path = tmp_path / "ebrc"
        path.write_text("nojs = a.com\nagent = x/1\n")
        state = ConfigState()
        loader = RcLoader()

        loader.load(path, state)
        loader.load(path, state)

        assert len(state.rules) == 1
        assert state.agents == [state.default_agent, "x/1"]

    def test_failed_load_text_leaves_empty_state(self):
        state = ConfigState()
        loader = RcLoader()
        loader.load_text("nojs = a.com\nagent = x/1\n", state)

        with pytest.raises(ConfigError):
            loader.load_text("nojs = b.com\n}\n", state)

        assert len(state.rules) == 0
        assert state.agents == [state.default_agent]
        assert state.files == []

    def test_failed_load_leaves_empty_state(self, tmp_path):
        path = tmp_path / "ebrc"
        path.write_text("nojs = a.com\nfunction:f{\necho\n")
        state = ConfigState()

        with pytest.raises(ConfigError):
            RcLoader().load(path, state)

        assert len(state.rules) == 0
        assert state.rules.find_function("f") is None


class TestFunctions:
    """Test how function definitions are stored."""

    def test_body_literals_survive(self):
        state = load(
            "function+greet {\n"
            "    echo ~1 and ~2, full=~0\n"
            "    # comment\n"
            "\n"
            "    loop(2) {\n"
            "        s/a = b/c/\n"
            "    }\n"
            "}\n"
        )

        rule = state.rules.find_function("GREET")
        assert rule.nofail is True
        assert rule.line == 1

        program = rule.body.program
        assert program.literal_lines() == ["echo ~1 and ~2, full=~0", "s/a = b/c/"]
        assert [i.op for i in program] == [Op.LITERAL, Op.OPEN, Op.LITERAL, Op.CLOSE]
        assert program[1].count == 2

    def test_plain_function(self):
        state = load("function:hello{\necho hi\n}\n")
        rule = state.rules.find_function("hello")
        assert rule.nofail is False
        assert state.rules.function_names() == ["hello"]

    def test_balance(self):
        state = load(
            "function:f{\n"
            "if(*){\n"
            "loop(2){\n"
            "a\n"
            "}\n"
            "}else{\n"
            "b\n"
            "}\n"
            "}\n"
        )
        program = state.rules.find_function("f").body.program

        assert program.balance(0, 1) == 4
        assert program.balance(1, 1) == 3
        assert program.balance(3, -1) == 1
        assert program.balance(4, 1) == 6


class TestIncludes:
    """Test nested include files."""

    def test_include_resumes_in_parent(self, tmp_path):
        (tmp_path / "c.rc").write_text("nojs = c1.example\n")
        (tmp_path / "b.rc").write_text(
            "nojs = b1.example\ninclude = c.rc\nnojs = b2.example\n"
        )
        a = tmp_path / "a.rc"
        a.write_text(
            "nojs = a1.example\ninclude = b.rc\nnojs = a2.example\n"
        )

        state = ConfigState()
        RcLoader().load(a, state)

        assert [r.pattern for r in state.rules] == [
            "a1.example",
            "b1.example",
            "c1.example",
            "b2.example",
            "a2.example",
        ]
        assert state.files == [
            str(a),
            str(tmp_path / "b.rc"),
            str(tmp_path / "c.rc"),
        ]

    def test_error_names_included_file(self, tmp_path):
        (tmp_path / "b.rc").write_text("nojs = b1.example\n}\n")
        a = tmp_path / "a.rc"
        a.write_text("include = b.rc\n")

        with pytest.raises(ConfigError) as exc:
            RcLoader().load(a, ConfigState())
        assert exc.value.config_path == str(tmp_path / "b.rc")
        assert exc.value.line == 2

    def test_missing_include_skipped(self, tmp_path):
        a = tmp_path / "a.rc"
        a.write_text("include = nowhere.rc\nnojs = a2.example\n")

        state = ConfigState()
        RcLoader().load(a, state)
        assert [r.pattern for r in state.rules] == ["a2.example"]

    def test_include_depth_limit(self, tmp_path):
        a = tmp_path / "a.rc"
        a.write_text("include = a.rc\n")

        with pytest.raises(ConfigError) as exc:
            RcLoader(LimitsConfig(max_include_depth=2)).load(a, ConfigState())
        assert "nested" in exc.value.message

    def test_function_in_include(self, tmp_path):
        (tmp_path / "funcs.rc").write_text("function:hi{\necho hi\n}\n")
        a = tmp_path / "a.rc"
        a.write_text("include = funcs.rc\nfunction:bye{\necho bye\n}\n")

        state = ConfigState()
        RcLoader().load(a, state)
        assert state.rules.function_names() == ["hi", "bye"]
        assert state.rules.find_function("hi").body.program.literal_lines() == ["echo hi"]
