"""
First pass over an rc file.

Normalizes line endings, drops indentation and comments, and rewrites
every structural line (block openers, closers, else) into a short
control header so later passes never look at the source syntax again.

Encoding:
    \\x81 X [payload]   block open, X is the block kind
    \\x82               block close
    \\x83               else
"""

import re
from typing import Optional

from ..core.errors import ConfigError


BLOCK_OPEN = "\x81"
BLOCK_CLOSE = "\x82"
BLOCK_ELSE = "\x83"
CONTROL_CODES = BLOCK_OPEN + BLOCK_CLOSE + BLOCK_ELSE

# Block kinds carried after BLOCK_OPEN
MAIL = "m"
MIME = "e"
TABLE = "b"
FROM_FILTER = "r"
TO_FILTER = "t"
SUBJECT_FILTER = "s"
FUNCTION = "f"
LOOP = "l"
IF_OK = "I"
IF_FAIL = "i"
WHILE_OK = "W"
WHILE_FAIL = "w"
UNTIL_OK = "U"
UNTIL_FAIL = "u"

# Only this many non-blank characters of a line are examined
MAX_PHRASE = 23

NOFAIL_MARK = "+"
PLAIN_MARK = ":"

_PHRASES = {
    "}": BLOCK_CLOSE,
    "}else{": BLOCK_ELSE,
    "mail{": BLOCK_OPEN + MAIL,
    "plugin{": BLOCK_OPEN + MIME,
    "mime{": BLOCK_OPEN + MIME,
    "table{": BLOCK_OPEN + TABLE,
    "fromfilter{": BLOCK_OPEN + FROM_FILTER,
    "tofilter{": BLOCK_OPEN + TO_FILTER,
    "subjfilter{": BLOCK_OPEN + SUBJECT_FILTER,
    "if(*){": BLOCK_OPEN + IF_OK,
    "if(?){": BLOCK_OPEN + IF_FAIL,
    "while(*){": BLOCK_OPEN + WHILE_OK,
    "while(?){": BLOCK_OPEN + WHILE_FAIL,
    "until(*){": BLOCK_OPEN + UNTIL_OK,
    "until(?){": BLOCK_OPEN + UNTIL_FAIL,
}

_LOOP = re.compile(r"loop\((\d+)\)\{")
_NAME = re.compile(r"[A-Za-z0-9]*")


def is_control(line: str) -> bool:
    return bool(line) and line[0] in CONTROL_CODES


def split_encoded(encoded: str) -> list[str]:
    """Lines of an encoded buffer, one per source line."""
    lines = encoded.split("\n")
    if lines and lines[-1] == "":
        lines.pop()
    return lines


def _function_header(
    phrase: str,
    filename: str,
    lineno: int,
    max_name: int,
) -> str:
    mark = phrase[8]
    rest = phrase[9:]
    if not rest or rest[0] in "{(":
        raise ConfigError("function has no name", config_path=filename, line=lineno)

    name = _NAME.match(rest).group()
    if len(name) > max_name:
        raise ConfigError(
            f"function name longer than {max_name} characters",
            config_path=filename,
            line=lineno,
        )
    if rest[len(name):] != "{":
        raise ConfigError(
            "syntax error in function header",
            config_path=filename,
            line=lineno,
        )
    return BLOCK_OPEN + FUNCTION + mark + name


def _encode(
    phrase: str,
    filename: str,
    lineno: int,
    max_name: int,
) -> Optional[str]:
    header = _PHRASES.get(phrase)
    if header is not None:
        return header

    m = _LOOP.fullmatch(phrase)
    if m:
        return BLOCK_OPEN + LOOP + m.group(1)

    if phrase.startswith("function") and phrase[8:9] in (NOFAIL_MARK, PLAIN_MARK):
        return _function_header(phrase, filename, lineno, max_name)

    return None


def preprocess(text: str, filename: str = "config", max_name: int = 10) -> str:
    """
    Encode one rc file.

    Raises ConfigError, naming the file and line, on NUL characters and
    malformed function headers. Nothing is returned on failure, so a
    caller never sees half an encoded file.
    """
    lines = text.split("\n")
    if lines and lines[-1] == "":
        lines.pop()

    out = []
    for lineno, raw in enumerate(lines, 1):
        if "\0" in raw:
            raise ConfigError("null character in file", config_path=filename, line=lineno)
        if raw.endswith("\r"):
            raw = raw[:-1]

        line = raw.lstrip(" \t")
        if line.startswith("#"):
            out.append("#")
            continue

        phrase = "".join(c for c in line if c not in " \t")[:MAX_PHRASE]
        header = _encode(phrase, filename, lineno, max_name)
        out.append(line if header is None else header)

    if not out:
        return ""
    return "\n".join(out) + "\n"
