"""Interpreter-visible toggles and the save frame around function calls."""

from contextlib import contextmanager
from typing import Iterator, Optional

from pydantic import BaseModel, Field


RESERVED_PERSIST_PREFIX = "set"
INIT_FUNCTION = "init"


class Settings(BaseModel):
    """
    Global toggles a function may change while it runs.

    Every field here is captured before a function runs and put back
    afterwards, unless the function is allowed to make its changes stick
    (see persists_changes).
    """
    model_config = {"validate_assignment": True}

    # Line editor
    input_read_line: bool = False
    end_marks: bool = False
    list_na: bool = False
    help_messages: bool = False
    case_insensitive: bool = False
    search_strings_all: bool = False
    re_utf8: bool = True
    search_wrap: bool = True
    ebre: bool = True
    binary_detect: bool = True
    iu_convert: bool = True

    # Directory listings
    show_hidden_files: bool = False
    dir_write: int = Field(default=0, ge=0, le=2)
    ls_sort: int = Field(default=0, ge=0)
    ls_reverse: bool = False
    ls_format: str = Field(default="", max_length=11)

    # Browsing
    allow_redirection: bool = True
    verify_certificates: bool = True
    send_referrer: bool = True
    curl_auth_negotiate: bool = False
    ftp_active: bool = False
    down_bg: bool = False
    down_jsbg: bool = True
    allow_js: bool = True
    show_hover: bool = False
    plugins_on: bool = True
    fetch_blob_columns: bool = False
    show_progress: str = Field(default="d", max_length=1)
    current_agent: Optional[str] = None
    agent_index: int = Field(default=0, ge=0)

    # Diagnostics
    debug_level: int = Field(default=1, ge=0, le=9)
    timer_speed: int = Field(default=1, ge=1)

    def snapshot(self) -> "Settings":
        """Copy of the current values."""
        return self.model_copy()

    def restore(self, saved: "Settings") -> None:
        """Put back values from a snapshot, in place."""
        for name in type(self).model_fields:
            object.__setattr__(self, name, getattr(saved, name))


def persists_changes(function_name: str) -> bool:
    """init and set* functions keep their changes to the settings."""
    name = function_name.lower()
    return name == INIT_FUNCTION or name.startswith(RESERVED_PERSIST_PREFIX)


@contextmanager
def preserved(settings: Settings, enabled: bool = True) -> Iterator[Settings]:
    """Restore settings on exit, however the block is left."""
    if not enabled:
        yield settings
        return

    saved = settings.snapshot()
    try:
        yield settings
    finally:
        settings.restore(saved)
