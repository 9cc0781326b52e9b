"""rc-file encoding and the records it produces."""

from .preprocess import preprocess, split_encoded, is_control
from .records import (
    MailAccount,
    MimeType,
    DbTable,
    DataSource,
    Recipient,
    RecipientKind,
    TlsMode,
)

__all__ = [
    "preprocess",
    "split_encoded",
    "is_control",
    "MailAccount",
    "MimeType",
    "DbTable",
    "DataSource",
    "Recipient",
    "RecipientKind",
    "TlsMode",
]
