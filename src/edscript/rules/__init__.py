"""Rule table and the lookups built on it."""

from .table import Rule, RuleKind, RuleTable
from .matching import pattern_match_url, parse_prot_host, domain_matches
from .policy import RulePolicy, DIRECT
from .replacements import ReplacementTable

__all__ = [
    "Rule",
    "RuleKind",
    "RuleTable",
    "RulePolicy",
    "ReplacementTable",
    "DIRECT",
    "pattern_match_url",
    "parse_prot_host",
    "domain_matches",
]
