"""Ordered, append-only rule table with first-match-wins lookups."""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Iterator, Optional


class RuleKind(Enum):
    """What a rule is for."""
    NOJS = "nojs"                              # suppress javascript for a domain
    NOVERIFY = "novs"                          # skip certificate verification
    PROXY = "proxy"                            # proxy route
    AGENT_SITE = "agentsite"                   # user agent by site
    FUNCTION = "function"                      # named function body
    REDIRECT_SENDER = "fromfilter"             # mail redirect by sender/reply
    REDIRECT_RECIPIENT = "tofilter"            # mail redirect by recipient
    REDIRECT_SUBJECT = "subjfilter"            # mail redirect by subject


@dataclass(frozen=True)
class Rule:
    """
    A single rule.

    pattern is the primary match string: a domain/URL wildcard, a mail
    address or subject fragment, or the function name. The remaining fields
    only mean something for particular kinds.
    """
    kind: RuleKind
    pattern: Optional[str]

    # proxy routes
    protocols: Optional[tuple[str, ...]] = None
    proxy: Optional[str] = None

    # agentsite
    agent_index: int = 0

    # mail redirects
    destination: Optional[str] = None

    # functions
    body: Any = None
    nofail: bool = False
    line: int = 0


class RuleTable:
    """
    Rules in insertion order.

    Insertion order is match priority. Rules are never reordered, merged or
    removed; a reload builds a new table.
    """

    def __init__(self):
        self._rules: list[Rule] = []

    def append(self, rule: Rule) -> Rule:
        self._rules.append(rule)
        return rule

    def __len__(self) -> int:
        return len(self._rules)

    def __iter__(self) -> Iterator[Rule]:
        return iter(self._rules)

    def __getitem__(self, index: int) -> Rule:
        return self._rules[index]

    def of_kind(self, *kinds: RuleKind) -> Iterator[Rule]:
        """Rules of the given kinds, in priority order."""
        return (r for r in self._rules if r.kind in kinds)

    def first(
        self,
        kind: RuleKind,
        predicate: Callable[[Rule], bool],
    ) -> Optional[Rule]:
        """First rule of a kind satisfying the predicate."""
        return next((r for r in self.of_kind(kind) if predicate(r)), None)

    def find_function(self, name: str) -> Optional[Rule]:
        """Function rule by name, case-insensitive."""
        name = name.lower()
        return self.first(RuleKind.FUNCTION, lambda r: r.pattern.lower() == name)

    def function_names(self) -> list[str]:
        return [r.pattern for r in self.of_kind(RuleKind.FUNCTION)]

    def counts(self) -> dict[str, int]:
        """Number of rules per kind, for logging."""
        result: dict[str, int] = {}
        for rule in self._rules:
            result[rule.kind.value] = result.get(rule.kind.value, 0) + 1
        return result
