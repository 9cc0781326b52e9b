"""Per-URL and per-message decisions driven by the rule table."""

from typing import Callable, Optional

import structlog

from ..core.errors import UrlError
from ..core.settings import Settings
from .matching import is_data_uri, parse_prot_host, pattern_match_url
from .table import Rule, RuleKind, RuleTable


logger = structlog.get_logger()

DIRECT = "direct"

ReverseAlias = Callable[[str], Optional[str]]


def _no_alias(address: str) -> Optional[str]:
    return None


def _sender_matches(rule: Rule, from_: str, reply: str) -> bool:
    m = rule.pattern.lower()
    reply = reply.lower()
    if m == from_.lower() or m == reply:
        return True
    return m.startswith("@") and len(m) < len(reply) and reply.endswith(m)


def _recipient_matches(rule: Rule, to: str) -> bool:
    m = rule.pattern.lower()
    to = to.lower()
    if m == to:
        return True
    return m.startswith("@") and len(m) < len(to) and to.endswith(m)


def _subject_matches(rule: Rule, subject: str) -> bool:
    m = rule.pattern.lower()
    subject = subject.lower()
    if len(m) > len(subject):
        return False
    if len(m) == len(subject):
        return m == subject
    # prefix or suffix, covering at least half the subject
    if len(subject) > 2 * len(m):
        return False
    return subject.startswith(m) or subject.endswith(m)


class RulePolicy:
    """
    Answers the questions the browser and mail client ask of the rc file.

    Every lookup walks the rule table in order and the first matching
    rule of the relevant kind decides.
    """

    def __init__(
        self,
        rules: Callable[[], RuleTable],
        settings: Settings,
        agents: Callable[[], list[str]],
        reverse_alias: Optional[ReverseAlias] = None,
    ):
        self._rules = rules
        self._agents = agents
        self.settings = settings
        self.reverse_alias = reverse_alias or _no_alias

    @property
    def rules(self) -> RuleTable:
        return self._rules()

    def java_ok(self, url: str) -> bool:
        """Are we ok to parse and execute javascript for this url."""
        if not self.settings.allow_js:
            return False
        if is_data_uri(url):
            return True
        rule = self.rules.first(
            RuleKind.NOJS, lambda r: pattern_match_url(url, r.pattern)
        )
        return rule is None

    def must_verify_host(self, url: str) -> bool:
        """Should the certificate for this host be verified."""
        if not self.settings.verify_certificates:
            return False
        rule = self.rules.first(
            RuleKind.NOVERIFY, lambda r: pattern_match_url(url, r.pattern)
        )
        return rule is None

    def find_proxy_for_url(self, url: str) -> str:
        """
        Proxy server to mediate a request, or DIRECT.

        First match wins; a rule without protocols or without a domain
        matches any protocol or any domain.
        """
        try:
            prot, _ = parse_prot_host(url)
        except UrlError:
            logger.warning("proxy_lookup_bad_url", url=url)
            return DIRECT

        for rule in self.rules.of_kind(RuleKind.PROXY):
            if rule.protocols and prot not in rule.protocols:
                continue
            if rule.pattern and not pattern_match_url(url, rule.pattern):
                continue
            return rule.proxy or DIRECT

        return DIRECT

    def find_agent_for_url(self, url: str) -> Optional[str]:
        rule = self.rules.first(
            RuleKind.AGENT_SITE, lambda r: pattern_match_url(url, r.pattern)
        )
        if rule is None:
            return None
        agents = self._agents()
        if rule.agent_index < len(agents):
            return agents[rule.agent_index]
        return None

    def mail_redirect(
        self,
        to: str,
        from_: str,
        reply: str,
        subject: str,
    ) -> Optional[str]:
        """Where to file an incoming message, from the filter blocks."""
        for rule in self.rules.of_kind(
            RuleKind.REDIRECT_SENDER,
            RuleKind.REDIRECT_RECIPIENT,
            RuleKind.REDIRECT_SUBJECT,
        ):
            if rule.kind is RuleKind.REDIRECT_SENDER:
                matched = _sender_matches(rule, from_, reply)
            elif rule.kind is RuleKind.REDIRECT_RECIPIENT:
                matched = _recipient_matches(rule, to)
            else:
                matched = _subject_matches(rule, subject)
            if matched:
                return rule.destination

        return self.reverse_alias(reply)
