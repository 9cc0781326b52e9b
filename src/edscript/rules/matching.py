"""URL parsing and domain wildcard matching for rc-file rules."""

from fnmatch import fnmatchcase
from typing import Optional
from urllib.parse import urlsplit

from ..core.errors import UrlError


DEFAULT_PROTOCOL = "http"


def is_data_uri(url: str) -> bool:
    return url[:5].lower() == "data:"


def parse_prot_host(url: str) -> tuple[str, str]:
    """
    Split a URL into (protocol, host).

    A URL without a protocol is taken to be http, the way a browser
    treats a bare host name. The host comes back lower-cased without
    port or credentials.
    """
    if not url:
        raise UrlError("empty url", url=url)

    if "://" not in url:
        url = f"{DEFAULT_PROTOCOL}://{url}"

    try:
        parts = urlsplit(url)
        host = parts.hostname
    except ValueError as e:
        raise UrlError(f"cannot parse url: {e}", url=url)

    if not parts.scheme or not host:
        raise UrlError("url has no host", url=url)

    return parts.scheme.lower(), host


def url_path(url: str) -> str:
    if "://" not in url:
        url = f"{DEFAULT_PROTOCOL}://{url}"
    try:
        return urlsplit(url).path or "/"
    except ValueError:
        return "/"


def _labels_match(host_labels: list[str], pattern_labels: list[str]) -> bool:
    return all(
        p == "*" or fnmatchcase(h, p)
        for h, p in zip(host_labels, pattern_labels)
    )


def domain_matches(host: str, pattern: str) -> bool:
    """
    Match a host against a domain pattern.

    example.com matches example.com and www.example.com but not
    badexample.com. A pattern ending in a dot (ads.example.) may match
    those labels anywhere in the host. A * label matches any one label.
    """
    pattern = pattern.lower().lstrip(".")
    if not pattern:
        return False

    anywhere = pattern.endswith(".")
    pattern_labels = pattern.rstrip(".").split(".")
    host_labels = host.lower().rstrip(".").split(".")

    n = len(pattern_labels)
    if n > len(host_labels):
        return False

    if not anywhere:
        return _labels_match(host_labels[-n:], pattern_labels)

    return any(
        _labels_match(host_labels[i:i + n], pattern_labels)
        for i in range(len(host_labels) - n + 1)
    )


def pattern_match_url(url: Optional[str], pattern: Optional[str]) -> bool:
    """Does a url match a domain[/path] pattern from the rc file."""
    if not url or not pattern:
        return False

    try:
        _, host = parse_prot_host(url)
    except UrlError:
        return False

    domain, slash, path = pattern.partition("/")
    if not domain_matches(host, domain):
        return False

    if slash and path:
        return url_path(url).startswith("/" + path)
    return True
