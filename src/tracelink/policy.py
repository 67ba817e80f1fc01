"""Cross-origin header injection policy.

Same-origin requests always carry propagation headers. Cross-origin requests
only carry them when the target matches the configured allow rule. A request
that is denied injection is still traced; the rule only guards which servers
see our trace identifiers.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable
from urllib.parse import urljoin, urlsplit

from tracelink.errors import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_PORTS = {"http": 80, "https": 443, "ws": 80, "wss": 443}

UrlRule = str | re.Pattern
AllowRule = UrlRule | Iterable[UrlRule]


def parse_origin(url: str, base_origin: str | None = None) -> str:
    """Return the ``scheme://host:port`` origin of ``url``.

    Relative URLs resolve against ``base_origin``. Default ports are made
    explicit so ``http://a`` and ``http://a:80`` compare equal.
    """
    if base_origin and not urlsplit(url).scheme:
        url = urljoin(base_origin.rstrip("/") + "/", url)

    parts = urlsplit(url)
    scheme = parts.scheme.lower()
    host = (parts.hostname or "").lower()
    try:
        port = parts.port
    except ValueError:
        port = None
    if port is None:
        port = DEFAULT_PORTS.get(scheme)
    if port is None:
        return f"{scheme}://{host}"
    return f"{scheme}://{host}:{port}"


def _iter_rules(rule: AllowRule | None) -> list[UrlRule]:
    if rule is None:
        return []
    if isinstance(rule, (str, re.Pattern)):
        return [rule]
    return list(rule)


def _is_origin_literal(literal: str) -> bool:
    parts = urlsplit(literal)
    return bool(
        parts.scheme
        and parts.netloc
        and parts.path in ("", "/")
        and not parts.query
        and not parts.fragment
    )


def url_matches(url: str, rule: AllowRule | None) -> bool:
    """Check ``url`` against a literal, a pattern, or a collection of them.

    Origin literals (``scheme://host[:port]``) match any URL on that origin;
    other literals must equal the full URL. Patterns are searched anywhere in
    the full URL.
    """
    for item in _iter_rules(rule):
        if isinstance(item, re.Pattern):
            if item.search(url):
                return True
        elif url == item:
            return True
        elif _is_origin_literal(item) and parse_origin(url) == parse_origin(item):
            return True
    return False


def should_inject(target_url: str, current_origin: str, allow_rule: AllowRule | None) -> bool:
    """Decide whether propagation headers go on a request to ``target_url``.

    Args:
        target_url: URL the request is sent to (may be relative)
        current_origin: Origin of the calling application
        allow_rule: Cross-origin allow rule, or None

    Returns:
        True for same-origin targets and cross-origin targets that match
        ``allow_rule``; False otherwise
    """
    target_origin = parse_origin(target_url, current_origin)
    if target_origin == parse_origin(current_origin):
        return True

    absolute_url = urljoin(current_origin.rstrip("/") + "/", target_url)
    if url_matches(absolute_url, allow_rule):
        return True

    logger.debug("Cross-origin target %s not allowed for header propagation", target_origin)
    return False


def compile_allow_rule(
    literals: Iterable[str] = (),
    pattern: str | None = None,
) -> list[UrlRule]:
    """Build an allow rule from configuration strings.

    Raises:
        ConfigurationError: if ``pattern`` is not a valid regular expression
    """
    rule: list[UrlRule] = [literal.strip() for literal in literals if literal.strip()]
    if pattern:
        try:
            rule.append(re.compile(pattern))
        except re.error as e:
            raise ConfigurationError(f"Invalid URL pattern {pattern!r}: {e}", setting="pattern") from e
    return rule


class InjectionPolicy:
    """Bundles the current origin and allow rule for per-request decisions."""

    def __init__(self, current_origin: str, allow_rule: AllowRule | None = None):
        self.current_origin = current_origin
        self.allow_rule = _iter_rules(allow_rule)

    def should_inject(self, target_url: str) -> bool:
        return should_inject(target_url, self.current_origin, self.allow_rule)

    def resolve(self, target_url: str) -> str:
        """Absolute form of ``target_url`` relative to the current origin."""
        return urljoin(self.current_origin.rstrip("/") + "/", target_url)
