#!/usr/bin/env python3
"""
normalizer.py - Rule Parsing and Canonicalization for Clash Rule Sets

This module turns raw source lines into canonical rules. It's the first stage
of the pipeline, running BEFORE the allowlist filter and the compiler.

Supported Source Conventions:
    Rule providers publish the same rule in several shapes:

    - YAML array (rule-provider payload):   - '+.example.com'
    - Flat text (classical rules):          DOMAIN-SUFFIX,example.com
    - Bare lists:                           example.com

    All of them collapse to one canonical pair, rendered as ``kind,value``:

        - '+.example.com'           →  domain-suffix,example.com
        DOMAIN-SUFFIX,Example.COM   →  domain-suffix,example.com
        example.com                 →  domain,example.com

Design Decision - Total, Not Strict:
    A line that can't be classified is silently dropped. Nothing in this
    module raises on malformed input, so one broken upstream list never stops
    a build. Keyword rules are dropped here as well, since the output format
    only models domain matching.

YAML Rule Providers:
    Downloaded bodies with a "payload:" key are loaded with PyYAML first
    (split_source). Each item becomes one parser line: classical items such as
    DOMAIN-SUFFIX,x.com pass through, literals are re-emitted as "- item".

Precedence:
    YAML array form is tried first, then the flat text form, then the bare
    fallback. A line only reaches the fallback when the stricter forms failed.
"""

import re
from typing import Final, Iterable, NamedTuple

import yaml


# =============================================================================
# RULE KINDS
# =============================================================================

class RuleKind:
    """Canonical rule kinds, spelled as the lower-cased classical type token."""
    DOMAIN: Final[str] = "domain"
    DOMAIN_SUFFIX: Final[str] = "domain-suffix"
    DOMAIN_KEYWORD: Final[str] = "domain-keyword"
    IP_CIDR: Final[str] = "ip-cidr"
    IP_CIDR6: Final[str] = "ip-cidr6"
    IP_ASN: Final[str] = "ip-asn"


ALL_KINDS: Final[frozenset[str]] = frozenset({
    RuleKind.DOMAIN,
    RuleKind.DOMAIN_SUFFIX,
    RuleKind.DOMAIN_KEYWORD,
    RuleKind.IP_CIDR,
    RuleKind.IP_CIDR6,
    RuleKind.IP_ASN,
})

#: Prefixes that mark a suffix match in YAML payloads, checked in this order
SUFFIX_PREFIXES: Final[tuple[str, ...]] = ("+.", "*.", ".")

#: Characters that rule out a domain value: URIs, ports, emails, other rule types
UNSAFE_VALUE_CHARS: Final[str] = ":@,"


# =============================================================================
# REGEX PATTERNS
# =============================================================================

#: Full-line comment (after optional leading whitespace)
COMMENT_PATTERN: Final[re.Pattern[str]] = re.compile(r"^\s*#")

#: YAML rule-provider header: "payload:" alone on the line
PAYLOAD_MARKER_PATTERN: Final[re.Pattern[str]] = re.compile(r"^\s*payload:\s*$")

#: YAML rule-provider header in any style, including "payload: [...]"
PAYLOAD_HEADER_PATTERN: Final[re.Pattern[str]] = re.compile(r"^\s*payload:")

#: YAML array item: "  - literal"
YAML_ITEM_PATTERN: Final[re.Pattern[str]] = re.compile(r"^\s*-\s+(.+)$")

#: Classical rule: "TYPE,value[,options]"
#: The type token is matched case-insensitively so that upper-casing a valid
#: line never changes how it is classified.
TEXT_RULE_PATTERN: Final[re.Pattern[str]] = re.compile(
    r"^(DOMAIN-SUFFIX|DOMAIN-KEYWORD|DOMAIN|IP-CIDR6|IP-CIDR|IP-ASN)"
    r"\s*,\s*([^,]+)",
    re.IGNORECASE,
)

#: IPv4 CIDR: 1.2.3.0/24
IPV4_CIDR_PATTERN: Final[re.Pattern[str]] = re.compile(r"^\d+\.\d+\.\d+\.\d+/\d+$")

#: IPv6 CIDR: 2001:db8::/32
IPV6_CIDR_PATTERN: Final[re.Pattern[str]] = re.compile(
    r"^[0-9a-f:]+:[0-9a-f:]*/\d+$", re.IGNORECASE
)


# =============================================================================
# DATA STRUCTURES
# =============================================================================

class NormalizedRule(NamedTuple):
    """
    A canonical rule.

    Attributes:
        kind: One of the RuleKind values
        value: Lower-cased, trimmed, quote-free value

    Example:
        >>> rule = NormalizedRule("domain-suffix", "example.com")
        >>> rule.serialize()
        'domain-suffix,example.com'
    """
    kind: str
    value: str

    def serialize(self) -> str:
        """Render as ``kind,value``, the form compared against allowlists."""
        return f"{self.kind},{self.value}"


class NormalizeStats(NamedTuple):
    """
    Statistics from normalizing a batch of lines.

    Attributes:
        total_lines: Lines seen
        kept_lines: Lines that produced a rule
        comments_removed: Comment and blank lines
        markers_removed: "payload:" header lines
        keywords_removed: DOMAIN-KEYWORD rules
        unrecognized_removed: Lines no form could classify
    """
    total_lines: int
    kept_lines: int
    comments_removed: int
    markers_removed: int
    keywords_removed: int
    unrecognized_removed: int


# =============================================================================
# NORMALIZATION FUNCTIONS
# =============================================================================

def normalize_text(line: str) -> str:
    """
    Shared text primitive: strip quotes, trim whitespace, lower-case.

    Used for both rule lines and allowlist entries so that the exact-match
    filter compares strings produced by the same transform.

    Example:
        >>> normalize_text("  'DOMAIN,Ads.Example.com'  ")
        'domain,ads.example.com'
    """
    return line.replace("'", "").strip().lower()


def is_comment(line: str) -> bool:
    """
    Check if a quote-stripped line is blank or a comment.

    Example:
        >>> is_comment("   # upstream: example")
        True
        >>> is_comment("")
        True
        >>> is_comment("DOMAIN,example.com")
        False
    """
    return not line.strip() or bool(COMMENT_PATTERN.match(line))


def strip_suffix_prefix(value: str) -> str:
    """
    Remove one leading "+.", "*." or "." marker.

    Example:
        >>> strip_suffix_prefix("+.example.com")
        'example.com'
        >>> strip_suffix_prefix("example.com")
        'example.com'
    """
    for prefix in SUFFIX_PREFIXES:
        if value.startswith(prefix):
            return value[len(prefix):]
    return value


def classify_literal(literal: str) -> NormalizedRule | None:
    """
    Classify a lower-cased YAML payload literal.

    Example:
        >>> classify_literal("*.example.com")
        NormalizedRule(kind='domain-suffix', value='example.com')
        >>> classify_literal("user@example.com") is None
        True
    """
    if IPV4_CIDR_PATTERN.match(literal):
        return NormalizedRule(RuleKind.IP_CIDR, literal)
    if IPV6_CIDR_PATTERN.match(literal):
        return NormalizedRule(RuleKind.IP_CIDR6, literal)
    for prefix in SUFFIX_PREFIXES:
        if literal.startswith(prefix):
            return NormalizedRule(RuleKind.DOMAIN_SUFFIX, literal[len(prefix):])
    if not any(c in literal for c in UNSAFE_VALUE_CHARS):
        return NormalizedRule(RuleKind.DOMAIN, literal)
    return None


def classify_bare(line: str) -> NormalizedRule | None:
    """Classify a bare domain or CIDR line (last-resort form)."""
    if IPV4_CIDR_PATTERN.match(line):
        return NormalizedRule(RuleKind.IP_CIDR, line)
    if IPV6_CIDR_PATTERN.match(line):
        return NormalizedRule(RuleKind.IP_CIDR6, line)
    if line and not any(c in line for c in UNSAFE_VALUE_CHARS):
        return NormalizedRule(RuleKind.DOMAIN, line)
    return None


def _normalize(line: str) -> tuple[NormalizedRule | None, str | None]:
    """Return (rule, discard_reason); exactly one of the two is None."""
    line = line.replace("'", "")

    if is_comment(line):
        return None, "comment"

    if PAYLOAD_MARKER_PATTERN.match(line):
        return None, "marker"

    # Format 1: YAML array item
    match = YAML_ITEM_PATTERN.match(line)
    if match:
        literal = match.group(1).strip().lower()
        rule = classify_literal(literal)
        return (rule, None) if rule else (None, "unrecognized")

    # Format 2: classical TYPE,value
    match = TEXT_RULE_PATTERN.match(line)
    if match:
        kind = match.group(1).lower()
        if kind == RuleKind.DOMAIN_KEYWORD:
            return None, "keyword"
        value = match.group(2).strip().lower()
        return NormalizedRule(kind, value), None

    # Format 3: bare domain / CIDR
    rule = classify_bare(line.strip().lower())
    return (rule, None) if rule else (None, "unrecognized")


def normalize_line(line: str) -> NormalizedRule | None:
    """
    Normalize one raw line in any supported convention.

    Args:
        line: Raw source line (trailing newline allowed)

    Returns:
        The canonical rule, or None when the line is noise, a keyword rule,
        or can't be classified

    Example:
        >>> normalize_line("DOMAIN-SUFFIX,Example.COM")
        NormalizedRule(kind='domain-suffix', value='example.com')
        >>> normalize_line("  - '+.example.com'")
        NormalizedRule(kind='domain-suffix', value='example.com')
        >>> normalize_line("DOMAIN-KEYWORD,ads") is None
        True
    """
    rule, _ = _normalize(line)
    return rule


def normalize_lines(lines: Iterable[str]) -> tuple[list[NormalizedRule], NormalizeStats]:
    """
    Normalize a sequence of lines, preserving input order.

    Args:
        lines: Raw lines from any mix of sources

    Returns:
        Tuple of (rules, stats)

    Example:
        >>> rules, stats = normalize_lines(["payload:", "  - 'a.com'", "# x"])
        >>> rules
        [NormalizedRule(kind='domain', value='a.com')]
        >>> stats.markers_removed, stats.comments_removed
        (1, 1)
    """
    rules: list[NormalizedRule] = []
    counts = {
        "total": 0,
        "comment": 0,
        "marker": 0,
        "keyword": 0,
        "unrecognized": 0,
    }

    for line in lines:
        counts["total"] += 1
        rule, reason = _normalize(line)
        if rule is None:
            counts[reason] += 1  # type: ignore[index]
        else:
            rules.append(rule)

    return rules, NormalizeStats(
        total_lines=counts["total"],
        kept_lines=len(rules),
        comments_removed=counts["comment"],
        markers_removed=counts["marker"],
        keywords_removed=counts["keyword"],
        unrecognized_removed=counts["unrecognized"],
    )


def detect_format(text: str) -> str:
    """
    Report the source convention of a downloaded body.

    Returns "yaml" if any line starts a rule-provider "payload:" key (block
    or flow style), otherwise "text".
    """
    for line in text.splitlines():
        if PAYLOAD_HEADER_PATTERN.match(line):
            return "yaml"
    return "text"


def payload_item_line(item: object) -> str | None:
    """
    Turn one parsed payload item back into a line the parser understands.

    Classical items pass through unchanged; literals are re-emitted as YAML
    array items so they keep their prefix semantics.

    Example:
        >>> payload_item_line("DOMAIN-SUFFIX,example.com")
        'DOMAIN-SUFFIX,example.com'
        >>> payload_item_line("+.example.com")
        '- +.example.com'
    """
    if item is None:
        return None
    text = str(item).strip()
    if not text:
        return None
    if TEXT_RULE_PATTERN.match(text):
        return text
    return f"- {text}"


def split_source(text: str) -> tuple[list[str], str]:
    """
    Split a downloaded body into parser lines.

    YAML rule providers are loaded with a real YAML parser so that classical
    payloads, double quotes and flow-style lists come out as plain items.
    A body that fails to load, or has no payload list, falls back to its
    raw lines.

    Returns:
        Tuple of (lines, format) where format is "yaml", "text" or "raw"
    """
    if detect_format(text) != "yaml":
        return text.splitlines(), "text"

    try:
        document = yaml.safe_load(text)
    except yaml.YAMLError:
        return text.splitlines(), "raw"

    if not isinstance(document, dict) or "payload" not in document:
        return text.splitlines(), "raw"

    payload = document["payload"]
    if payload is None:
        return [], "yaml"
    if not isinstance(payload, list):
        return text.splitlines(), "raw"

    lines = []
    for item in payload:
        line = payload_item_line(item)
        if line is not None:
            lines.append(line)
    return lines, "yaml"
