#!/usr/bin/env python3
"""
compiler.py - Rule Set Compiler: Deduplication and Domain Projection

This module takes canonical rules for one category and produces the final,
sorted domain payload for a Clash rule-provider with ``behavior: domain``.

PIPELINE:
    filter (allowlist) → dedup → project → dedup → sort

PROJECTION:
    The domain behavior only understands two spellings, so every surviving
    rule is mapped onto one of them:

        domain,example.com          →  example.com
        domain-suffix,example.com   →  +.example.com
        ip-cidr / ip-cidr6 / ip-asn →  (dropped)
        domain-keyword              →  (dropped)

    Projection strips "+.", "*." and "." from suffix values again before
    re-prefixing. Rules that reach this stage from a path other than the
    normalizer may still carry a prefix.

DEDUPLICATION:
    Done twice. Canonical dedup is keyed on the full (kind, value) pair, so
    ``domain,x.com`` and ``domain-suffix,x.com`` are distinct. After
    projection, different canonical rules can collapse into the same string,
    so the output is deduplicated again.
"""

from __future__ import annotations

import sys
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterable

from clashrules import __version__
from clashrules.allowlist import filter_rules
from clashrules.normalizer import NormalizedRule, RuleKind, strip_suffix_prefix

# ============================================================================
# CONFIGURATION
# ============================================================================

GENERATOR = "clash-rules-builder"

HEADER_RULE = "#" * 41


# ============================================================================
# DATA STRUCTURES
# ============================================================================

@dataclass
class CompileStats:
    """Statistics from compilation."""
    normalized: int = 0
    excluded: int = 0
    unique: int = 0
    dropped_non_domain: int = 0
    collapsed: int = 0
    output: int = 0


# ============================================================================
# DEDUP / PROJECTION
# ============================================================================

def dedup(rules: Iterable[NormalizedRule]) -> frozenset[NormalizedRule]:
    """Collapse rules to a set keyed on (kind, value)."""
    return frozenset(rules)


def project_rule(rule: NormalizedRule) -> str | None:
    """
    Map a canonical rule to its domain-behavior spelling.

    Example:
        >>> project_rule(NormalizedRule("domain-suffix", "*.example.com"))
        '+.example.com'
        >>> project_rule(NormalizedRule("ip-cidr", "1.2.3.0/24")) is None
        True
    """
    if rule.kind == RuleKind.DOMAIN:
        return rule.value
    if rule.kind == RuleKind.DOMAIN_SUFFIX:
        return "+." + strip_suffix_prefix(rule.value)
    return None


def project_rules(rules: Iterable[NormalizedRule]) -> list[str]:
    """Project, deduplicate and sort."""
    projected = {project_rule(rule) for rule in rules}
    projected.discard(None)
    return sorted(projected)  # type: ignore[arg-type]


# ============================================================================
# MAIN COMPILATION
# ============================================================================

def compile_domains(
    rules: list[NormalizedRule],
    allowlist: frozenset[str],
) -> tuple[list[str], CompileStats]:
    """
    Compile canonical rules into the sorted final payload.

    Args:
        rules: Canonical rules, downloaded and manual, in source order
        allowlist: Normalized exclusion set for the category

    Returns:
        Tuple of (entries, stats)
    """
    stats = CompileStats(normalized=len(rules))

    kept, stats.excluded = filter_rules(rules, allowlist)

    unique = dedup(kept)
    stats.unique = len(unique)

    domain_rules = [
        rule for rule in unique
        if rule.kind in (RuleKind.DOMAIN, RuleKind.DOMAIN_SUFFIX)
    ]
    stats.dropped_non_domain = stats.unique - len(domain_rules)

    entries = project_rules(domain_rules)
    stats.collapsed = len(domain_rules) - len(entries)
    stats.output = len(entries)

    return entries, stats


def render_payload(
    category: str,
    entries: list[str],
    generated_at: datetime | None = None,
) -> str:
    """
    Render the rule-provider document for one category.

    The header is comment lines only; the domain count is the number of
    payload items.
    """
    if generated_at is None:
        generated_at = datetime.now(timezone.utc)
    timestamp = generated_at.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")

    lines = [
        HEADER_RULE,
        f"# Generator: {GENERATOR} {__version__}",
        f"# Updated: {timestamp}",
        f"# Category: {category.upper()} (behavior: domain)",
        f"# Domains: {len(entries)}",
        HEADER_RULE,
        "payload:",
    ]
    lines.extend(f"  - '{entry}'" for entry in entries)
    return "\n".join(lines) + "\n"


# ============================================================================
# MAIN
# ============================================================================

if __name__ == "__main__":
    from clashrules.normalizer import normalize_lines

    if len(sys.argv) < 2:
        print("Usage: python -m clashrules.compiler <input_file> [category]")
        sys.exit(1)

    input_file = sys.argv[1]
    category = sys.argv[2] if len(sys.argv) > 2 else "custom"

    with open(input_file, encoding="utf-8-sig", errors="replace") as f:
        rules, _ = normalize_lines(f)

    entries, stats = compile_domains(rules, frozenset())
    sys.stdout.write(render_payload(category, entries))

    print(f"\nCompilation complete:", file=sys.stderr)
    print(f"  Input:   {stats.normalized:,} rules", file=sys.stderr)
    print(f"  Unique:  {stats.unique:,}", file=sys.stderr)
    print(f"  Output:  {stats.output:,} domains", file=sys.stderr)
