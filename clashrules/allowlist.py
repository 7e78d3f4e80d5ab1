#!/usr/bin/env python3
"""
allowlist.py - Per-category exclusion of canonical rules

Each category may ship an ``exclude.txt``. Its entries are normalized with the
same text primitive as rule lines and compared against a rule's serialized
``kind,value`` form by exact, whole-string equality. There is no substring or
parent-domain matching: excluding ``domain,ads.example.com`` leaves
``domain,ads.example.com.evil`` and ``domain-suffix,ads.example.com`` alone.

Entries may be written in any supported source convention. Besides the
normalized line itself, the line's canonical form is added when it parses:

    DOMAIN,Ads.Example.com   →  {"domain,ads.example.com"}
    - '+.example.com'        →  {"- +.example.com", "domain-suffix,example.com"}
    ads.example.com          →  {"ads.example.com", "domain,ads.example.com"}
"""
from __future__ import annotations

from pathlib import Path
from typing import Iterable

from clashrules.downloader import read_local_lines
from clashrules.normalizer import (
    NormalizedRule,
    is_comment,
    normalize_line,
    normalize_text,
)


def build_allowlist(raw_lines: Iterable[str]) -> frozenset[str]:
    """
    Build the normalized exclusion set from raw exclude lines.

    Comments and blank lines are dropped.

    Example:
        >>> sorted(build_allowlist(["# keep", "", "DOMAIN,Ads.Example.com"]))
        ['domain,ads.example.com']
    """
    entries: set[str] = set()
    for line in raw_lines:
        text = normalize_text(line)
        if is_comment(text):
            continue
        entries.add(text)
        rule = normalize_line(line)
        if rule is not None:
            entries.add(rule.serialize())
    return frozenset(entries)


def filter_rules(
    rules: list[NormalizedRule],
    allowlist: frozenset[str],
) -> tuple[list[NormalizedRule], int]:
    """
    Remove rules whose serialized form is in the allowlist.

    Returns:
        Tuple of (kept_rules, removed_count). Input order is preserved.
    """
    if not allowlist:
        return list(rules), 0

    kept = [rule for rule in rules if rule.serialize() not in allowlist]
    return kept, len(rules) - len(kept)


async def load_allowlist(path: Path) -> frozenset[str]:
    """Load ``exclude.txt``; a missing file means an empty allowlist."""
    lines = await read_local_lines(path)
    if lines is None:
        return frozenset()
    return build_allowlist(lines)
