"""Tests for allowlist construction and exact-match rule filtering."""

from __future__ import annotations

from pathlib import Path

import pytest

from clashrules.allowlist import build_allowlist, filter_rules, load_allowlist
from clashrules.normalizer import NormalizedRule, RuleKind, normalize_lines


def domain(value: str) -> NormalizedRule:
    return NormalizedRule(RuleKind.DOMAIN, value)


def suffix(value: str) -> NormalizedRule:
    return NormalizedRule(RuleKind.DOMAIN_SUFFIX, value)


# ─── build_allowlist ───────────────────────────────────────────────────────────


class TestBuildAllowlist:
    def test_comments_and_blanks_dropped(self):
        allowlist = build_allowlist(["# why", "   ", "", "'  '"])
        assert allowlist == frozenset()

    def test_case_and_quotes_normalized(self):
        allowlist = build_allowlist(["'DOMAIN,Ads.Example.COM'"])
        assert "domain,ads.example.com" in allowlist

    def test_yaml_entry_adds_canonical_form(self):
        allowlist = build_allowlist(["  - '+.example.com'"])
        assert "domain-suffix,example.com" in allowlist

    def test_bare_entry_adds_domain_form(self):
        allowlist = build_allowlist(["Ads.Example.com"])
        assert allowlist == frozenset({"ads.example.com", "domain,ads.example.com"})

    def test_keyword_entry_kept_as_text(self):
        assert build_allowlist(["DOMAIN-KEYWORD,ads"]) == frozenset({"domain-keyword,ads"})


# ─── filter_rules ──────────────────────────────────────────────────────────────


class TestFilterRules:
    def test_exact_match_only(self):
        rules = [domain("ads.example.com"), domain("ads.example.com.evil")]
        kept, removed = filter_rules(rules, frozenset({"domain,ads.example.com"}))
        assert kept == [domain("ads.example.com.evil")]
        assert removed == 1

    def test_kind_sensitive(self):
        rules = [domain("x.com"), suffix("x.com")]
        kept, removed = filter_rules(rules, build_allowlist(["DOMAIN-SUFFIX,X.com"]))
        assert kept == [domain("x.com")]
        assert removed == 1

    def test_no_parent_matching(self):
        rules = [suffix("sub.example.com")]
        kept, removed = filter_rules(rules, build_allowlist(["DOMAIN-SUFFIX,example.com"]))
        assert kept == rules
        assert removed == 0

    def test_empty_allowlist_is_identity(self):
        rules = [domain("a.com"), domain("a.com"), suffix("b.com")]
        kept, removed = filter_rules(rules, frozenset())
        assert kept == rules
        assert kept is not rules
        assert removed == 0

    def test_removes_all_duplicates(self):
        rules = [domain("a.com"), domain("a.com"), domain("b.com")]
        kept, removed = filter_rules(rules, frozenset({"domain,a.com"}))
        assert kept == [domain("b.com")]
        assert removed == 2

    def test_same_normalization_both_sides(self):
        # Mixed spellings on both sides still meet on the canonical form
        rules, _ = normalize_lines(["- '*.Tracker.net'", "DOMAIN,Keep.net"])
        kept, removed = filter_rules(rules, build_allowlist(["DOMAIN-SUFFIX,TRACKER.NET"]))
        assert kept == [domain("keep.net")]
        assert removed == 1


# ─── load_allowlist ────────────────────────────────────────────────────────────


class TestLoadAllowlist:
    @pytest.mark.asyncio
    async def test_missing_file(self, tmp_path: Path):
        assert await load_allowlist(tmp_path / "exclude.txt") == frozenset()

    @pytest.mark.asyncio
    async def test_reads_file(self, tmp_path: Path):
        path = tmp_path / "exclude.txt"
        path.write_text("# allow\nDOMAIN,ads.example.com\n", encoding="utf-8")
        assert await load_allowlist(path) == frozenset({"domain,ads.example.com"})
