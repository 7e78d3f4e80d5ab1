#!/usr/bin/env python3
"""
pipeline.py

Main processing pipeline for Clash domain rule sets.

Usage:
    python -m clashrules.pipeline --root . --outdir . [--category reject ...]

Per category, given <root>/<category>/{sources.list, rules.txt, exclude.txt}:
1. Download every source URL (concurrently, failures are non-fatal) and
   unpack YAML rule-provider payloads into parser lines
2. Append the manual rules from rules.txt
3. Normalize every line to a canonical rule
4. Compile: apply exclude.txt, deduplicate, project to domain format
5. Write final_<category>.yaml

Categories are independent and run concurrently.
"""
from __future__ import annotations

import argparse
import asyncio
import sys
import time
import traceback
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Awaitable, Callable

import aiofiles

from clashrules.allowlist import load_allowlist
from clashrules.compiler import CompileStats, compile_domains, render_payload
from clashrules.downloader import (
    DEFAULT_CONCURRENCY,
    DEFAULT_RETRIES,
    DEFAULT_TIMEOUT,
    FetchResult,
    fetch_all,
    load_sources,
    read_local_lines,
)
from clashrules.normalizer import NormalizeStats, normalize_lines, split_source


DEFAULT_CATEGORIES = ("reject", "proxy", "direct", "microsoft")

SOURCES_FILE = "sources.list"
RULES_FILE = "rules.txt"
EXCLUDE_FILE = "exclude.txt"

#: fetcher(urls, concurrency, timeout, retries) -> results in url order
Fetcher = Callable[[list[str], int, float, int], Awaitable[list[FetchResult]]]


@dataclass(frozen=True)
class Category:
    """Where one category's inputs live."""
    name: str
    sources_file: Path
    rules_file: Path
    exclude_file: Path

    @classmethod
    def from_root(cls, root: Path, name: str) -> Category:
        """Standard layout: <root>/<name>/{sources.list,rules.txt,exclude.txt}."""
        base = Path(root) / name
        return cls(
            name=name,
            sources_file=base / SOURCES_FILE,
            rules_file=base / RULES_FILE,
            exclude_file=base / EXCLUDE_FILE,
        )


def default_categories(root: Path, names: tuple[str, ...] | list[str] = DEFAULT_CATEGORIES) -> list[Category]:
    """Build category descriptors for the standard on-disk layout."""
    return [Category.from_root(root, name) for name in names]


@dataclass
class CategoryReport:
    """Outcome of building one category."""
    name: str
    output_file: Path | None = None
    sources_total: int = 0
    sources_failed: int = 0
    sources_missing: bool = False
    manual_lines: int = 0
    lines_raw: int = 0
    normalize: NormalizeStats | None = None
    compile: CompileStats = field(default_factory=CompileStats)
    entries: list[str] = field(default_factory=list)
    error: str | None = None

    @property
    def domain_count(self) -> int:
        return len(self.entries)


class RulesPipeline:
    """
    Builds the domain rule set for each configured category.

    Args:
        categories: Ordered category descriptors
        output_dir: Where final_<category>.yaml files are written
        fetcher: Source downloader; defaults to downloader.fetch_all
        timeout: Per-request timeout in seconds
        retries: Max attempts per source URL
        concurrency: Max concurrent downloads per category
    """

    def __init__(
        self,
        categories: list[Category],
        output_dir: Path,
        fetcher: Fetcher | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        retries: int = DEFAULT_RETRIES,
        concurrency: int = DEFAULT_CONCURRENCY,
    ) -> None:
        self.categories = list(categories)
        self.output_dir = Path(output_dir)
        self.fetcher = fetcher or fetch_all
        self.timeout = timeout
        self.retries = retries
        self.concurrency = concurrency

    async def run(self) -> list[CategoryReport]:
        """Process all categories concurrently; reports follow category order."""
        results = await asyncio.gather(
            *(self.process_category(category) for category in self.categories),
            return_exceptions=True,
        )

        reports = []
        for category, result in zip(self.categories, results):
            if isinstance(result, BaseException):
                print(f"❌ [{category.name}] {type(result).__name__}: {result}", file=sys.stderr)
                reports.append(CategoryReport(category.name, error=str(result) or type(result).__name__))
            else:
                reports.append(result)
        return reports

    async def collect_lines(self, category: Category, report: CategoryReport) -> list[str]:
        """Downloaded lines in source-list order, followed by manual rules."""
        tag = f"[{category.name}]"
        raw_lines: list[str] = []

        urls = await load_sources(category.sources_file)
        if urls is None:
            report.sources_missing = True
            print(f"⚠️  {tag} {category.sources_file} not found, skipping downloads", file=sys.stderr)
        else:
            report.sources_total = len(urls)
            results = await self.fetcher(urls, self.concurrency, self.timeout, self.retries)
            for result in results:
                if not result.ok:
                    report.sources_failed += 1
                    print(f"⚠️  {tag} Failed: {result.url} ({result.error})", file=sys.stderr)
                    continue
                lines, fmt = split_source(result.text())
                if fmt == "raw":
                    print(f"⚠️  {tag} {result.url}: YAML parse failed, using raw lines", file=sys.stderr)
                print(f"   {tag} {result.url} -> {len(lines):,} lines ({fmt})")
                raw_lines.extend(lines)

        manual = await read_local_lines(category.rules_file)
        if manual:
            report.manual_lines = len(manual)
            raw_lines.extend(manual)
            print(f"   {tag} Added {len(manual):,} manual lines from {category.rules_file.name}")

        report.lines_raw = len(raw_lines)
        return raw_lines

    async def process_category(self, category: Category) -> CategoryReport:
        """Run the full pipeline for one category and write its output."""
        report = CategoryReport(category.name)
        tag = f"[{category.name}]"
        print(f"📖 {tag} Collecting rules...")

        raw_lines = await self.collect_lines(category, report)

        rules, report.normalize = normalize_lines(raw_lines)
        allowlist = await load_allowlist(category.exclude_file)
        report.entries, report.compile = compile_domains(rules, allowlist)

        print(
            f"⚙️  {tag} {report.compile.normalized:,} rules, "
            f"{report.compile.excluded:,} excluded, "
            f"{report.compile.output:,} domains"
        )

        report.output_file = await self.write_output(category, report.entries)
        print(f"✅ {tag} Generated {report.output_file}")
        return report

    async def write_output(self, category: Category, entries: list[str]) -> Path:
        """Write final_<category>.yaml."""
        self.output_dir.mkdir(parents=True, exist_ok=True)
        output_path = self.output_dir / f"final_{category.name}.yaml"
        document = render_payload(category.name, entries, datetime.now(timezone.utc))
        async with aiofiles.open(output_path, "w", encoding="utf-8", newline="\n") as f:
            await f.write(document)
        return output_path


def print_summary(reports: list[CategoryReport]) -> None:
    """Print formatted summary."""
    print("\n" + "=" * 60)
    print("📊 BUILD SUMMARY")
    print("=" * 60)

    for report in reports:
        print(f"\n📁 {report.name.upper()}")
        if report.error:
            print(f"   ❌ Failed: {report.error}")
            continue

        if report.sources_missing:
            print("   Sources:      (no sources.list)")
        else:
            ok = report.sources_total - report.sources_failed
            print(f"   Sources:      {ok}/{report.sources_total} downloaded")
        print(f"   Raw lines:    {report.lines_raw:>10,} (incl. {report.manual_lines:,} manual)")

        stats = report.compile
        print(f"   Normalized:   {stats.normalized:>10,}")
        if report.normalize is not None:
            print(f"   Keywords:     {report.normalize.keywords_removed:>10,} (dropped)")
            print(f"   Unrecognized: {report.normalize.unrecognized_removed:>10,}")
        print(f"   Excluded:     {stats.excluded:>10,}")
        print(f"   Unique:       {stats.unique:>10,}")
        print(f"   Non-domain:   {stats.dropped_non_domain:>10,} (dropped)")
        print(f"   Domains:      {report.domain_count:>10,} -> {report.output_file}")


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(description="Build Clash domain rule sets")
    parser.add_argument("--root", default=".", help="Directory holding one folder per category")
    parser.add_argument("--outdir", default=None, help="Output directory (defaults to --root)")
    parser.add_argument(
        "--category",
        action="append",
        dest="categories",
        help=f"Category to build; repeatable (default: {', '.join(DEFAULT_CATEGORIES)})",
    )
    parser.add_argument("--concurrency", type=int, default=DEFAULT_CONCURRENCY, help="Max concurrent downloads per category")
    parser.add_argument("--timeout", type=int, default=DEFAULT_TIMEOUT, help="Request timeout in seconds")
    parser.add_argument("--retries", type=int, default=DEFAULT_RETRIES, help="Max attempts per source URL")

    args = parser.parse_args(argv)

    root = Path(args.root)
    output_dir = Path(args.outdir) if args.outdir else root
    names = args.categories or list(DEFAULT_CATEGORIES)

    try:
        print("🚀 Starting Clash rules build...")
        print("-" * 60)

        start_time = time.time()
        pipeline = RulesPipeline(
            default_categories(root, names),
            output_dir,
            timeout=args.timeout,
            retries=args.retries,
            concurrency=args.concurrency,
        )
        reports = asyncio.run(pipeline.run())
        total_time = time.time() - start_time

        print_summary(reports)
        print(f"\n⏱️  Total time: {total_time:.1f}s")

        if reports and all(r.error for r in reports):
            print("❌ Every category failed", file=sys.stderr)
            return 1

        print("✅ Build completed!")
        return 0

    except Exception as e:
        print(f"\n❌ ERROR: {e}", file=sys.stderr)
        traceback.print_exc()
        return 1


if __name__ == "__main__":
    sys.exit(main())
