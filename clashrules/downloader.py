#!/usr/bin/env python3
"""
downloader.py - Async Rule Source Downloader

Fetches rule source URLs concurrently and returns their bodies in memory.
Nothing is cached between runs: a source that fails contributes nothing and
the failure reason is kept on the result for the build log.

Usage:
    python -m clashrules.downloader --sources reject/sources.list
"""
from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path
from typing import NamedTuple

import aiofiles
import aiohttp


# Default configuration
DEFAULT_TIMEOUT = 30
DEFAULT_RETRIES = 1
DEFAULT_CONCURRENCY = 8


class FetchResult(NamedTuple):
    """Result of a single fetch operation."""
    url: str
    content: bytes | None
    error: str | None = None
    attempts: int = 1

    @property
    def ok(self) -> bool:
        """True when the source produced a non-empty body."""
        return self.error is None and bool(self.content)

    def text(self) -> str:
        """Decode the body, tolerating a BOM and bad bytes."""
        if not self.content:
            return ""
        return self.content.decode("utf-8-sig", errors="replace")


async def read_local_lines(path: Path) -> list[str] | None:
    """Read a local text file into lines, or None if it doesn't exist."""
    if not path.is_file():
        return None
    async with aiofiles.open(path, encoding="utf-8-sig", errors="replace") as f:
        content = await f.read()
    return content.splitlines()


async def load_sources(sources_file: Path) -> list[str] | None:
    """
    Load URLs from a sources.list, skipping comments and empty lines.

    Returns None when the file is missing so callers can tell "no file"
    from "no URLs".
    """
    lines = await read_local_lines(sources_file)
    if lines is None:
        return None

    urls = []
    for line in lines:
        line = line.strip()
        # Skip empty lines and comments
        if not line or line.startswith("#"):
            continue
        urls.append(line)
    return urls


async def fetch_url(
    session: aiohttp.ClientSession,
    url: str,
    timeout: float,
    retries: int,
) -> FetchResult:
    """
    Fetch a single URL.

    Args:
        retries: Maximum number of attempts (1 = no retry)

    Returns:
        FetchResult with the body, or with the reason it failed
    """
    attempts = max(retries, 1)
    error = "Max retries exceeded"

    for attempt in range(attempts):
        try:
            async with session.get(
                url,
                timeout=aiohttp.ClientTimeout(total=timeout),
                allow_redirects=True,
            ) as response:

                if response.status >= 400:
                    error = f"HTTP {response.status}"
                    # Client errors won't fix themselves
                    if response.status < 500 or attempt == attempts - 1:
                        return FetchResult(url, None, error, attempt + 1)
                    await asyncio.sleep(2 ** attempt)  # Exponential backoff
                    continue

                content = await response.read()
                if not content:
                    return FetchResult(url, None, "Empty response", attempt + 1)
                return FetchResult(url, content, None, attempt + 1)

        except asyncio.TimeoutError:
            error = "Timeout"
        except aiohttp.ClientError as e:
            error = str(e) or type(e).__name__

        if attempt < attempts - 1:
            await asyncio.sleep(2 ** attempt)

    return FetchResult(url, None, error, attempts)


async def fetch_all(
    urls: list[str],
    concurrency: int = DEFAULT_CONCURRENCY,
    timeout: float = DEFAULT_TIMEOUT,
    retries: int = DEFAULT_RETRIES,
) -> list[FetchResult]:
    """Fetch all URLs concurrently; results follow the order of ``urls``."""
    if not urls:
        return []

    # Create semaphore for concurrency control
    semaphore = asyncio.Semaphore(concurrency)

    async def fetch_with_semaphore(url: str) -> FetchResult:
        async with semaphore:
            return await fetch_url(session, url, timeout, retries)

    connector = aiohttp.TCPConnector(limit=concurrency, limit_per_host=2)
    async with aiohttp.ClientSession(connector=connector) as session:
        tasks = [fetch_with_semaphore(url) for url in urls]
        results = await asyncio.gather(*tasks, return_exceptions=True)

    # Handle exceptions in results
    final_results = []
    for i, result in enumerate(results):
        if isinstance(result, Exception):
            final_results.append(FetchResult(urls[i], None, str(result) or type(result).__name__))
        else:
            final_results.append(result)

    return final_results


def main() -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(description="Fetch rule sources and report their status")
    parser.add_argument("--sources", required=True, help="Path to sources.list file")
    parser.add_argument("--concurrency", type=int, default=DEFAULT_CONCURRENCY, help="Max concurrent downloads")
    parser.add_argument("--timeout", type=int, default=DEFAULT_TIMEOUT, help="Request timeout in seconds")
    parser.add_argument("--retries", type=int, default=DEFAULT_RETRIES, help="Max attempts per URL")

    args = parser.parse_args()

    urls = asyncio.run(load_sources(Path(args.sources)))
    if urls is None:
        print(f"ERROR: Sources file not found: {args.sources}", file=sys.stderr)
        return 1
    if not urls:
        print("No URLs found in sources file", file=sys.stderr)
        return 1

    print(f"🔄 Fetching {len(urls)} sources...")

    results = asyncio.run(fetch_all(urls, args.concurrency, args.timeout, args.retries))

    for r in results:
        if r.ok:
            print(f"   ✓ {r.url} ({len(r.content or b''):,} bytes)")
        else:
            print(f"   ⚠️  {r.url}: {r.error}", file=sys.stderr)

    failed = sum(1 for r in results if not r.ok)
    print(f"✅ Fetched: {len(results) - failed}/{len(urls)}")

    # Return error if too many failures (>50%)
    if failed > len(urls) // 2:
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
