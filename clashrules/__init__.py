"""
clashrules package - Clash Domain Rule Set Builder

Modules:
    normalizer: Parse source lines into canonical rules
    allowlist: Per-category exact-match exclusion
    compiler: Deduplicate and project rules to domain format
    downloader: Fetch rule sources concurrently
    pipeline: Main processing pipeline
"""

__version__ = "1.0.0"
