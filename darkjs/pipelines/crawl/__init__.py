"""
Crawl pipeline.
Bounded, sequential traversal of script, module and sourcemap references.
"""

from .runner import CrawlRunner, CrawlState, parse_sourcemap

__all__ = ["CrawlRunner", "CrawlState", "parse_sourcemap"]
