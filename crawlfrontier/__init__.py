"""Crawl frontier with per-host politeness and robots.txt compliance."""

__version__ = "0.1.0"
