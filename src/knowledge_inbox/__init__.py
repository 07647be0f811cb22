"""Queue-backed enrichment pipeline for articles, companies and notes."""

__version__ = "0.1.0"
