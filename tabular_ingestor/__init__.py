"""Tabular file ingestion pipeline: scan, dedup, queue, score and persist."""

__version__ = "0.1.0"
