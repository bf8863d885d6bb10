"""Utility helpers for tabular_ingestor."""
