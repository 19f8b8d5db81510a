"""Quarry code indexer: workspace scanning, job lifecycle and code search."""
