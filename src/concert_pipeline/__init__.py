"""Batch jobs that fill and curate the classical ``concerts`` catalog."""

__version__ = "0.1.0"
