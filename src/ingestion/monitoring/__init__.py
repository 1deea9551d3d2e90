"""Logging setup and context helpers for ingestion runs."""
