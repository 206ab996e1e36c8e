"""Append-only persistence, locking and workspace isolation."""
