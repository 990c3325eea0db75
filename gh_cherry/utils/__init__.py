"""Shared utilities: logging setup, retry policy, subprocess and text helpers."""
