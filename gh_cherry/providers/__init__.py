"""Capability interfaces and their implementations."""

from gh_cherry.providers.base import CodeHostProvider, GitRepository

__all__ = ["CodeHostProvider", "GitRepository"]
