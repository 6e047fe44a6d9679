"""Networked portfolio store backends."""

from .upstash import UpstashRedisStore

__all__ = ["UpstashRedisStore"]
