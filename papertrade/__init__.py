"""Paper-trading application: quote sources, Upstash storage, config and the web API."""

__version__ = "0.1.0"
