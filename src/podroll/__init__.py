"""Podroll - podcast roll sync engine.

Mirrors podcast episodes and OPML feed listings from a remote
aggregator into a local cache and serves them over a read-only API.
"""

__version__ = "0.1.0"
