"""
Adapters package for the exporter.

Contains the HTTP client wrapper used to execute stored queries against a
client's upstream endpoint. Keep adapters thin and side-effect free outside
of explicit calls.
"""

from .upstream_client import UpstreamClient

__all__ = ["UpstreamClient"]
