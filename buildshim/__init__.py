"""Chunked read-ahead prefetching and packet-stream multiplexing for build proxies."""

__version__ = "0.1.0"

__all__ = [
    "cache",
    "context",
    "demux",
    "errors",
    "filters",
    "messages",
    "pipeline",
    "prefetch",
    "resolver",
    "stage",
    "stdio",
]