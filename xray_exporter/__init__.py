"""Prometheus exporter for Xray traffic and online-user statistics."""

__version__ = "0.1.0"
