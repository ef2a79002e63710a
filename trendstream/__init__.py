"""Sliding-window trending search queries, with WSGI apps for trends and admin."""

__version__ = "0.1.0"