"""Durable storage helpers for index snapshots."""

from .files import FileTransaction

__all__ = ["FileTransaction"]
