"""Repositories."""

from .session_repository import SessionRepository

__all__ = ["SessionRepository"]
