"""
Exception hierarchy for the template linkage engine.

Three kinds of failure are distinguished:
- ValidationError: the requested link is inconsistent and can be fixed by
  the operator. Nothing has been written yet.
- IntegrityError: a linkage invariant is broken (for example an audit
  update for an entity that was never recorded). Fatal for the request.
- TransportError: the database is unavailable or timed out. Re-dispatch
  is the caller's responsibility.
"""
from typing import Optional


class LinkageError(Exception):
    """Base exception for all linkage engine errors."""


class ValidationError(LinkageError):
    """A candidate template set failed pre-flight validation."""

    def __init__(self, reason: str, message: Optional[str] = None):
        self.reason = reason
        super().__init__(message or reason)


class IntegrityError(LinkageError):
    """A linkage invariant does not hold."""


class TransportError(LinkageError):
    """The relational store could not be reached."""
