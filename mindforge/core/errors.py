"""
Mindforge — Errors & Tagged Results
===================================
Exception taxonomy for oracle-dependent steps, plus the ``Ok`` / ``Fallback``
pair every oracle call site branches on.

Oracle exceptions are raised by the oracle layer and converted into a
``Fallback`` by ``ask_oracle`` (see ``mindforge.ai_engine``); they never
travel past the segmenter, synthesizer, merger or expansion service.
"""

from dataclasses import dataclass
from typing import Generic, Optional, TypeVar, Union

T = TypeVar("T")


class MindMapError(Exception):
    """Base exception for the mind map engine."""
    pass


class OracleError(MindMapError):
    """Base exception for text-oracle failures."""
    pass


class OracleUnavailable(OracleError):
    """No credentials, no connectivity, or every provider failed."""
    pass


class OracleTimeout(OracleError):
    """The oracle did not answer within the configured timeout."""
    pass


class OracleMalformed(OracleError):
    """The oracle answered, but the response failed structural validation."""
    pass


class MergeAnchorUnresolved(MindMapError):
    """An anchor path returned by the oracle does not resolve in the master tree."""

    def __init__(self, path: str):
        super().__init__(f"Anchor path does not resolve: {path!r}")
        self.path = path


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T


@dataclass(frozen=True)
class Fallback:
    reason: str
    error: Optional[Exception] = None


OracleOutcome = Union[Ok[T], Fallback]
