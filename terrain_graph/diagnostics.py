# terrain_graph/diagnostics.py

"""
================================================================================
DIAGNOSTICS & ERRORS
================================================================================
Nothing that is wrong with an authored graph is fatal to a generation run.
The compiler degrades instead and records what it did as a Diagnostic, so the
caller can surface problems to the author after the fact.

Exceptions are reserved for programming errors (evaluating a field whose
input was never bound) and for input that is not a graph document at all.
================================================================================
"""

import enum
import logging
from dataclasses import dataclass
from typing import Iterator, List, Optional


class TerrainGraphError(Exception):
    """Base class for all errors raised by this package."""


class DocumentError(TerrainGraphError):
    """The input could not be read as a graph document."""


class UnboundSourceError(TerrainGraphError):
    """A field was evaluated while one of its input slots was empty."""


class DiagnosticKind(enum.Enum):
    # Unknown node type, edge to a missing node, out-of-range port index.
    STRUCTURAL = "structural"
    # Input slot left unconnected; bound to the fallback generator.
    MISSING_INPUT = "missing_input"
    # Property value that could not be parsed; the default was used.
    PROPERTY_PARSE = "property_parse"
    # Portal Out naming a portal that does not exist.
    UNRESOLVED_PORTAL = "unresolved_portal"
    # Two Portal In nodes registered the same name; the later one wins.
    PORTAL_CONFLICT = "portal_conflict"
    # An edge that would have closed a loop was dropped.
    CYCLE = "cycle"


@dataclass(frozen=True)
class Diagnostic:
    kind: DiagnosticKind
    message: str
    node_id: Optional[str] = None
    edge_index: Optional[int] = None

    def __str__(self):
        where = ""
        if self.node_id is not None:
            where += f" [node {self.node_id}]"
        if self.edge_index is not None:
            where += f" [edge #{self.edge_index}]"
        return f"{self.kind.value}{where}: {self.message}"


class DiagnosticLog:
    """
    Collects diagnostics for one compilation and mirrors each one to the
    logger at WARNING level.
    """

    def __init__(self, logger: logging.Logger):
        self.logger = logger
        self._entries: List[Diagnostic] = []

    def record(self, kind: DiagnosticKind, message: str, node_id: str = None, edge_index: int = None) -> Diagnostic:
        diagnostic = Diagnostic(kind, message, node_id=node_id, edge_index=edge_index)
        self._entries.append(diagnostic)
        self.logger.warning(str(diagnostic))
        return diagnostic

    def of_kind(self, kind: DiagnosticKind) -> List[Diagnostic]:
        return [d for d in self._entries if d.kind is kind]

    def as_list(self) -> List[Diagnostic]:
        return list(self._entries)

    def __iter__(self) -> Iterator[Diagnostic]:
        return iter(self._entries)

    def __len__(self):
        return len(self._entries)
