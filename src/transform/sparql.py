"""Field sources: how the assembler reads a query solution.

The assembler only needs ``get(name)``. A plain ``dict`` keyed by the
SPARQL variable names already satisfies that; :class:`BindingSolution`
adapts one binding from a SPARQL 1.1 JSON results document::

    {"results": {"bindings": [
        {"output": {"type": "uri", "value": "http://..."},
         "peerReviewed": {"type": "literal", "value": "true",
                          "datatype": "http://www.w3.org/2001/XMLSchema#boolean"}}
    ]}}
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Protocol

logger = logging.getLogger(__name__)

XSD_BOOLEAN = "http://www.w3.org/2001/XMLSchema#boolean"


class FieldSource(Protocol):
    def get(self, name: str) -> Any: ...


class BindingSolution:
    """One SPARQL JSON binding, exposed as plain Python values."""

    def __init__(self, binding: dict) -> None:
        self.binding = binding

    def get(self, name: str) -> Any:
        term = self.binding.get(name)
        if term is None:
            return None
        value = term.get("value", "")
        if term.get("datatype") == XSD_BOOLEAN:
            return value.strip().lower() in ("true", "1")
        return value

    def __getitem__(self, name: str) -> Any:
        return self.get(name)


def load_solutions(path: Path) -> list[BindingSolution]:
    """Read a SPARQL JSON results file into solutions."""
    with open(path) as f:
        data = json.load(f)

    bindings = data.get("results", {}).get("bindings", [])
    logger.info("Loaded %d solutions from %s", len(bindings), path)
    return [BindingSolution(b) for b in bindings]
