"""Patch the specialist publisher schema's country facet from the register.

The DFID research output schema ships with a placeholder country facet.
This fills its ``allowed_values`` from the GOV.UK country register, sorted
alphabetically by country name.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from typing import Any, Protocol

from src.transform.models import AllowedValue

logger = logging.getLogger(__name__)


class FacetNotFoundError(KeyError):
    """The schema has no facet with the requested key."""

    def __str__(self) -> str:
        # KeyError would otherwise repr() the message
        return str(self.args[0]) if self.args else ""


class CountryRegister(Protocol):
    def countries(self) -> Iterable[tuple[str, Mapping[str, Any]]] | Mapping[str, Mapping[str, Any]]: ...


def find_facet(schema: dict, key: str) -> dict:
    for facet in schema.get("facets", []):
        if facet.get("key") == key:
            return facet
    raise FacetNotFoundError(f"No {key} facet found in schema")


def country_allowed_values(
    countries: Iterable[tuple[str, Mapping[str, Any]]] | Mapping[str, Mapping[str, Any]],
) -> list[dict]:
    """``[(code, {"name": ...}), ...]`` -> ``[{"value": code, "label": name}, ...]`` by label."""
    pairs = countries.items() if isinstance(countries, Mapping) else countries
    values = [AllowedValue(value=code, label=details["name"]) for code, details in pairs]
    return [v.model_dump() for v in sorted(values, key=lambda v: v.label)]


class CountriesPatch:
    """Rewrites the country facet of a schema document in place."""

    facet_key = "country"

    def __init__(self, register: CountryRegister) -> None:
        self.register = register

    def mutate_schema(self, schema: dict) -> dict:
        facet = find_facet(schema, self.facet_key)
        facet["allowed_values"] = country_allowed_values(self.register.countries())
        logger.info("Patched %s facet with %d values", self.facet_key, len(facet["allowed_values"]))
        return schema
