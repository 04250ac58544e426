"""Hazard-field generator expressions.

A generator expression is a ``;``-separated list of weighted cell recipes::

    0.80:free; 0.08:obstacle; 0.12:hazard(p=0.02..0.25, fuel=0..0.5)

Every cell of a regenerated grid independently draws one recipe with
probability proportional to its weight.  Recipe parameters are either a
constant or a ``low..high`` range sampled uniformly per cell:

``p``      hazard probability
``fuel``   hazard fuel reservoir
``spread`` spreadability
``cost``   traversal cost
"""
from __future__ import annotations

from dataclasses import dataclass
import re
from typing import Dict, List, Optional, Tuple

import numpy as np

from .cell import Cell, CellType
from .errors import GeneratorSyntaxError

DEFAULT_HAZARD_EXPRESSION = "0.80:free; 0.08:obstacle; 0.12:hazard(p=0.02..0.25, fuel=0..0.5)"

_CLAUSE_RE = re.compile(
    r"^\s*(?P<weight>[^:]+?)\s*:\s*(?P<kind>[A-Za-z_]+)\s*(?:\((?P<params>[^()]*)\))?\s*$"
)
_KINDS = {
    "free": CellType.FREE,
    "hazard": CellType.FREE,
    "obstacle": CellType.OBSTACLE,
    "obs": CellType.OBSTACLE,
}
_PARAM_NAMES = ("p", "fuel", "spread", "cost")
_DEFAULTS: Dict[str, Dict[str, float]] = {
    "free": {"p": 0.0, "fuel": 0.0, "spread": 1.0, "cost": 1.0},
    "hazard": {"p": 0.1, "fuel": 0.0, "spread": 1.0, "cost": 1.0},
    "obstacle": {"p": 0.0, "fuel": 0.0, "spread": 0.0, "cost": 1.0},
}


@dataclass(frozen=True)
class ValueRange:
    low: float
    high: float

    def sample(self, rng: np.random.Generator) -> float:
        if self.low == self.high:
            return self.low
        return float(rng.uniform(self.low, self.high))


@dataclass(frozen=True)
class CellRecipe:
    weight: float
    cell_type: CellType
    hazard: ValueRange
    fuel: ValueRange
    spread: ValueRange
    cost: ValueRange


def _parse_number(text: str, clause: str) -> float:
    try:
        return float(text)
    except ValueError:
        raise GeneratorSyntaxError(f"bad number {text!r} in clause {clause!r}") from None


def _parse_range(text: str, clause: str) -> ValueRange:
    if ".." in text:
        low_text, high_text = text.split("..", 1)
        low = _parse_number(low_text.strip(), clause)
        high = _parse_number(high_text.strip(), clause)
    else:
        low = high = _parse_number(text.strip(), clause)
    if low > high:
        raise GeneratorSyntaxError(f"empty range {text!r} in clause {clause!r}")
    if low < 0:
        raise GeneratorSyntaxError(f"negative value {text!r} in clause {clause!r}")
    return ValueRange(low, high)


def _parse_clause(clause: str) -> CellRecipe:
    match = _CLAUSE_RE.match(clause)
    if match is None:
        raise GeneratorSyntaxError(f"cannot parse clause {clause!r}")
    weight = _parse_number(match.group("weight"), clause)
    if weight < 0:
        raise GeneratorSyntaxError(f"negative weight in clause {clause!r}")
    kind = match.group("kind").lower()
    if kind not in _KINDS:
        raise GeneratorSyntaxError(f"unknown cell kind {kind!r} in clause {clause!r}")
    canonical = "obstacle" if kind == "obs" else kind
    values = {name: ValueRange(v, v) for name, v in _DEFAULTS[canonical].items()}
    params = match.group("params")
    if params is not None and params.strip():
        for item in params.split(","):
            if "=" not in item:
                raise GeneratorSyntaxError(f"expected name=value, got {item.strip()!r} in clause {clause!r}")
            name, value = (part.strip() for part in item.split("=", 1))
            if name not in _PARAM_NAMES:
                raise GeneratorSyntaxError(f"unknown parameter {name!r} in clause {clause!r}")
            values[name] = _parse_range(value, clause)
    if values["p"].high > 1.0:
        raise GeneratorSyntaxError(f"hazard probability above 1 in clause {clause!r}")
    return CellRecipe(
        weight=weight,
        cell_type=_KINDS[kind],
        hazard=values["p"],
        fuel=values["fuel"],
        spread=values["spread"],
        cost=values["cost"],
    )


def parse_generator_expression(text: str) -> List[CellRecipe]:
    clauses = [c for c in text.split(";") if c.strip()]
    if not clauses:
        raise GeneratorSyntaxError("generator expression is empty")
    recipes = [_parse_clause(c) for c in clauses]
    if sum(r.weight for r in recipes) <= 0:
        raise GeneratorSyntaxError("generator weights sum to zero")
    return recipes


class HazardFieldGenerator:
    """Fills cells from a compiled generator expression."""

    def __init__(self, expression: str = DEFAULT_HAZARD_EXPRESSION, rng: Optional[np.random.Generator] = None):
        self._expression = ""
        self._recipes: List[CellRecipe] = []
        self._weights = np.zeros(0)
        self.rng = rng if rng is not None else np.random.default_rng()
        self.set_expression(expression)

    @property
    def expression(self) -> str:
        return self._expression

    @property
    def recipes(self) -> Tuple[CellRecipe, ...]:
        return tuple(self._recipes)

    def set_expression(self, expression: str) -> None:
        # only recompile when the expression actually changed
        if expression == self._expression and self._recipes:
            return
        recipes = parse_generator_expression(expression)
        weights = np.array([r.weight for r in recipes], dtype=float)
        self._recipes = recipes
        self._weights = weights / weights.sum()
        self._expression = expression

    def set_random_map(self, rng: Optional[np.random.Generator] = None) -> None:
        """Start a fresh random map: a new stream derived from (or replacing) the current one."""

        if rng is not None:
            self.rng = rng
        else:
            self.rng = np.random.default_rng(self.rng.integers(0, 2**63 - 1))

    def gen_next(self, cell: Cell) -> None:
        recipe = self._recipes[int(self.rng.choice(len(self._recipes), p=self._weights))]
        cell.type = recipe.cell_type
        cell.hazard_probability = recipe.hazard.sample(self.rng)
        cell.hazard_fuel = recipe.fuel.sample(self.rng)
        cell.spreadability = recipe.spread.sample(self.rng)
        cell.cost = recipe.cost.sample(self.rng)
        cell.cover_count = 0


__all__ = [
    "DEFAULT_HAZARD_EXPRESSION",
    "CellRecipe",
    "ValueRange",
    "HazardFieldGenerator",
    "parse_generator_expression",
]
