"""
Where a student goes after a module is submitted.

This is a fixed lookup table, one row list per submitted module. Rows are
checked in order; the first whose conditions hold wins.
"""
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, FrozenSet, Iterable, List, Optional

logger = logging.getLogger(__name__)


class Destination(str, Enum):
    MODULE_INTRO = "MODULE_INTRO"
    FULL_RESULTS = "FULL_RESULTS"
    READING_RESULTS = "READING_RESULTS"
    MATH_RESULTS = "MATH_RESULTS"


@dataclass(frozen=True)
class Route:
    destination: Destination
    module_number: Optional[int] = None

    @classmethod
    def intro(cls, module_number: int) -> "Route":
        return cls(Destination.MODULE_INTRO, module_number)

    @property
    def is_results(self) -> bool:
        return self.destination != Destination.MODULE_INTRO

    def __str__(self):
        if self.destination == Destination.MODULE_INTRO:
            return f"module {self.module_number} intro"
        return self.destination.value.lower().replace("_", " ")


FULL_RESULTS = Route(Destination.FULL_RESULTS)
READING_RESULTS = Route(Destination.READING_RESULTS)
MATH_RESULTS = Route(Destination.MATH_RESULTS)


@dataclass(frozen=True)
class RoutingRow:
    route: Route
    requires_incomplete: FrozenSet[int] = frozenset()
    requires_complete: FrozenSet[int] = frozenset()

    def matches(self, completed: FrozenSet[int]) -> bool:
        return self.requires_complete <= completed and not (self.requires_incomplete & completed)


ROUTING_TABLE: Dict[int, List[RoutingRow]] = {
    1: [
        RoutingRow(Route.intro(2)),
    ],
    2: [
        RoutingRow(Route.intro(3), requires_incomplete=frozenset({3})),
        RoutingRow(Route.intro(4), requires_incomplete=frozenset({4})),
        RoutingRow(FULL_RESULTS),
    ],
    3: [
        RoutingRow(Route.intro(4)),
    ],
    4: [
        RoutingRow(FULL_RESULTS, requires_complete=frozenset({1, 2})),
        RoutingRow(MATH_RESULTS),
    ],
}


def route_after_submit(module_number: int, completed_modules: Iterable[int]) -> Route:
    """
    Look up the next page after ``module_number`` was submitted.

    ``completed_modules`` is the set of completed modules after the submission.
    Finishing all four modules always lands on the full results.
    """
    try:
        rows = ROUTING_TABLE[module_number]
    except KeyError:
        raise ValueError(f"Unknown module number: {module_number!r}") from None

    completed = frozenset(completed_modules)
    if completed >= frozenset(ROUTING_TABLE):
        return FULL_RESULTS
    for row in rows:
        if row.matches(completed):
            logger.debug(f"Module {module_number} submitted, completed={sorted(completed)} -> {row.route}")
            return row.route
    raise LookupError(f"No route for module {module_number} with completed modules {sorted(completed)}")
