"""
Plan-based anti-pattern classifier.

Each AntiPattern has exactly one rule, a pure function of the optimized
logical plan. classify() returns every label whose rule matched.
"""
from enum import Enum
from typing import Callable, Dict, FrozenSet, Mapping, Optional, Union

from querymart.core.config import settings
from querymart.core.errors import ConversionError
from querymart.services.catalog import Catalog
from querymart.services.planner import (
    Filter,
    IndexScan,
    Join,
    PlanNode,
    Planner,
    TableModify,
    TableScan,
    walk,
)

# Joins above this count make a query TOO_MANY_JOINS
MAX_JOINS = 4


class AntiPattern(str, Enum):
    TOO_MANY_JOINS = "TOO_MANY_JOINS"
    CARTESIAN_JOIN = "CARTESIAN_JOIN"
    FULL_TABLE_SCAN = "FULL_TABLE_SCAN"
    UNFILTERED_MODIFY = "UNFILTERED_MODIFY"


Rule = Callable[[PlanNode], bool]


def count_joins(plan: PlanNode) -> int:
    return sum(1 for node in walk(plan) if isinstance(node, Join))


def too_many_joins(plan: PlanNode) -> bool:
    return count_joins(plan) > MAX_JOINS


def _unconstrained_join(node: PlanNode, filtered: bool = False) -> bool:
    # A filter constrains the joins below it up to the next query block
    if isinstance(node, Join):
        if node.condition is None and not filtered:
            return True
        return _unconstrained_join(node.left, filtered) or _unconstrained_join(node.right, filtered)
    if isinstance(node, Filter):
        return _unconstrained_join(node.input, True) or any(
            _unconstrained_join(q) for q in node.subqueries
        )
    return any(_unconstrained_join(child) for child in node.inputs)


def cartesian_join(plan: PlanNode) -> bool:
    """A join with no condition and no filter above it."""
    return _unconstrained_join(plan)


def full_table_scan(plan: PlanNode) -> bool:
    """A filter left on a full scan of a table that has indexes."""
    return any(
        isinstance(node, Filter) and isinstance(node.input, TableScan) and node.input.indexed
        for node in walk(plan)
    )


def unfiltered_modify(plan: PlanNode) -> bool:
    """UPDATE or DELETE touching every row of its table."""
    return any(
        isinstance(node, TableModify)
        and node.operation in ("UPDATE", "DELETE")
        and not isinstance(node.input, (Filter, IndexScan))
        for node in walk(plan)
    )


RULES: Dict[AntiPattern, Rule] = {
    AntiPattern.TOO_MANY_JOINS: too_many_joins,
    AntiPattern.CARTESIAN_JOIN: cartesian_join,
    AntiPattern.FULL_TABLE_SCAN: full_table_scan,
    AntiPattern.UNFILTERED_MODIFY: unfiltered_modify,
}

LABEL_DESCRIPTIONS: Dict[AntiPattern, Dict[str, str]] = {
    AntiPattern.TOO_MANY_JOINS: {
        "priority": "HIGH",
        "description": f"Query joins more than {MAX_JOINS} relations",
    },
    AntiPattern.CARTESIAN_JOIN: {
        "priority": "CRITICAL",
        "description": "Join without condition produces a cartesian product",
    },
    AntiPattern.FULL_TABLE_SCAN: {
        "priority": "MEDIUM",
        "description": "Filter cannot use any index of the scanned table",
    },
    AntiPattern.UNFILTERED_MODIFY: {
        "priority": "CRITICAL",
        "description": "UPDATE/DELETE without WHERE clause modifies every row",
    },
}

_missing = [label.name for label in AntiPattern if label not in RULES]
if _missing:
    raise RuntimeError(f"Anti-patterns without a rule: {', '.join(_missing)}")


class Classifier:
    """Labels SQL text with the anti-patterns found in its optimized plan."""

    def __init__(
        self,
        catalog: Optional[Catalog] = None,
        dialect: Optional[str] = None,
        rules: Optional[Mapping[AntiPattern, Rule]] = None,
    ):
        self.planner = Planner(catalog, dialect or settings.sql_dialect)
        self.rules = dict(rules if rules is not None else RULES)

    @property
    def catalog(self) -> Catalog:
        return self.planner.catalog

    def plan(self, sql: Union[str, bytes, None]) -> PlanNode:
        return self.planner.optimize(sql)

    def classify_plan(self, plan: PlanNode) -> FrozenSet[AntiPattern]:
        return frozenset(label for label, rule in self.rules.items() if rule(plan))

    def classify(self, sql: Union[str, bytes, None]) -> FrozenSet[AntiPattern]:
        """
        Parse, validate, plan and optimize `sql`, then evaluate every rule.

        Raises:
            PlanError: the text cannot be parsed, validated or planned
        """
        plan = self.plan(sql)
        try:
            return self.classify_plan(plan)
        except RecursionError as e:
            raise ConversionError("Plan is nested too deeply to classify") from e
