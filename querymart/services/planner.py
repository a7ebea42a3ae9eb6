"""
Logical planning of mined SQL.

SQL text goes through parse -> validate_and_convert -> optimize and comes
out as a tree of relational operators (scan, filter, project, join, ...).
The tree is only inspected for anti-patterns, it is never executed.

Parsing is delegated to sqlglot; the plan tree and its rewrite rules are
local. Plan nodes are frozen dataclasses, so plans built from the same SQL
and catalog compare equal.
"""
from contextlib import contextmanager
from dataclasses import dataclass, replace
from typing import Callable, Dict, Iterator, List, Optional, Set, Tuple, Union

import sqlglot
from sqlglot import exp
from sqlglot.errors import SqlglotError

from querymart.core.errors import ConversionError, ParseError, ValidationError
from querymart.services.catalog import Catalog, TableDef

DEFAULT_DIALECT = "mysql"

QUERY_TYPES = (exp.Select, exp.Union, exp.Intersect, exp.Except)

# (qualifier, column) of a predicate an index could serve, None otherwise
ColumnRef = Tuple[Optional[str], str]


# Plan nodes

@dataclass(frozen=True)
class PlanNode:
    """
    Base class of the logical plan tree.

    Children live in the fields named input, left and right; subqueries of
    expressions evaluated by the node are children too.
    """

    def _child_fields(self) -> List[str]:
        return [name for name in ("input", "left", "right") if name in self.__dataclass_fields__]

    @property
    def inputs(self) -> Tuple["PlanNode", ...]:
        children = tuple(getattr(self, name) for name in self._child_fields())
        return children + getattr(self, "subqueries", ())

    def with_inputs(self, inputs: Tuple["PlanNode", ...]) -> "PlanNode":
        names = self._child_fields()
        changes = dict(zip(names, inputs))
        if "subqueries" in self.__dataclass_fields__:
            changes["subqueries"] = tuple(inputs[len(names):])
        return replace(self, **changes) if changes else self

    def describe(self) -> str:
        raise NotImplementedError


@dataclass(frozen=True)
class TableScan(PlanNode):
    table: str
    schema: Optional[str] = None
    alias: Optional[str] = None
    indexed: bool = False  # the catalog declares at least one index

    @property
    def qualified_name(self) -> str:
        return f"{self.schema}.{self.table}" if self.schema else self.table

    def describe(self) -> str:
        return f"LogicalTableScan(table=[{self.qualified_name}])"


@dataclass(frozen=True)
class IndexScan(PlanNode):
    table: str
    index: str
    conditions: Tuple[str, ...]
    schema: Optional[str] = None
    alias: Optional[str] = None

    @property
    def qualified_name(self) -> str:
        return f"{self.schema}.{self.table}" if self.schema else self.table

    def describe(self) -> str:
        return (
            f"LogicalIndexTableScan(table=[{self.qualified_name}], index=[{self.index}], "
            f"conditions=[{' AND '.join(self.conditions)}])"
        )


@dataclass(frozen=True)
class Filter(PlanNode):
    conjuncts: Tuple[str, ...]
    input: PlanNode
    sargable: Tuple[Optional[ColumnRef], ...] = ()
    subqueries: Tuple[PlanNode, ...] = ()

    @property
    def condition(self) -> str:
        return " AND ".join(self.conjuncts)

    def describe(self) -> str:
        return f"LogicalFilter(condition=[{self.condition}])"


@dataclass(frozen=True)
class Project(PlanNode):
    columns: Tuple[str, ...]
    input: PlanNode
    subqueries: Tuple[PlanNode, ...] = ()

    def describe(self) -> str:
        return f"LogicalProject({', '.join(self.columns)})"


@dataclass(frozen=True)
class Join(PlanNode):
    kind: str
    condition: Optional[str]
    left: PlanNode
    right: PlanNode

    def describe(self) -> str:
        return f"LogicalJoin(condition=[{self.condition or 'true'}], joinType=[{self.kind.lower()}])"


@dataclass(frozen=True)
class Aggregate(PlanNode):
    group_by: Tuple[str, ...]
    input: PlanNode

    def describe(self) -> str:
        return f"LogicalAggregate(group=[{', '.join(self.group_by)}])"


@dataclass(frozen=True)
class Sort(PlanNode):
    keys: Tuple[str, ...]
    input: PlanNode

    def describe(self) -> str:
        return f"LogicalSort(sort=[{', '.join(self.keys)}])"


@dataclass(frozen=True)
class Limit(PlanNode):
    input: PlanNode
    fetch: Optional[str] = None
    offset: Optional[str] = None

    def describe(self) -> str:
        parts = [f"{name}=[{value}]" for name, value in (("fetch", self.fetch), ("offset", self.offset))
                 if value is not None]
        return f"LogicalLimit({', '.join(parts)})"


@dataclass(frozen=True)
class SetOp(PlanNode):
    kind: str
    distinct: bool
    left: PlanNode
    right: PlanNode

    def describe(self) -> str:
        return f"Logical{self.kind.title()}(all=[{str(not self.distinct).lower()}])"


@dataclass(frozen=True)
class Values(PlanNode):
    def describe(self) -> str:
        return "LogicalValues"


@dataclass(frozen=True)
class TableModify(PlanNode):
    operation: str
    table: str
    input: PlanNode
    schema: Optional[str] = None

    def describe(self) -> str:
        table = f"{self.schema}.{self.table}" if self.schema else self.table
        return f"LogicalTableModify(table=[{table}], operation=[{self.operation}])"


def walk(plan: PlanNode) -> Iterator[PlanNode]:
    """Pre-order traversal of a plan tree."""
    stack = [plan]
    while stack:
        node = stack.pop()
        yield node
        stack.extend(reversed(node.inputs))


def explain(plan: PlanNode) -> str:
    """Indented text dump of a plan, one operator per line."""
    lines: List[str] = []
    stack = [(plan, 0)]
    while stack:
        node, depth = stack.pop()
        lines.append("  " * depth + node.describe())
        stack.extend((child, depth + 1) for child in reversed(node.inputs))
    return "\n".join(lines) + "\n"


# AST helpers
#
# Mined SQL can carry thousands of chained AND/OR terms, so every walk over
# an expression uses an explicit stack instead of recursion.

def _arg(node: exp.Expression, kind: type) -> Optional[exp.Expression]:
    """The direct child of `node` with the given expression type."""
    for value in node.args.values():
        if isinstance(value, kind):
            return value
    return None


def _is_query(node: exp.Expression) -> bool:
    return isinstance(node, QUERY_TYPES)


def _descend(expression: exp.Expression, stop: Callable[[exp.Expression], bool]) -> Iterator[exp.Expression]:
    """Pre-order walk below `expression`; nodes matching `stop` are yielded but not entered."""
    stack = list(reversed(list(expression.iter_expressions())))
    while stack:
        node = stack.pop()
        yield node
        if not stop(node):
            stack.extend(reversed(list(node.iter_expressions())))


def _nested_queries(expression: exp.Expression) -> Iterator[exp.Expression]:
    """Queries nested in an expression, without descending into them."""
    return (node for node in _descend(expression, _is_query) if _is_query(node))


def _own_columns(node: exp.Expression) -> Iterator[exp.Column]:
    """Columns referenced by a query block, excluding nested queries."""
    return (child for child in _descend(node, _is_query) if isinstance(child, exp.Column))


def _has_aggregate(expression: exp.Expression) -> bool:
    # aggregates under OVER (...) are window functions
    if isinstance(expression, exp.Window):
        return False
    if isinstance(expression, exp.AggFunc):
        return True
    return any(
        isinstance(node, exp.AggFunc)
        for node in _descend(expression, lambda n: isinstance(n, QUERY_TYPES + (exp.Window,)))
    )


def _conjuncts(condition: exp.Expression) -> List[exp.Expression]:
    found: List[exp.Expression] = []
    stack = [condition]
    while stack:
        node = stack.pop().unnest()
        if isinstance(node, exp.And):
            stack.extend((node.expression, node.this))
        else:
            found.append(node)
    return found


def _is_constant(node: Optional[exp.Expression]) -> bool:
    if isinstance(node, (exp.Literal, exp.Placeholder, exp.Parameter, exp.Null, exp.Boolean)):
        return True
    if isinstance(node, (exp.Neg, exp.Cast, exp.Paren)):
        return _is_constant(node.this)
    return False


def _column_ref(column: exp.Column) -> ColumnRef:
    return (column.table.lower() or None, column.name.lower())


def _sargable(conjunct: exp.Expression) -> Optional[ColumnRef]:
    """Column an index could use to evaluate this predicate."""
    if isinstance(conjunct, (exp.EQ, exp.GT, exp.GTE, exp.LT, exp.LTE)):
        for column, other in ((conjunct.this, conjunct.expression), (conjunct.expression, conjunct.this)):
            if isinstance(column, exp.Column) and _is_constant(other):
                return _column_ref(column)
        return None
    if isinstance(conjunct, exp.Between) and isinstance(conjunct.this, exp.Column):
        if _is_constant(conjunct.args.get("low")) and _is_constant(conjunct.args.get("high")):
            return _column_ref(conjunct.this)
        return None
    if isinstance(conjunct, exp.In) and isinstance(conjunct.this, exp.Column):
        if not conjunct.args.get("query") and conjunct.expressions and all(
            _is_constant(e) for e in conjunct.expressions
        ):
            return _column_ref(conjunct.this)
        return None
    if isinstance(conjunct, exp.Like) and isinstance(conjunct.this, exp.Column):
        pattern = conjunct.expression
        if isinstance(pattern, exp.Literal) and pattern.is_string and not pattern.this.startswith(("%", "_")):
            return _column_ref(conjunct.this)
    return None


# Parsing

def parse(sql: Union[str, bytes, None], dialect: str = DEFAULT_DIALECT) -> exp.Expression:
    """
    Parse exactly one SQL statement.

    Raises:
        ParseError: empty text, syntax error or more than one statement
    """
    if isinstance(sql, bytes):
        sql = sql.decode('utf-8', errors='replace')
    if not sql or not sql.strip():
        raise ParseError("Empty SQL text")

    try:
        statements = [s for s in sqlglot.parse(sql, read=dialect) if s is not None]
    except SqlglotError as e:
        raise ParseError(str(e)) from e
    except RecursionError as e:
        raise ParseError("Statement is nested too deeply to parse") from e

    if len(statements) != 1:
        raise ParseError(f"Expected one statement, found {len(statements)}")
    return statements[0]


# Validation and conversion

class _Scope:
    """Relations visible to a query block, chained to the enclosing block."""

    def __init__(self, parent: Optional["_Scope"] = None):
        self.parent = parent
        # alias or table name -> table definition, None when unknown
        self.relations: Dict[str, Optional[TableDef]] = {}

    def add(self, name: str, table_def: Optional[TableDef]) -> None:
        self.relations[name.lower()] = table_def

    def resolve(self, qualifier: str) -> Tuple[bool, Optional[TableDef]]:
        scope: Optional[_Scope] = self
        while scope is not None:
            if qualifier in scope.relations:
                return True, scope.relations[qualifier]
            scope = scope.parent
        return False, None

    def visible(self) -> List[Optional[TableDef]]:
        found: List[Optional[TableDef]] = []
        scope: Optional[_Scope] = self
        while scope is not None:
            found.extend(scope.relations.values())
            scope = scope.parent
        return found


class _Converter:
    """Turns one sqlglot statement into an unoptimized plan."""

    def __init__(self, catalog: Catalog, dialect: str):
        self.catalog = catalog
        self.dialect = dialect
        self.ctes: Dict[str, exp.Expression] = {}
        self.expanding: Set[str] = set()
        self.scope: Optional[_Scope] = None

    def sql(self, node: exp.Expression) -> str:
        return node.sql(dialect=self.dialect)

    @contextmanager
    def new_scope(self) -> Iterator[_Scope]:
        self.scope = _Scope(self.scope)
        try:
            yield self.scope
        finally:
            self.scope = self.scope.parent

    def convert(self, node: exp.Expression) -> PlanNode:
        if isinstance(node, exp.Subquery):
            return self._order_and_limit(node, self.convert(node.this))
        if isinstance(node, exp.Select):
            return self._select(node)
        if isinstance(node, (exp.Union, exp.Intersect, exp.Except)):
            return self._set_operation(node)
        if isinstance(node, exp.Insert):
            return self._insert(node)
        if isinstance(node, exp.Update):
            return self._update(node)
        if isinstance(node, exp.Delete):
            return self._delete(node)
        raise ConversionError(f"Cannot plan {node.key.upper()} statements")

    def _register_ctes(self, node: exp.Expression) -> None:
        with_ = _arg(node, exp.With)
        if with_ is None:
            return
        for cte in with_.expressions:
            self.ctes[cte.alias.lower()] = cte.this

    def _select(self, select: exp.Select) -> PlanNode:
        self._register_ctes(select)
        with self.new_scope() as scope:
            from_ = _arg(select, exp.From)
            plan = self._relation(from_.this) if from_ is not None else Values()
            plan = self._joins(select.args.get("joins") or [], plan)

            self._validate_columns(select, scope)

            where = _arg(select, exp.Where)
            if where is not None:
                plan = self._filter(where.this, plan)

            group = _arg(select, exp.Group)
            if group is not None or any(_has_aggregate(e) for e in select.expressions):
                keys = tuple(self.sql(e) for e in group.expressions) if group is not None else ()
                plan = Aggregate(group_by=keys, input=plan)

            having = _arg(select, exp.Having)
            if having is not None:
                plan = self._filter(having.this, plan)

            columns = tuple(self.sql(e) for e in select.expressions)
            subqueries = tuple(
                self.convert(q) for e in select.expressions for q in _nested_queries(e)
            )
            plan = Project(columns=columns, input=plan, subqueries=subqueries)

            if select.args.get("distinct"):
                plan = Aggregate(group_by=columns, input=plan)

            return self._order_and_limit(select, plan)

    def _set_operation(self, node: exp.Expression) -> PlanNode:
        self._register_ctes(node)
        plan = SetOp(
            kind=node.key.upper(),
            distinct=bool(node.args.get("distinct", True)),
            left=self.convert(node.this),
            right=self.convert(node.expression),
        )
        return self._order_and_limit(node, plan)

    def _insert(self, insert: exp.Insert) -> PlanNode:
        self._register_ctes(insert)
        target = insert.this
        if isinstance(target, exp.Schema):
            target = target.this
        if not isinstance(target, exp.Table):
            raise ConversionError(f"Unsupported INSERT target {self.sql(target)}")
        with self.new_scope():
            scan = self._table(target)

        source = insert.expression
        if source is None or isinstance(source, exp.Values):
            plan: PlanNode = Values()
        elif isinstance(source, QUERY_TYPES + (exp.Subquery,)):
            plan = self.convert(source)
        else:
            raise ConversionError(f"Unsupported INSERT source {source.key.upper()}")
        return TableModify(operation="INSERT", table=scan.table, schema=scan.schema, input=plan)

    def _update(self, update: exp.Update) -> PlanNode:
        return self._modify("UPDATE", update)

    def _delete(self, delete: exp.Delete) -> PlanNode:
        return self._modify("DELETE", delete)

    def _modify(self, operation: str, node: exp.Expression) -> PlanNode:
        self._register_ctes(node)
        target = node.this
        if not isinstance(target, exp.Table):
            raise ConversionError(f"Unsupported {operation} target")
        with self.new_scope() as scope:
            scan = self._table(target)
            plan: PlanNode = self._joins(target.args.get("joins") or [], scan)
            from_ = _arg(node, exp.From)
            if from_ is not None:
                plan = Join(kind="INNER", condition=None, left=plan, right=self._relation(from_.this))

            self._validate_columns(node, scope)

            where = _arg(node, exp.Where)
            if where is not None:
                plan = self._filter(where.this, plan)
        return TableModify(operation=operation, table=scan.table, schema=scan.schema, input=plan)

    def _joins(self, joins: List[exp.Join], plan: PlanNode) -> PlanNode:
        for join in joins:
            right = self._relation(join.this)
            plan = Join(
                kind=join.text("side").upper() or join.text("kind").upper() or "INNER",
                condition=self._join_condition(join),
                left=plan,
                right=right,
            )
        return plan

    def _join_condition(self, join: exp.Join) -> Optional[str]:
        on = join.args.get("on")
        if on is not None:
            return self.sql(on)
        using = join.args.get("using")
        if using:
            return f"USING ({', '.join(self.sql(c) for c in using)})"
        if join.text("method").upper() == "NATURAL":
            return "NATURAL"
        return None

    def _relation(self, node: exp.Expression) -> PlanNode:
        if isinstance(node, exp.Table):
            # (t2 JOIN t3 ON ...) parses as t2 carrying its own joins
            return self._joins(node.args.get("joins") or [], self._table(node))
        if isinstance(node, exp.Paren):
            return self._relation(node.this)
        if isinstance(node, exp.Subquery):
            if isinstance(node.this, (exp.Table, exp.Paren)):
                plan = self._relation(node.this)
            else:
                plan = self.convert(node.this)
            if node.alias:
                self.scope.add(node.alias, None)
            return plan
        if isinstance(node, exp.Values):
            if node.alias:
                self.scope.add(node.alias, None)
            return Values()
        raise ConversionError(f"Unsupported relation {node.key.upper()}")

    def _table(self, table: exp.Table) -> PlanNode:
        name = table.name
        if not name:
            raise ConversionError(f"Unsupported table expression {self.sql(table)}")
        schema = table.db or None
        alias = table.alias or None

        key = name.lower()
        if schema is None and key in self.ctes:
            self.scope.add(alias or name, None)
            return self._expand_cte(key)

        table_def = self.catalog.get_table(name, schema)
        if table_def is None and self.catalog.strict:
            qualified = f"{schema}.{name}" if schema else name
            raise ValidationError(f"Table '{qualified}' not found")
        self.scope.add(alias or name, table_def)

        if table_def is None:
            return TableScan(table=name, schema=schema, alias=alias)
        return TableScan(
            table=table_def.name,
            schema=table_def.schema,
            alias=alias,
            indexed=bool(table_def.indexes),
        )

    def _expand_cte(self, key: str) -> PlanNode:
        if key in self.expanding:
            # recursive reference
            return TableScan(table=key)
        self.expanding.add(key)
        try:
            return self.convert(self.ctes[key])
        finally:
            self.expanding.discard(key)

    def _filter(self, condition: exp.Expression, plan: PlanNode) -> Filter:
        conjuncts = _conjuncts(condition)
        return Filter(
            conjuncts=tuple(self.sql(c) for c in conjuncts),
            sargable=tuple(_sargable(c) for c in conjuncts),
            input=plan,
            subqueries=tuple(self.convert(q) for q in _nested_queries(condition)),
        )

    def _order_and_limit(self, node: exp.Expression, plan: PlanNode) -> PlanNode:
        order = _arg(node, exp.Order)
        if order is not None:
            plan = Sort(keys=tuple(self.sql(o) for o in order.expressions), input=plan)

        limit = _arg(node, exp.Limit)
        offset = _arg(node, exp.Offset)
        if limit is None and offset is None:
            return plan

        fetch = None
        offset_value = None
        if limit is not None:
            count = limit.args.get("expression")
            fetch = self.sql(count) if count is not None else self.sql(limit)
            if limit.args.get("offset") is not None:
                offset_value = self.sql(limit.args["offset"])
        if offset is not None:
            value = offset.args.get("expression")
            offset_value = self.sql(value) if value is not None else self.sql(offset)
        return Limit(input=plan, fetch=fetch, offset=offset_value)

    def _validate_columns(self, node: exp.Expression, scope: _Scope) -> None:
        aliases = {
            e.alias.lower() for e in node.expressions if isinstance(e, exp.Alias)
        } if isinstance(node, exp.Select) else set()

        for column in _own_columns(node):
            name = column.name
            if not name or isinstance(column.this, exp.Star):
                continue
            qualifier = column.table.lower()

            if qualifier:
                found, table_def = scope.resolve(qualifier)
                if not found:
                    if self.catalog.strict:
                        raise ValidationError(f"Unknown table or alias '{column.table}' for column '{name}'")
                    continue
                if table_def is not None and not table_def.has_column(name):
                    raise ValidationError(f"Column '{name}' not found in table '{table_def.name}'")
                continue

            if name.lower() in aliases:
                continue
            visible = scope.visible()
            if any(t is None for t in visible):
                continue
            if not visible and not self.catalog.strict:
                continue
            if not any(t.has_column(name) for t in visible):
                raise ValidationError(f"Column '{name}' not found in any table")


def validate_and_convert(
    ast: exp.Expression, catalog: Optional[Catalog] = None, dialect: str = DEFAULT_DIALECT
) -> PlanNode:
    """
    Check a parsed statement against the catalog and build its logical plan.

    Raises:
        ValidationError: unknown table or column
        ConversionError: statement kind has no plan
    """
    catalog = catalog if catalog is not None else Catalog.permissive()
    try:
        return _Converter(catalog, dialect).convert(ast)
    except SqlglotError as e:
        raise ConversionError(str(e)) from e
    except RecursionError as e:
        raise ConversionError("Statement is nested too deeply to plan") from e


# Optimization

def _merge_filters(node: PlanNode, catalog: Catalog) -> PlanNode:
    if isinstance(node, Filter) and isinstance(node.input, Filter):
        inner = node.input
        return Filter(
            conjuncts=inner.conjuncts + node.conjuncts,
            sargable=inner.sargable + node.sargable,
            input=inner.input,
            subqueries=inner.subqueries + node.subqueries,
        )
    return node


def _use_index(node: PlanNode, catalog: Catalog) -> PlanNode:
    """Filter(TableScan) -> IndexScan when a predicate hits a leading index column."""
    if not (isinstance(node, Filter) and isinstance(node.input, TableScan)):
        return node
    scan = node.input
    table_def = catalog.get_table(scan.table, scan.schema)
    if table_def is None or not table_def.indexes:
        return node

    names = {scan.table.lower()}
    if scan.alias:
        names.add(scan.alias.lower())
    refs = [
        ref if ref is not None and (ref[0] is None or ref[0] in names) else None
        for ref in node.sargable
    ]
    columns = {ref[1] for ref in refs if ref is not None}
    index = next((i for i in table_def.indexes if i.leading_column in columns), None)
    if index is None:
        return node

    index_columns = {c.lower() for c in index.columns}
    matched = [i for i, ref in enumerate(refs) if ref is not None and ref[1] in index_columns]
    residual = [i for i in range(len(node.conjuncts)) if i not in matched]

    index_scan = IndexScan(
        table=scan.table,
        index=index.name,
        conditions=tuple(node.conjuncts[i] for i in matched),
        schema=scan.schema,
        alias=scan.alias,
    )
    if not residual and not node.subqueries:
        return index_scan
    return Filter(
        conjuncts=tuple(node.conjuncts[i] for i in residual),
        sargable=tuple(node.sargable[i] for i in residual),
        input=index_scan,
        subqueries=node.subqueries,
    )


_REWRITE_RULES = (_merge_filters, _use_index)


def _rewrite(node: PlanNode, catalog: Catalog) -> PlanNode:
    if node.inputs:
        node = node.with_inputs(tuple(_rewrite(child, catalog) for child in node.inputs))
    for rule in _REWRITE_RULES:
        node = rule(node, catalog)
    return node


def optimize(plan: PlanNode, catalog: Optional[Catalog] = None) -> PlanNode:
    """
    Apply rewrite rules bottom-up until the plan stops changing.

    Pure and deterministic: the same plan and catalog always give the same
    result, and optimizing an optimized plan returns it unchanged.
    """
    catalog = catalog if catalog is not None else Catalog.permissive()
    while True:
        try:
            rewritten = _rewrite(plan, catalog)
            if rewritten == plan:
                return plan
        except RecursionError as e:
            raise ConversionError("Plan is nested too deeply to optimize") from e
        plan = rewritten


class Planner:
    """Parse, validate and plan SQL against one schema catalog."""

    def __init__(self, catalog: Optional[Catalog] = None, dialect: str = DEFAULT_DIALECT):
        self.catalog = catalog if catalog is not None else Catalog.permissive()
        self.dialect = dialect

    def parse(self, sql: Union[str, bytes, None]) -> exp.Expression:
        return parse(sql, self.dialect)

    def plan(self, sql: Union[str, bytes, None]) -> PlanNode:
        """Unoptimized logical plan."""
        return validate_and_convert(self.parse(sql), self.catalog, self.dialect)

    def optimize(self, sql: Union[str, bytes, None]) -> PlanNode:
        """Logical plan after rewrite rules."""
        return optimize(self.plan(sql), self.catalog)

    def explain(self, sql: Union[str, bytes, None], optimized: bool = True) -> str:
        return explain(self.optimize(sql) if optimized else self.plan(sql))
