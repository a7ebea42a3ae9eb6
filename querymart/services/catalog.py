"""
Schema catalog used to validate and plan mined SQL.

Lookups are case-insensitive. A strict catalog rejects unknown tables, a
non-strict one lets them through without column checks.
"""
from dataclasses import dataclass
from typing import Dict, Iterable, List, Mapping, Optional, Tuple


@dataclass(frozen=True)
class IndexDef:
    """An index; only its column order matters for planning."""
    name: str
    columns: Tuple[str, ...]
    unique: bool = False

    @property
    def leading_column(self) -> str:
        return self.columns[0].lower()


@dataclass(frozen=True)
class TableDef:
    """Column and index metadata for one table."""
    name: str
    columns: Tuple[str, ...]
    indexes: Tuple[IndexDef, ...] = ()
    schema: Optional[str] = None

    @property
    def qualified_name(self) -> str:
        return f"{self.schema}.{self.name}" if self.schema else self.name

    def has_column(self, column: str) -> bool:
        column = column.lower()
        return any(c.lower() == column for c in self.columns)

    def index_on(self, column: str) -> Optional[IndexDef]:
        """First index whose leading column is `column`."""
        column = column.lower()
        for index in self.indexes:
            if index.leading_column == column:
                return index
        return None


class Catalog:
    """Tables known to the planner, looked up by (optional) schema and name."""

    def __init__(self, tables: Iterable[TableDef] = (), strict: bool = True):
        self.strict = strict
        self._tables: Dict[str, List[TableDef]] = {}
        for table in tables:
            self.add_table(table)

    def add_table(self, table: TableDef) -> None:
        self._tables.setdefault(table.name.lower(), []).append(table)

    def get_table(self, name: str, schema: Optional[str] = None) -> Optional[TableDef]:
        candidates = self._tables.get(name.lower(), [])
        if schema:
            schema = schema.lower()
            for table in candidates:
                if (table.schema or "").lower() == schema:
                    return table
            return None
        return candidates[0] if candidates else None

    @property
    def tables(self) -> List[TableDef]:
        return [table for name in sorted(self._tables) for table in self._tables[name]]

    def __contains__(self, name: str) -> bool:
        return name.lower() in self._tables

    def __len__(self) -> int:
        return sum(len(tables) for tables in self._tables.values())

    @classmethod
    def from_dict(cls, tables: Mapping[str, Mapping], strict: bool = True) -> "Catalog":
        """
        Build a catalog from plain data.

        Example:
            Catalog.from_dict({
                "item": {
                    "columns": ["i_item_sk", "i_item_id", "i_color"],
                    "indexes": {"PRIMARY": ["i_item_sk"], "i_item_id_idx": ["i_item_id"]},
                },
            })
        """
        catalog = cls(strict=strict)
        for qualified, definition in tables.items():
            schema, _, name = qualified.rpartition(".")
            indexes = tuple(
                IndexDef(name=index_name, columns=tuple(columns))
                for index_name, columns in (definition.get("indexes") or {}).items()
            )
            catalog.add_table(TableDef(
                name=name,
                columns=tuple(definition.get("columns") or ()),
                indexes=indexes,
                schema=schema or None,
            ))
        return catalog

    @classmethod
    def permissive(cls) -> "Catalog":
        """Empty catalog that accepts any table."""
        return cls(strict=False)
