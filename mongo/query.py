"""
Chainable, immutable query construction.

    rows = await (
        query_client.table("tasks")
        .select("id, title, projects(name)")
        .eq("status", "pending")
        .not_("deadline", "is", None)
        .order("deadline", ascending=False)
        .limit(10)
        .execute()
    )

Every call returns a new `TableQuery`; a partially built query can be shared and
extended from several places without one caller seeing another's filters.
Nothing touches the database until `execute()`.
"""

from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional, Tuple, Union

from .executor import execute_query
from .query_models import OrderSpec, QueryOperation, QueryRequest, QueryResponse, UpsertOptions
from .registry import DEFAULT_REGISTRY, RelationRegistry

# (kind, field, value); kind is one of the filter descriptor keys
FilterClause = Tuple[str, str, Any]


@dataclass(frozen=True)
class TableQuery:
    table: str
    client: Optional["QueryClient"] = field(default=None, compare=False, repr=False)
    operation: QueryOperation = QueryOperation.SELECT
    columns: Optional[str] = None
    clauses: Tuple[FilterClause, ...] = ()
    or_clauses: Tuple[Dict[str, Any], ...] = ()
    payload: Any = None
    order_by: Optional[OrderSpec] = None
    row_limit: Optional[int] = None
    row_offset: Optional[int] = None
    single_row: bool = False
    upsert_options: Optional[UpsertOptions] = None

    # ---- operation

    def select(self, columns: str = "*") -> "TableQuery":
        return replace(self, operation=QueryOperation.SELECT, columns=columns)

    def insert(self, data: Union[Dict[str, Any], List[Dict[str, Any]]]) -> "TableQuery":
        return replace(self, operation=QueryOperation.INSERT, payload=data)

    def update(self, data: Dict[str, Any]) -> "TableQuery":
        return replace(self, operation=QueryOperation.UPDATE, payload=data)

    def delete(self) -> "TableQuery":
        return replace(self, operation=QueryOperation.DELETE)

    def upsert(
        self,
        data: Union[Dict[str, Any], List[Dict[str, Any]]],
        on_conflict: Optional[str] = None,
        ignore_duplicates: bool = False,
    ) -> "TableQuery":
        options = UpsertOptions(on_conflict=on_conflict, ignore_duplicates=ignore_duplicates)
        return replace(self, operation=QueryOperation.UPSERT, payload=data, upsert_options=options)

    # ---- filters

    def _with(self, kind: str, column: str, value: Any) -> "TableQuery":
        return replace(self, clauses=self.clauses + ((kind, column, value),))

    def eq(self, column: str, value: Any) -> "TableQuery":
        return self._with("eq", column, value)

    def in_(self, column: str, values: List[Any]) -> "TableQuery":
        return self._with("in", column, tuple(values))

    def contains(self, column: str, values: Union[Any, List[Any]]) -> "TableQuery":
        if not isinstance(values, (list, tuple)):
            values = [values]
        return self._with("contains", column, tuple(values))

    def not_(self, column: str, op: str, value: Any) -> "TableQuery":
        return self._with("not", column, (op, value))

    def gte(self, column: str, value: Any) -> "TableQuery":
        return self._with("gte", column, value)

    def lte(self, column: str, value: Any) -> "TableQuery":
        return self._with("lte", column, value)

    def gt(self, column: str, value: Any) -> "TableQuery":
        return self._with("gt", column, value)

    def lt(self, column: str, value: Any) -> "TableQuery":
        return self._with("lt", column, value)

    def or_(self, *conditions: Dict[str, Any]) -> "TableQuery":
        """Add raw Mongo conditions, any of which may match."""
        return replace(self, or_clauses=self.or_clauses + tuple(dict(c) for c in conditions))

    # ---- shaping

    def order(self, column: str, ascending: bool = True) -> "TableQuery":
        return replace(self, order_by=OrderSpec(column=column, ascending=ascending))

    def limit(self, count: int) -> "TableQuery":
        return replace(self, row_limit=count)

    def range(self, start: int, end: int) -> "TableQuery":
        """Rows `start`..`end` inclusive, zero based."""
        return replace(self, row_offset=start, row_limit=end - start + 1)

    def single(self) -> "TableQuery":
        return replace(self, single_row=True)

    # ---- materialisation

    def filters(self) -> Optional[Dict[str, Any]]:
        descriptor: Dict[str, Any] = {}
        for kind, column, value in self.clauses:
            bucket = descriptor.setdefault(kind, {})
            if kind in ("in", "contains"):
                bucket[column] = list(value)
            elif kind == "not":
                op, operand = value
                bucket[column] = {"op": op, "value": operand}
            else:
                bucket[column] = value
        if self.or_clauses:
            descriptor["or"] = [dict(c) for c in self.or_clauses]
        return descriptor or None

    def to_request(self) -> QueryRequest:
        data = self.payload
        if isinstance(data, tuple):
            data = list(data)
        return QueryRequest(
            table=self.table,
            operation=self.operation,
            select=self.columns,
            filters=self.filters(),
            data=data,
            order=self.order_by,
            single=self.single_row,
            limit=self.row_limit,
            offset=self.row_offset,
            upsert_options=self.upsert_options,
        )

    async def execute(self) -> QueryResponse:
        client = self.client or query_client
        return await client.run(self.to_request())


class QueryClient:
    """Entry point for builder queries; holds the database and relation config."""

    def __init__(self, db=None, registry: RelationRegistry = DEFAULT_REGISTRY, strict: Optional[bool] = None):
        self.db = db
        self.registry = registry
        self.strict = strict

    def table(self, name: str) -> TableQuery:
        return TableQuery(table=name, client=self)

    async def run(self, request: QueryRequest) -> QueryResponse:
        return await execute_query(request, db=self.db, registry=self.registry, strict=self.strict)


# Global instance
query_client = QueryClient()
