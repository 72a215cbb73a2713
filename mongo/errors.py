"""Typed errors raised by the query layer.

The executor converts every one of these into a ``{data: None, error: {...}}``
response, so callers of ``execute_query`` never see them raised.
"""

from typing import Optional


class QueryError(Exception):
    """Base class for query-layer failures that carry a machine code."""

    code: Optional[str] = None

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code


class UnknownTableError(QueryError):
    code = "PGRST204"

    def __init__(self, table: str):
        super().__init__(f"Unknown table: {table}")
        self.table = table


class UnknownRelationError(QueryError):
    code = "UNKNOWN_RELATION"

    def __init__(self, table: str, relation: str):
        super().__init__(f"Unknown relation '{relation}' for table '{table}'")
        self.table = table
        self.relation = relation


class MalformedFilterError(QueryError):
    code = "MALFORMED_FILTER"


class MissingPayloadError(QueryError):
    code = "MISSING_DATA"

    def __init__(self, operation: str):
        super().__init__(f"Missing data field for {operation}")
        self.operation = operation


class UnsupportedOperationError(QueryError):
    code = "UNSUPPORTED_OPERATION"

    def __init__(self, operation: str):
        super().__init__(f"Unsupported operation: {operation}")
        self.operation = operation
