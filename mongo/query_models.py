from enum import Enum
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class QueryOperation(str, Enum):
    SELECT = "select"
    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"
    UPSERT = "upsert"


class OrderSpec(BaseModel):
    model_config = ConfigDict(frozen=True)

    column: str
    ascending: bool = True


class UpsertOptions(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    on_conflict: Optional[str] = Field(default=None, alias="onConflict")
    ignore_duplicates: bool = Field(default=False, alias="ignoreDuplicates")


class QueryRequest(BaseModel):
    """A single query against one table, as sent to POST /api/db/query."""
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    table: str
    operation: QueryOperation
    select: Optional[str] = None
    # filter descriptor: eq / in / contains / not / or / gte / lte / gt / lt
    filters: Optional[Dict[str, Any]] = None
    data: Optional[Union[Dict[str, Any], List[Dict[str, Any]]]] = None
    order: Optional[OrderSpec] = None
    single: bool = False
    limit: Optional[int] = None
    offset: Optional[int] = None
    upsert_options: Optional[UpsertOptions] = Field(default=None, alias="upsertOptions")


class QueryErrorBody(BaseModel):
    message: str
    code: Optional[str] = None


class QueryResponse(BaseModel):
    data: Any = None
    error: Optional[QueryErrorBody] = None

    @classmethod
    def ok(cls, data: Any) -> "QueryResponse":
        return cls(data=data, error=None)

    @classmethod
    def fail(cls, message: str, code: Optional[str] = None) -> "QueryResponse":
        return cls(data=None, error=QueryErrorBody(message=message, code=code))
