from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, Field


class EntityCreate(BaseModel):
    name: str = Field(min_length=1)
    type: Literal["project", "agency", "internal"]
    client_id: Optional[str] = None
    sort_order: int = 0
    created_by: Optional[str] = None


class EntityUpdate(BaseModel):
    name: Optional[str] = None
    type: Optional[Literal["project", "agency", "internal"]] = None
    client_id: Optional[str] = None
    sort_order: Optional[int] = None
    created_by: Optional[str] = None


class CategoryCreate(BaseModel):
    name: str = Field(min_length=1)
    type: Literal["income", "expense"]
    parent_id: Optional[str] = None
    created_by: Optional[str] = None


class CategoryUpdate(BaseModel):
    name: Optional[str] = None
    type: Optional[Literal["income", "expense"]] = None
    parent_id: Optional[str] = None
    created_by: Optional[str] = None


class PaymentAccountCreate(BaseModel):
    name: str = Field(min_length=1)
    currency: str = "USD"
    created_by: Optional[str] = None


class PaymentAccountUpdate(BaseModel):
    name: Optional[str] = None
    currency: Optional[str] = None
    created_by: Optional[str] = None


class ChartAccountCreate(BaseModel):
    code: str = Field(min_length=1)
    name: str = Field(min_length=1)
    type: Literal["asset", "liability", "equity", "income", "expense"]
    parent_id: Optional[str] = None
    is_header: bool = False
    sort_order: int = 0
    created_by: Optional[str] = None


class ChartAccountUpdate(BaseModel):
    code: Optional[str] = None
    name: Optional[str] = None
    type: Optional[Literal["asset", "liability", "equity", "income", "expense"]] = None
    parent_id: Optional[str] = None
    is_header: Optional[bool] = None
    sort_order: Optional[int] = None
    created_by: Optional[str] = None


class TransactionCreate(BaseModel):
    date: datetime
    amount: float
    currency: str = "USD"
    type: Literal["income", "expense", "transfer"]
    entity_id: Optional[str] = None
    category_id: Optional[str] = None
    payment_account_id: str
    description: str = ""
    created_by: Optional[str] = None


class TransactionUpdate(BaseModel):
    date: Optional[datetime] = None
    amount: Optional[float] = None
    currency: Optional[str] = None
    type: Optional[Literal["income", "expense", "transfer"]] = None
    entity_id: Optional[str] = None
    category_id: Optional[str] = None
    payment_account_id: Optional[str] = None
    description: Optional[str] = None
    created_by: Optional[str] = None


class JournalLineCreate(BaseModel):
    account_id: str
    entity_id: Optional[str] = None
    debit: float = Field(default=0, ge=0)
    credit: float = Field(default=0, ge=0)
    description: str = ""
    currency: str = "USD"


class JournalEntryCreate(BaseModel):
    date: datetime
    description: str = ""
    reference: str = ""
    lines: List[JournalLineCreate] = Field(min_length=2)
    created_by: Optional[str] = None


class BalanceRow(BaseModel):
    entity_id: Optional[str] = None
    entity_name: str
    entity_type: Optional[str] = None
    total_amount: float


class BalanceResponse(BaseModel):
    rows: List[BalanceRow]
    grand_total: float


class TrialBalanceRow(BaseModel):
    account_id: str
    code: Optional[str] = None
    name: Optional[str] = None
    type: Optional[str] = None
    debit: float
    credit: float
    balance: float


class TrialBalanceResponse(BaseModel):
    rows: List[TrialBalanceRow]
    total_debit: float
    total_credit: float
    balanced: bool
