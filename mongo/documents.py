"""
Document schemas for every collection the query API can reach.

Models supply defaults (`id`, timestamps, status values) and reject inserts
that miss required fields. Unknown extra fields are kept as-is.
"""

import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional, Type

from pydantic import BaseModel, ConfigDict, Field


def new_id() -> str:
    return str(uuid.uuid4())


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Document(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str = Field(default_factory=new_id)
    createdAt: datetime = Field(default_factory=utc_now)
    updatedAt: datetime = Field(default_factory=utc_now)


class ChecklistItem(BaseModel):
    id: str = Field(default_factory=new_id)
    title: str
    checked: bool = False
    order: int = 0


class Comment(BaseModel):
    id: str = Field(default_factory=new_id)
    user_id: str
    content: str
    created_at: datetime = Field(default_factory=utc_now)


# ---- People / organisation

class User(Document):
    name: str
    email: str
    password: str
    role: str = "user"
    assigned_projects: List[str] = Field(default_factory=list)
    phone: Optional[str] = None
    telegram_chat_id: Optional[str] = None
    hourly_rate: Optional[float] = None
    monthly_salary: Optional[float] = None
    currency: str = "COP"
    payment_account: Optional[str] = None


class Client(Document):
    name: str
    contact: Optional[str] = None
    email: Optional[str] = None
    hourly_rate: Optional[float] = None


class Area(Document):
    name: str
    description: Optional[str] = None


class AreaUserAssignment(Document):
    user_id: str
    area_id: str


# ---- Projects / work

class Project(Document):
    name: str
    description: Optional[str] = None
    start_date: datetime
    deadline: datetime
    created_by: str
    is_archived: bool = False
    archived_at: Optional[datetime] = None
    restricted_access: bool = False
    client_id: Optional[str] = None
    budget_hours: Optional[float] = None
    budget_amount: Optional[float] = None


class ProjectTemplate(Document):
    name: str
    description: Optional[str] = None
    phases: List[Dict[str, Any]] = Field(default_factory=list)
    tasks: List[Dict[str, Any]] = Field(default_factory=list)


class Task(Document):
    title: str
    description: Optional[str] = None
    start_date: datetime
    deadline: datetime
    estimated_duration: float
    priority: str = "medium"
    is_sequential: bool = False
    created_by: str
    # derived from the task's subtasks, see mongo.hooks
    assigned_users: List[str] = Field(default_factory=list)
    project_id: Optional[str] = None
    status: str = "pending"
    status_history: List[Any] = Field(default_factory=list)
    review_comments: Optional[str] = None
    notes: Optional[str] = None
    checklist: List[ChecklistItem] = Field(default_factory=list)
    feedback: Any = None
    returned_at: Optional[datetime] = None
    is_billable: bool = True
    comments: List[Comment] = Field(default_factory=list)


class Subtask(Document):
    task_id: str
    title: str
    description: Optional[str] = None
    estimated_duration: float
    sequence_order: Optional[int] = None
    assigned_to: str
    status: str = "pending"
    start_date: datetime = Field(default_factory=utc_now)
    deadline: datetime = Field(default_factory=utc_now)
    status_history: List[Any] = Field(default_factory=list)
    review_comments: Optional[str] = None
    notes: Dict[str, Any] = Field(default_factory=dict)
    checklist: List[ChecklistItem] = Field(default_factory=list)
    feedback: Any = None
    returned_at: Optional[datetime] = None
    is_billable: bool = True
    comments: List[Comment] = Field(default_factory=list)


class TaskWorkAssignment(Document):
    user_id: str
    date: str
    # id of the task or subtask, depending on task_type
    task_id: str
    task_type: Literal["task", "subtask"]
    project_id: Optional[str] = None
    subtask_id: Optional[str] = None
    estimated_duration: float
    actual_duration: Optional[float] = None
    status: str = "pending"
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    notes: Any = Field(default_factory=list)


class StatusHistory(Document):
    task_id: Optional[str] = None
    subtask_id: Optional[str] = None
    changed_at: datetime = Field(default_factory=utc_now)
    changed_by: Optional[str] = None
    previous_status: Optional[str] = None
    new_status: str
    metadata: Any = None


class WorkEvent(Document):
    user_id: str
    date: str
    title: str
    description: Optional[str] = None
    start_time: str
    end_time: str
    event_type: str
    project_id: Optional[str] = None


class WorkSession(Document):
    assignment_id: str
    start_time: datetime
    end_time: datetime
    duration_minutes: float
    notes: str = ""
    session_type: str


class PayrollPayment(Document):
    period_start: datetime
    period_end: datetime
    total_amount: float
    currency: str = "COP"
    paid_at: datetime = Field(default_factory=utc_now)
    notes: Optional[str] = None
    created_by: Optional[str] = None


# ---- Settings / logs

class AppSettings(Document):
    key: str
    value: Any = None


class AuditLog(Document):
    user_id: str
    entity_type: str
    entity_id: str
    action: str
    field_name: Optional[str] = None
    old_value: Any = None
    new_value: Any = None
    summary: Optional[str] = None


TelegramLogType = Literal[
    "test",
    "admin-notification",
    "task-available",
    "user-task-in-review",
    "deadline-reminder",
    "daily-summary",
    "budget-alert",
]
TelegramLogStatus = Literal["success", "failed", "skipped"]


class TelegramNotificationLog(Document):
    type: TelegramLogType
    recipient: str
    recipient_label: Optional[str] = None
    status: TelegramLogStatus
    details: Optional[str] = None
    error: Optional[str] = None


# ---- Bookkeeping

class AcctClient(Document):
    name: str
    sort_order: int = 0


class AcctEntity(Document):
    name: str
    type: Literal["project", "agency", "internal"]
    client_id: Optional[str] = None
    sort_order: int = 0


class AcctCategory(Document):
    name: str
    type: Literal["income", "expense"]
    parent_id: Optional[str] = None


class AcctPaymentAccount(Document):
    name: str
    currency: str = "USD"


class AcctTransaction(Document):
    date: datetime
    amount: float
    currency: str = "USD"
    type: Literal["income", "expense", "transfer"]
    entity_id: Optional[str] = None
    category_id: Optional[str] = None
    payment_account_id: str
    description: str = ""
    created_by: Optional[str] = None


class AcctChartAccount(Document):
    code: str
    name: str
    type: Literal["asset", "liability", "equity", "income", "expense"]
    parent_id: Optional[str] = None
    is_header: bool = False
    sort_order: int = 0


class AcctJournalEntry(Document):
    date: datetime
    description: str = ""
    reference: str = ""
    created_by: Optional[str] = None


class AcctJournalEntryLine(Document):
    journal_entry_id: str
    account_id: str
    entity_id: Optional[str] = None
    debit: float = 0
    credit: float = 0
    description: str = ""
    currency: str = "USD"


# ---- Table name -> schema
TABLES: Dict[str, Type[Document]] = {
    "users": User,
    "clients": Client,
    "projects": Project,
    "project_templates": ProjectTemplate,
    "tasks": Task,
    "subtasks": Subtask,
    "areas": Area,
    "area_user_assignments": AreaUserAssignment,
    "task_work_assignments": TaskWorkAssignment,
    "status_history": StatusHistory,
    "app_settings": AppSettings,
    "work_events": WorkEvent,
    "work_sessions": WorkSession,
    "audit_log": AuditLog,
    "payroll_payments": PayrollPayment,
    "telegram_notification_log": TelegramNotificationLog,
    "acct_clients": AcctClient,
    "acct_entities": AcctEntity,
    "acct_categories": AcctCategory,
    "acct_payment_accounts": AcctPaymentAccount,
    "acct_transactions": AcctTransaction,
    "acct_chart_accounts": AcctChartAccount,
    "acct_journal_entries": AcctJournalEntry,
    "acct_journal_entry_lines": AcctJournalEntryLine,
}


def get_model(table: str) -> Optional[Type[Document]]:
    return TABLES.get(table)


def new_document(table: str, payload: Dict[str, Any]) -> Dict[str, Any]:
    """Validate `payload` against the table schema and return the storable dict."""
    return TABLES[table].model_validate(payload).model_dump()
