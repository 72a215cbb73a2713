from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class TestMessageRequest(CamelModel):
    chat_id: str = Field(alias="chatId")
    message: str


class AdminNotificationRequest(CamelModel):
    task_title: str = Field(alias="taskTitle")
    project_name: str = Field(alias="projectName")
    status: Literal["completed", "blocked", "in_review", "approved", "returned", "reassigned"]
    user_name: Optional[str] = Field(default=None, alias="userName")
    previous_user_name: Optional[str] = Field(default=None, alias="previousUserName")
    new_user_name: Optional[str] = Field(default=None, alias="newUserName")
    area_name: Optional[str] = Field(default=None, alias="areaName")
    block_reason: Optional[str] = Field(default=None, alias="blockReason")
    return_feedback: Optional[str] = Field(default=None, alias="returnFeedback")
    admin_name: Optional[str] = Field(default=None, alias="adminName")
    is_subtask: bool = Field(default=False, alias="isSubtask")
    parent_task_title: Optional[str] = Field(default=None, alias="parentTaskTitle")
    # used to look up timing from status_history
    task_id: Optional[str] = Field(default=None, alias="taskId")


class TaskAvailableRequest(CamelModel):
    user_ids: List[str] = Field(alias="userIds", min_length=1)
    task_title: str = Field(alias="taskTitle")
    project_name: str = Field(alias="projectName")
    reason: Literal["unblocked", "returned", "sequential_dependency_completed", "created_available", "reassigned"]
    is_subtask: bool = Field(default=False, alias="isSubtask")
    parent_task_title: Optional[str] = Field(default=None, alias="parentTaskTitle")


class NotificationResponse(CamelModel):
    success: bool
    message: Optional[str] = None
    sent_count: Optional[int] = Field(default=None, alias="sentCount")
    total_users: Optional[int] = Field(default=None, alias="totalUsers")


class LogEntriesResponse(BaseModel):
    entries: List[Dict[str, Any]]
