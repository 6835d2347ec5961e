"""
Notification Pydantic models
"""
import re
from datetime import datetime
from typing import Optional, List, Dict

from pydantic import BaseModel, Field, field_validator, model_validator

REMINDER_TIME_PATTERN = re.compile(r"^([01][0-9]|2[0-3]):[0-5][0-9]$")


def normalize_reminder_times(times: List[str]) -> List[str]:
    """Validate HH:MM strings, drop duplicates and sort them"""
    normalized = set()
    for value in times:
        value = value.strip()
        # Accept "9:00" as "09:00"
        if re.match(r"^[0-9]:[0-5][0-9]$", value):
            value = f"0{value}"
        if not REMINDER_TIME_PATTERN.match(value):
            raise ValueError(f"Invalid reminder time '{value}', expected HH:MM (24h)")
        normalized.add(value)
    return sorted(normalized)


class NotificationSettingsRequest(BaseModel):
    notificationsEnabled: bool
    reminderTimes: Optional[List[str]] = Field(default=None, max_length=10)

    @field_validator("reminderTimes")
    @classmethod
    def check_times(cls, v: Optional[List[str]]) -> Optional[List[str]]:
        if v is None:
            return v
        return normalize_reminder_times(v)


class NotificationSettingsResponse(BaseModel):
    notificationsEnabled: bool
    reminderTimes: List[str]


class SendNotificationRequest(BaseModel):
    title: str = Field(max_length=100)
    body: str = Field(max_length=500)
    data: Optional[Dict[str, str]] = None
    accountId: Optional[str] = None
    accountIds: Optional[List[str]] = None

    @model_validator(mode="after")
    def check_targets(self):
        if bool(self.accountId) == bool(self.accountIds):
            raise ValueError("Exactly one of accountId or accountIds must be provided")
        return self


class MulticastResult(BaseModel):
    """Per-token outcome summary of a multicast push"""
    success_count: int = 0
    failure_count: int = 0
    failed_tokens: List[str] = []


class ReminderRunResult(BaseModel):
    """Summary of one scheduler tick"""
    job: str
    ranAt: datetime
    candidates: int = 0
    skippedAlreadyLogged: int = 0
    notifiedAccounts: int = 0
    tokens: int = 0
    successCount: int = 0
    failureCount: int = 0
    batchErrors: int = 0
