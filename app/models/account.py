"""
Account-related Pydantic models
"""
from pydantic import BaseModel, Field, field_validator
from typing import Optional, List, Literal
from datetime import datetime

from app.models.notification import normalize_reminder_times
from app.utils.time_utils import utcnow, to_naive_utc


class SubscriptionRecord(BaseModel):
    status: str = "trial"  # trial, active, canceled, expired
    plan: str = "monthly"  # monthly, yearly
    stripeCustomerId: Optional[str] = None
    stripeSubscriptionId: Optional[str] = None
    currentPeriodStart: Optional[datetime] = None
    currentPeriodEnd: Optional[datetime] = None
    trialEndsAt: Optional[datetime] = None
    canceledAt: Optional[datetime] = None
    cancelAtPeriodEnd: Optional[bool] = None


class NotificationRecord(BaseModel):
    enabled: bool = True
    reminderTimes: List[str] = []
    pushTokens: List[str] = []


class ProfileDetails(BaseModel):
    height: Optional[float] = Field(default=None, ge=100, le=250)  # cm
    dateOfBirth: Optional[datetime] = None
    gender: Optional[Literal["male", "female", "other"]] = None
    activityLevel: Optional[Literal["sedentary", "light", "moderate", "active", "very_active"]] = None

    @field_validator("dateOfBirth")
    @classmethod
    def not_in_future(cls, v: Optional[datetime]) -> Optional[datetime]:
        if v is not None:
            v = to_naive_utc(v)
            if v > utcnow():
                raise ValueError("dateOfBirth cannot be in the future")
        return v


class Units(BaseModel):
    weight: Literal["kg", "lbs"] = "kg"
    height: Literal["cm", "ft"] = "cm"


class Preferences(BaseModel):
    theme: Literal["light", "dark", "system"] = "system"
    units: Units = Units()


# Request Models
class LoginRequest(BaseModel):
    fcmToken: Optional[str] = None


class LogoutRequest(BaseModel):
    fcmToken: str


class UpdatePushTokenRequest(BaseModel):
    fcmToken: str
    oldToken: Optional[str] = None


class ProfileSettings(BaseModel):
    notificationsEnabled: Optional[bool] = None
    reminderTimes: Optional[List[str]] = Field(default=None, max_length=10)
    theme: Optional[Literal["light", "dark", "system"]] = None
    units: Optional[Units] = None

    @field_validator("reminderTimes")
    @classmethod
    def check_times(cls, v: Optional[List[str]]) -> Optional[List[str]]:
        return normalize_reminder_times(v) if v is not None else v


class ProfileUpdateRequest(BaseModel):
    """Partial profile update; only the fields sent are changed"""
    displayName: Optional[str] = Field(default=None, min_length=1, max_length=100)
    phoneNumber: Optional[str] = Field(default=None, pattern=r"^\+?[1-9]\d{1,14}$")
    profile: Optional[ProfileDetails] = None
    settings: Optional[ProfileSettings] = None

    @field_validator("displayName")
    @classmethod
    def strip_name(cls, v: Optional[str]) -> Optional[str]:
        if v is not None:
            v = v.strip()
            if not v:
                raise ValueError("displayName cannot be blank")
        return v


# Response Models
class AccountResponse(BaseModel):
    id: str
    firebaseUid: str
    email: Optional[str] = None
    displayName: Optional[str] = None
    photoURL: Optional[str] = None
    phoneNumber: Optional[str] = None
    isEmailVerified: bool = False
    isActive: bool = True
    profile: ProfileDetails = ProfileDetails()
    preferences: Preferences = Preferences()
    subscription: SubscriptionRecord
    notifications: NotificationRecord
    isSubscriptionActive: bool = False
    isTrialExpired: bool = False
    lastActiveAt: Optional[datetime] = None
    dateCreated: Optional[datetime] = None


class SubscriptionStatusResponse(BaseModel):
    status: str
    isActive: bool
    isTrialExpired: bool
    plan: str
    trialEndsAt: Optional[datetime] = None
    currentPeriodStart: Optional[datetime] = None
    currentPeriodEnd: Optional[datetime] = None
    canceledAt: Optional[datetime] = None
