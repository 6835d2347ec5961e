"""
Progress entry Pydantic models
"""
from pydantic import BaseModel, Field
from typing import Optional, List, Dict
from datetime import datetime


class Measurements(BaseModel):
    """Body measurements in cm"""
    chest: Optional[float] = Field(default=None, ge=50, le=200)
    waist: Optional[float] = Field(default=None, ge=40, le=200)
    hips: Optional[float] = Field(default=None, ge=50, le=200)
    leftArm: Optional[float] = Field(default=None, ge=15, le=80)
    rightArm: Optional[float] = Field(default=None, ge=15, le=80)
    leftThigh: Optional[float] = Field(default=None, ge=30, le=120)
    rightThigh: Optional[float] = Field(default=None, ge=30, le=120)
    neck: Optional[float] = Field(default=None, ge=20, le=60)


class ProgressCreateRequest(BaseModel):
    date: datetime
    weight: float = Field(ge=20, le=500)
    measurements: Optional[Measurements] = None
    bodyFatPercentage: Optional[float] = Field(default=None, ge=3, le=50)
    notes: Optional[str] = Field(default=None, max_length=1000)
    mood: Optional[int] = Field(default=None, ge=1, le=5)
    energyLevel: Optional[int] = Field(default=None, ge=1, le=5)
    sleepQuality: Optional[int] = Field(default=None, ge=1, le=5)


class ProgressUpdateRequest(BaseModel):
    """Only the fields sent are changed; the entry's date is fixed"""
    weight: Optional[float] = Field(default=None, ge=20, le=500)
    measurements: Optional[Measurements] = None
    bodyFatPercentage: Optional[float] = Field(default=None, ge=3, le=50)
    notes: Optional[str] = Field(default=None, max_length=1000)
    mood: Optional[int] = Field(default=None, ge=1, le=5)
    energyLevel: Optional[int] = Field(default=None, ge=1, le=5)
    sleepQuality: Optional[int] = Field(default=None, ge=1, le=5)


class ProgressResponse(BaseModel):
    id: str
    accountId: str
    date: datetime
    weight: float
    measurements: Optional[Measurements] = None
    bodyFatPercentage: Optional[float] = None
    notes: Optional[str] = None
    mood: Optional[int] = None
    energyLevel: Optional[int] = None
    sleepQuality: Optional[int] = None
    createdAt: Optional[datetime] = None
    updatedAt: Optional[datetime] = None


class ProgressListResponse(BaseModel):
    progress: List[ProgressResponse]
    total: int
    page: int
    limit: int
    totalPages: int


class ProgressComparison(BaseModel):
    weightDifference: float
    daysBetween: float
    measurementChanges: Dict[str, float] = {}


class ProgressCompareResponse(BaseModel):
    progress1: ProgressResponse
    progress2: ProgressResponse
    comparison: ProgressComparison
