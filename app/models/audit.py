"""
Audit log Pydantic models
"""
from pydantic import BaseModel
from typing import Optional, List, Dict, Any
from datetime import datetime


class AuditRecord(BaseModel):
    id: str
    level: str
    type: str
    action: str
    accountId: Optional[str] = None
    data: Dict[str, Any] = {}
    status: str
    needsReview: bool = False
    createdAt: Optional[datetime] = None


class Pagination(BaseModel):
    total: int
    page: int
    limit: int
    totalPages: int


class AuditListResponse(BaseModel):
    logs: List[AuditRecord]
    pagination: Pagination
