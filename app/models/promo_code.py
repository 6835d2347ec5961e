"""
Promo code Pydantic models
"""
import re
from datetime import datetime
from typing import Optional, List

from pydantic import BaseModel, Field, field_validator, model_validator

PROMO_CODE_TYPES = ("free_month", "free_year", "lifetime", "discount_percent", "discount_amount")
NON_MONETARY_TYPES = ("free_month", "free_year", "lifetime")
CODE_PATTERN = re.compile(r"^[A-Z0-9]{3,20}$")
PREFIX_PATTERN = re.compile(r"^[A-Z0-9]{0,14}$")


def check_value_for_type(promo_type: str, value: Optional[float]) -> Optional[str]:
    """Return an error message if `value` is not allowed for `promo_type`"""
    if promo_type in NON_MONETARY_TYPES:
        if value is not None:
            return f"Promo codes of type {promo_type} do not take a value"
    elif promo_type == "discount_percent":
        if value is None or not 0 <= value <= 100:
            return "discount_percent codes require a value between 0 and 100"
    elif promo_type == "discount_amount":
        if value is None or value < 0:
            return "discount_amount codes require a value of at least 0"
    return None


class DiscountInfo(BaseModel):
    type: str
    value: Optional[float] = None
    description: str


# Request Models
class PromoCodeCodeRequest(BaseModel):
    code: str

    @field_validator("code")
    @classmethod
    def normalize_code(cls, v: str) -> str:
        v = v.strip().upper()
        if not 3 <= len(v) <= 20:
            raise ValueError("Promo code must be 3-20 characters")
        return v


class PromoCodeCreateRequest(BaseModel):
    code: str
    type: str
    value: Optional[float] = None
    description: Optional[str] = Field(default=None, max_length=200)
    usageLimit: Optional[int] = Field(default=None, ge=1)
    isActive: bool = True
    validFrom: Optional[datetime] = None
    validUntil: Optional[datetime] = None

    @field_validator("code")
    @classmethod
    def normalize_code(cls, v: str) -> str:
        v = v.strip().upper()
        if not CODE_PATTERN.match(v):
            raise ValueError("Promo code must be 3-20 uppercase letters or digits")
        return v

    @field_validator("type")
    @classmethod
    def check_type(cls, v: str) -> str:
        if v not in PROMO_CODE_TYPES:
            raise ValueError(f"type must be one of {', '.join(PROMO_CODE_TYPES)}")
        return v

    @model_validator(mode="after")
    def check_value(self):
        error = check_value_for_type(self.type, self.value)
        if error:
            raise ValueError(error)
        if self.validFrom and self.validUntil and self.validUntil < self.validFrom:
            raise ValueError("validUntil must not be before validFrom")
        return self


class PromoCodeUpdateRequest(BaseModel):
    """Administrator edit; type/value consistency is re-checked against the stored code"""
    type: Optional[str] = None
    value: Optional[float] = None
    description: Optional[str] = Field(default=None, max_length=200)
    usageLimit: Optional[int] = Field(default=None, ge=1)
    isActive: Optional[bool] = None
    validFrom: Optional[datetime] = None
    validUntil: Optional[datetime] = None

    @field_validator("type")
    @classmethod
    def check_type(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and v not in PROMO_CODE_TYPES:
            raise ValueError(f"type must be one of {', '.join(PROMO_CODE_TYPES)}")
        return v


class BulkGenerateRequest(BaseModel):
    count: int = Field(default=10, ge=1, le=500)
    type: str
    value: Optional[float] = None
    description: Optional[str] = Field(default=None, max_length=200)
    prefix: str = ""
    usageLimit: Optional[int] = Field(default=1, ge=1)
    validUntil: Optional[datetime] = None

    @field_validator("prefix")
    @classmethod
    def normalize_prefix(cls, v: str) -> str:
        v = v.strip().upper()
        if not PREFIX_PATTERN.match(v):
            raise ValueError("prefix must be at most 14 uppercase letters or digits")
        return v

    @field_validator("type")
    @classmethod
    def check_type(cls, v: str) -> str:
        if v not in PROMO_CODE_TYPES:
            raise ValueError(f"type must be one of {', '.join(PROMO_CODE_TYPES)}")
        return v

    @model_validator(mode="after")
    def check_value(self):
        error = check_value_for_type(self.type, self.value)
        if error:
            raise ValueError(error)
        return self


# Response Models
class PromoCodeResponse(BaseModel):
    id: str
    code: str
    type: str
    value: Optional[float] = None
    description: Optional[str] = None
    isActive: bool
    usageLimit: Optional[int] = None
    usedCount: int = 0
    validFrom: Optional[datetime] = None
    validUntil: Optional[datetime] = None
    createdBy: Optional[str] = None
    createdAt: Optional[datetime] = None
    updatedAt: Optional[datetime] = None


class PromoValidationResult(BaseModel):
    valid: bool
    reason: Optional[str] = None
    discount: Optional[DiscountInfo] = None


class RedemptionResult(BaseModel):
    promoCode: PromoCodeResponse
    discount: DiscountInfo
    subscription: Optional[dict] = None


class PromoCodeListResponse(BaseModel):
    promoCodes: List[PromoCodeResponse]
    total: int
    page: int
    limit: int
    totalPages: int


class BulkGenerateResult(BaseModel):
    promoCodes: List[PromoCodeResponse]
    generated: int
    requested: int
    failed: int = 0
