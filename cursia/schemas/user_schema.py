from __future__ import annotations

import re
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, EmailStr, Field, field_validator

from cursia.core.plans import UserPlan
from cursia.schemas.base_schema import CamelModel

_USERNAME_RE = re.compile(r"^[A-Za-z0-9_]+$")
MAX_INTERESTS = 10


def _clean_interests(value: Optional[List[str]]) -> List[str]:
    if value is None:
        return []
    cleaned = [item.strip() for item in value]
    if any(not item for item in cleaned):
        raise ValueError("Los intereses no pueden estar vacíos")
    if len(cleaned) > MAX_INTERESTS:
        raise ValueError(f"Máximo {MAX_INTERESTS} intereses")
    return cleaned


class UserCreate(BaseModel):
    username: str = Field(..., min_length=3, max_length=20)
    email: EmailStr
    password: str = Field(..., min_length=6)
    name: Optional[str] = Field(default=None, max_length=255)
    level: Optional[str] = None
    interests: List[str] = Field(default_factory=list)

    @field_validator("username")
    @classmethod
    def _check_username(cls, value: str) -> str:
        if not _USERNAME_RE.match(value):
            raise ValueError("El nombre de usuario solo puede contener letras, números y guiones bajos")
        return value

    @field_validator("interests", mode="before")
    @classmethod
    def _check_interests(cls, value):
        return _clean_interests(value)


class User(CamelModel):
    id: int
    username: str
    email: EmailStr
    full_name: Optional[str] = None
    level: Optional[str] = None
    interests: List[str] = Field(default_factory=list)
    plan: UserPlan = UserPlan.FREE
    is_active: bool
    created_at: Optional[datetime] = None


class InterestsUpdate(BaseModel):
    interests: List[str]

    @field_validator("interests", mode="before")
    @classmethod
    def _check_interests(cls, value):
        return _clean_interests(value)


class PlanUpdate(BaseModel):
    plan: UserPlan

    @field_validator("plan", mode="before")
    @classmethod
    def _upper(cls, value):
        return value.upper() if isinstance(value, str) else value


class ProfileUpdate(BaseModel):
    email: Optional[EmailStr] = None
    name: Optional[str] = Field(default=None, min_length=2, max_length=255)
