"""
Pydantic schemas for the content API.
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field


class SignupRequest(BaseModel):
    email: str = Field(..., min_length=1, max_length=320)
    password: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1, max_length=200)


class LoginRequest(BaseModel):
    email: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)


class UserPayload(BaseModel):
    id: str
    email: str
    user_metadata: dict = Field(default_factory=dict)


class SignupResponse(BaseModel):
    success: Literal[True] = True
    user: UserPayload


class LoginResponse(BaseModel):
    access_token: str
    user: UserPayload


class UserResponse(BaseModel):
    user: UserPayload


class SuccessResponse(BaseModel):
    success: Literal[True] = True


class CreateResponse(BaseModel):
    success: Literal[True] = True
    id: str


class SettingsResponse(BaseModel):
    settings: dict


class UploadResponse(BaseModel):
    success: Literal[True] = True
    url: str
    path: str


class HealthResponse(BaseModel):
    status: Literal["ok"]
    timestamp: str
