from datetime import datetime

from pydantic import BaseModel, EmailStr, Field


class RegisterRequest(BaseModel):
    email: EmailStr
    nickname: str = Field(min_length=2, max_length=40)
    password: str = Field(min_length=8, max_length=128)


class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(min_length=8, max_length=128)


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user_id: str
    nickname: str
    image_url: str | None = None


class UserRead(BaseModel):
    id: str
    email: EmailStr
    nickname: str
    image_url: str | None = None
    created_at: datetime

    class Config:
        from_attributes = True


class UserUpdateRequest(BaseModel):
    nickname: str | None = Field(default=None, min_length=2, max_length=40)
    image_url: str | None = Field(default=None, max_length=500)


class AvailabilityRead(BaseModel):
    available: bool


class PasswordResetRequest(BaseModel):
    email: EmailStr


class PasswordResetConfirmRequest(BaseModel):
    email: EmailStr
    code: str = Field(min_length=4, max_length=12)


class PasswordResetStatusRead(BaseModel):
    message: str


class PasswordResetConfirmRead(BaseModel):
    password: str


class PasswordUpdateRequest(BaseModel):
    password: str = Field(min_length=8, max_length=128)


class UserTargetRequest(BaseModel):
    user_id: str = Field(min_length=1, max_length=32)


class UserBriefRead(BaseModel):
    id: str
    nickname: str
    image_url: str | None = None

    class Config:
        from_attributes = True
