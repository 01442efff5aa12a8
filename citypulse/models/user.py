from sqlalchemy import Column, Integer, String, Text, TIMESTAMP
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from ..database import Base
from pydantic import BaseModel, EmailStr, ConfigDict, Field
from typing import Optional
from enum import Enum


# -------------------------------
# SQLAlchemy ORM Model
# -------------------------------
class User(Base):
    __tablename__ = "users"

    user_id = Column(Integer, primary_key=True, index=True)
    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=False)
    email = Column(String(255), unique=True, index=True, nullable=False)
    password_hash = Column(String(255), nullable=False)
    phone = Column(String(32))
    address = Column(String(500))
    avatar = Column(String(1024))
    role = Column(String(50), nullable=False, default="citizen")
    # Single slot: writing a new token revokes whatever was stored before
    refresh_token = Column(Text, nullable=True)
    created_at = Column(TIMESTAMP, server_default=func.now())
    updated_at = Column(TIMESTAMP, server_default=func.now(), onupdate=func.now())

    issues = relationship("Issue", back_populates="reporter")


# -------------------------------
# Pydantic Schemas (for FastAPI)
# -------------------------------

# -------- Enums --------
class UserRole(str, Enum):
    CITIZEN = "citizen"
    OFFICIAL = "official"
    ADMIN = "admin"


# -------- Requests --------
class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class RefreshRequest(BaseModel):
    # Optional so a missing token yields the dedicated 400 message
    refresh_token: Optional[str] = Field(default=None, alias="refreshToken")

    model_config = ConfigDict(populate_by_name=True)


# -------- Responses --------
class UserOut(BaseModel):
    id: int
    first_name: str = Field(alias="firstName")
    last_name: str = Field(alias="lastName")
    email: EmailStr
    phone: Optional[str] = None
    address: Optional[str] = None
    avatar: Optional[str] = None
    role: str = UserRole.CITIZEN.value

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_user(cls, user: User) -> "UserOut":
        return cls(
            id=user.user_id,
            first_name=user.first_name,
            last_name=user.last_name,
            email=user.email,
            phone=user.phone,
            address=user.address,
            avatar=user.avatar,
            role=user.role,
        )


class RegisterResponse(BaseModel):
    success: bool = True
    message: str
    user: UserOut


class LoginResponse(BaseModel):
    success: bool = True
    user: UserOut
    token: str
    refresh_token: str = Field(alias="refreshToken")

    model_config = ConfigDict(populate_by_name=True)


class RefreshResponse(BaseModel):
    success: bool = True
    token: str
    refresh_token: str = Field(alias="refreshToken")

    model_config = ConfigDict(populate_by_name=True)


class ProfileResponse(BaseModel):
    success: bool = True
    user: UserOut


class MessageResponse(BaseModel):
    success: bool = True
    message: str
