from sqlalchemy import Column, Integer, String, TIMESTAMP
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from ..database import Base
from .issue import Language
from pydantic import BaseModel, EmailStr, ConfigDict, Field
from typing import Optional

ADMIN_ROLE = "admin"


# -------------------------------
# SQLAlchemy ORM Model
# -------------------------------
class User(Base):
    __tablename__ = "users"

    user_id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=False)
    email = Column(String(255), unique=True, nullable=False)
    password_hash = Column(String(255), nullable=False)
    role = Column(String(50), default="citizen")
    preferred_language = Column(String(5), default=Language.ENGLISH.value)
    created_at = Column(TIMESTAMP, server_default=func.now())

    issues = relationship("Issue", back_populates="reporter")

    @property
    def is_admin(self) -> bool:
        return (self.role or "").lower() == ADMIN_ROLE


# -------------------------------
# Pydantic Schemas (for FastAPI)
# -------------------------------

# -------- Requests --------
class RegisterRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    email: EmailStr
    password: str = Field(..., min_length=6, max_length=72)
    role: Optional[str] = "citizen"
    preferred_language: Language = Language.ENGLISH


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


# -------- Responses --------
class UserBase(BaseModel):
    user_id: int
    name: str
    email: EmailStr
    role: Optional[str] = "citizen"

    # Pydantic V2 Config
    model_config = ConfigDict(from_attributes=True)


class RegisterResponse(UserBase):
    token: str


class LoginResponse(UserBase):
    token: str


class ProfileResponse(UserBase):
    preferred_language: Language
    reported_issues: int
