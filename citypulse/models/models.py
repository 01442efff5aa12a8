# models.py
from sqlalchemy import Column, Integer, String, Text, ForeignKey, JSON, TIMESTAMP
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from pydantic import BaseModel, ConfigDict, Field
from datetime import datetime
from typing import List, Optional
from enum import Enum
from ..database import Base
from .user import User


# -------------------------------
# Enums
# -------------------------------
class IssueCategory(str, Enum):
    ROADS = "roads"
    WATER = "water"
    ELECTRICITY = "electricity"
    SANITATION = "sanitation"
    GARBAGE = "garbage"


class IssuePriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    EMERGENCY = "emergency"


class IssueStatus(str, Enum):
    REPORTED = "reported"
    IN_PROGRESS = "in_progress"
    RESOLVED = "resolved"


# Position in the workflow; status may only move to a higher rank
STATUS_ORDER = {
    IssueStatus.REPORTED: 0,
    IssueStatus.IN_PROGRESS: 1,
    IssueStatus.RESOLVED: 2,
}


# -------------------------------
# SQLAlchemy ORM Model
# -------------------------------
class Issue(Base):
    __tablename__ = "issues"

    issue_id = Column(Integer, primary_key=True, index=True)
    reported_by = Column(Integer, ForeignKey("users.user_id"), nullable=False, index=True)
    category = Column(String(50), nullable=False)
    description = Column(Text, nullable=False)
    location = Column(String(500), nullable=False)
    priority = Column(String(50), nullable=False, default=IssuePriority.MEDIUM.value)
    media = Column(JSON, nullable=False, default=list)
    contact_name = Column(String(200))
    contact_phone = Column(String(32))
    status = Column(String(50), nullable=False, default=IssueStatus.REPORTED.value)
    created_at = Column(TIMESTAMP, server_default=func.now())
    updated_at = Column(TIMESTAMP, server_default=func.now(), onupdate=func.now())

    reporter = relationship(User, back_populates="issues")


# -------------------------------
# Pydantic Schemas
# -------------------------------
class IssueOut(BaseModel):
    id: int
    category: IssueCategory
    description: str
    location: str
    priority: IssuePriority
    media: List[str] = []
    reported_by: int = Field(alias="reportedBy")
    contact_name: Optional[str] = Field(default=None, alias="contactName")
    contact_phone: Optional[str] = Field(default=None, alias="contactPhone")
    status: IssueStatus
    created_at: Optional[datetime] = Field(default=None, alias="createdAt")
    updated_at: Optional[datetime] = Field(default=None, alias="updatedAt")

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_issue(cls, issue: Issue) -> "IssueOut":
        return cls(
            id=issue.issue_id,
            category=issue.category,
            description=issue.description,
            location=issue.location,
            priority=issue.priority,
            media=list(issue.media or []),
            reported_by=issue.reported_by,
            contact_name=issue.contact_name,
            contact_phone=issue.contact_phone,
            status=issue.status,
            created_at=issue.created_at,
            updated_at=issue.updated_at,
        )


class StatusUpdateRequest(BaseModel):
    status: IssueStatus


class IssueResponse(BaseModel):
    success: bool = True
    message: Optional[str] = None
    data: IssueOut


class IssueListResponse(BaseModel):
    success: bool = True
    data: List[IssueOut]
