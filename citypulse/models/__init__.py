from .user import User, UserRole
from .models import Issue, IssueCategory, IssuePriority, IssueStatus

__all__ = ["User", "UserRole", "Issue", "IssueCategory", "IssuePriority", "IssueStatus"]
