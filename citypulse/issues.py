"""Issue intake, lookup and status workflow."""
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from citypulse.errors import Forbidden, NotFound, UpstreamFailure, ValidationError
from citypulse.logging import get_logger
from citypulse.media import MediaStore, discard, upload_all
from citypulse.models.models import (
    Issue,
    IssueCategory,
    IssuePriority,
    IssueStatus,
    STATUS_ORDER,
)
from citypulse.models.user import User, UserRole

logger = get_logger(__name__)

ISSUE_FOLDER = "issues"
MAX_MEDIA_FILES = 5

# Roles allowed to move an issue through the workflow
STAFF_ROLES = {UserRole.OFFICIAL.value, UserRole.ADMIN.value}


@dataclass
class IssueSubmission:
    category: str
    description: str
    location: str
    priority: Optional[str] = None
    contact_name: Optional[str] = None
    contact_phone: Optional[str] = None
    # (content, original filename) per attachment
    media: List[Tuple[bytes, Optional[str]]] = field(default_factory=list)


def _clean(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None


def validate_submission(submission: IssueSubmission) -> Tuple[IssueCategory, IssuePriority]:
    """Check enums, required text and attachment count before anything is uploaded."""
    errors = []

    category = None
    try:
        category = IssueCategory((submission.category or "").strip().lower())
    except ValueError:
        errors.append({
            "field": "category",
            "message": f"'{submission.category}' is not a valid category",
            "allowed": [c.value for c in IssueCategory],
        })

    priority = IssuePriority.MEDIUM
    if _clean(submission.priority):
        try:
            priority = IssuePriority(submission.priority.strip().lower())
        except ValueError:
            errors.append({
                "field": "priority",
                "message": f"'{submission.priority}' is not a valid priority",
                "allowed": [p.value for p in IssuePriority],
            })

    if not _clean(submission.description):
        errors.append({"field": "description", "message": "Description is required"})
    if not _clean(submission.location):
        errors.append({"field": "location", "message": "Location is required"})
    if len(submission.media) > MAX_MEDIA_FILES:
        errors.append({
            "field": "media",
            "message": f"At most {MAX_MEDIA_FILES} files may be attached",
        })

    if errors:
        raise ValidationError(errors=errors)
    return category, priority


# -------------------------------------------------------
# SUBMIT
# -------------------------------------------------------
def _insert_issue(db: Session, issue: Issue) -> None:
    try:
        db.add(issue)
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        raise
    db.refresh(issue)


async def submit(db: Session, store: MediaStore, reporter: User,
                 submission: IssueSubmission) -> Issue:
    """Validate, upload attachments, then persist one issue in ``reported`` state.

    Any failed upload aborts the submission: no issue row is written and the
    attachments that did upload are removed again.
    """
    category, priority = validate_submission(submission)

    uploaded = await upload_all(store, submission.media, ISSUE_FOLDER)

    issue = Issue(
        category=category.value,
        description=_clean(submission.description),
        location=_clean(submission.location),
        priority=priority.value,
        contact_name=_clean(submission.contact_name),
        contact_phone=_clean(submission.contact_phone),
        media=[item.url for item in uploaded],
        reported_by=reporter.user_id,
        status=IssueStatus.REPORTED.value,
    )
    try:
        await run_in_threadpool(_insert_issue, db, issue)
    except SQLAlchemyError as exc:
        logger.exception("issue_insert_failed", user_id=reporter.user_id)
        await run_in_threadpool(discard, store, uploaded)
        raise UpstreamFailure() from exc

    logger.info(
        "issue_submitted",
        issue_id=issue.issue_id,
        user_id=reporter.user_id,
        category=issue.category,
        media_count=len(uploaded),
    )
    return issue


# -------------------------------------------------------
# READ
# -------------------------------------------------------
def list_for_reporter(db: Session, reporter: User) -> List[Issue]:
    return (
        db.query(Issue)
        .filter(Issue.reported_by == reporter.user_id)
        .order_by(Issue.created_at.desc(), Issue.issue_id.desc())
        .all()
    )


def get_issue(db: Session, issue_id: int) -> Issue:
    issue = db.get(Issue, issue_id)
    if issue is None:
        raise NotFound("Issue not found")
    return issue


# -------------------------------------------------------
# STATUS WORKFLOW
# -------------------------------------------------------
def update_status(db: Session, actor: User, issue_id: int, new_status: IssueStatus) -> Issue:
    """Advance an issue along reported -> in_progress -> resolved."""
    if actor.role not in STAFF_ROLES:
        raise Forbidden("Only municipal staff can change issue status")

    issue = get_issue(db, issue_id)
    current = IssueStatus(issue.status)
    if STATUS_ORDER[new_status] <= STATUS_ORDER[current]:
        raise ValidationError(
            f"Cannot move issue from '{current.value}' to '{new_status.value}'",
            errors=[{"field": "status", "message": "Status can only move forward"}],
        )

    issue.status = new_status.value
    db.commit()
    db.refresh(issue)
    logger.info(
        "issue_status_changed",
        issue_id=issue.issue_id,
        actor_id=actor.user_id,
        from_status=current.value,
        to_status=new_status.value,
    )
    return issue
