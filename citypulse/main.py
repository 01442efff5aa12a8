from contextlib import asynccontextmanager
from pathlib import Path
from typing import List, Optional

from fastapi import FastAPI, Depends, File, Form, HTTPException, Request, UploadFile, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import OAuth2PasswordBearer
from fastapi.staticfiles import StaticFiles
from pydantic import EmailStr
from sqlalchemy import text
from sqlalchemy.orm import Session
from starlette.exceptions import HTTPException as StarletteHTTPException

from . import issues, sessions
from .config import get_settings
from .database import Base, engine, get_db
from .errors import CityPulseError, ValidationError
from .logging import get_logger
from .media import MEDIA_URL_PREFIX, MediaStore, get_media_store
from .models import models  # noqa: F401  registers the Issue table
from .models.models import (
    IssueListResponse,
    IssueOut,
    IssueResponse,
    StatusUpdateRequest,
)
from .models.user import (
    LoginRequest,
    LoginResponse,
    MessageResponse,
    ProfileResponse,
    RefreshRequest,
    RefreshResponse,
    RegisterResponse,
    User,
    UserOut,
)

logger = get_logger(__name__)
settings = get_settings()


# -------------------------------------------------------
# FastAPI App Setup
# -------------------------------------------------------
@asynccontextmanager
async def lifespan(app: FastAPI):
    Base.metadata.create_all(bind=engine)
    logger.info("startup_complete", cloudinary=settings.cloudinary_enabled)
    yield
    engine.dispose()


app = FastAPI(title="CityPulse API", version="1.0.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Locally stored uploads are served by the app itself
if not settings.cloudinary_enabled:
    Path(settings.media_root).mkdir(parents=True, exist_ok=True)
    app.mount(MEDIA_URL_PREFIX, StaticFiles(directory=settings.media_root), name="media")


# -------------------------------------------------------
# Error Envelope
# -------------------------------------------------------
def _error_response(status_code: int, message: str, errors: Optional[list] = None) -> JSONResponse:
    content = {"success": False, "message": message}
    if errors:
        content["errors"] = errors
    return JSONResponse(status_code=status_code, content=content)


@app.exception_handler(CityPulseError)
async def handle_citypulse_error(request: Request, exc: CityPulseError):
    if exc.status_code >= 500:
        # Details stay in the log; clients only get the generic message
        logger.error("request_failed", path=request.url.path, method=request.method,
                     error=exc.message, cause=repr(exc.__cause__))
        return _error_response(exc.status_code, exc.default_message)

    logger.info("request_rejected", path=request.url.path, method=request.method,
                status_code=exc.status_code, error=exc.message)
    return _error_response(exc.status_code, exc.message, exc.errors)


@app.exception_handler(RequestValidationError)
async def handle_request_validation_error(request: Request, exc: RequestValidationError):
    errors = [
        {
            "field": ".".join(str(part) for part in err.get("loc", ())[1:]),
            "message": err.get("msg", "Invalid value"),
        }
        for err in exc.errors()
    ]
    return _error_response(status.HTTP_400_BAD_REQUEST, "Validation failed", errors)


@app.exception_handler(StarletteHTTPException)
async def handle_http_exception(request: Request, exc: StarletteHTTPException):
    return _error_response(exc.status_code, str(exc.detail))


@app.exception_handler(Exception)
async def handle_unexpected_error(request: Request, exc: Exception):
    logger.error("unhandled_error", path=request.url.path, method=request.method, exc_info=exc)
    return _error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, "Server error")


# -------------------------------------------------------
# Root Endpoint
# -------------------------------------------------------
@app.get("/")
def root():
    return {"message": "CityPulse API is running."}


# -------------------------------------------------------
#  Health Check Endpoints
# -------------------------------------------------------
@app.get("/health/live", tags=["Health"])
def liveness_check():
    """Liveness probe — confirms app process is alive."""
    return {"status": "alive"}


@app.get("/health/ready", tags=["Health"])
def readiness_check(db: Session = Depends(get_db)):
    """Readiness probe — verifies DB connectivity."""
    try:
        db.execute(text("SELECT 1"))
        return {"status": "ready"}
    except Exception as e:
        logger.error("database_not_ready", error=str(e))
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Database not ready",
        )


# -------------------------------------------------------
# USER & AUTHENTICATION ENDPOINTS
# -------------------------------------------------------
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login", auto_error=False)


def get_current_user(
    token: Optional[str] = Depends(oauth2_scheme),
    db: Session = Depends(get_db)
) -> User:
    """Decode the bearer access token and fetch the current user."""
    return sessions.get_current_user(db, token)


# -------------------------------------------------------
# REGISTER
# -------------------------------------------------------
@app.post("/auth/register", status_code=status.HTTP_201_CREATED, response_model=RegisterResponse)
async def register_user(
    first_name: str = Form(..., alias="firstName"),
    last_name: str = Form(..., alias="lastName"),
    email: EmailStr = Form(...),
    password: str = Form(...),
    phone: Optional[str] = Form(None),
    address: Optional[str] = Form(None),
    avatar: Optional[UploadFile] = File(None),
    db: Session = Depends(get_db),
    store: MediaStore = Depends(get_media_store),
):
    """Register a new citizen, optionally with an avatar image."""
    avatar_file = None
    if avatar is not None and avatar.filename:
        avatar_file = sessions.AvatarFile(
            content=await avatar.read(),
            filename=avatar.filename,
            content_type=avatar.content_type,
        )

    data = sessions.RegistrationData(
        first_name=first_name,
        last_name=last_name,
        email=email,
        password=password,
        phone=phone,
        address=address,
    )
    new_user = await sessions.register(db, store, data, avatar_file)

    return RegisterResponse(
        message="Registration successful.",
        user=UserOut.from_user(new_user),
    )


# -------------------------------------------------------
#  LOGIN
# -------------------------------------------------------
@app.post("/auth/login", response_model=LoginResponse)
def login_user(payload: LoginRequest, db: Session = Depends(get_db)):
    """Authenticate user and issue an access/refresh token pair."""
    result = sessions.login(db, payload.email, payload.password)
    return LoginResponse(
        user=UserOut.from_user(result.user),
        token=result.tokens.access_token,
        refresh_token=result.tokens.refresh_token,
    )


# -------------------------------------------------------
#  REFRESH
# -------------------------------------------------------
@app.post("/auth/refresh", response_model=RefreshResponse)
def refresh_tokens(payload: RefreshRequest, db: Session = Depends(get_db)):
    """Rotate the token pair. The presented refresh token stops working."""
    if not payload.refresh_token:
        raise ValidationError("Refresh token is required")

    tokens = sessions.refresh(db, payload.refresh_token)
    return RefreshResponse(token=tokens.access_token, refresh_token=tokens.refresh_token)


# -------------------------------------------------------
#  LOGOUT
# -------------------------------------------------------
@app.post("/auth/logout", response_model=MessageResponse)
def logout_user(current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    """Revoke the stored refresh token."""
    sessions.logout(db, current_user)
    return MessageResponse(message="Logged out")


# -------------------------------------------------------
# PROFILE
# -------------------------------------------------------
@app.get("/auth/me", response_model=ProfileResponse)
def get_profile(current_user: User = Depends(get_current_user)):
    """Get the currently logged-in user's profile."""
    return ProfileResponse(user=UserOut.from_user(current_user))


# -------------------------------------------------------
# ISSUES
# -------------------------------------------------------
@app.post("/issues", status_code=status.HTTP_201_CREATED, response_model=IssueResponse)
async def create_issue(
    category: str = Form(...),
    description: str = Form(...),
    location: str = Form(...),
    priority: Optional[str] = Form(None),
    contact_name: Optional[str] = Form(None, alias="contactName"),
    contact_phone: Optional[str] = Form(None, alias="contactPhone"),
    media: Optional[List[UploadFile]] = File(None),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    store: MediaStore = Depends(get_media_store),
):
    """Report an issue with up to five photos or videos."""
    files = []
    for upload in media or []:
        if upload.filename:
            files.append((await upload.read(), upload.filename))

    submission = issues.IssueSubmission(
        category=category,
        description=description,
        location=location,
        priority=priority,
        contact_name=contact_name,
        contact_phone=contact_phone,
        media=files,
    )
    issue = await issues.submit(db, store, current_user, submission)

    return IssueResponse(
        message="Issue reported successfully.",
        data=IssueOut.from_issue(issue),
    )


@app.get("/issues/mine", response_model=IssueListResponse)
def list_my_issues(current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    """Issues reported by the current user, newest first."""
    reported = issues.list_for_reporter(db, current_user)
    return IssueListResponse(data=[IssueOut.from_issue(i) for i in reported])


@app.get("/issues/{issue_id}", response_model=IssueResponse)
def get_issue(
    issue_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return IssueResponse(data=IssueOut.from_issue(issues.get_issue(db, issue_id)))


@app.patch("/issues/{issue_id}/status", response_model=IssueResponse)
def update_issue_status(
    issue_id: int,
    payload: StatusUpdateRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Advance an issue's status. Municipal staff only."""
    issue = issues.update_status(db, current_user, issue_id, payload.status)
    return IssueResponse(message="Status updated.", data=IssueOut.from_issue(issue))
