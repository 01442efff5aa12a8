from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base

from citypulse.config import get_settings

# --- 1. Get Connection String ---
DATABASE_URL = get_settings().database_url

# --- 2. Create SQLAlchemy Engine ---
# SQLite connections are shared across the threadpool that serves sync endpoints
connect_args = {"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {}
engine = create_engine(DATABASE_URL, echo=False, connect_args=connect_args)

# --- 3. Create Session Factory ---
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# --- 4. Declare Base for ORM Models ---
Base = declarative_base()


# --- 5. FastAPI Dependency for Database Session ---
def get_db():
    """
    Dependency that provides a database session for each request.
    Ensures the session is properly closed after use.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
