from sqlalchemy import create_engine, inspect
from sqlalchemy.orm import sessionmaker, Session
from config import DATABASE_URL
from db.models import Base, Stop

engine = create_engine(
    DATABASE_URL,
    connect_args={"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {},
)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def init_db() -> None:
    """Create all tables if they don't exist."""
    Base.metadata.create_all(bind=engine)


def schedule_loaded(session: Session) -> bool:
    """True once a GTFS import has populated the stops table."""
    if not inspect(session.get_bind()).has_table("stops"):
        return False
    return session.query(Stop.stop_id).first() is not None


def get_session() -> Session:
    """Dependency-injectable session factory for FastAPI routes."""
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
