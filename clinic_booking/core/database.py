from sqlalchemy import create_engine
from sqlalchemy.ext.declarative import declarative_base
from sqlalchemy.orm import sessionmaker, Session
from typing import Generator
import logging
import redis
from .config import settings

logger = logging.getLogger(__name__)

database_url = settings.get_database_url

if database_url.startswith("sqlite"):
    # SQLite is only used for tests and local development
    engine = create_engine(
        database_url,
        connect_args={"check_same_thread": False},
    )
else:
    engine = create_engine(
        database_url,
        pool_size=5,
        max_overflow=10,
        pool_timeout=30,
        pool_recycle=1800,  # Recycle connections after 30 minutes
        pool_pre_ping=True,
    )

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()

# Redis setup - mock for testing
if settings.TESTING:
    # Use a simple dict-based mock for Redis in tests
    class RedisMock:
        def __init__(self):
            self.data = {}

        def setex(self, key, time, value):
            self.data[key] = str(value)
            return True

        def get(self, key):
            return self.data.get(key)

        def delete(self, key):
            if key in self.data:
                del self.data[key]
            return 1

        def incr(self, key):
            self.data[key] = str(int(self.data.get(key, "0")) + 1)
            return int(self.data[key])

        def flushdb(self):
            self.data.clear()
            return True

    redis_client = RedisMock()
else:
    # Real Redis client for production
    redis_client = redis.from_url(settings.REDIS_URL, decode_responses=True)

# Database dependency
def get_db() -> Generator[Session, None, None]:
    """Get database session."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()

# Redis dependency
def get_redis():
    """Get Redis client."""
    return redis_client

# Database initialization
def init_db():
    """Initialize database tables."""
    # Models must be imported so they register with Base.metadata
    from ..models import doctor, time_slot, appointment, staff, reconciliation  # noqa: F401

    Base.metadata.create_all(bind=engine)


def bootstrap_admin(db: Session) -> None:
    """Create the first admin account from settings if no admin exists yet."""
    if not settings.FIRST_ADMIN_EMAIL or not settings.FIRST_ADMIN_PASSWORD:
        return

    from ..models.staff import StaffAccount
    from ..core.security import StaffRole, get_password_hash, new_auth_id

    existing = db.query(StaffAccount).filter(
        StaffAccount.role == StaffRole.ADMIN
    ).first()
    if existing:
        return

    admin = StaffAccount(
        auth_id=new_auth_id(),
        email=settings.FIRST_ADMIN_EMAIL.lower(),
        password_hash=get_password_hash(settings.FIRST_ADMIN_PASSWORD),
        role=StaffRole.ADMIN,
        is_active=True,
    )
    db.add(admin)
    db.commit()
    logger.info(f"Created bootstrap admin account {admin.email}")
