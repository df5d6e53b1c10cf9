from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker

from clinic_backend.core import config


def build_engine(database_url: str, timeout_seconds: float = config.STORE_TIMEOUT_SECONDS) -> Engine:
    """Create an engine whose connections give up on locks and statements after the store timeout."""
    connect_args: dict = {}
    if database_url.startswith("sqlite"):
        connect_args = {"check_same_thread": False, "timeout": timeout_seconds}
    elif database_url.startswith("postgresql"):
        timeout_ms = int(timeout_seconds * 1000)
        connect_args = {"options": f"-c lock_timeout={timeout_ms} -c statement_timeout={timeout_ms}"}

    return create_engine(
        database_url,
        connect_args=connect_args,
        pool_pre_ping=True,
        echo=config.SQL_ECHO,
    )


engine = build_engine(config.DATABASE_URL)

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    expire_on_commit=False,
    bind=engine,
)

Base = declarative_base()


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()

