import os
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, DeclarativeBase

# ---------- Config ----------
DB_URL = os.getenv("DATABASE_URL", "sqlite:////tmp/farmtrace.db")
SQL_ECHO = os.getenv("SQL_ECHO", "").lower() in ("1", "true", "yes")
connect_args = {"check_same_thread": False} if DB_URL.startswith("sqlite") else {}

engine = create_engine(DB_URL, connect_args=connect_args, pool_pre_ping=True, echo=SQL_ECHO)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

class Base(DeclarativeBase):
    pass

def init_db(bind=None):
    """Create the record store and audit log tables if they are missing."""
    import models  # noqa: F401  registers the tables on Base.metadata
    from audit import ensure_chain_head
    bind = bind or engine
    Base.metadata.create_all(bind=bind)
    with sessionmaker(bind=bind)() as db:
        ensure_chain_head(db)
        db.commit()
