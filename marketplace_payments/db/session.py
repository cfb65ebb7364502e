from contextlib import contextmanager

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from marketplace_payments.core.config import settings

# The engine is the entry point to the database. It's configured with the
# database URL and handles the connection pooling.
engine = create_engine(settings.DATABASE_URL, pool_pre_ping=True)

# SessionLocal is a factory for creating new Session objects.
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        # Always close the session, even if the endpoint raised.
        db.close()


@contextmanager
def transaction(db: Session):
    """
    Run a block of writes as one unit.

    Commits when the block exits cleanly and rolls back every pending change
    if it raises, so a multi-entity transition never leaves mixed state.
    """
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
