from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker, declarative_base
import os

DATABASE_URL = os.getenv('DATABASE_URL', 'sqlite:///./responder.db')
engine = create_engine(DATABASE_URL, connect_args={"check_same_thread": False} if DATABASE_URL.startswith('sqlite') else {})
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()

if DATABASE_URL.startswith('sqlite'):
    @event.listens_for(engine, "connect")
    def _sqlite_pragmas(dbapi_conn, _record):  # pragma: no cover (driver hook)
        cur = dbapi_conn.cursor()
        cur.execute("PRAGMA foreign_keys=ON")
        cur.close()

def ensure_schema():
    """Create missing tables; additive column migrations for sqlite."""
    from ..models import correspondence_model  # noqa: F401
    Base.metadata.create_all(bind=engine)
    if not DATABASE_URL.startswith('sqlite'):
        return
    with engine.connect() as conn:
        cols = {row[1] for row in conn.exec_driver_sql("PRAGMA table_info('email_correspondence')").fetchall()}
        alter_needed = []
        if 'insight_source' not in cols:
            alter_needed.append("ALTER TABLE email_correspondence ADD COLUMN insight_source TEXT NULL")
        if 'sent_at' not in cols:
            alter_needed.append("ALTER TABLE email_correspondence ADD COLUMN sent_at TIMESTAMP NULL")
        for stmt in alter_needed:
            conn.exec_driver_sql(stmt)
        conn.commit()


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()

ensure_schema()
