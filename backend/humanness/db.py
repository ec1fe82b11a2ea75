from __future__ import annotations
from sqlalchemy import create_engine, inspect
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, declarative_base
from .settings import settings


DATABASE_URL = settings.database_url or "sqlite:///./humanness.db"


def make_engine(url: str) -> Engine:
	connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
	return create_engine(url, connect_args=connect_args, future=True)


engine = make_engine(DATABASE_URL)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine, future=True)
Base = declarative_base()


# Best-effort lightweight migrations for development (SQLite-friendly)
def ensure_schema(bind: Engine | None = None) -> None:
	bind = bind or engine
	try:
		inspector = inspect(bind)
		tables = set(inspector.get_table_names())
	except Exception:
		return
	if "quiz_sessions" in tables:
		cols = {c["name"] for c in inspector.get_columns("quiz_sessions")}
		with bind.begin() as conn:
			if "client_session_id" not in cols:
				conn.exec_driver_sql("ALTER TABLE quiz_sessions ADD COLUMN client_session_id VARCHAR(128)")
			if "steps_total" not in cols:
				conn.exec_driver_sql("ALTER TABLE quiz_sessions ADD COLUMN steps_total INTEGER")
			if "completed" not in cols:
				conn.exec_driver_sql("ALTER TABLE quiz_sessions ADD COLUMN completed BOOLEAN DEFAULT 0 NOT NULL")
			if "result" not in cols:
				conn.exec_driver_sql("ALTER TABLE quiz_sessions ADD COLUMN result JSON")
