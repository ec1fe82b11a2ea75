from __future__ import annotations
from datetime import datetime
from sqlalchemy import Boolean, Column, String, DateTime, Integer, JSON
from .db import Base


class QuizSession(Base):
	__tablename__ = "quiz_sessions"
	id = Column(String(64), primary_key=True, index=True)
	game_id = Column(String(64), nullable=False, index=True)
	# Browser-side id (cookie/localStorage), optional
	client_session_id = Column(String(128), nullable=True)
	# {"steps": [...], "meta": {...}}
	data = Column(JSON, nullable=False, default=dict)
	result = Column(JSON, nullable=True)
	steps_total = Column(Integer, nullable=True)
	steps_completed = Column(Integer, default=0, nullable=False)
	completed = Column(Boolean, default=False, nullable=False)
	last_active_at = Column(DateTime, default=datetime.utcnow, nullable=False)
	created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
	updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)
