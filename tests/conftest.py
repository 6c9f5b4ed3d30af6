"""Pytest configuration and shared fixtures."""

from __future__ import annotations

import os
import sys
from pathlib import Path

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///test.db")
os.environ.setdefault("SECRET_KEY", "secret-key")
os.environ.setdefault("RESEND_API_KEY", "")
os.environ.setdefault("EMAIL_FROM", "noreply@example.com")
os.environ.setdefault("CRON_SECRET", "cron-secret")
os.environ.setdefault("WOMPI_EVENTS_SECRET", "events-secret")
os.environ.setdefault("WOMPI_PRIVATE_KEY", "prv_test_key")
os.environ.setdefault("DB_RETRY_BASE_DELAY_SECONDS", "0")
os.environ.setdefault("GENERATION_RATE_LIMIT_MAX", "3")
os.environ.setdefault("GENERATION_RATE_LIMIT_WINDOW_SECONDS", "60")

# Ensure the project root is importable when tests run from the repo root.
BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
    sys.path.append(str(BACKEND_ROOT))

from cursia.db.base_class import Base
from cursia.models.user.user_model import User
from cursia.models.user.subscription_model import Subscription
from cursia.models.course.course_model import Course, GenerationLog
from cursia.models.course.module_model import Chunk, Module, Quiz, QuizQuestion
from cursia.models.course.rating_model import CourseRating
from cursia.models.progress.user_progress_model import QuizAttempt, UserProgress
from cursia.models.progress.certificate_model import Certificate


TABLES = [
    User.__table__,
    Subscription.__table__,
    Course.__table__,
    GenerationLog.__table__,
    Module.__table__,
    Chunk.__table__,
    Quiz.__table__,
    QuizQuestion.__table__,
    CourseRating.__table__,
    UserProgress.__table__,
    QuizAttempt.__table__,
    Certificate.__table__,
]


@pytest.fixture()
def engine():
    engine = create_engine("sqlite:///:memory:", future=True)
    Base.metadata.create_all(bind=engine, tables=TABLES)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(bind=engine, tables=TABLES)
        engine.dispose()


@pytest.fixture()
def db_session(engine) -> Session:
    SessionLocal = sessionmaker(bind=engine, future=True)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
