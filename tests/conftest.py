import io
import os

# Settings are read at import time
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["RATE_LIMIT_ENABLED"] = "0"
os.environ["APP_ENV"] = "test"

import openpyxl
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app import app
from models import init_db
from store import SchoolStore, get_store


@pytest.fixture
def engine():
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine)


@pytest.fixture
def store(session_factory):
    db = session_factory()
    try:
        yield SchoolStore(db)
    finally:
        db.close()


@pytest.fixture
def client(session_factory):
    def override_store():
        db = session_factory()
        try:
            yield SchoolStore(db)
        finally:
            db.close()

    app.dependency_overrides[get_store] = override_store
    try:
        yield TestClient(app, raise_server_exceptions=False)
    finally:
        app.dependency_overrides.clear()


def make_csv(rows) -> bytes:
    return "\n".join(",".join("" if v is None else str(v) for v in r) for r in rows).encode("utf-8")


def make_xlsx(rows) -> bytes:
    wb = openpyxl.Workbook()
    ws = wb.active
    for r in rows:
        ws.append(list(r))
    buf = io.BytesIO()
    wb.save(buf)
    return buf.getvalue()


SCHOOL_PAYLOAD = {
    "school_name": "Green Valley High",
    "state": "Telangana",
    "academic_year": "2025-2026",
    "school_number_2d": "7",
    "area": "Madhapur",
    "district": "Hyderabad",
    "classes": [
        {"class": "8", "section": "A", "program": "regular"},
        {"class": "8", "section": "B", "program": "regular"},
    ],
    "teachers": [
        {
            "teacherId": "T01",
            "name": "Anita Rao",
            "assignments": [{"class": "8", "section": "A", "subject": "physics"}],
        },
    ],
}
