from __future__ import annotations

import datetime as dt
import os
import tempfile
from pathlib import Path
from typing import Callable, Generator, Optional

_TEST_DATA_DIR = tempfile.mkdtemp(prefix="activitylog-tests-")
os.environ.setdefault("AL_SQLITE_PATH", str(Path(_TEST_DATA_DIR) / "app.db"))
os.environ.setdefault("AL_DOCUMENT_DIR", str(Path(_TEST_DATA_DIR) / "documents"))

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from activitylog import models
from activitylog.config import settings
from activitylog.database import get_db
from activitylog.main import app
from activitylog.repository import ActivityRepository


@pytest.fixture(scope="session")
def temp_db_path() -> Generator[Path, None, None]:
    with tempfile.TemporaryDirectory() as tmpdir:
        path = Path(tmpdir) / "test.db"
        yield path


@pytest.fixture(scope="session")
def engine(temp_db_path: Path):
    url = f"sqlite:///{temp_db_path}"
    engine = create_engine(url, connect_args={"check_same_thread": False}, future=True)
    models.Base.metadata.create_all(bind=engine)
    return engine


@pytest.fixture(scope="function")
def session(engine) -> Generator[Session, None, None]:
    connection = engine.connect()
    transaction = connection.begin()
    SessionTesting = sessionmaker(bind=connection, autoflush=False, autocommit=False, future=True)
    session = SessionTesting()
    try:
        yield session
    finally:
        session.close()
        transaction.rollback()
        connection.close()


@pytest.fixture(autouse=True)
def document_dir(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    path = tmp_path / "documents"
    path.mkdir()
    monkeypatch.setattr(settings, "document_dir", path)
    return path


@pytest.fixture(scope="function")
def repo(session: Session) -> ActivityRepository:
    return ActivityRepository(session)


@pytest.fixture(scope="function")
def client(session: Session) -> Generator[TestClient, None, None]:
    def override_get_db():
        yield session

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture()
def today() -> dt.date:
    return dt.date(2024, 3, 11)


@pytest.fixture()
def make_user(session: Session) -> Callable[..., models.User]:
    counter = {"value": 0}

    def factory(
        given_name: str = "Ana",
        paternal_surname: str = "Rojas",
        maternal_surname: Optional[str] = "Vera",
        role: str = models.ROLE_STAFF,
        supervisor: Optional[models.User] = None,
    ) -> models.User:
        counter["value"] += 1
        user = models.User(
            username=f"user{counter['value']}",
            given_name=given_name,
            paternal_surname=paternal_surname,
            maternal_surname=maternal_surname,
            role=role,
            supervisor_id=supervisor.id if supervisor else None,
        )
        session.add(user)
        session.commit()
        return user

    return factory


@pytest.fixture()
def supervisor(make_user) -> models.User:
    return make_user("Carla", "Muñoz", "Soto", role=models.ROLE_SUPERVISOR)


@pytest.fixture()
def staff(make_user, supervisor: models.User) -> models.User:
    return make_user("Diego", "Pérez", "Lagos", supervisor=supervisor)


@pytest.fixture()
def make_project(session: Session, supervisor: models.User) -> Callable[..., models.Project]:
    def factory(name: str = "Portal", active: bool = True) -> models.Project:
        project = models.Project(name=name, supervisor_id=supervisor.id, active=active, status="in_progress")
        session.add(project)
        session.commit()
        return project

    return factory


@pytest.fixture()
def activity_type(session: Session) -> models.ActivityType:
    kind = models.ActivityType(name="Desarrollo")
    session.add(kind)
    session.commit()
    return kind


@pytest.fixture()
def make_activity(session: Session) -> Callable[..., models.Activity]:
    """Insert an activity row directly, bypassing lifecycle validation."""

    def factory(
        user: models.User,
        day: dt.date,
        start_time: str = "09:00",
        end_time: str = "10:00",
        state: str = models.ACTIVITY_STATE_SUBMITTED,
        project: Optional[models.Project] = None,
        activity_type: Optional[models.ActivityType] = None,
        description: str = "Trabajo",
        hours=None,
    ) -> models.Activity:
        activity = models.Activity(
            user_id=user.id,
            date=day,
            start_time=start_time,
            end_time=end_time,
            state=state,
            project_id=project.id if project else None,
            activity_type_id=activity_type.id if activity_type else None,
            description=description,
            hours=hours,
        )
        session.add(activity)
        session.commit()
        return activity

    return factory
