from datetime import datetime, timezone

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from main import app
from dronedesk import models
from dronedesk.auth import hash_password
from dronedesk.database import Base, get_db

PASSWORD = "correct-horse-1"


@pytest.fixture()
def session_factory(tmp_path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'dronedesk_test.db'}",
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()


@pytest.fixture()
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture()
def client(session_factory):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    test_client = TestClient(app)
    yield test_client
    test_client.close()
    app.dependency_overrides.clear()


@pytest.fixture()
def auth_client(client):
    response = client.post("/api/auth/register", json={
        "name": "Dispatcher",
        "email": "dispatch@example.com",
        "phone": "+971500000000",
        "password": PASSWORD,
    })
    assert response.status_code == 201
    return client


def utc(hour, minute=0, day=15):
    return datetime(2025, 1, day, hour, minute, tzinfo=timezone.utc)


def iso(value: datetime) -> str:
    return value.isoformat().replace("+00:00", "Z")


class Fleet:
    """A site with one job, two pilots and two drones, written straight to the database."""

    def __init__(self, db):
        self.site = models.Site(name="Marina Tower", site_manager="R. Haddad", phone="+971511111111",
                                emirate="Dubai", city="Dubai", asset_type="FACADE_WINDOWS")
        db.add(self.site)
        db.flush()
        self.job = models.Job(name="Facade wash", site_id=self.site.id, type="CLEANING")
        self.other_job = models.Job(name="Panel inspection", site_id=self.site.id, type="INSPECTION")
        self.pilot = models.User(name="Alex Pilot", email="alex@example.com", phone="+971522222222",
                                 password_hash=hash_password(PASSWORD))
        self.other_pilot = models.User(name="Blake Pilot", email="blake@example.com", phone="+971533333333",
                                       password_hash=hash_password(PASSWORD))
        self.drone = models.Drone(name="Falcon 1", serial_number="FAL-001")
        self.other_drone = models.Drone(name="Falcon 2", serial_number="FAL-002")
        db.add_all([self.job, self.other_job, self.pilot, self.other_pilot, self.drone, self.other_drone])
        db.commit()

    def schedule_payload(self, start, end, **overrides):
        payload = {
            "job_id": self.job.id,
            "pilot_id": self.pilot.id,
            "drone_id": self.drone.id,
            "start_at": start,
            "end_at": end,
        }
        payload.update(overrides)
        return payload

    def schedule_body(self, start, end, **overrides):
        body = {
            "jobId": self.job.id,
            "pilotId": self.pilot.id,
            "droneId": self.drone.id,
            "startAt": iso(start),
            "endAt": iso(end),
        }
        body.update(overrides)
        return body


@pytest.fixture()
def fleet(db):
    return Fleet(db)
