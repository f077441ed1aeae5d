"""
Fixture condivise: app FastAPI su SQLite in memoria, appuntamenti su
SQLite o mongomock (parametrizzato), entità di base create via API.
"""
from __future__ import annotations

import mongomock
import pytest
from fastapi.testclient import TestClient

from gestmed.api_main import create_app
from gestmed.config import Settings
from gestmed.db import Database
from gestmed.mongo import MongoDatabase

APPOINTMENT_DATE = "2030-03-15T10:00:00"


def make_settings(backend: str = "sql", service: str = "all") -> Settings:
    return Settings(service=service, database_url="sqlite://", appointments_backend=backend, create_tables=True)


@pytest.fixture(params=["sql", "mongo"])
def backend(request):
    return request.param


@pytest.fixture
def database():
    return Database("sqlite://")


@pytest.fixture
def mongo():
    return MongoDatabase("mongodb://localhost:27017", "gestmed_test", client=mongomock.MongoClient())


@pytest.fixture
def app(backend, database, mongo):
    return create_app(make_settings(backend), database=database, mongo=mongo)


@pytest.fixture
def client(app):
    with TestClient(app) as c:
        yield c


@pytest.fixture
def repo(app, client):
    """Repository della app già inizializzata (dipende da client per lo startup)."""
    return app.state.repository


@pytest.fixture
def doctor(client):
    r = client.post("/doctors", json={"name": "Dott. Mario Rossi", "specialization": "Cardiologia"})
    assert r.status_code == 201
    return r.json()


@pytest.fixture
def other_doctor(client):
    r = client.post("/doctors", json={"name": "Dott.ssa Laura Bianchi", "specialization": "Pediatria"})
    assert r.status_code == 201
    return r.json()


@pytest.fixture
def patient(client):
    r = client.post("/patients", json={"name": "Giulia Neri", "email": "giulia@example.com", "phone": "3331234567"})
    assert r.status_code == 201
    return r.json()


@pytest.fixture
def service(client, doctor):
    r = client.post(
        "/appointments/services",
        json={"name": "Visita Cardiologica", "doctor_id": doctor["id"], "duration_minutes": 45, "price": 80},
    )
    assert r.status_code == 201
    return r.json()


@pytest.fixture
def book(client, patient, doctor, service):
    """Prenota con valori di default sovrascrivibili."""

    def _book(**overrides):
        payload = {
            "patient_id": patient["id"],
            "doctor_id": doctor["id"],
            "service_id": service["id"],
            "appointment_date": APPOINTMENT_DATE,
        }
        payload.update(overrides)
        return client.post("/appointments", json=payload)

    return _book


@pytest.fixture
def appointment(book):
    r = book()
    assert r.status_code == 201
    return r.json()
