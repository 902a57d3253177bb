"""Pytest configuration and shared fixtures."""
import json
import os

# Settings are read once at import time; point them at an in-memory database first
os.environ["SQLALCHEMY_URL"] = "sqlite://"
os.environ["SECRET_KEY"] = "test-secret-key"
os.environ["ENCRYPTION_KEY"] = "test-encryption-key"
os.environ["RETENTION_SWEEP_ENABLED"] = "false"
os.environ["LOG_LEVEL"] = "WARNING"

from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from dealership.main import app
from dealership.database import SessionLocal
from dealership.models.models import Message, Personnel, Role, User, Vehicle
from dealership.routes import auth as auth_routes
from dealership.utils.auth import create_access_token
from dealership.websocket import rooms, store

auth_routes.limiter.enabled = False


class FakeWebSocket:
    """Records every frame a Connection sends."""

    def __init__(self):
        self.frames = []

    async def send_text(self, text: str):
        self.frames.append(json.loads(text))

    def events(self, name=None):
        return [f for f in self.frames if name is None or f["type"] == name]


@pytest.fixture(autouse=True)
def clean_state():
    """Empty the database and the connection registry around every test."""
    yield
    db = SessionLocal()
    try:
        for model in (Message, Personnel, Vehicle, User):
            db.query(model).delete()
        db.commit()
    finally:
        db.close()
    rooms.connections.clear()
    rooms.rooms.clear()
    rooms.subjects.clear()


@pytest.fixture
def client():
    with TestClient(app) as c:
        yield c


@pytest.fixture
def message_store():
    return store


@pytest.fixture
def make_user():
    def _make_user(user_id: int, role: Role = Role.USER, name: str = None) -> User:
        db = SessionLocal()
        try:
            user = User(
                id=user_id,
                username=f"{role.value}{user_id}",
                name=name or f"{role.value.title()} {user_id}",
                # Hashing is slow and these accounts never log in with a password
                hashed_password="not-a-real-hash",
                role=role,
            )
            db.add(user)
            db.commit()
            db.refresh(user)
            return user
        finally:
            db.close()
    return _make_user


@pytest.fixture
def make_vehicle():
    def _make_vehicle(vehicle_id: int, brand: str = "Toyota", model: str = "Corolla") -> Vehicle:
        db = SessionLocal()
        try:
            vehicle = Vehicle(id=vehicle_id, brand=brand, model=model, year=2020, price=Decimal("850000"))
            db.add(vehicle)
            db.commit()
            db.refresh(vehicle)
            return vehicle
        finally:
            db.close()
    return _make_vehicle


@pytest.fixture
def token_for():
    def _token_for(user: User) -> str:
        return create_access_token(user.id, user.role, user.name)
    return _token_for


@pytest.fixture
def auth_header(token_for):
    def _auth_header(user: User) -> dict:
        return {"Authorization": f"Bearer {token_for(user)}"}
    return _auth_header


@pytest.fixture
def connect():
    """Register a live connection backed by a FakeWebSocket, optionally identified."""
    from dealership.chat.guard import Identity
    from dealership.chat.rooms import Connection

    def _connect(user: User = None) -> Connection:
        connection = Connection(FakeWebSocket())
        rooms.register(connection)
        if user is not None:
            rooms.identify(connection, Identity(user.id, user.role, user.name))
        return connection
    return _connect


@pytest.fixture
def foreign_keys():
    """Enforce foreign keys on the shared SQLite connection, as PostgreSQL does."""
    from dealership.database import engine

    with engine.connect() as conn:
        conn.exec_driver_sql("PRAGMA foreign_keys=ON")
    yield
    with engine.connect() as conn:
        conn.exec_driver_sql("PRAGMA foreign_keys=OFF")
