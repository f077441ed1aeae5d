from __future__ import annotations

from fastapi import Request

from .db import Database
from .repository import AppointmentRepository


def get_database(request: Request) -> Database:
    return request.app.state.database


def get_repository(request: Request) -> AppointmentRepository:
    return request.app.state.repository
