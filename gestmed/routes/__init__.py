"""Moduli REST: ogni processo ne monta uno (SERVICE) o tutti (SERVICE=all)."""
from __future__ import annotations

from fastapi import APIRouter

from . import alive, appointments, dashboard, doctors, patients

ROUTERS: dict[str, APIRouter] = {
    "patients": patients.router,
    "doctors": doctors.router,
    "appointments": appointments.router,
    "alive": alive.router,
    "dashboard": dashboard.router,
}
