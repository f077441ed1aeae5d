from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, status

from .. import services
from ..db import Database
from ..deps import get_database, get_repository
from ..repository import AppointmentRepository
from ..schemas import AliveLogIn

router = APIRouter(prefix="/alive", tags=["Alive"])


@router.get("")
def api_active_appointments(
    repo: AppointmentRepository = Depends(get_repository),
    db: Database = Depends(get_database),
) -> list[dict]:
    """Appuntamenti in corso o programmati, con nome paziente e medico."""
    return services.list_active_appointments(repo, db)


@router.get("/code/{code}/logs")
def api_logs_by_code(code: str, repo: AppointmentRepository = Depends(get_repository)) -> list[dict]:
    return services.list_logs_by_code(repo, code)


@router.get("/{appointment_id}/logs")
def api_logs(appointment_id: str, repo: AppointmentRepository = Depends(get_repository)) -> list[dict]:
    return services.list_logs(repo, appointment_id)


@router.post("/{appointment_id}/logs", status_code=status.HTTP_201_CREATED)
def api_add_log(
    appointment_id: str,
    payload: AliveLogIn,
    repo: AppointmentRepository = Depends(get_repository),
) -> dict[str, Any]:
    return services.append_log(repo, appointment_id, payload.title, payload.description, payload.code)
