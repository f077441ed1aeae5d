from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Query, status

from .. import services
from ..db import Database
from ..deps import get_database
from ..schemas import DoctorIn

router = APIRouter(prefix="/doctors", tags=["Doctors"])


@router.get("")
def api_doctors(search: str | None = Query(None), db: Database = Depends(get_database)) -> list[dict]:
    return services.list_doctors(db, search=search)


@router.get("/{doctor_id}")
def api_doctor(doctor_id: int, db: Database = Depends(get_database)) -> dict[str, Any]:
    return services.get_doctor(db, doctor_id)


@router.post("", status_code=status.HTTP_201_CREATED)
def api_create_doctor(payload: DoctorIn, db: Database = Depends(get_database)) -> dict[str, Any]:
    return services.create_doctor(db, payload.model_dump())


@router.put("/{doctor_id}")
def api_update_doctor(doctor_id: int, payload: DoctorIn, db: Database = Depends(get_database)) -> dict[str, Any]:
    return services.update_doctor(db, doctor_id, payload.model_dump())


@router.delete("/{doctor_id}")
def api_delete_doctor(doctor_id: int, db: Database = Depends(get_database)) -> dict[str, Any]:
    services.delete_doctor(db, doctor_id)
    return {"message": "Doctor deleted successfully"}
