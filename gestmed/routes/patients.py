from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Query, status

from .. import services
from ..db import Database
from ..deps import get_database
from ..schemas import PatientIn

router = APIRouter(prefix="/patients", tags=["Patients"])


@router.get("")
def api_patients(search: str | None = Query(None), db: Database = Depends(get_database)) -> list[dict]:
    return services.list_patients(db, search=search)


@router.get("/{patient_id}")
def api_patient(patient_id: int, db: Database = Depends(get_database)) -> dict[str, Any]:
    return services.get_patient(db, patient_id)


@router.post("", status_code=status.HTTP_201_CREATED)
def api_create_patient(payload: PatientIn, db: Database = Depends(get_database)) -> dict[str, Any]:
    return services.create_patient(db, payload.model_dump())


@router.put("/{patient_id}")
def api_update_patient(patient_id: int, payload: PatientIn, db: Database = Depends(get_database)) -> dict[str, Any]:
    return services.update_patient(db, patient_id, payload.model_dump())


@router.delete("/{patient_id}")
def api_delete_patient(patient_id: int, db: Database = Depends(get_database)) -> dict[str, Any]:
    services.delete_patient(db, patient_id)
    return {"message": "Patient deleted successfully"}
