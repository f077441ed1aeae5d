from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Query, status

from .. import services
from ..deps import get_repository
from ..repository import AppointmentRepository
from ..schemas import (
    AppointmentCreateIn,
    AppointmentUpdateIn,
    BusySlotOut,
    ServiceCreateIn,
    ServiceUpdateIn,
    StatusIn,
)

router = APIRouter(prefix="/appointments", tags=["Appointments"])


# Servizi (le route /services vanno registrate prima di /{appointment_id})

@router.get("/services")
def api_services(
    doctor_id: int | None = Query(None),
    is_active: bool | None = Query(None),
    is_external_bookable: bool | None = Query(None),
    is_external: bool | None = Query(None),
    sort_by: str | None = Query(None, alias="sortBy"),
    sort_order: str | None = Query(None, alias="sortOrder"),
    repo: AppointmentRepository = Depends(get_repository),
) -> list[dict]:
    if is_external_bookable is None:
        is_external_bookable = is_external
    return services.list_services(
        repo,
        doctor_id=doctor_id,
        is_active=is_active,
        is_external_bookable=is_external_bookable,
        sort_by=sort_by,
        sort_order=sort_order,
    )


@router.get("/services/doctor/{doctor_id}")
def api_services_by_doctor(
    doctor_id: int,
    is_active: bool | None = Query(None),
    repo: AppointmentRepository = Depends(get_repository),
) -> list[dict]:
    return services.list_services_by_doctor(repo, doctor_id, is_active=is_active)


@router.get("/services/{service_id}")
def api_service(service_id: str, repo: AppointmentRepository = Depends(get_repository)) -> dict[str, Any]:
    return services.get_service(repo, service_id)


@router.post("/services", status_code=status.HTTP_201_CREATED)
def api_create_service(payload: ServiceCreateIn, repo: AppointmentRepository = Depends(get_repository)) -> dict[str, Any]:
    return services.create_service(repo, payload.model_dump())


@router.put("/services/{service_id}")
def api_update_service(
    service_id: str,
    payload: ServiceUpdateIn,
    repo: AppointmentRepository = Depends(get_repository),
) -> dict[str, Any]:
    return services.update_service(repo, service_id, payload.model_dump(exclude_unset=True))


@router.delete("/services/{service_id}")
def api_delete_service(service_id: str, repo: AppointmentRepository = Depends(get_repository)) -> dict[str, Any]:
    services.delete_service(repo, service_id)
    return {"message": "Service deleted successfully"}


# Agenda medico

@router.get("/doctor/{doctor_id}/busy-slots", response_model=list[BusySlotOut])
def api_busy_slots(
    doctor_id: int,
    day: str | None = Query(None, alias="date"),
    start_date: str | None = Query(None),
    end_date: str | None = Query(None),
    repo: AppointmentRepository = Depends(get_repository),
) -> list[dict]:
    return services.busy_slots(repo, doctor_id, day=day, start_date=start_date, end_date=end_date)


# Appuntamenti

@router.get("")
def api_appointments(
    day: str | None = Query(None, alias="date"),
    doctor_id: int | None = Query(None),
    patient_id: int | None = Query(None),
    service_id: str | None = Query(None),
    status_: str | None = Query(None, alias="status"),
    patient_email: str | None = Query(None),
    patient_codice_fiscale: str | None = Query(None),
    code: str | None = Query(None),
    repo: AppointmentRepository = Depends(get_repository),
) -> list[dict]:
    return services.list_appointments(
        repo,
        day=day,
        doctor_id=doctor_id,
        patient_id=patient_id,
        service_id=service_id,
        status=status_,
        patient_email=patient_email,
        patient_codice_fiscale=patient_codice_fiscale,
        code=code,
    )


@router.get("/{appointment_id}")
def api_appointment(appointment_id: str, repo: AppointmentRepository = Depends(get_repository)) -> dict[str, Any]:
    return services.get_appointment(repo, appointment_id)


@router.post("", status_code=status.HTTP_201_CREATED)
def api_book(payload: AppointmentCreateIn, repo: AppointmentRepository = Depends(get_repository)) -> dict[str, Any]:
    return services.book_appointment(repo, payload.model_dump())


@router.put("/{appointment_id}")
def api_update_appointment(
    appointment_id: str,
    payload: AppointmentUpdateIn,
    repo: AppointmentRepository = Depends(get_repository),
) -> dict[str, Any]:
    return services.update_appointment(repo, appointment_id, payload.model_dump(exclude_unset=True))


@router.put("/{appointment_id}/status")
def api_change_status(
    appointment_id: str,
    payload: StatusIn,
    repo: AppointmentRepository = Depends(get_repository),
) -> dict[str, Any]:
    return services.change_status(repo, appointment_id, payload.status)


@router.delete("/{appointment_id}")
def api_delete_appointment(appointment_id: str, repo: AppointmentRepository = Depends(get_repository)) -> dict[str, Any]:
    services.delete_appointment(repo, appointment_id)
    return {"message": "Appointment deleted successfully"}
