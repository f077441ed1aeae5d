from __future__ import annotations

from datetime import date, datetime
from typing import Any

from pydantic import BaseModel, Field


# Pazienti / medici (PUT = sostituzione dell'intero oggetto)

class PatientIn(BaseModel):
    name: str = Field(..., min_length=1)
    email: str | None = None
    phone: str | None = None
    codice_fiscale: str | None = None
    date_of_birth: date | None = None
    address: str | None = None
    medical_history: str = ""


class DoctorIn(BaseModel):
    name: str = Field(..., min_length=1)
    email: str | None = None
    phone: str | None = None
    specialization: str | None = None
    license_number: str | None = None
    availability: dict[str, Any] = Field(default_factory=dict)
    is_available: bool = True


# Servizi

class ServiceCreateIn(BaseModel):
    name: str | None = None
    doctor_id: int | None = None
    description: str = ""
    duration_minutes: int = 30
    price: float = 0
    is_active: bool = True
    is_external_bookable: bool = False


class ServiceUpdateIn(BaseModel):
    # solo i campi presenti nel body vengono scritti (exclude_unset)
    name: str | None = None
    description: str | None = None
    duration_minutes: int | None = None
    price: float | None = None
    is_active: bool | None = None
    is_external_bookable: bool | None = None


# Appuntamenti

class AppointmentCreateIn(BaseModel):
    # paziente esistente (patient_id) oppure prenotazione pubblica (patient_full_name)
    patient_id: int | None = None
    patient_full_name: str | None = None
    patient_email: str = ""
    patient_phone: str = ""
    patient_codice_fiscale: str = ""

    doctor_id: int | None = None
    # int sul backend relazionale, ObjectId esadecimale su mongo
    service_id: int | str | None = None
    appointment_date: datetime | None = None
    status: str = "scheduled"
    notes: str = ""


class AppointmentUpdateIn(BaseModel):
    patient_id: int | None = None
    patient_full_name: str | None = None
    patient_email: str | None = None
    patient_phone: str | None = None
    patient_codice_fiscale: str | None = None
    doctor_id: int | None = None
    service_id: int | str | None = None
    appointment_date: datetime | None = None
    status: str | None = None
    notes: str | None = None


class StatusIn(BaseModel):
    status: str | None = None


class BusySlotOut(BaseModel):
    start_time: datetime
    end_time: datetime


# Log "alive"

class AliveLogIn(BaseModel):
    title: str | None = None
    description: str | None = None
    # ignorato se l'appuntamento ha gia' un codice
    code: str | None = None
