from __future__ import annotations

import logging
from datetime import date, datetime, time, timedelta, timezone
from typing import Any

from sqlalchemy import func, or_, select

from .db import Database
from .errors import NotFoundError, ValidationError
from .models import ACTIVE_STATUSES, ALLOWED_STATUSES, AppointmentStatus, Doctor, Patient, utcnow
from .repository import AppointmentFilter, AppointmentRepository

logger = logging.getLogger(__name__)

DEFAULT_SLOT_MINUTES = 30

PATIENT_FIELDS = ("name", "email", "phone", "codice_fiscale", "date_of_birth", "address", "medical_history")
DOCTOR_FIELDS = ("name", "email", "phone", "specialization", "license_number", "availability", "is_available")

# campi che in un aggiornamento parziale non possono diventare null
SERVICE_REQUIRED_FIELDS = ("name", "description", "duration_minutes", "price", "is_active", "is_external_bookable")
APPOINTMENT_REQUIRED_FIELDS = ("doctor_id", "service_id", "appointment_date")


# =========================
# Helper
# =========================
def _naive_utc(value: datetime) -> datetime:
    """Le date vengono salvate UTC senza tzinfo (stesso formato di SQLite e pymongo)."""
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def parse_when(value: str, field: str) -> datetime:
    try:
        return _naive_utc(datetime.fromisoformat(value.strip()))
    except ValueError:
        raise ValidationError(f"Invalid {field}") from None


def parse_day(value: str, field: str) -> date:
    """Giorno di calendario come scritto dal client, prima della conversione in UTC."""
    try:
        return datetime.fromisoformat(value.strip()).date()
    except ValueError:
        raise ValidationError(f"Invalid {field}") from None


def _is_date_only(value: str) -> bool:
    return len(value.strip()) == 10


def _day_bounds(day: date) -> tuple[datetime, datetime]:
    start = datetime.combine(day, time.min)
    return start, start + timedelta(days=1)


def _columns_dict(obj: Any, fields: tuple[str, ...]) -> dict:
    data = {"id": obj.id}
    data.update({f: getattr(obj, f) for f in fields})
    data.update(created_at=obj.created_at, updated_at=obj.updated_at)
    return data


def _reject_nulls(changes: dict[str, Any], fields: tuple[str, ...]) -> None:
    for field in fields:
        if field in changes and changes[field] is None:
            raise ValidationError(f"{field} cannot be null")


def _check_status(status: str | None) -> str:
    if not status:
        raise ValidationError("Status is required")
    if status not in ALLOWED_STATUSES:
        raise ValidationError("Invalid status")
    return status


# =========================
# Pazienti
# =========================
def list_patients(db: Database, search: str | None = None) -> list[dict]:
    q = select(Patient)
    if search:
        pattern = f"%{search}%"
        q = q.where(or_(Patient.name.ilike(pattern), Patient.email.ilike(pattern), Patient.phone.ilike(pattern)))
    q = q.order_by(Patient.created_at.desc(), Patient.id.desc())

    with db.session() as s:
        return [_columns_dict(p, PATIENT_FIELDS) for p in s.scalars(q)]


def get_patient(db: Database, patient_id: int) -> dict:
    with db.session() as s:
        p = s.get(Patient, patient_id)
        if not p:
            raise NotFoundError("Patient not found")
        return _columns_dict(p, PATIENT_FIELDS)


def create_patient(db: Database, data: dict[str, Any]) -> dict:
    with db.session() as s:
        p = Patient(**{k: data.get(k) for k in PATIENT_FIELDS})
        p.name = (p.name or "").strip()
        if not p.name:
            raise ValidationError("Name is required")
        p.medical_history = p.medical_history or ""
        s.add(p)
        s.flush()
        logger.info("Paziente creato: %s", p.id)
        return _columns_dict(p, PATIENT_FIELDS)


def update_patient(db: Database, patient_id: int, data: dict[str, Any]) -> dict:
    """PUT: sostituisce tutti i campi anagrafici."""
    with db.session() as s:
        p = s.get(Patient, patient_id)
        if not p:
            raise NotFoundError("Patient not found")
        for field in PATIENT_FIELDS:
            setattr(p, field, data.get(field))
        p.name = (p.name or "").strip()
        if not p.name:
            raise ValidationError("Name is required")
        p.medical_history = p.medical_history or ""
        s.flush()
        return _columns_dict(p, PATIENT_FIELDS)


def delete_patient(db: Database, patient_id: int) -> None:
    with db.session() as s:
        p = s.get(Patient, patient_id)
        if not p:
            raise NotFoundError("Patient not found")
        s.delete(p)


# =========================
# Medici
# =========================
def list_doctors(db: Database, search: str | None = None) -> list[dict]:
    q = select(Doctor)
    if search:
        pattern = f"%{search}%"
        q = q.where(
            or_(Doctor.name.ilike(pattern), Doctor.specialization.ilike(pattern), Doctor.email.ilike(pattern))
        )
    q = q.order_by(Doctor.created_at.desc(), Doctor.id.desc())

    with db.session() as s:
        return [_columns_dict(d, DOCTOR_FIELDS) for d in s.scalars(q)]


def get_doctor(db: Database, doctor_id: int) -> dict:
    with db.session() as s:
        d = s.get(Doctor, doctor_id)
        if not d:
            raise NotFoundError("Doctor not found")
        return _columns_dict(d, DOCTOR_FIELDS)


def create_doctor(db: Database, data: dict[str, Any]) -> dict:
    with db.session() as s:
        d = Doctor(**{k: data.get(k) for k in DOCTOR_FIELDS})
        d.name = (d.name or "").strip()
        if not d.name:
            raise ValidationError("Name is required")
        d.availability = d.availability or {}
        if d.is_available is None:
            d.is_available = True
        s.add(d)
        s.flush()
        logger.info("Medico creato: %s", d.id)
        return _columns_dict(d, DOCTOR_FIELDS)


def update_doctor(db: Database, doctor_id: int, data: dict[str, Any]) -> dict:
    with db.session() as s:
        d = s.get(Doctor, doctor_id)
        if not d:
            raise NotFoundError("Doctor not found")
        for field in DOCTOR_FIELDS:
            setattr(d, field, data.get(field))
        d.name = (d.name or "").strip()
        if not d.name:
            raise ValidationError("Name is required")
        d.availability = d.availability or {}
        if d.is_available is None:
            d.is_available = True
        s.flush()
        return _columns_dict(d, DOCTOR_FIELDS)


def delete_doctor(db: Database, doctor_id: int) -> None:
    with db.session() as s:
        d = s.get(Doctor, doctor_id)
        if not d:
            raise NotFoundError("Doctor not found")
        s.delete(d)


# =========================
# Servizi
# =========================
def list_services(
    repo: AppointmentRepository,
    doctor_id: int | None = None,
    is_active: bool | None = None,
    is_external_bookable: bool | None = None,
    sort_by: str | None = None,
    sort_order: str | None = None,
) -> list[dict]:
    # sort_by fuori whitelist: si ripiega su doctor_id
    return repo.list_services(
        doctor_id=doctor_id,
        is_active=is_active,
        is_external_bookable=is_external_bookable,
        sort_by=sort_by or "doctor_id",
        descending=(sort_order or "ASC").upper() == "DESC",
    )


def list_services_by_doctor(repo: AppointmentRepository, doctor_id: int, is_active: bool | None = None) -> list[dict]:
    return repo.list_services(doctor_id=doctor_id, is_active=is_active, sort_by="name")


def get_service(repo: AppointmentRepository, service_id: int | str) -> dict:
    svc = repo.get_service(service_id)
    if svc is None:
        raise NotFoundError("Service not found")
    return svc


def create_service(repo: AppointmentRepository, data: dict[str, Any]) -> dict:
    if not data.get("name") or data.get("doctor_id") is None:
        raise ValidationError("Name and doctor_id are required")
    svc = repo.create_service(data)
    logger.info("Servizio creato: %s (medico %s)", svc["id"], svc["doctor_id"])
    return svc


def update_service(repo: AppointmentRepository, service_id: int | str, changes: dict[str, Any]) -> dict:
    _reject_nulls(changes, SERVICE_REQUIRED_FIELDS)
    if "name" in changes and not changes["name"].strip():
        raise ValidationError("name cannot be empty")
    svc = repo.update_service(service_id, changes)
    if svc is None:
        raise NotFoundError("Service not found")
    return svc


def delete_service(repo: AppointmentRepository, service_id: int | str) -> None:
    """ConflictError (dal repository) se il servizio e' usato da almeno un appuntamento."""
    if not repo.delete_service(service_id):
        raise NotFoundError("Service not found")
    logger.info("Servizio eliminato: %s", service_id)


# =========================
# Appuntamenti
# =========================
def list_appointments(
    repo: AppointmentRepository,
    day: str | None = None,
    doctor_id: int | None = None,
    patient_id: int | None = None,
    service_id: str | None = None,
    status: str | None = None,
    patient_email: str | None = None,
    patient_codice_fiscale: str | None = None,
    code: str | None = None,
) -> list[dict]:
    date_from = date_before = None
    if day:
        date_from, date_before = _day_bounds(parse_day(day, "date"))

    flt = AppointmentFilter(
        doctor_id=doctor_id,
        patient_id=patient_id,
        service_id=service_id,
        statuses=(status,) if status else None,
        patient_email=patient_email,
        patient_codice_fiscale=patient_codice_fiscale,
        code=code,
        date_from=date_from,
        date_before=date_before,
    )
    return repo.list_appointments(flt)


def get_appointment(repo: AppointmentRepository, appointment_id: int | str) -> dict:
    app = repo.get_appointment(appointment_id)
    if app is None:
        raise NotFoundError("Appointment not found")
    return app


def book_appointment(repo: AppointmentRepository, data: dict[str, Any]) -> dict:
    """
    Use case: Prenotare appuntamento.
    - paziente identificato da patient_id (interno) o patient_full_name (pubblico)
    - il servizio deve esistere, essere attivo e appartenere al medico
    - codice pubblico generato dal repository prima dell'inserimento
    """
    has_patient = data.get("patient_id") is not None or bool((data.get("patient_full_name") or "").strip())
    if (
        not has_patient
        or data.get("doctor_id") is None
        or data.get("service_id") is None
        or data.get("appointment_date") is None
    ):
        raise ValidationError(
            "patient_id or patient_full_name, doctor_id, service_id and appointment_date are required"
        )

    record = dict(data)
    record["status"] = _check_status(record.get("status") or AppointmentStatus.SCHEDULED.value)
    record["appointment_date"] = _naive_utc(record["appointment_date"])
    record["notes"] = record.get("notes") or ""

    app = repo.create_appointment(record)
    logger.info("Appuntamento %s prenotato (codice %s, medico %s)", app["id"], app["code"], app["doctor_id"])
    return app


def update_appointment(repo: AppointmentRepository, appointment_id: int | str, changes: dict[str, Any]) -> dict:
    changes = dict(changes)
    _reject_nulls(changes, APPOINTMENT_REQUIRED_FIELDS)
    if "status" in changes:
        changes["status"] = _check_status(changes["status"])
    if "appointment_date" in changes:
        changes["appointment_date"] = _naive_utc(changes["appointment_date"])
    if "notes" in changes:
        changes["notes"] = changes["notes"] or ""

    app = repo.update_appointment(appointment_id, changes)
    if app is None:
        raise NotFoundError("Appointment not found")
    return app


def change_status(repo: AppointmentRepository, appointment_id: int | str, status: str | None) -> dict:
    """Solo etichette ammesse, nessun vincolo sulle transizioni."""
    app = repo.update_appointment(appointment_id, {"status": _check_status(status)})
    if app is None:
        raise NotFoundError("Appointment not found")
    logger.info("Appuntamento %s -> %s", appointment_id, status)
    return app


def delete_appointment(repo: AppointmentRepository, appointment_id: int | str) -> None:
    if not repo.delete_appointment(appointment_id):
        raise NotFoundError("Appointment not found")


# =========================
# Disponibilita'
# =========================
def busy_slots(
    repo: AppointmentRepository,
    doctor_id: int,
    day: str | None = None,
    start_date: str | None = None,
    end_date: str | None = None,
    now: datetime | None = None,
) -> list[dict]:
    """
    Finestre [inizio, inizio + durata servizio] degli appuntamenti attivi del medico.
    - start_date + end_date: intervallo inclusivo (end_date solo data = tutto il giorno)
    - date: quel giorno
    - altrimenti: da adesso in poi
    """
    date_from = date_to = date_before = None
    if start_date and end_date:
        date_from = parse_when(start_date, "start_date")
        if _is_date_only(end_date):
            _, date_before = _day_bounds(parse_day(end_date, "end_date"))
        else:
            date_to = parse_when(end_date, "end_date")
    elif day:
        date_from, date_before = _day_bounds(parse_day(day, "date"))
    else:
        date_from = now or utcnow()

    flt = AppointmentFilter(
        doctor_id=doctor_id,
        statuses=ACTIVE_STATUSES,
        date_from=date_from,
        date_to=date_to,
        date_before=date_before,
    )
    return [
        {
            "start_time": a["appointment_date"],
            "end_time": a["appointment_date"] + timedelta(minutes=a.get("duration_minutes") or DEFAULT_SLOT_MINUTES),
        }
        for a in repo.list_appointments(flt)
    ]


# =========================
# Log alive
# =========================
def _enrich(db: Database, appointments: list[dict]) -> list[dict]:
    """Nome paziente / medico dai servizi anagrafici (se presenti)."""
    patient_ids = {a["patient_id"] for a in appointments if a.get("patient_id") is not None}
    doctor_ids = {a["doctor_id"] for a in appointments if a.get("doctor_id") is not None}

    with db.session() as s:
        patients = {p.id: p for p in s.scalars(select(Patient).where(Patient.id.in_(patient_ids)))} if patient_ids else {}
        doctors = {d.id: d for d in s.scalars(select(Doctor).where(Doctor.id.in_(doctor_ids)))} if doctor_ids else {}

    out = []
    for a in appointments:
        p = patients.get(a.get("patient_id"))
        d = doctors.get(a.get("doctor_id"))
        out.append(
            {
                **a,
                "patient_name": p.name if p else a.get("patient_full_name"),
                "patient_phone": p.phone if p else a.get("patient_phone"),
                "doctor_name": d.name if d else None,
                "doctor_specialization": d.specialization if d else None,
            }
        )
    return out


def list_active_appointments(repo: AppointmentRepository, db: Database) -> list[dict]:
    return _enrich(db, repo.list_appointments(AppointmentFilter(statuses=ACTIVE_STATUSES)))


def list_logs(repo: AppointmentRepository, appointment_id: str) -> list[dict]:
    return repo.list_logs(appointment_id=appointment_id)


def list_logs_by_code(repo: AppointmentRepository, code: str) -> list[dict]:
    return repo.list_logs(code=code)


def append_log(
    repo: AppointmentRepository,
    appointment_id: str,
    title: str | None,
    description: str | None,
    code: str | None = None,
) -> dict:
    """Aggiunge un evento al diario dell'appuntamento; nessuna modifica/cancellazione prevista."""
    if not (title or "").strip() or not (description or "").strip():
        raise ValidationError("Title and description are required")

    app = repo.get_appointment(appointment_id)
    if app is None:
        raise NotFoundError("Appointment not found")

    log = repo.append_log(str(app["id"]), app.get("code") or code, title.strip(), description.strip())
    logger.info("Log aggiunto all'appuntamento %s: %s", app["id"], log["title"])
    return log


# =========================
# Dashboard
# =========================
def dashboard_data(repo: AppointmentRepository, db: Database, now: datetime | None = None) -> dict:
    now = now or utcnow()
    today_start, tomorrow = _day_bounds(now.date())

    with db.session() as s:
        total_patients = s.scalar(select(func.count()).select_from(Patient)) or 0
        total_doctors = s.scalar(select(func.count()).select_from(Doctor)) or 0

    from_today = repo.list_appointments(AppointmentFilter(date_from=today_start))
    today = [a for a in from_today if a["appointment_date"] < tomorrow]
    upcoming = [a for a in from_today if a["appointment_date"] >= now][:5]
    pending = repo.list_appointments(AppointmentFilter(statuses=(AppointmentStatus.SCHEDULED.value,)))

    by_status: dict[str, int] = {}
    for a in from_today:
        by_status[a["status"]] = by_status.get(a["status"], 0) + 1

    return {
        "totalPatients": total_patients,
        "totalDoctors": total_doctors,
        "todayAppointments": len(today),
        "pendingAppointments": len(pending),
        "recentAppointments": _enrich(db, upcoming),
        "statistics": {"appointmentsByStatus": by_status},
    }
