from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import and_, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from . import repository as base
from .db import Database
from .errors import ConflictError, ValidationError
from .models import Appointment, AppointmentLog, Service
from .repository import AppointmentFilter, AppointmentRepository

logger = logging.getLogger(__name__)

SERVICE_FIELDS = (
    "name",
    "description",
    "duration_minutes",
    "price",
    "doctor_id",
    "is_active",
    "is_external_bookable",
)
APPOINTMENT_FIELDS = (
    "patient_id",
    "patient_full_name",
    "patient_email",
    "patient_phone",
    "patient_codice_fiscale",
    "doctor_id",
    "service_id",
    "appointment_date",
    "status",
    "notes",
)


def _as_int(value: Any) -> int | None:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _service_dict(svc: Service) -> dict:
    return {
        "id": svc.id,
        "name": svc.name,
        "description": svc.description,
        "duration_minutes": svc.duration_minutes,
        "price": svc.price,
        "doctor_id": svc.doctor_id,
        "is_active": svc.is_active,
        "is_external_bookable": svc.is_external_bookable,
        "created_at": svc.created_at,
        "updated_at": svc.updated_at,
    }


def _log_dict(log: AppointmentLog) -> dict:
    return {
        "id": log.id,
        "appointment_id": log.appointment_id,
        "code": log.code,
        "title": log.title,
        "description": log.description,
        "created_at": log.created_at,
    }


class SqlAppointmentRepository(AppointmentRepository):
    """Backend relazionale: servizi, appuntamenti e log nella stessa base dati di pazienti e medici."""

    def __init__(self, database: Database) -> None:
        self.db = database

    # =========================
    # Servizi
    # =========================
    def list_services(
        self,
        doctor_id: int | None = None,
        is_active: bool | None = None,
        is_external_bookable: bool | None = None,
        sort_by: str = "doctor_id",
        descending: bool = False,
    ) -> list[dict]:
        if sort_by not in base.SERVICE_SORT_FIELDS:
            sort_by = "doctor_id"
        column = getattr(Service, sort_by)

        q = select(Service)
        if doctor_id is not None:
            q = q.where(Service.doctor_id == doctor_id)
        if is_active is not None:
            q = q.where(Service.is_active.is_(is_active))
        if is_external_bookable is not None:
            q = q.where(Service.is_external_bookable.is_(is_external_bookable))
        q = q.order_by(column.desc() if descending else column.asc(), Service.name.asc())

        with self.db.session() as s:
            return [_service_dict(svc) for svc in s.scalars(q)]

    def get_service(self, service_id: int | str) -> dict | None:
        pk = _as_int(service_id)
        if pk is None:
            return None
        with self.db.session() as s:
            svc = s.get(Service, pk)
            return _service_dict(svc) if svc else None

    def create_service(self, data: dict[str, Any]) -> dict:
        with self.db.session() as s:
            svc = Service(**{k: v for k, v in data.items() if k in SERVICE_FIELDS})
            s.add(svc)
            s.flush()
            return _service_dict(svc)

    def update_service(self, service_id: int | str, changes: dict[str, Any]) -> dict | None:
        pk = _as_int(service_id)
        if pk is None:
            return None
        with self.db.session() as s:
            svc = s.get(Service, pk)
            if svc is None:
                return None
            for key, value in changes.items():
                if key in SERVICE_FIELDS:
                    setattr(svc, key, value)
            s.flush()
            return _service_dict(svc)

    def delete_service(self, service_id: int | str) -> bool:
        pk = _as_int(service_id)
        if pk is None:
            return False
        with self.db.session() as s:
            svc = s.get(Service, pk, with_for_update=True)
            if svc is None:
                return False
            in_use = s.execute(select(Appointment.id).where(Appointment.service_id == pk).limit(1)).first()
            if in_use is not None:
                raise ConflictError(base.SERVICE_IN_USE)
            s.delete(svc)
            return True

    # =========================
    # Appuntamenti
    # =========================
    def _joined_query(self):
        return select(
            Appointment,
            Service.name.label("service_name"),
            Service.description.label("service_description"),
            Service.duration_minutes.label("duration_minutes"),
            Service.price.label("price"),
        ).outerjoin(Service, Service.id == Appointment.service_id)

    @staticmethod
    def _row_dict(row) -> dict:
        a: Appointment = row[0]
        data = {"id": a.id, "code": a.code}
        data.update({f: getattr(a, f) for f in APPOINTMENT_FIELDS})
        data.update(
            {
                "created_at": a.created_at,
                "updated_at": a.updated_at,
                "service_name": row.service_name,
                "service_description": row.service_description,
                "duration_minutes": row.duration_minutes,
                "price": row.price,
            }
        )
        return data

    def list_appointments(self, flt: AppointmentFilter | None = None) -> list[dict]:
        flt = flt or AppointmentFilter()
        conds = []
        if flt.doctor_id is not None:
            conds.append(Appointment.doctor_id == flt.doctor_id)
        if flt.patient_id is not None:
            conds.append(Appointment.patient_id == flt.patient_id)
        if flt.service_id is not None:
            conds.append(Appointment.service_id == _as_int(flt.service_id))
        if flt.statuses is not None:
            conds.append(Appointment.status.in_(flt.statuses))
        if flt.patient_email:
            conds.append(func.lower(Appointment.patient_email) == flt.patient_email.lower())
        if flt.patient_codice_fiscale:
            conds.append(func.lower(Appointment.patient_codice_fiscale) == flt.patient_codice_fiscale.lower())
        if flt.code:
            conds.append(func.lower(Appointment.code) == flt.code.lower())
        if flt.date_from is not None:
            conds.append(Appointment.appointment_date >= flt.date_from)
        if flt.date_to is not None:
            conds.append(Appointment.appointment_date <= flt.date_to)
        if flt.date_before is not None:
            conds.append(Appointment.appointment_date < flt.date_before)

        q = self._joined_query()
        if conds:
            q = q.where(and_(*conds))
        q = q.order_by(Appointment.appointment_date.asc(), Appointment.id.asc())

        with self.db.session() as s:
            return [self._row_dict(r) for r in s.execute(q).all()]

    def get_appointment(self, appointment_id: int | str) -> dict | None:
        pk = _as_int(appointment_id)
        if pk is None:
            return None
        with self.db.session() as s:
            row = s.execute(self._joined_query().where(Appointment.id == pk)).first()
            return self._row_dict(row) if row else None

    def get_appointment_by_code(self, code: str) -> dict | None:
        with self.db.session() as s:
            row = s.execute(self._joined_query().where(Appointment.code == code)).first()
            return self._row_dict(row) if row else None

    @staticmethod
    def _bookable_service(s: Session, service_id: Any, doctor_id: Any) -> Service | None:
        """Servizio attivo del medico, con lock di riga fino al commit."""
        pk = _as_int(service_id)
        if pk is None or doctor_id is None:
            return None
        q = (
            select(Service)
            .where(
                and_(
                    Service.id == pk,
                    Service.doctor_id == doctor_id,
                    Service.is_active.is_(True),
                )
            )
            .with_for_update()
        )
        return s.scalars(q).first()

    def create_appointment(self, data: dict[str, Any]) -> dict:
        fields = {k: v for k, v in data.items() if k in APPOINTMENT_FIELDS}

        for attempt in range(1, base.MAX_CODE_ATTEMPTS + 1):
            code = base.generate_code()
            try:
                with self.db.session() as s:
                    svc = self._bookable_service(s, fields.get("service_id"), fields.get("doctor_id"))
                    if svc is None:
                        raise ValidationError(base.SERVICE_NOT_AVAILABLE)
                    app = Appointment(**{**fields, "service_id": svc.id}, code=code)
                    s.add(app)
                    s.flush()
                    new_id = app.id
            except IntegrityError:
                # unico vincolo univoco sulla tabella: il codice
                logger.warning("Collisione codice appuntamento %s (tentativo %d)", code, attempt)
                continue
            return self.get_appointment(new_id)

        raise RuntimeError("Unable to generate a unique appointment code")

    def update_appointment(self, appointment_id: int | str, changes: dict[str, Any]) -> dict | None:
        pk = _as_int(appointment_id)
        if pk is None:
            return None
        changes = {k: v for k, v in changes.items() if k in APPOINTMENT_FIELDS}

        with self.db.session() as s:
            app = s.get(Appointment, pk)
            if app is None:
                return None

            if "service_id" in changes or "doctor_id" in changes:
                service_id = _as_int(changes.get("service_id", app.service_id))
                doctor_id = changes.get("doctor_id", app.doctor_id)
                if service_id != app.service_id or doctor_id != app.doctor_id:
                    svc = self._bookable_service(s, service_id, doctor_id)
                    if svc is None:
                        raise ValidationError(base.SERVICE_NOT_AVAILABLE)
                changes["service_id"] = service_id

            for key, value in changes.items():
                setattr(app, key, value)

        return self.get_appointment(pk)

    def delete_appointment(self, appointment_id: int | str) -> bool:
        pk = _as_int(appointment_id)
        if pk is None:
            return False
        with self.db.session() as s:
            app = s.get(Appointment, pk)
            if app is None:
                return False
            s.delete(app)
            return True

    # =========================
    # Log alive
    # =========================
    def list_logs(self, appointment_id: str | None = None, code: str | None = None) -> list[dict]:
        q = select(AppointmentLog)
        if appointment_id is not None:
            q = q.where(AppointmentLog.appointment_id == str(appointment_id))
        if code is not None:
            q = q.where(AppointmentLog.code == code)
        q = q.order_by(AppointmentLog.created_at.desc(), AppointmentLog.id.desc())

        with self.db.session() as s:
            return [_log_dict(log) for log in s.scalars(q)]

    def append_log(self, appointment_id: str, code: str | None, title: str, description: str) -> dict:
        with self.db.session() as s:
            log = AppointmentLog(appointment_id=str(appointment_id), code=code, title=title, description=description)
            s.add(log)
            s.flush()
            return _log_dict(log)
