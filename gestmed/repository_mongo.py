from __future__ import annotations

import logging
import re
from typing import Any

from bson import ObjectId
from pymongo import ASCENDING, DESCENDING, ReturnDocument
from pymongo.errors import DuplicateKeyError

from . import repository as base
from .errors import ConflictError, ValidationError
from .models import utcnow
from .mongo import MongoDatabase
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


def _as_object_id(value: Any) -> ObjectId | None:
    if isinstance(value, ObjectId):
        return value
    if isinstance(value, str) and ObjectId.is_valid(value):
        return ObjectId(value)
    return None


def _alias_id(doc: dict) -> dict:
    """`_id` -> `id` (stringa) e ObjectId annidati resi come stringhe."""
    out = {"id": str(doc["_id"])}
    for key, value in doc.items():
        if key == "_id":
            continue
        out[key] = str(value) if isinstance(value, ObjectId) else value
    return out


def _iexact(value: str) -> dict:
    return {"$regex": f"^{re.escape(value)}$", "$options": "i"}


class MongoAppointmentRepository(AppointmentRepository):
    """
    Backend documentale. La verifica del servizio e l'inserimento non sono atomici:
    una disattivazione concorrente del servizio tra le due operazioni non viene rilevata.
    """

    def __init__(self, mongo: MongoDatabase) -> None:
        self.mongo = mongo

    @property
    def services(self):
        return self.mongo.collection("services")

    @property
    def appointments(self):
        return self.mongo.collection("appointments")

    @property
    def logs(self):
        return self.mongo.collection("alive_logs")

    def init(self) -> None:
        self.mongo.init()

    def close(self) -> None:
        self.mongo.close()

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

        flt: dict[str, Any] = {}
        if doctor_id is not None:
            flt["doctor_id"] = doctor_id
        if is_active is not None:
            flt["is_active"] = is_active
        if is_external_bookable is not None:
            flt["is_external_bookable"] = is_external_bookable

        cursor = self.services.find(flt).sort(
            [(sort_by, DESCENDING if descending else ASCENDING), ("name", ASCENDING)]
        )
        return [_alias_id(doc) for doc in cursor]

    def get_service(self, service_id: int | str) -> dict | None:
        oid = _as_object_id(service_id)
        if oid is None:
            return None
        doc = self.services.find_one({"_id": oid})
        return _alias_id(doc) if doc else None

    def create_service(self, data: dict[str, Any]) -> dict:
        now = utcnow()
        doc = {k: v for k, v in data.items() if k in SERVICE_FIELDS}
        doc.update(created_at=now, updated_at=now)
        result = self.services.insert_one(doc)
        return self.get_service(result.inserted_id)

    def update_service(self, service_id: int | str, changes: dict[str, Any]) -> dict | None:
        oid = _as_object_id(service_id)
        if oid is None:
            return None
        update = {k: v for k, v in changes.items() if k in SERVICE_FIELDS}
        update["updated_at"] = utcnow()
        doc = self.services.find_one_and_update(
            {"_id": oid}, {"$set": update}, return_document=ReturnDocument.AFTER
        )
        return _alias_id(doc) if doc else None

    def delete_service(self, service_id: int | str) -> bool:
        oid = _as_object_id(service_id)
        if oid is None:
            return False
        if self.services.find_one({"_id": oid}) is None:
            return False
        if self.appointments.find_one({"service_id": oid}) is not None:
            raise ConflictError(base.SERVICE_IN_USE)
        return self.services.find_one_and_delete({"_id": oid}) is not None

    # =========================
    # Appuntamenti
    # =========================
    def _with_service(self, docs: list[dict]) -> list[dict]:
        """Equivalente di $lookup sui servizi, fatto lato applicazione."""
        service_ids = {d.get("service_id") for d in docs if d.get("service_id") is not None}
        services = {s["_id"]: s for s in self.services.find({"_id": {"$in": list(service_ids)}})}

        out = []
        for doc in docs:
            svc = services.get(doc.get("service_id")) or {}
            item = _alias_id(doc)
            item.update(
                service_name=svc.get("name"),
                service_description=svc.get("description"),
                duration_minutes=svc.get("duration_minutes"),
                price=svc.get("price"),
            )
            out.append(item)
        return out

    @staticmethod
    def _mongo_filter(flt: AppointmentFilter) -> dict:
        q: dict[str, Any] = {}
        if flt.doctor_id is not None:
            q["doctor_id"] = flt.doctor_id
        if flt.patient_id is not None:
            q["patient_id"] = flt.patient_id
        if flt.service_id is not None:
            q["service_id"] = _as_object_id(flt.service_id)
        if flt.statuses is not None:
            q["status"] = {"$in": list(flt.statuses)}
        if flt.patient_email:
            q["patient_email"] = _iexact(flt.patient_email)
        if flt.patient_codice_fiscale:
            q["patient_codice_fiscale"] = _iexact(flt.patient_codice_fiscale)
        if flt.code:
            q["code"] = _iexact(flt.code)

        date_q: dict[str, Any] = {}
        if flt.date_from is not None:
            date_q["$gte"] = flt.date_from
        if flt.date_to is not None:
            date_q["$lte"] = flt.date_to
        if flt.date_before is not None:
            date_q["$lt"] = flt.date_before
        if date_q:
            q["appointment_date"] = date_q
        return q

    def list_appointments(self, flt: AppointmentFilter | None = None) -> list[dict]:
        q = self._mongo_filter(flt or AppointmentFilter())
        docs = list(self.appointments.find(q).sort([("appointment_date", ASCENDING), ("_id", ASCENDING)]))
        return self._with_service(docs)

    def get_appointment(self, appointment_id: int | str) -> dict | None:
        oid = _as_object_id(appointment_id)
        if oid is None:
            return None
        doc = self.appointments.find_one({"_id": oid})
        return self._with_service([doc])[0] if doc else None

    def get_appointment_by_code(self, code: str) -> dict | None:
        doc = self.appointments.find_one({"code": code})
        return self._with_service([doc])[0] if doc else None

    def _bookable_service(self, service_id: Any, doctor_id: Any) -> dict | None:
        oid = _as_object_id(service_id)
        if oid is None or doctor_id is None:
            return None
        return self.services.find_one({"_id": oid, "doctor_id": doctor_id, "is_active": True})

    def create_appointment(self, data: dict[str, Any]) -> dict:
        doc = {k: v for k, v in data.items() if k in APPOINTMENT_FIELDS}
        svc = self._bookable_service(doc.get("service_id"), doc.get("doctor_id"))
        if svc is None:
            raise ValidationError(base.SERVICE_NOT_AVAILABLE)

        now = utcnow()
        doc.update(service_id=svc["_id"], created_at=now, updated_at=now)

        for attempt in range(1, base.MAX_CODE_ATTEMPTS + 1):
            candidate = {**doc, "code": base.generate_code()}
            try:
                result = self.appointments.insert_one(candidate)
            except DuplicateKeyError:
                logger.warning("Collisione codice appuntamento %s (tentativo %d)", candidate["code"], attempt)
                continue
            return self.get_appointment(result.inserted_id)

        raise RuntimeError("Unable to generate a unique appointment code")

    def update_appointment(self, appointment_id: int | str, changes: dict[str, Any]) -> dict | None:
        oid = _as_object_id(appointment_id)
        if oid is None:
            return None
        current = self.appointments.find_one({"_id": oid})
        if current is None:
            return None

        update = {k: v for k, v in changes.items() if k in APPOINTMENT_FIELDS}
        if "service_id" in update or "doctor_id" in update:
            service_id = _as_object_id(update.get("service_id", current["service_id"]))
            doctor_id = update.get("doctor_id", current["doctor_id"])
            if service_id != current["service_id"] or doctor_id != current["doctor_id"]:
                if self._bookable_service(service_id, doctor_id) is None:
                    raise ValidationError(base.SERVICE_NOT_AVAILABLE)
            update["service_id"] = service_id
        update["updated_at"] = utcnow()

        doc = self.appointments.find_one_and_update(
            {"_id": oid}, {"$set": update}, return_document=ReturnDocument.AFTER
        )
        return self._with_service([doc])[0] if doc else None

    def delete_appointment(self, appointment_id: int | str) -> bool:
        oid = _as_object_id(appointment_id)
        if oid is None:
            return False
        return self.appointments.find_one_and_delete({"_id": oid}) is not None

    # =========================
    # Log alive
    # =========================
    def list_logs(self, appointment_id: str | None = None, code: str | None = None) -> list[dict]:
        q: dict[str, Any] = {}
        if appointment_id is not None:
            q["appointment_id"] = str(appointment_id)
        if code is not None:
            q["code"] = code
        cursor = self.logs.find(q).sort([("created_at", DESCENDING), ("_id", DESCENDING)])
        return [_alias_id(doc) for doc in cursor]

    def append_log(self, appointment_id: str, code: str | None, title: str, description: str) -> dict:
        doc = {
            "appointment_id": str(appointment_id),
            "code": code,
            "title": title,
            "description": description,
            "created_at": utcnow(),
        }
        result = self.logs.insert_one(doc)
        doc["_id"] = result.inserted_id
        return _alias_id(doc)
