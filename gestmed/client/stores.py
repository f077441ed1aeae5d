from __future__ import annotations

import itertools
import logging
import threading
import time
from datetime import date, datetime
from typing import Any, Callable

import requests

from ..config import USERINFO_URL
from .api import ApiClient, ApiError
from .cache import TTLCache

logger = logging.getLogger(__name__)

NOTIFICATION_LIFETIME = 5.0  # secondi

PATIENTS_TTL = 2 * 60
DOCTORS_TTL = 5 * 60
SERVICES_TTL = 5 * 60
APPOINTMENTS_TTL = 1 * 60  # gli appuntamenti cambiano spesso

ERROR_MESSAGES = {
    400: "Richiesta non valida. Controlla i dati inseriti.",
    401: "Accesso non autorizzato. Effettua il login.",
    403: "Non hai i permessi per questa operazione.",
    404: "Risorsa non trovata.",
    500: "Errore del server. Riprova più tardi.",
}
CONNECTION_ERROR = "Errore di connessione. Controlla la tua connessione internet."
GENERIC_ERROR = "Si è verificato un errore. Riprova più tardi."


def _as_datetime(value: Any) -> datetime | None:
    if isinstance(value, datetime):
        return value
    if not value:
        return None
    return datetime.fromisoformat(str(value).replace("Z", "+00:00")).replace(tzinfo=None)


def _contains(value: Any, needle: str) -> bool:
    return needle in str(value or "").lower()


# =========================
# Stato applicazione
# =========================
class AppStore:
    """Loading globale, ultimo errore e notifiche a scadenza."""

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._ids = itertools.count(1)
        self._lock = threading.Lock()
        self._loading = 0
        self.error: str | None = None
        self._notifications: list[dict] = []

    @property
    def is_loading(self) -> bool:
        return self._loading > 0

    @property
    def has_error(self) -> bool:
        return self.error is not None

    def set_loading(self, state: bool) -> None:
        with self._lock:
            self._loading = self._loading + 1 if state else max(0, self._loading - 1)

    def set_error(self, message: str) -> None:
        self.error = message

    def clear_error(self) -> None:
        self.error = None

    @property
    def notifications(self) -> list[dict]:
        now = self._clock()
        with self._lock:
            self._notifications = [
                n for n in self._notifications if n["persistent"] or now - n["created"] < NOTIFICATION_LIFETIME
            ]
            return list(self._notifications)

    def add_notification(self, severity: str, summary: str, detail: str, persistent: bool = False) -> int:
        nid = next(self._ids)
        with self._lock:
            self._notifications.append(
                {
                    "id": nid,
                    "severity": severity,
                    "summary": summary,
                    "detail": detail,
                    "persistent": persistent,
                    "created": self._clock(),
                }
            )
        return nid

    def remove_notification(self, notification_id: int) -> None:
        with self._lock:
            self._notifications = [n for n in self._notifications if n["id"] != notification_id]

    def handle_api_error(self, error: Exception) -> str:
        logger.error("API Error: %s", error)
        message = GENERIC_ERROR
        if isinstance(error, ApiError):
            if error.status is None:
                message = CONNECTION_ERROR
            else:
                message = ERROR_MESSAGES.get(error.status, error.message or GENERIC_ERROR)
        self.set_error(message)
        self.add_notification("error", "Errore", message)
        return message


# =========================
# Base collezioni
# =========================
class CollectionStore:
    """
    Collezione in memoria con marcatore di freschezza.
    fetch() non tocca la rete se i dati sono freschi e non vuoti.
    """

    ttl: float = 60
    entity = "elemento"

    def __init__(self, api: ApiClient, app: AppStore, clock: Callable[[], float] = time.monotonic) -> None:
        self.api = api
        self.app = app
        self.items: list[dict] = []
        self._fresh = TTLCache(self.ttl, clock)
        self._lock = threading.RLock()
        self._last_params: dict | None = None

    @property
    def is_stale(self) -> bool:
        return "fetched" not in self._fresh

    def clear_cache(self) -> None:
        self._fresh.clear()

    def _load(self, params: dict | None) -> list[dict]:
        raise NotImplementedError

    def _run(self, action: Callable[[], Any]) -> Any:
        self.app.set_loading(True)
        self.app.clear_error()
        try:
            return action()
        except ApiError as e:
            self.app.handle_api_error(e)
            raise
        finally:
            self.app.set_loading(False)

    def fetch(self, params: dict | None = None, force: bool = False) -> list[dict]:
        with self._lock:
            if not force and not self.is_stale and self.items and params == self._last_params:
                return self.items

            def load() -> list[dict]:
                data = self._load(params)
                self.items = list(data or [])
                self._last_params = params
                self._fresh.set("fetched", True)
                return self.items

            return self._run(load)

    def find(self, item_id: Any) -> dict | None:
        return next((i for i in self.items if str(i.get("id")) == str(item_id)), None)

    # modifiche ottimistiche sulla lista locale

    def _created(self, item: dict, message: str) -> dict:
        with self._lock:
            self.items.insert(0, item)
        self.app.add_notification("success", "Successo", message)
        return item

    def _updated(self, item: dict, message: str | None) -> dict:
        with self._lock:
            for idx, current in enumerate(self.items):
                if str(current.get("id")) == str(item.get("id")):
                    self.items[idx] = item
                    break
        if message:
            self.app.add_notification("success", "Successo", message)
        return item

    def _deleted(self, item_id: Any, message: str) -> bool:
        with self._lock:
            self.items = [i for i in self.items if str(i.get("id")) != str(item_id)]
        self.app.add_notification("success", "Successo", message)
        return True


# =========================
# Pazienti / Medici / Servizi
# =========================
class PatientsStore(CollectionStore):
    ttl = PATIENTS_TTL

    def _load(self, params: dict | None) -> list[dict]:
        return self.api.get_patients(**(params or {}))

    def filtered(self, search: str | None = None) -> list[dict]:
        if not search:
            return list(self.items)
        needle = search.lower()
        return [
            p for p in self.items
            if _contains(p.get("name"), needle) or _contains(p.get("email"), needle) or _contains(p.get("phone"), needle)
        ]

    def create(self, data: dict) -> dict:
        return self._created(self._run(lambda: self.api.create_patient(data)), "Paziente creato con successo")

    def update(self, patient_id: int, data: dict) -> dict:
        return self._updated(self._run(lambda: self.api.update_patient(patient_id, data)), "Paziente aggiornato con successo")

    def delete(self, patient_id: int) -> bool:
        self._run(lambda: self.api.delete_patient(patient_id))
        return self._deleted(patient_id, "Paziente eliminato con successo")


class DoctorsStore(CollectionStore):
    ttl = DOCTORS_TTL

    def _load(self, params: dict | None) -> list[dict]:
        return self.api.get_doctors(**(params or {}))

    @property
    def available(self) -> list[dict]:
        return [d for d in self.items if d.get("is_available")]

    @property
    def by_specialization(self) -> dict[str, list[dict]]:
        grouped: dict[str, list[dict]] = {}
        for d in self.items:
            grouped.setdefault(d.get("specialization") or "Generale", []).append(d)
        return grouped

    def filtered(self, search: str | None = None, specialization: str | None = None, available: bool | None = None) -> list[dict]:
        out = list(self.items)
        if search:
            needle = search.lower()
            out = [d for d in out if _contains(d.get("name"), needle) or _contains(d.get("specialization"), needle)]
        if specialization:
            out = [d for d in out if d.get("specialization") == specialization]
        if available is not None:
            out = [d for d in out if bool(d.get("is_available")) == available]
        return out

    def create(self, data: dict) -> dict:
        return self._created(self._run(lambda: self.api.create_doctor(data)), "Medico creato con successo")

    def update(self, doctor_id: int, data: dict) -> dict:
        return self._updated(self._run(lambda: self.api.update_doctor(doctor_id, data)), "Medico aggiornato con successo")

    def delete(self, doctor_id: int) -> bool:
        self._run(lambda: self.api.delete_doctor(doctor_id))
        return self._deleted(doctor_id, "Medico eliminato con successo")


class ServicesStore(CollectionStore):
    ttl = SERVICES_TTL

    def _load(self, params: dict | None) -> list[dict]:
        return self.api.get_services(**(params or {}))

    @property
    def active(self) -> list[dict]:
        return [s for s in self.items if s.get("is_active")]

    def by_doctor(self, doctor_id: int) -> list[dict]:
        return [s for s in self.items if s.get("doctor_id") == doctor_id]

    def filtered(self, doctor_id: int | None = None, is_active: bool | None = None, search: str | None = None) -> list[dict]:
        out = list(self.items)
        if doctor_id is not None:
            out = [s for s in out if s.get("doctor_id") == doctor_id]
        if is_active is not None:
            out = [s for s in out if bool(s.get("is_active")) == is_active]
        if search:
            needle = search.lower()
            out = [s for s in out if _contains(s.get("name"), needle) or _contains(s.get("description"), needle)]
        return out

    def create(self, data: dict) -> dict:
        return self._created(self._run(lambda: self.api.create_service(data)), "Servizio creato con successo")

    def update(self, service_id: int | str, data: dict) -> dict:
        return self._updated(self._run(lambda: self.api.update_service(service_id, data)), "Servizio aggiornato con successo")

    def delete(self, service_id: int | str) -> bool:
        self._run(lambda: self.api.delete_service(service_id))
        return self._deleted(service_id, "Servizio eliminato con successo")


# =========================
# Appuntamenti
# =========================
STATUS_MESSAGES = {
    "scheduled": "Appuntamento programmato",
    "in_progress": "Appuntamento in corso",
    "completed": "Appuntamento completato",
    "cancelled": "Appuntamento cancellato",
}


class AppointmentsStore(CollectionStore):
    ttl = APPOINTMENTS_TTL

    def __init__(
        self,
        api: ApiClient,
        app: AppStore,
        patients: PatientsStore,
        doctors: DoctorsStore,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        super().__init__(api, app, clock)
        self.patients = patients
        self.doctors = doctors

    def _ensure_related_loaded(self) -> None:
        if self.patients.is_stale:
            self.patients.fetch()
        if self.doctors.is_stale:
            self.doctors.fetch()

    def _load(self, params: dict | None) -> list[dict]:
        self._ensure_related_loaded()
        return self.api.get_appointments(**(params or {}))

    @property
    def enriched(self) -> list[dict]:
        patients = {p.get("id"): p for p in self.patients.items}
        doctors = {d.get("id"): d for d in self.doctors.items}
        out = []
        for a in self.items:
            p = patients.get(a.get("patient_id")) or {}
            d = doctors.get(a.get("doctor_id")) or {}
            out.append(
                {
                    **a,
                    "patient_name": p.get("name") or a.get("patient_full_name") or "Paziente non trovato",
                    "patient_email": p.get("email") or a.get("patient_email") or "",
                    "patient_phone": p.get("phone") or a.get("patient_phone") or "",
                    "doctor_name": d.get("name") or "Dottore non trovato",
                    "doctor_specialization": d.get("specialization") or "",
                }
            )
        return out

    def today(self, today: date | None = None) -> list[dict]:
        prefix = (today or date.today()).isoformat()
        return [a for a in self.enriched if str(a.get("appointment_date") or "").startswith(prefix)]

    def upcoming(self, now: datetime | None = None) -> list[dict]:
        now = now or datetime.now()
        out = [
            a for a in self.enriched
            if a.get("status") != "cancelled" and (_as_datetime(a.get("appointment_date")) or now) > now
        ]
        return sorted(out, key=lambda a: _as_datetime(a["appointment_date"]))

    @property
    def by_status(self) -> dict[str, list[dict]]:
        grouped: dict[str, list[dict]] = {}
        for a in self.enriched:
            grouped.setdefault(a.get("status") or "scheduled", []).append(a)
        return grouped

    @property
    def by_doctor(self) -> dict[Any, list[dict]]:
        grouped: dict[Any, list[dict]] = {}
        for a in self.enriched:
            grouped.setdefault(a.get("doctor_id") or "unknown", []).append(a)
        return grouped

    def filtered(
        self,
        search: str | None = None,
        status: str | None = None,
        doctor_id: int | None = None,
        patient_id: int | None = None,
        date_from: datetime | None = None,
        date_to: datetime | None = None,
    ) -> list[dict]:
        out = self.enriched
        if search:
            needle = search.lower()
            out = [
                a for a in out
                if _contains(a.get("patient_name"), needle)
                or _contains(a.get("doctor_name"), needle)
                or _contains(a.get("notes"), needle)
            ]
        if status:
            out = [a for a in out if a.get("status") == status]
        if doctor_id is not None:
            out = [a for a in out if a.get("doctor_id") == doctor_id]
        if patient_id is not None:
            out = [a for a in out if a.get("patient_id") == patient_id]
        if date_from is not None:
            out = [a for a in out if _as_datetime(a.get("appointment_date")) >= date_from]
        if date_to is not None:
            out = [a for a in out if _as_datetime(a.get("appointment_date")) <= date_to]
        return out

    def by_date_range(self, start: datetime, end: datetime) -> list[dict]:
        return self.filtered(date_from=start, date_to=end)

    def create(self, data: dict) -> dict:
        return self._created(self._run(lambda: self.api.create_appointment(data)), "Appuntamento creato con successo")

    def update(self, appointment_id: int | str, data: dict, message: str | None = "Appuntamento aggiornato con successo") -> dict:
        return self._updated(self._run(lambda: self.api.update_appointment(appointment_id, data)), message)

    def update_status(self, appointment_id: int | str, status: str) -> dict:
        item = self._updated(self._run(lambda: self.api.update_appointment_status(appointment_id, status)), None)
        self.app.add_notification(
            "warn" if status == "cancelled" else "info",
            "Status aggiornato",
            STATUS_MESSAGES.get(status, "Status appuntamento aggiornato"),
        )
        return item

    def delete(self, appointment_id: int | str) -> bool:
        self._run(lambda: self.api.delete_appointment(appointment_id))
        return self._deleted(appointment_id, "Appuntamento eliminato con successo")


# =========================
# Log alive
# =========================
class AliveLogsStore:
    def __init__(self, api: ApiClient) -> None:
        self.api = api
        self.logs: dict[str, list[dict]] = {}
        self.error: str | None = None
        self._lock = threading.Lock()

    def get_logs(self, appointment_id: int | str) -> list[dict]:
        return self.logs.get(str(appointment_id), [])

    def fetch_logs(self, appointment_id: int | str) -> list[dict]:
        """Errori registrati in self.error, non propagati."""
        try:
            data = self.api.get_appointment_logs(appointment_id)
        except ApiError as e:
            self.error = e.message or "Errore nel caricamento dei log"
            logger.error("Errore caricamento log appuntamento %s: %s", appointment_id, e)
            return self.get_logs(appointment_id)
        with self._lock:
            self.logs[str(appointment_id)] = list(data or [])
        return self.logs[str(appointment_id)]

    def add_log(self, appointment_id: int | str, title: str, description: str) -> dict:
        try:
            log = self.api.add_appointment_log(appointment_id, {"title": title, "description": description})
        except ApiError as e:
            self.error = e.message or "Errore nell'aggiunta del log"
            raise
        with self._lock:
            self.logs.setdefault(str(appointment_id), []).insert(0, log)
        return log

    def clear_error(self) -> None:
        self.error = None

    def reset(self) -> None:
        with self._lock:
            self.logs = {}
        self.error = None


# =========================
# Dashboard (derivata)
# =========================
class DashboardStore:
    """Aggregati ricalcolati dagli altri store a ogni accesso, nessuna chiamata di rete."""

    def __init__(self, patients: PatientsStore, doctors: DoctorsStore, appointments: AppointmentsStore) -> None:
        self.patients = patients
        self.doctors = doctors
        self.appointments = appointments

    def data(self, today: date | None = None) -> dict:
        today = today or date.today()
        appointments = self.appointments.enriched
        doctors = self.doctors.items

        by_status: dict[str, int] = {}
        for a in appointments:
            status = a.get("status") or "scheduled"
            by_status[status] = by_status.get(status, 0) + 1

        by_specialization: dict[str, int] = {}
        for d in doctors:
            spec = d.get("specialization") or "Generale"
            by_specialization[spec] = by_specialization.get(spec, 0) + 1

        def created(item: dict) -> datetime:
            return _as_datetime(item.get("created_at")) or datetime.min

        monthly = [
            a for a in appointments
            if (dt := _as_datetime(a.get("appointment_date"))) and (dt.year, dt.month) == (today.year, today.month)
        ]

        return {
            "totalPatients": len(self.patients.items),
            "totalDoctors": len(doctors),
            "todayAppointments": len(self.appointments.today(today)),
            "pendingAppointments": by_status.get("scheduled", 0),
            "recentPatients": sorted(self.patients.items, key=created, reverse=True)[:5],
            "recentAppointments": sorted(appointments, key=created, reverse=True)[:5],
            "statistics": {
                "appointmentsByStatus": by_status,
                "doctorsBySpecialization": by_specialization,
                "availableDoctors": len(self.doctors.available),
                "totalAppointments": len(appointments),
                "monthlyAppointments": len(monthly),
                "completedAppointments": by_status.get("completed", 0),
                "cancelledAppointments": by_status.get("cancelled", 0),
            },
        }

    def quick_stats(self, today: date | None = None) -> dict:
        data = self.data(today)
        return {
            "appointmentsToday": data["todayAppointments"],
            "pendingCount": data["pendingAppointments"],
            "availableDoctorsCount": data["statistics"]["availableDoctors"],
        }


# =========================
# Utente (oauth2-proxy)
# =========================
class UserStore:
    """Informazioni utente lette dall'endpoint userinfo del proxy OAuth2 (cookie di sessione)."""

    def __init__(self, userinfo_url: str | None = USERINFO_URL, session: requests.Session | None = None, timeout: float = 10) -> None:
        self.userinfo_url = userinfo_url
        self.session = session or requests.Session()
        self.timeout = timeout
        self.user_info: dict | None = None
        self.error: str | None = None

    @property
    def is_logged_in(self) -> bool:
        return self.user_info is not None

    @property
    def user_name(self) -> str:
        return (self.user_info or {}).get("preferredUsername") or "Utente"

    @property
    def user_email(self) -> str:
        return (self.user_info or {}).get("email") or ""

    @property
    def permissions(self) -> list[str]:
        groups = (self.user_info or {}).get("groups")
        return groups if isinstance(groups, list) else []

    @property
    def role(self) -> str:
        groups = self.permissions
        return groups[0].lower() if groups and groups[0] else "user"

    def fetch_user_info(self) -> dict | None:
        if not self.userinfo_url:
            logger.warning("USERINFO_URL non configurato")
            return None

        self.error = None
        try:
            r = self.session.get(self.userinfo_url, headers={"Content-Type": "application/json"}, timeout=self.timeout)
        except requests.RequestException as e:
            self.error = str(e)
            logger.error("Errore lettura user info: %s", e)
            return None

        if r.status_code == 401:
            logger.warning("Cookie di sessione oauth2-proxy non valido o scaduto")
            self.clear()
            self.error = "HTTP 401"
            return None
        if not r.ok:
            self.error = f"HTTP {r.status_code}: {r.reason}"
            logger.error("Errore lettura user info: %s", self.error)
            return None

        self.user_info = r.json()
        return self.user_info

    def update(self, updates: dict) -> None:
        if self.user_info is not None:
            self.user_info = {**self.user_info, **updates}

    def clear(self) -> None:
        self.user_info = None
        self.error = None
