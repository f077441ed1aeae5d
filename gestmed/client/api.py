from __future__ import annotations

import logging
import time
from typing import Any, Callable

import requests

from ..config import API_BASE_URL
from .cache import TTLCache

logger = logging.getLogger(__name__)

CACHE_DURATION = 5 * 60  # secondi
RETRY_DELAY = 1.0
DEFAULT_TIMEOUT = 15


class ApiError(Exception):
    """Errore HTTP restituito dalle API (status None = nessuna risposta)."""

    def __init__(self, status: int | None, message: str) -> None:
        super().__init__(message)
        self.status = status
        self.message = message


class UnauthorizedError(ApiError):
    def __init__(self, message: str = "Unauthorized") -> None:
        super().__init__(401, message)


def _cache_key(path: str, params: dict | None) -> str:
    items = sorted((k, str(v)) for k, v in (params or {}).items() if v is not None)
    return f"{path}?{'&'.join(f'{k}={v}' for k, v in items)}"


class ApiClient:
    """
    Client HTTP verso le API GestMed.
    - GET in cache per 5 minuti (chiave: path + parametri ordinati)
    - le scritture invalidano le chiavi coinvolte prima dell'invio
    - errore di rete (nessuna risposta): un solo nuovo tentativo dopo 1 secondo
    - 401: token rimosso, callback on_unauthorized, UnauthorizedError
    """

    def __init__(
        self,
        base_url: str = API_BASE_URL,
        session: requests.Session | None = None,
        token: str | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        on_unauthorized: Callable[[], None] | None = None,
        sleep: Callable[[float], None] = time.sleep,
        cache: TTLCache | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()
        self.token = token
        self.timeout = timeout
        self.on_unauthorized = on_unauthorized
        self._sleep = sleep
        self.cache = cache or TTLCache(CACHE_DURATION)

    # =========================
    # HTTP
    # =========================
    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    def _send(self, method: str, path: str, params: dict | None = None, payload: Any = None) -> requests.Response:
        url = f"{self.base_url}{path}"
        for attempt in (1, 2):
            start = time.perf_counter()
            try:
                r = self.session.request(
                    method, url, params=params, json=payload, headers=self._headers(), timeout=self.timeout
                )
            except (requests.ConnectionError, requests.Timeout) as e:
                if attempt == 2:
                    logger.error("API %s %s: nessuna risposta (%s)", method, path, e)
                    raise ApiError(None, str(e)) from e
                logger.warning("API %s %s: errore di rete, nuovo tentativo tra %.0fs", method, path, RETRY_DELAY)
                self._sleep(RETRY_DELAY)
                continue
            logger.debug("API %s %s: %.0fms", method, path, (time.perf_counter() - start) * 1000)
            return r
        raise AssertionError("unreachable")

    def request(self, method: str, path: str, params: dict | None = None, payload: Any = None) -> Any:
        r = self._send(method, path, params=params, payload=payload)

        if r.status_code == 401:
            self.token = None
            if self.on_unauthorized:
                self.on_unauthorized()
            raise UnauthorizedError()

        if r.status_code >= 400:
            try:
                message = r.json().get("error") or r.reason
            except ValueError:
                message = r.reason or f"HTTP {r.status_code}"
            logger.error("API Error: %s %s -> %d %s", method, path, r.status_code, message)
            raise ApiError(r.status_code, message)

        if not r.content:
            return None
        return r.json()

    def get(self, path: str, params: dict | None = None) -> Any:
        key = _cache_key(path, params)
        cached = self.cache.get(key)
        if cached is not None:
            return cached
        data = self.request("GET", path, params=params)
        self.cache.set(key, data)
        return data

    def _write(self, method: str, path: str, payload: Any = None, invalidate: tuple[str, ...] = ()) -> Any:
        for pattern in invalidate:
            self.cache.invalidate(pattern)
        return self.request(method, path, payload=payload)

    def clear_cache(self) -> None:
        self.cache.clear()

    # =========================
    # Endpoint
    # =========================
    def health_check(self) -> dict:
        return self.request("GET", "/health")

    def get_dashboard_data(self) -> dict:
        return self.get("/dashboard")

    # pazienti
    def get_patients(self, search: str | None = None) -> list[dict]:
        return self.get("/patients", {"search": search})

    def get_patient(self, patient_id: int) -> dict:
        return self.get(f"/patients/{patient_id}")

    def create_patient(self, data: dict) -> dict:
        return self._write("POST", "/patients", data, invalidate=("/patients", "/dashboard"))

    def update_patient(self, patient_id: int, data: dict) -> dict:
        return self._write("PUT", f"/patients/{patient_id}", data, invalidate=("/patients",))

    def delete_patient(self, patient_id: int) -> dict:
        return self._write("DELETE", f"/patients/{patient_id}", invalidate=("/patients", "/dashboard"))

    # medici
    def get_doctors(self, search: str | None = None) -> list[dict]:
        return self.get("/doctors", {"search": search})

    def get_doctor(self, doctor_id: int) -> dict:
        return self.get(f"/doctors/{doctor_id}")

    def create_doctor(self, data: dict) -> dict:
        return self._write("POST", "/doctors", data, invalidate=("/doctors", "/dashboard"))

    def update_doctor(self, doctor_id: int, data: dict) -> dict:
        return self._write("PUT", f"/doctors/{doctor_id}", data, invalidate=("/doctors",))

    def delete_doctor(self, doctor_id: int) -> dict:
        return self._write("DELETE", f"/doctors/{doctor_id}", invalidate=("/doctors", "/dashboard"))

    # servizi
    def get_services(self, **params: Any) -> list[dict]:
        return self.get("/appointments/services", params)

    def get_services_by_doctor(self, doctor_id: int, is_active: bool | None = None) -> list[dict]:
        params = {"is_active": str(is_active).lower()} if is_active is not None else None
        return self.get(f"/appointments/services/doctor/{doctor_id}", params)

    def get_service(self, service_id: int | str) -> dict:
        return self.get(f"/appointments/services/{service_id}")

    def create_service(self, data: dict) -> dict:
        return self._write("POST", "/appointments/services", data, invalidate=("/appointments/services",))

    def update_service(self, service_id: int | str, data: dict) -> dict:
        return self._write("PUT", f"/appointments/services/{service_id}", data, invalidate=("/appointments/services",))

    def delete_service(self, service_id: int | str) -> dict:
        return self._write("DELETE", f"/appointments/services/{service_id}", invalidate=("/appointments/services",))

    # appuntamenti
    def get_appointments(self, **params: Any) -> list[dict]:
        return self.get("/appointments", params)

    def get_appointment(self, appointment_id: int | str) -> dict:
        return self.get(f"/appointments/{appointment_id}")

    def get_busy_slots(self, doctor_id: int, **params: Any) -> list[dict]:
        return self.get(f"/appointments/doctor/{doctor_id}/busy-slots", params)

    def create_appointment(self, data: dict) -> dict:
        return self._write("POST", "/appointments", data, invalidate=("/appointments", "/dashboard", "/alive"))

    def update_appointment(self, appointment_id: int | str, data: dict) -> dict:
        return self._write(
            "PUT", f"/appointments/{appointment_id}", data, invalidate=("/appointments", "/dashboard", "/alive")
        )

    def update_appointment_status(self, appointment_id: int | str, status: str) -> dict:
        return self._write(
            "PUT",
            f"/appointments/{appointment_id}/status",
            {"status": status},
            invalidate=("/appointments", "/dashboard", "/alive"),
        )

    def delete_appointment(self, appointment_id: int | str) -> dict:
        return self._write(
            "DELETE", f"/appointments/{appointment_id}", invalidate=("/appointments", "/dashboard", "/alive")
        )

    # log alive
    def get_active_appointments(self) -> list[dict]:
        return self.get("/alive")

    def get_appointment_logs(self, appointment_id: int | str) -> list[dict]:
        return self.get(f"/alive/{appointment_id}/logs")

    def get_logs_by_code(self, code: str) -> list[dict]:
        return self.get(f"/alive/code/{code}/logs")

    def add_appointment_log(self, appointment_id: int | str, data: dict) -> dict:
        return self._write("POST", f"/alive/{appointment_id}/logs", data, invalidate=(f"/alive/{appointment_id}", "/alive/code"))
