from __future__ import annotations

import secrets
import string
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Any

CODE_ALPHABET = string.ascii_uppercase + string.digits
CODE_LENGTH = 8
# tentativi prima di arrendersi su collisioni del codice univoco
MAX_CODE_ATTEMPTS = 5

SERVICE_SORT_FIELDS = ("name", "doctor_id", "price", "duration_minutes", "created_at")

SERVICE_NOT_AVAILABLE = "Service not available for this doctor"
SERVICE_IN_USE = "Cannot delete: service in use"


def generate_code() -> str:
    """Codice pubblico dell'appuntamento: 8 caratteri maiuscoli alfanumerici."""
    return "".join(secrets.choice(CODE_ALPHABET) for _ in range(CODE_LENGTH))


@dataclass(frozen=True)
class AppointmentFilter:
    doctor_id: int | None = None
    patient_id: int | None = None
    service_id: int | str | None = None
    statuses: tuple[str, ...] | None = None
    # confronto case-insensitive esatto
    patient_email: str | None = None
    patient_codice_fiscale: str | None = None
    code: str | None = None
    date_from: datetime | None = None    # >=
    date_to: datetime | None = None      # <=
    date_before: datetime | None = None  # <


class AppointmentRepository(ABC):
    """
    Servizi, appuntamenti e log "alive".
    Due implementazioni intercambiabili: relazionale (SqlAppointmentRepository)
    e documentale (MongoAppointmentRepository). Tutti i metodi ritornano dict
    serializzabili con l'identificativo esposto come `id`.
    """

    # --- servizi ---

    @abstractmethod
    def list_services(
        self,
        doctor_id: int | None = None,
        is_active: bool | None = None,
        is_external_bookable: bool | None = None,
        sort_by: str = "doctor_id",
        descending: bool = False,
    ) -> list[dict]: ...

    @abstractmethod
    def get_service(self, service_id: int | str) -> dict | None: ...

    @abstractmethod
    def create_service(self, data: dict[str, Any]) -> dict: ...

    @abstractmethod
    def update_service(self, service_id: int | str, changes: dict[str, Any]) -> dict | None: ...

    @abstractmethod
    def delete_service(self, service_id: int | str) -> bool:
        """False se non esiste, ConflictError se referenziato da appuntamenti."""

    # --- appuntamenti ---

    @abstractmethod
    def list_appointments(self, flt: AppointmentFilter | None = None) -> list[dict]:
        """Appuntamenti arricchiti coi dati del servizio, ordinati per data crescente."""

    @abstractmethod
    def get_appointment(self, appointment_id: int | str) -> dict | None: ...

    @abstractmethod
    def get_appointment_by_code(self, code: str) -> dict | None: ...

    @abstractmethod
    def create_appointment(self, data: dict[str, Any]) -> dict:
        """
        Verifica che il servizio esista, sia attivo e appartenga a data["doctor_id"]
        (ValidationError altrimenti), genera il codice e inserisce.
        """

    @abstractmethod
    def update_appointment(self, appointment_id: int | str, changes: dict[str, Any]) -> dict | None:
        """
        Se cambia service_id o doctor_id la coppia risultante viene ri-validata
        contro i valori gia' salvati.
        """

    @abstractmethod
    def delete_appointment(self, appointment_id: int | str) -> bool: ...

    # --- log alive ---

    @abstractmethod
    def list_logs(self, appointment_id: str | None = None, code: str | None = None) -> list[dict]:
        """Log dal piu' recente."""

    @abstractmethod
    def append_log(self, appointment_id: str, code: str | None, title: str, description: str) -> dict: ...

    # --- ciclo di vita ---

    def init(self) -> None:
        """Schema / indici; no-op di default."""

    def close(self) -> None:
        """Rilascio risorse; no-op di default."""
