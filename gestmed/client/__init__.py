"""
Data layer lato client:
- cache: cache TTL generica
- api: client HTTP (requests) con cache GET, retry e invalidazione
- stores: collezioni in memoria per pazienti, medici, servizi, appuntamenti, log, dashboard, utente
- preloader: preload parallelo e riscaldamento periodico della cache
"""

from .api import ApiClient, ApiError, UnauthorizedError
from .cache import TTLCache
from .stores import (
    AliveLogsStore,
    AppointmentsStore,
    AppStore,
    DashboardStore,
    DoctorsStore,
    PatientsStore,
    ServicesStore,
    UserStore,
)

__all__ = [
    "AliveLogsStore",
    "ApiClient",
    "ApiError",
    "AppStore",
    "AppointmentsStore",
    "DashboardStore",
    "DoctorsStore",
    "PatientsStore",
    "ServicesStore",
    "TTLCache",
    "UnauthorizedError",
    "UserStore",
]
