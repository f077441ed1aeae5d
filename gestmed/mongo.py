from __future__ import annotations

import logging

from pymongo import ASCENDING, MongoClient
from pymongo.collection import Collection
from pymongo.database import Database as PyMongoDatabase

logger = logging.getLogger(__name__)


class MongoDatabase:
    """
    Connessione MongoDB per il backend documentale degli appuntamenti.
    La connessione viene aperta al primo accesso; un client gia' pronto
    (es. mongomock nei test) puo' essere passato dal chiamante.
    """

    def __init__(self, uri: str, db_name: str, client: MongoClient | None = None) -> None:
        self.uri = uri
        self.db_name = db_name
        self._client = client
        self._db: PyMongoDatabase | None = None

    @property
    def db(self) -> PyMongoDatabase:
        if self._db is None:
            if self._client is None:
                self._client = MongoClient(self.uri)
            self._db = self._client[self.db_name]
            logger.info("Connected to MongoDB: %s/%s", self.uri, self.db_name)
        return self._db

    def collection(self, name: str) -> Collection:
        return self.db[name]

    def init(self) -> None:
        """Indici (idempotente)."""
        services = self.collection("services")
        services.create_index([("doctor_id", ASCENDING)])
        services.create_index([("is_active", ASCENDING)])

        appointments = self.collection("appointments")
        appointments.create_index([("appointment_date", ASCENDING)])
        appointments.create_index([("patient_id", ASCENDING)])
        appointments.create_index([("doctor_id", ASCENDING)])
        appointments.create_index([("service_id", ASCENDING)])
        appointments.create_index([("code", ASCENDING)], unique=True)

        self.collection("alive_logs").create_index([("appointment_id", ASCENDING)])

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            logger.info("Connessione MongoDB chiusa")
        self._client = None
        self._db = None
