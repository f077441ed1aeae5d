from __future__ import annotations

import logging

from sqlalchemy import select

from .db import Database
from .models import Doctor
from .repository import AppointmentRepository

logger = logging.getLogger(__name__)

DOCTORS = [
    ("Dott. Mario Rossi", "Medicina Generale", "m.rossi@gestmed.local", "MG-0001"),
    ("Dott.ssa Laura Bianchi", "Cardiologia", "l.bianchi@gestmed.local", "CA-0002"),
    ("Dott. Paolo Verdi", "Pediatria", "p.verdi@gestmed.local", "PE-0003"),
]

# (specializzazione del medico, nome, descrizione, durata, prezzo, prenotabile online)
SERVICES = [
    ("Medicina Generale", "Visita Generale", "Visita di medicina generale", 30, 50.0, True),
    ("Medicina Generale", "Controllo", "Visita di controllo", 20, 30.0, False),
    ("Cardiologia", "Visita Cardiologica", "Visita specialistica con ECG", 30, 80.0, True),
    ("Cardiologia", "Ecocardiogramma", "Ecocardiogramma color doppler", 45, 120.0, True),
    ("Pediatria", "Visita Pediatrica", "Visita pediatrica di base", 30, 60.0, True),
]


def seed_base(db: Database, repo: AppointmentRepository) -> None:
    """
    Popola dati minimi (idempotente):
    - medici
    - servizi prenotabili per medico
    """
    doctor_ids: dict[str, int] = {}
    with db.session() as s:
        for name, specialization, email, license_number in DOCTORS:
            d = s.execute(select(Doctor).where(Doctor.name == name)).scalar_one_or_none()
            if d is None:
                d = Doctor(
                    name=name,
                    specialization=specialization,
                    email=email,
                    license_number=license_number,
                    availability={},
                    is_available=True,
                )
                s.add(d)
                s.flush()
            doctor_ids[specialization] = d.id

    for specialization, name, description, duration, price, external in SERVICES:
        doctor_id = doctor_ids[specialization]
        existing = {svc["name"] for svc in repo.list_services(doctor_id=doctor_id)}
        if name in existing:
            continue
        repo.create_service(
            {
                "name": name,
                "description": description,
                "duration_minutes": duration,
                "price": price,
                "doctor_id": doctor_id,
                "is_active": True,
                "is_external_bookable": external,
            }
        )
    logger.info("Seed completato: %d medici", len(doctor_ids))
