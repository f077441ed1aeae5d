from __future__ import annotations

import argparse
from datetime import datetime

from . import services
from .api_main import build_repository, create_app
from .config import Settings, configure_logging
from .db import Database
from .errors import GestMedError
from .seed import seed_base


def _open(settings: Settings):
    db = Database(settings.database_url)
    repo = build_repository(settings, db)
    db.init()  # garantisce tabelle
    repo.init()
    return db, repo


def cmd_init(args: argparse.Namespace, settings: Settings) -> None:
    db, repo = _open(settings)
    seed_base(db, repo)
    print("DB inizializzato e seed completato.")


def cmd_serve(args: argparse.Namespace, settings: Settings) -> None:
    import uvicorn

    uvicorn.run(create_app(settings), host=args.host, port=args.port or settings.port)


def cmd_list(args: argparse.Namespace, settings: Settings) -> None:
    db, repo = _open(settings)
    if args.entity == "doctors":
        for d in services.list_doctors(db):
            print(f"{d['id']} | {d['name']} | {d['specialization'] or '-'}")
    elif args.entity == "patients":
        for p in services.list_patients(db):
            print(f"{p['id']} | {p['name']} | {p['email'] or '-'}")
    elif args.entity == "services":
        for svc in services.list_services(repo):
            state = "attivo" if svc["is_active"] else "non attivo"
            print(f"{svc['id']} | {svc['name']} ({svc['duration_minutes']} min) | medico {svc['doctor_id']} | {state}")
    elif args.entity == "appointments":
        for a in services.list_appointments(repo, day=args.date):
            print(f"{a['id']} | {a['code']} | {a['appointment_date'].isoformat()} | {a['status']} | {a['service_name']}")


def cmd_add_patient(args: argparse.Namespace, settings: Settings) -> None:
    db, _ = _open(settings)
    p = services.create_patient(
        db,
        {"name": args.name, "email": args.email, "phone": args.phone, "codice_fiscale": args.codice_fiscale},
    )
    print(f"Paziente creato: {p['id']}")


def cmd_book(args: argparse.Namespace, settings: Settings) -> None:
    db, repo = _open(settings)
    start = datetime.fromisoformat(args.start)  # formato: 2026-01-14T10:30
    app = services.book_appointment(
        repo,
        {
            "patient_id": args.patient_id,
            "patient_full_name": args.patient_name,
            "doctor_id": args.doctor_id,
            "service_id": args.service_id,
            "appointment_date": start,
            "notes": args.notes,
        },
    )
    print(f"Appuntamento prenotato: {app['id']} (codice {app['code']})")


def cmd_status(args: argparse.Namespace, settings: Settings) -> None:
    _, repo = _open(settings)
    app = services.change_status(repo, args.appointment_id, args.status)
    print(f"Appuntamento {app['id']}: {app['status']}")


def cmd_logs(args: argparse.Namespace, settings: Settings) -> None:
    _, repo = _open(settings)
    if args.title:
        services.append_log(repo, args.appointment_id, args.title, args.description)
    logs = services.list_logs(repo, args.appointment_id)
    if not logs:
        print("Nessun log.")
        return
    for log in logs:
        print(f"[{log['created_at'].isoformat()}] {log['title']} | {log['description']}")


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="gestmed", description="CLI GestMed (gestione ambulatorio)")
    sub = p.add_subparsers(required=True)

    p_init = sub.add_parser("init", help="Crea DB e carica seed")
    p_init.set_defaults(func=cmd_init)

    p_serve = sub.add_parser("serve", help="Avvia le API (SERVICE decide i moduli montati)")
    p_serve.add_argument("--host", default="0.0.0.0")
    p_serve.add_argument("--port", type=int, default=None)
    p_serve.set_defaults(func=cmd_serve)

    p_list = sub.add_parser("list", help="Lista entità")
    p_list.add_argument("entity", choices=["doctors", "patients", "services", "appointments"])
    p_list.add_argument("--date", default=None, help="Solo appuntamenti del giorno (YYYY-MM-DD)")
    p_list.set_defaults(func=cmd_list)

    p_addp = sub.add_parser("add-patient", help="Crea paziente")
    p_addp.add_argument("--name", required=True)
    p_addp.add_argument("--email", default=None)
    p_addp.add_argument("--phone", default=None)
    p_addp.add_argument("--codice-fiscale", default=None)
    p_addp.set_defaults(func=cmd_add_patient)

    p_book = sub.add_parser("book", help="Prenota appuntamento")
    p_book.add_argument("--patient-id", type=int, default=None)
    p_book.add_argument("--patient-name", default=None, help="Prenotazione senza anagrafica")
    p_book.add_argument("--doctor-id", type=int, required=True)
    p_book.add_argument("--service-id", required=True)
    p_book.add_argument("--start", required=True, help="ISO datetime es: 2026-01-14T10:30")
    p_book.add_argument("--notes", default="")
    p_book.set_defaults(func=cmd_book)

    p_status = sub.add_parser("status", help="Cambia stato appuntamento")
    p_status.add_argument("--appointment-id", required=True)
    p_status.add_argument("--status", required=True, choices=["scheduled", "in_progress", "completed", "cancelled"])
    p_status.set_defaults(func=cmd_status)

    p_logs = sub.add_parser("logs", help="Mostra (ed eventualmente aggiunge) log alive")
    p_logs.add_argument("--appointment-id", required=True)
    p_logs.add_argument("--title", default=None)
    p_logs.add_argument("--description", default=None)
    p_logs.set_defaults(func=cmd_logs)

    return p


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    settings = Settings.from_env()
    configure_logging(settings.log_level)
    try:
        args.func(args, settings)
    except GestMedError as e:
        print(f"Errore: {e.message}")
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
