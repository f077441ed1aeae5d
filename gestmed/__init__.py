"""
Backend applicativo GestMed.

Struttura:
- config.py          : configurazione da variabili d'ambiente (.env)
- db.py              : engine e sessioni SQLAlchemy (PostgreSQL / SQLite)
- mongo.py           : connessione MongoDB (backend documentale appuntamenti)
- models.py          : modelli ORM
- schemas.py         : schemi pydantic di input/output
- repository*.py     : servizi, appuntamenti e log "alive" (backend sql o mongo)
- services.py        : logica di dominio (prenotazioni, stati, slot occupati, dashboard)
- routes/            : moduli REST (patients, doctors, appointments, alive, dashboard)
- api_main.py        : applicazione FastAPI
- seed.py            : dati iniziali (medici, servizi)
- cli.py             : simulazione applicativi esterni via CLI
- client/            : client API con cache, store e preload (usati da streamlit_app.py)
"""
