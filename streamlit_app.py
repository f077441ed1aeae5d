from __future__ import annotations

from datetime import date, datetime

import streamlit as st

from gestmed.client import (
    AliveLogsStore,
    ApiClient,
    ApiError,
    AppointmentsStore,
    AppStore,
    DashboardStore,
    DoctorsStore,
    PatientsStore,
    ServicesStore,
    UserStore,
)
from gestmed.client.preloader import CacheWarmer
from gestmed.config import API_BASE_URL

st.set_page_config(page_title="GestMed", layout="wide")

STATUS_LABELS = {
    "scheduled": "Programmato",
    "in_progress": "In corso",
    "completed": "Completato",
    "cancelled": "Cancellato",
}


# Store condivisi dalla sessione del server streamlit

@st.cache_resource
def get_stores() -> dict:
    app = AppStore()
    api = ApiClient(API_BASE_URL)
    patients = PatientsStore(api, app)
    doctors = DoctorsStore(api, app)
    appointments = AppointmentsStore(api, app, patients, doctors)
    warmer = CacheWarmer(doctors, patients, appointments)
    warmer.start()
    return {
        "app": app,
        "api": api,
        "patients": patients,
        "doctors": doctors,
        "services": ServicesStore(api, app),
        "appointments": appointments,
        "logs": AliveLogsStore(api),
        "dashboard": DashboardStore(patients, doctors, appointments),
        "user": UserStore(),
        "warmer": warmer,
    }


stores = get_stores()
app_store: AppStore = stores["app"]


def show_notifications() -> None:
    for n in app_store.notifications:
        if n["severity"] == "error":
            st.error(n["detail"])
        elif n["severity"] == "warn":
            st.warning(n["detail"])
        else:
            st.toast(n["detail"])


def doctor_label(d: dict) -> str:
    return f"{d['name']} ({d.get('specialization') or '-'})"



# Sidebar utente

with st.sidebar:
    st.header("Utente")
    user: UserStore = stores["user"]
    if not user.is_logged_in:
        user.fetch_user_info()
    if user.is_logged_in:
        st.write(f"Utente: **{user.user_name}**")
        st.caption(user.user_email or "-")
    else:
        st.info("Accesso gestito dal proxy OAuth2.")

    if st.button("Aggiorna dati", key="refresh_btn"):
        stores["api"].clear_cache()
        for name in ("patients", "doctors", "services", "appointments"):
            stores[name].clear_cache()
        st.rerun()

    st.divider()
    st.caption(f"API: {API_BASE_URL}")



# UI

st.title("GestMed - Gestione ambulatorio")

tab1, tab2, tab3, tab4 = st.tabs(["Prenotazioni", "Agenda Medico", "Pazienti", "Dashboard"])



# TAB 1 - Prenotazioni

with tab1:
    st.subheader("Prenota appuntamento")

    try:
        medici = stores["doctors"].fetch()
    except ApiError as e:
        st.error(f"API non raggiungibile o errore: {e.message}")
        st.stop()

    colA, colB = st.columns(2)

    with colA:
        medico = st.selectbox("Medico", options=medici, format_func=doctor_label, key="pren_medico")
        servizi = []
        if medico:
            try:
                servizi = stores["api"].get_services_by_doctor(medico["id"], is_active=True)
            except ApiError as e:
                st.error(e.message)
        servizio = st.selectbox(
            "Servizio",
            options=servizi,
            format_func=lambda s: f"{s['name']} ({s['duration_minutes']} min, {s['price']:.2f} EUR)",
            key="pren_servizio",
        )

    with colB:
        giorno = st.date_input("Data", value=date.today(), key="pren_data")
        ora = st.time_input("Ora", value=datetime.now().time().replace(second=0, microsecond=0), key="pren_ora")
        note = st.text_area("Note (opzionale)", height=100, key="pren_note")

    if medico:
        try:
            occupati = stores["api"].get_busy_slots(medico["id"], date=giorno.isoformat())
            if occupati:
                st.caption(
                    "Orari occupati: "
                    + ", ".join(f"{s['start_time'][11:16]}-{s['end_time'][11:16]}" for s in occupati)
                )
        except ApiError as e:
            st.error(e.message)

    st.divider()

    modalita = st.radio("Paziente", ["Esistente", "Nuovo (prenotazione pubblica)"], horizontal=True, key="pren_mod")
    payload: dict = {}
    if modalita == "Esistente":
        pazienti = stores["patients"].fetch()
        paziente = st.selectbox(
            "Paziente",
            options=pazienti,
            format_func=lambda p: f"{p['name']} ({p.get('email') or '-'}) | {p.get('phone') or '-'}",
            key="pren_paziente",
        )
        if paziente:
            payload["patient_id"] = paziente["id"]
    else:
        c1, c2 = st.columns(2)
        payload["patient_full_name"] = c1.text_input("Nome e cognome", key="pub_nome").strip()
        payload["patient_codice_fiscale"] = c2.text_input("Codice fiscale", key="pub_cf").strip()
        payload["patient_email"] = c1.text_input("Email (opzionale)", key="pub_email").strip()
        payload["patient_phone"] = c2.text_input("Telefono (opzionale)", key="pub_tel").strip()

    if st.button("Conferma prenotazione", key="pren_submit", disabled=not (medico and servizio)):
        payload.update(
            doctor_id=medico["id"],
            service_id=servizio["id"],
            appointment_date=datetime.combine(giorno, ora).isoformat(),
            notes=note or "",
        )
        try:
            res = stores["appointments"].create(payload)
            st.success(f"Appuntamento prenotato. Codice: **{res['code']}**")
        except ApiError:
            pass

    show_notifications()



# TAB 2 - Agenda medico

with tab2:
    st.subheader("Agenda giornaliera")

    medici = stores["doctors"].items
    medico_agenda = st.selectbox("Medico", options=medici, format_func=doctor_label, key="agenda_medico")
    giorno = st.date_input("Giorno", value=date.today(), key="agenda_giorno")

    if medico_agenda:
        try:
            items = stores["appointments"].fetch({"date": giorno.isoformat(), "doctor_id": medico_agenda["id"]})
        except ApiError:
            items = []

        if not items:
            st.info("Nessun appuntamento per questo giorno.")
        for a in stores["appointments"].enriched:
            with st.expander(
                f"{str(a['appointment_date'])[11:16]} | {a.get('service_name') or '-'} | "
                f"{a['patient_name']} | {STATUS_LABELS.get(a['status'], a['status'])} | {a['code']}"
            ):
                st.write(f"Note: {a.get('notes') or '-'}")
                nuovo = st.selectbox(
                    "Stato",
                    options=list(STATUS_LABELS),
                    index=list(STATUS_LABELS).index(a["status"]) if a["status"] in STATUS_LABELS else 0,
                    format_func=STATUS_LABELS.get,
                    key=f"stato_{a['id']}",
                )
                if st.button("Aggiorna stato", key=f"stato_btn_{a['id']}") and nuovo != a["status"]:
                    try:
                        stores["appointments"].update_status(a["id"], nuovo)
                        st.rerun()
                    except ApiError:
                        pass

                log_store: AliveLogsStore = stores["logs"]
                for log in log_store.fetch_logs(a["id"]):
                    st.write(f"- [{log['created_at'][:16]}] **{log['title']}**: {log['description']}")
                titolo = st.text_input("Titolo log", key=f"log_t_{a['id']}")
                descr = st.text_input("Descrizione", key=f"log_d_{a['id']}")
                if st.button("Aggiungi log", key=f"log_btn_{a['id']}"):
                    try:
                        log_store.add_log(a["id"], titolo, descr)
                        st.rerun()
                    except ApiError as e:
                        st.error(e.message)

    show_notifications()



# TAB 3 - Pazienti

with tab3:
    st.subheader("Gestione pazienti")

    with st.expander("Crea nuovo paziente"):
        c1, c2 = st.columns(2)
        nome = c1.text_input("Nome e cognome", key="paz_nome")
        cf = c2.text_input("Codice fiscale", key="paz_cf")
        email = c1.text_input("Email (opzionale)", key="paz_email")
        tel = c2.text_input("Telefono (opzionale)", key="paz_tel")

        if st.button("Crea paziente", key="paz_submit"):
            if not nome.strip():
                st.error("Il nome del paziente è obbligatorio.")
            else:
                try:
                    res = stores["patients"].create(
                        {
                            "name": nome.strip(),
                            "codice_fiscale": cf.strip() or None,
                            "email": email.strip() or None,
                            "phone": tel.strip() or None,
                        }
                    )
                    st.success(f"Paziente creato: {res['id']}")
                except ApiError:
                    pass

    st.divider()
    cerca = st.text_input("Cerca", key="paz_cerca")

    try:
        stores["patients"].fetch()
        pazienti = stores["patients"].filtered(cerca)
        if not pazienti:
            st.info("Nessun paziente presente.")
        for p in pazienti:
            st.write(f"- {p['name']} | {p.get('email') or '-'} | {p.get('phone') or '-'}")
    except ApiError as e:
        st.error(f"Errore caricamento pazienti: {e.message}")

    show_notifications()



# TAB 4 - Dashboard

with tab4:
    st.subheader("Riepilogo")

    try:
        data = stores["api"].get_dashboard_data()
    except ApiError as e:
        st.error(f"Errore dashboard: {e.message}")
        data = None

    if data:
        c1, c2, c3, c4 = st.columns(4)
        c1.metric("Pazienti", data["totalPatients"])
        c2.metric("Medici", data["totalDoctors"])
        c3.metric("Appuntamenti oggi", data["todayAppointments"])
        c4.metric("Da svolgere", data["pendingAppointments"])

        st.write("Prossimi appuntamenti:")
        for a in data["recentAppointments"]:
            st.write(
                f"- {a['appointment_date'][:16].replace('T', ' ')} | {a.get('patient_name') or '-'} | "
                f"{a.get('doctor_name') or '-'} | {a.get('service_name') or '-'}"
            )

        st.write("Per stato (da oggi):")
        st.bar_chart(data["statistics"]["appointmentsByStatus"])
