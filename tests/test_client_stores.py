"""Store lato client: freschezza per TTL, modifiche ottimistiche, viste derivate, preload."""
from __future__ import annotations

import threading
import time
from datetime import date, datetime

import pytest

from gestmed.client.api import ApiError
from gestmed.client.preloader import CacheWarmer, preload_app_data
from gestmed.client.stores import (
    AliveLogsStore,
    AppointmentsStore,
    AppStore,
    DashboardStore,
    DoctorsStore,
    PatientsStore,
    ServicesStore,
    UserStore,
)
from tests.test_client_api import FakeClock, FakeResponse

PATIENTS = [
    {"id": 1, "name": "Giulia Neri", "email": "giulia@example.com", "phone": "333", "created_at": "2030-01-02T10:00:00"},
    {"id": 2, "name": "Marco Gialli", "email": None, "phone": "999", "created_at": "2030-01-01T10:00:00"},
]
DOCTORS = [
    {"id": 10, "name": "Dott. Rossi", "specialization": "Cardiologia", "is_available": True},
    {"id": 11, "name": "Dott.ssa Bianchi", "specialization": "Pediatria", "is_available": False},
]
APPOINTMENTS = [
    {"id": 100, "patient_id": 1, "doctor_id": 10, "status": "scheduled", "appointment_date": "2030-03-15T09:00:00",
     "notes": "controllo", "created_at": "2030-03-01T08:00:00"},
    {"id": 101, "patient_id": None, "patient_full_name": "Anna Verdi", "doctor_id": 11, "status": "completed",
     "appointment_date": "2030-03-15T11:00:00", "notes": "", "created_at": "2030-03-02T08:00:00"},
    {"id": 102, "patient_id": 2, "doctor_id": 10, "status": "cancelled", "appointment_date": "2030-03-20T09:00:00",
     "notes": "", "created_at": "2030-03-03T08:00:00"},
    {"id": 103, "patient_id": 2, "doctor_id": 10, "status": "scheduled", "appointment_date": "2030-03-18T09:00:00",
     "notes": "", "created_at": "2030-03-04T08:00:00"},
]


class FakeApi:
    """Sostituto dell'ApiClient: conta le chiamate, dati fissi."""

    def __init__(self) -> None:
        self.calls: list[str] = []
        self.fail: set[str] = set()

    def _call(self, name, result):
        self.calls.append(name)
        if name in self.fail:
            raise ApiError(500, "Internal server error")
        return result

    def get_patients(self, **params):
        return self._call("get_patients", [dict(p) for p in PATIENTS])

    def get_doctors(self, **params):
        return self._call("get_doctors", [dict(d) for d in DOCTORS])

    def get_services(self, **params):
        return self._call("get_services", [
            {"id": 1, "name": "Visita", "description": "", "doctor_id": 10, "is_active": True},
            {"id": 2, "name": "Eco", "description": "ecografia", "doctor_id": 10, "is_active": False},
        ])

    def get_appointments(self, **params):
        return self._call("get_appointments", [dict(a) for a in APPOINTMENTS])

    def create_patient(self, data):
        return self._call("create_patient", {"id": 3, **data})

    def update_patient(self, patient_id, data):
        return self._call("update_patient", {"id": patient_id, **data})

    def delete_patient(self, patient_id):
        return self._call("delete_patient", {"message": "Patient deleted successfully"})

    def update_appointment_status(self, appointment_id, status):
        current = next(a for a in APPOINTMENTS if a["id"] == appointment_id)
        return self._call("update_appointment_status", {**current, "status": status})

    def get_appointment_logs(self, appointment_id):
        return self._call("get_appointment_logs", [{"id": 1, "title": "Arrivo"}])

    def add_appointment_log(self, appointment_id, data):
        return self._call("add_appointment_log", {"id": 2, **data})


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def api():
    return FakeApi()


@pytest.fixture
def app_store(clock):
    return AppStore(clock=clock)


@pytest.fixture
def stores(api, app_store, clock):
    patients = PatientsStore(api, app_store, clock=clock)
    doctors = DoctorsStore(api, app_store, clock=clock)
    appointments = AppointmentsStore(api, app_store, patients, doctors, clock=clock)
    return patients, doctors, appointments


class TestFreshness:
    def test_fresh_data_skips_network(self, api, stores, clock):
        patients, _, _ = stores

        patients.fetch()
        patients.fetch()
        assert api.calls == ["get_patients"]

        clock.now += 2 * 60
        patients.fetch()
        assert api.calls == ["get_patients", "get_patients"]

    def test_force_refetch(self, api, stores):
        patients, _, _ = stores
        patients.fetch()
        patients.fetch(force=True)
        assert api.calls.count("get_patients") == 2

    def test_ttl_per_entity(self, api, stores, clock):
        patients, doctors, appointments = stores
        appointments.fetch()
        assert sorted(api.calls) == ["get_appointments", "get_doctors", "get_patients"]

        clock.now += 61
        assert appointments.is_stale
        assert not patients.is_stale
        clock.now += 60
        assert patients.is_stale
        assert not doctors.is_stale
        clock.now += 180
        assert doctors.is_stale

    def test_different_params_refetch(self, api, stores):
        _, _, appointments = stores
        appointments.fetch({"date": "2030-03-15"})
        appointments.fetch({"date": "2030-03-16"})
        assert api.calls.count("get_appointments") == 2

    def test_error_is_mapped_and_raised(self, api, stores, app_store):
        patients, _, _ = stores
        api.fail.add("get_patients")

        with pytest.raises(ApiError):
            patients.fetch()

        assert app_store.error == "Errore del server. Riprova più tardi."
        assert not app_store.is_loading
        assert patients.is_stale


class TestOptimisticUpdates:
    def test_create_prepends(self, stores, app_store):
        patients, _, _ = stores
        patients.fetch()

        patients.create({"name": "Nuovo"})

        assert [p["id"] for p in patients.items] == [3, 1, 2]
        assert app_store.notifications[-1]["severity"] == "success"

    def test_update_replaces_in_place(self, stores):
        patients, _, _ = stores
        patients.fetch()

        patients.update(2, {"name": "Marco G."})

        assert [p["name"] for p in patients.items] == ["Giulia Neri", "Marco G."]

    def test_delete_removes(self, stores):
        patients, _, _ = stores
        patients.fetch()

        patients.delete(1)

        assert [p["id"] for p in patients.items] == [2]

    def test_status_update_notifies(self, stores, app_store):
        _, _, appointments = stores
        appointments.fetch()

        appointments.update_status(100, "cancelled")

        assert appointments.find(100)["status"] == "cancelled"
        last = app_store.notifications[-1]
        assert (last["severity"], last["detail"]) == ("warn", "Appuntamento cancellato")


class TestViews:
    def test_enriched_names(self, stores):
        _, _, appointments = stores
        appointments.fetch()

        by_id = {a["id"]: a for a in appointments.enriched}

        assert by_id[100]["patient_name"] == "Giulia Neri"
        assert by_id[100]["doctor_name"] == "Dott. Rossi"
        assert by_id[101]["patient_name"] == "Anna Verdi"
        assert by_id[101]["doctor_specialization"] == "Pediatria"

    def test_today_upcoming_grouping(self, stores):
        _, _, appointments = stores
        appointments.fetch()

        assert [a["id"] for a in appointments.today(date(2030, 3, 15))] == [100, 101]
        assert [a["id"] for a in appointments.upcoming(datetime(2030, 3, 15, 10, 0))] == [101, 103]
        assert sorted(appointments.by_status) == ["cancelled", "completed", "scheduled"]
        assert [a["id"] for a in appointments.by_doctor[10]] == [100, 102, 103]

    def test_filtered(self, stores):
        _, _, appointments = stores
        appointments.fetch()

        assert [a["id"] for a in appointments.filtered(search="verdi")] == [101]
        assert [a["id"] for a in appointments.filtered(status="scheduled", doctor_id=10)] == [100, 103]
        in_range = appointments.by_date_range(datetime(2030, 3, 16), datetime(2030, 3, 31))
        assert [a["id"] for a in in_range] == [102, 103]

    def test_doctor_and_service_views(self, api, app_store, stores):
        _, doctors, _ = stores
        doctors.fetch()
        services = ServicesStore(api, app_store)
        services.fetch()

        assert [d["id"] for d in doctors.available] == [10]
        assert list(doctors.by_specialization) == ["Cardiologia", "Pediatria"]
        assert [d["id"] for d in doctors.filtered(search="bianchi")] == [11]
        assert [s["id"] for s in services.active] == [1]
        assert [s["id"] for s in services.filtered(search="ecografia")] == [2]

    def test_patient_search(self, stores):
        patients, _, _ = stores
        patients.fetch()
        assert [p["id"] for p in patients.filtered("999")] == [2]


class TestDashboardStore:
    def test_derived_from_other_stores(self, stores):
        patients, doctors, appointments = stores
        appointments.fetch()
        dashboard = DashboardStore(patients, doctors, appointments)

        data = dashboard.data(today=date(2030, 3, 15))

        assert data["totalPatients"] == 2
        assert data["totalDoctors"] == 2
        assert data["todayAppointments"] == 2
        assert data["pendingAppointments"] == 2
        assert [p["id"] for p in data["recentPatients"]] == [1, 2]
        assert [a["id"] for a in data["recentAppointments"]] == [103, 102, 101, 100]
        assert data["statistics"]["appointmentsByStatus"] == {"scheduled": 2, "completed": 1, "cancelled": 1}
        assert data["statistics"]["availableDoctors"] == 1
        assert data["statistics"]["monthlyAppointments"] == 4

    def test_recomputed_after_changes(self, stores):
        patients, doctors, appointments = stores
        appointments.fetch()
        dashboard = DashboardStore(patients, doctors, appointments)

        appointments.update_status(100, "completed")

        assert dashboard.quick_stats(today=date(2030, 3, 15))["pendingCount"] == 1


class TestAppStore:
    def test_notifications_expire_unless_persistent(self, app_store, clock):
        app_store.add_notification("info", "Info", "temporanea")
        app_store.add_notification("warn", "Attenzione", "fissa", persistent=True)

        clock.now += 5
        assert [n["detail"] for n in app_store.notifications] == ["fissa"]

    @pytest.mark.parametrize(
        "error,message",
        [
            (ApiError(400, "x"), "Richiesta non valida. Controlla i dati inseriti."),
            (ApiError(401, "x"), "Accesso non autorizzato. Effettua il login."),
            (ApiError(403, "x"), "Non hai i permessi per questa operazione."),
            (ApiError(404, "x"), "Risorsa non trovata."),
            (ApiError(500, "x"), "Errore del server. Riprova più tardi."),
            (ApiError(None, "down"), "Errore di connessione. Controlla la tua connessione internet."),
            (RuntimeError("boom"), "Si è verificato un errore. Riprova più tardi."),
        ],
    )
    def test_error_messages(self, app_store, error, message):
        assert app_store.handle_api_error(error) == message
        assert app_store.error == message
        assert app_store.notifications[-1]["severity"] == "error"


class TestAliveLogsStore:
    def test_fetch_and_prepend(self, api):
        store = AliveLogsStore(api)

        store.fetch_logs(100)
        store.add_log(100, "Visita", "Inizio")

        assert [log["title"] for log in store.get_logs(100)] == ["Visita", "Arrivo"]

    def test_fetch_error_is_recorded(self, api):
        api.fail.add("get_appointment_logs")
        store = AliveLogsStore(api)

        assert store.fetch_logs(100) == []
        assert store.error == "Internal server error"


class FakeUserSession:
    def __init__(self, response):
        self.response = response

    def get(self, url, headers=None, timeout=None):
        return self.response


class TestUserStore:
    def test_fetch_user_info(self):
        store = UserStore(
            "http://proxy/oauth2/userinfo",
            session=FakeUserSession(FakeResponse(body={"preferredUsername": "mrossi", "email": "m@x.it", "groups": ["Medici"]})),
        )

        store.fetch_user_info()

        assert store.is_logged_in
        assert store.user_name == "mrossi"
        assert store.role == "medici"

    def test_unauthorized_clears(self):
        store = UserStore("http://proxy/oauth2/userinfo", session=FakeUserSession(FakeResponse(401, reason="Unauthorized")))
        store.user_info = {"preferredUsername": "old"}

        assert store.fetch_user_info() is None
        assert not store.is_logged_in
        assert store.user_name == "Utente"

    def test_without_url(self):
        assert UserStore(None).fetch_user_info() is None


class TestPreloader:
    def test_preload_all(self, api, stores):
        patients, doctors, appointments = stores

        assert preload_app_data(doctors, patients, appointments) is True
        assert patients.items and doctors.items and appointments.items

    def test_failures_are_logged_not_raised(self, api, stores):
        patients, doctors, appointments = stores
        api.fail.add("get_doctors")

        assert preload_app_data(doctors, patients, appointments) is False
        assert patients.items

    def test_timeout(self, api, stores):
        patients, doctors, appointments = stores
        release = threading.Event()
        original = api.get_doctors

        def slow_doctors(**params):
            release.wait(2)
            return original(**params)

        api.get_doctors = slow_doctors
        try:
            start = time.monotonic()
            assert preload_app_data(doctors, patients, appointments, timeout=0.1) is False
            assert time.monotonic() - start < 1.5
        finally:
            release.set()

    def test_warmer_visibility(self, api, stores):
        patients, doctors, appointments = stores
        warmer = CacheWarmer(doctors, patients, appointments, interval=60)

        warmer.set_visible(True)
        assert warmer.running
        warmer.set_visible(False)
        assert not warmer.running

    def test_focus_triggers_delayed_preload(self, api, stores):
        patients, doctors, appointments = stores
        warmer = CacheWarmer(doctors, patients, appointments, focus_delay=0.01)

        timer = warmer.on_focus()
        timer.join(2)

        assert "get_doctors" in api.calls
