from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor, wait
from datetime import date

from .stores import AppointmentsStore, DoctorsStore, PatientsStore

logger = logging.getLogger(__name__)

PRELOAD_TIMEOUT = 5.0
WARMING_INTERVAL = 5 * 60
FOCUS_DELAY = 0.5


def preload_app_data(
    doctors: DoctorsStore,
    patients: PatientsStore,
    appointments: AppointmentsStore,
    timeout: float = PRELOAD_TIMEOUT,
) -> bool:
    """
    Carica in parallelo medici, pazienti e appuntamenti di oggi.
    Gli errori dei singoli caricamenti vengono solo loggati.
    False se il tempo massimo scade o almeno un caricamento fallisce.
    """
    logger.info("Preload dati applicazione...")
    tasks = {
        "doctors": lambda: doctors.fetch(),
        "patients": lambda: patients.fetch(),
        "appointments": lambda: appointments.fetch({"date": date.today().isoformat()}),
    }

    pool = ThreadPoolExecutor(max_workers=len(tasks), thread_name_prefix="gestmed-preload")
    try:
        futures = {pool.submit(fn): name for name, fn in tasks.items()}
        done, pending = wait(futures, timeout=timeout)
    finally:
        # le richieste in corso non vengono interrotte
        pool.shutdown(wait=False)

    ok = not pending
    if pending:
        logger.warning("Preload timeout dopo %.1fs: %s", timeout, ", ".join(futures[f] for f in pending))
    for f in done:
        exc = f.exception()
        if exc is not None:
            ok = False
            logger.warning("Preload %s fallito: %s", futures[f], exc)

    if ok:
        logger.info("Dati applicazione precaricati")
    return ok


class CacheWarmer:
    """
    Ripete il preload ogni `interval` secondi finche' l'interfaccia e' visibile.
    set_visible(False) ferma il ciclo; on_focus() programma un preload ritardato.
    """

    def __init__(
        self,
        doctors: DoctorsStore,
        patients: PatientsStore,
        appointments: AppointmentsStore,
        interval: float = WARMING_INTERVAL,
        focus_delay: float = FOCUS_DELAY,
    ) -> None:
        self.doctors = doctors
        self.patients = patients
        self.appointments = appointments
        self.interval = interval
        self.focus_delay = focus_delay
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None
        self._lock = threading.Lock()

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def preload(self) -> bool:
        return preload_app_data(self.doctors, self.patients, self.appointments)

    def _loop(self) -> None:
        while not self._stop.wait(self.interval):
            self.preload()

    def start(self) -> None:
        with self._lock:
            if self.running:
                return
            self._stop = threading.Event()
            self._thread = threading.Thread(target=self._loop, name="gestmed-cache-warmer", daemon=True)
            self._thread.start()

    def stop(self) -> None:
        with self._lock:
            self._stop.set()
            thread, self._thread = self._thread, None
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=1)

    def set_visible(self, visible: bool) -> None:
        if visible:
            self.start()
        else:
            self.stop()

    def on_focus(self) -> threading.Timer:
        timer = threading.Timer(self.focus_delay, self.preload)
        timer.daemon = True
        timer.start()
        return timer
