from __future__ import annotations


class GestMedError(Exception):
    """Errore di dominio: il messaggio finisce nel campo `error` della risposta JSON."""
    status_code = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(GestMedError):
    """Campo mancante, stato non valido, servizio non coerente col medico."""
    status_code = 400


class NotFoundError(GestMedError):
    status_code = 404


class ConflictError(GestMedError):
    """Operazione bloccata da un riferimento esistente (es. servizio in uso)."""
    status_code = 400
