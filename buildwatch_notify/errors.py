# buildwatch_notify/errors.py


class MissingSessionError(RuntimeError):
    """No hay token o userId guardado: no sabemos a quién suscribir."""


class NotificationFetchError(RuntimeError):
    """Falló la llamada REST de historial (red o status HTTP)."""
