# buildwatch_notify/models/envelope.py
import logging
from typing import Any, List

from pydantic import ValidationError

from buildwatch_notify.models.notification import Notification

logger = logging.getLogger(__name__)


def _extract_items(body: Any) -> List[Any]:
    if isinstance(body, list):
        return body
    if isinstance(body, dict):
        data = body.get("data")
        if isinstance(data, list):
            return data
    return []


def normalize_notifications(body: Any) -> List[Notification]:
    """
    El endpoint de historial responde de tres formas:
      [ ... ]                         # array pelado
      { "data": [ ... ] }             # estilo axios
      { "success": true, "data": [ ... ] }
    Todo se reduce a una lista de Notification. Los items inválidos se
    descartan uno a uno, no tumban el lote.
    """
    items = _extract_items(body)
    if not items and isinstance(body, dict) and body.get("success") is False:
        logger.info("[fetch] respuesta con success=false, lote vacío")

    result: List[Notification] = []
    for raw in items:
        try:
            result.append(Notification.model_validate(raw))
        except ValidationError as e:
            logger.warning("[fetch] notificación inválida descartada: %s", e.errors()[:1])
    return result
