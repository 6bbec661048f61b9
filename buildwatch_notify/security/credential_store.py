# buildwatch_notify/security/credential_store.py
import json
import logging
from pathlib import Path
from typing import Optional, Protocol

from buildwatch_notify.models.notification import SessionIdentity
from buildwatch_notify.security.jwt_utils import TokenExpired, read_claims

logger = logging.getLogger(__name__)


class CredentialStore(Protocol):
    def load_session(self) -> Optional[SessionIdentity]:
        ...

    def clear(self):
        ...


def build_session(access_token: Optional[str], user_id: Optional[str],
                  user_type: Optional[str]) -> Optional[SessionIdentity]:
    """
    Arma la identidad de sesión a partir de lo guardado.
    - sin token -> None
    - token JWT expirado -> None
    - sin userId -> se intenta con el "sub" del token
    """
    if not access_token:
        return None

    try:
        claims = read_claims(access_token)
    except TokenExpired:
        logger.info("[credentials] token expirado, no hay sesión")
        return None

    if not user_id and claims:
        sub = claims.get("sub")
        user_id = str(sub) if sub is not None else None
    if not user_id:
        return None

    return SessionIdentity(userId=str(user_id), accessToken=access_token, userType=user_type)


class MemoryCredentialStore:
    def __init__(self, access_token: Optional[str] = None, user_id: Optional[str] = None,
                 user_type: Optional[str] = None):
        self.access_token = access_token
        self.user_id = user_id
        self.user_type = user_type

    def load_session(self) -> Optional[SessionIdentity]:
        return build_session(self.access_token, self.user_id, self.user_type)

    def clear(self):
        self.access_token = None
        self.user_id = None
        self.user_type = None


class FileCredentialStore:
    """
    Credenciales en un JSON local (lo que en el móvil era el storage):
      { "accessToken": "...", "userId": "...", "userType": "staff" }
    Se relee en cada load_session() porque el login puede reescribirlo.
    """
    def __init__(self, path: str):
        self.path = Path(path)

    def load_session(self) -> Optional[SessionIdentity]:
        if not self.path.exists():
            return None
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.warning("[credentials] no se pudo leer %s: %s", self.path, e)
            return None
        if not isinstance(data, dict):
            return None
        return build_session(data.get("accessToken"), data.get("userId"), data.get("userType"))

    def clear(self):
        # logout: sin archivo no hay sesión que releer
        self.path.unlink(missing_ok=True)
