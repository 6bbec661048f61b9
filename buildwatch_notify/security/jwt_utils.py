# buildwatch_notify/security/jwt_utils.py
import logging
from typing import Optional

import jwt

logger = logging.getLogger(__name__)


class TokenExpired(Exception):
    pass


def read_claims(token: str) -> Optional[dict]:
    """
    Lee los claims del access token SIN verificar la firma: el cliente no
    tiene el secreto, sólo necesita saber si el token sigue vigente y
    quién es el "sub".
    Devuelve None si el token no es un JWT (token opaco).
    Lanza TokenExpired si el "exp" ya pasó.
    """
    try:
        return jwt.decode(
            token,
            options={"verify_signature": False, "verify_exp": True},
            algorithms=["HS256", "HS512", "RS256"],
        )
    except jwt.ExpiredSignatureError:
        raise TokenExpired("access token expirado")
    except jwt.PyJWTError:
        logger.debug("access token no es JWT, se usa como opaco")
        return None


def bearer_header(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}
