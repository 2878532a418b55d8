"""Access token inspection."""
from __future__ import annotations
from typing import Any

import jwt
from jwt.exceptions import InvalidTokenError

from .exceptions import InputValidationError


def decode_token(token: str) -> dict[str, Any]:
    """Return the header and claims of a JWT without verifying its signature.

    The token was just issued to us by the identity endpoint; this is for
    display only and must not be used for authorization decisions.

    Raises:
        InputValidationError: If the token is not a well-formed JWT
    """
    try:
        header = jwt.get_unverified_header(token)
        claims = jwt.decode(token, options={"verify_signature": False})
    except InvalidTokenError as exc:
        raise InputValidationError(f"Access token is not a valid JWT: {exc}", parameter="AccessToken") from exc
    return {"header": header, "claims": claims}
