from __future__ import annotations

from typing import Any

import jwt

from live_presence.application.dto.principal import Principal


def principal_from_claims(payload: dict[str, Any]) -> Principal:
    """Map hosted-auth JWT claims to a principal.

    ``sub`` is the stable user id; tokens without one (anon keys) are rejected.
    """
    subject = payload.get("sub")
    if not subject:
        raise jwt.InvalidTokenError("Token has no subject")
    roles = payload.get("roles") or []
    role = payload.get("role")
    if role and role not in roles:
        roles = [*roles, role]
    return Principal(user_id=str(subject), email=payload.get("email"), roles=list(roles))


def decode_options(audience: str | None) -> dict[str, Any]:
    if audience:
        return {"audience": audience}
    return {"options": {"verify_aud": False}}
