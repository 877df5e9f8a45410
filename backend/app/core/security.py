from uuid import UUID

import jwt

from app.core.config import settings


def decode_access_token(token: str) -> dict:
    return jwt.decode(
        token,
        settings.supabase_jwt_secret,
        algorithms=[settings.supabase_jwt_algorithm],
        audience=settings.supabase_jwt_audience,
    )


def user_id_from_claims(claims: dict) -> UUID:
    return UUID(str(claims["sub"]))
