import jwt
from .config import Settings


class IdentityError(Exception):
    """Raised when an identity token is missing, expired or forged."""


# Why: uid comes from an external identity provider; only a signed token is trusted for it.
def decode_identity_token(token: str, settings: Settings) -> dict:
    if not settings.jwt_secret_key:
        raise IdentityError("Identity tokens are not configured")
    try:
        return jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
    except jwt.ExpiredSignatureError:
        raise IdentityError("Token expired")
    except jwt.InvalidTokenError:
        raise IdentityError("Invalid token")


def resolve_uid(token: str | None, claimed_uid: str | None, settings: Settings) -> str | None:
    """Return the uid a connection may use.

    With a configured secret, a presented token wins over any claimed uid.
    With ``require_identity_token`` a missing token is an error.
    """
    if token:
        data = decode_identity_token(token, settings)
        sub = data.get("sub")
        if sub is None:
            raise IdentityError("Token has no subject")
        return str(sub)
    if settings.require_identity_token:
        raise IdentityError("Not authenticated")
    return claimed_uid
