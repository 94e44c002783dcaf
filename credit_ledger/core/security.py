from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt

from credit_ledger.config import settings


@dataclass(frozen=True)
class Identity:
    """Verified caller as vouched for by the auth collaborator."""

    account_id: str
    email: str | None = None

    @property
    def is_admin(self) -> bool:
        if not self.email:
            return False
        admins = {e.strip().lower() for e in settings.admin_emails}
        return self.email.strip().lower() in admins


def create_access_token(account_id: str, email: str | None = None) -> str:
    expire = datetime.now(timezone.utc) + timedelta(minutes=settings.access_token_expire_minutes)
    payload = {"sub": account_id, "email": email, "exp": expire}
    return jwt.encode(payload, settings.secret_key, algorithm=settings.algorithm)


def decode_access_token(token: str) -> Identity | None:
    """Returns the caller identity or None if invalid."""
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[settings.algorithm])
    except JWTError:
        return None
    subject = payload.get("sub")
    if not subject:
        return None
    return Identity(account_id=str(subject), email=payload.get("email"))
