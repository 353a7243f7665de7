from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

import structlog
from sqlalchemy.exc import IntegrityError

from invoicing.models import GatewayCredential, utcnow

logger = structlog.get_logger(__name__)

DEFAULT_ACCOUNT = "default"

# Treat a token as expired slightly early so it does not lapse mid-request
EXPIRY_LEEWAY = timedelta(seconds=30)

# Lifetime assumed when a token response omits expires_in
DEFAULT_TOKEN_LIFETIME = 3600


def _aware(value: datetime) -> datetime:
    # SQLite hands back naive datetimes even for timezone-aware columns
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


@dataclass(frozen=True)
class Credential:
    access_token: str
    refresh_token: Optional[str]
    expires_in: int
    refresh_expires_in: Optional[int]
    issued_at: datetime

    @classmethod
    def from_token_response(cls, data: dict, issued_at: Optional[datetime] = None) -> "Credential":
        expires_in = data.get("expires_in")
        refresh_expires_in = data.get("refresh_expires_in")
        return cls(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token"),
            expires_in=int(expires_in) if expires_in is not None else DEFAULT_TOKEN_LIFETIME,
            refresh_expires_in=int(refresh_expires_in) if refresh_expires_in is not None else None,
            issued_at=issued_at or utcnow(),
        )

    @property
    def expires_at(self) -> datetime:
        return _aware(self.issued_at) + timedelta(seconds=self.expires_in)

    @property
    def refresh_expires_at(self) -> Optional[datetime]:
        if self.refresh_expires_in is None:
            return None
        return _aware(self.issued_at) + timedelta(seconds=self.refresh_expires_in)

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        now = now or utcnow()
        return now >= self.expires_at - EXPIRY_LEEWAY

    def can_refresh(self, now: Optional[datetime] = None) -> bool:
        if not self.refresh_token or self.refresh_expires_at is None:
            return False
        now = now or utcnow()
        return now < self.refresh_expires_at - EXPIRY_LEEWAY


class CredentialCache:
    """Durable holder of the single upstream credential.

    Every call opens its own session, so a read always sees the last
    committed write. Writes are last-write-wins: any valid token is as good
    as another, so concurrent refreshes need no coordination.
    """

    def __init__(self, session_factory, account: str = DEFAULT_ACCOUNT):
        self._session_factory = session_factory
        self._account = account

    def get(self) -> Optional[Credential]:
        with self._session_factory() as db:
            row = db.get(GatewayCredential, self._account)
            if row is None:
                return None
            return Credential(
                access_token=row.access_token,
                refresh_token=row.refresh_token,
                expires_in=row.expires_in,
                refresh_expires_in=row.refresh_expires_in,
                issued_at=_aware(row.issued_at),
            )

    def set(self, credential: Credential) -> None:
        values = {
            "access_token": credential.access_token,
            "refresh_token": credential.refresh_token,
            "expires_in": credential.expires_in,
            "refresh_expires_in": credential.refresh_expires_in,
            "issued_at": credential.issued_at,
        }
        with self._session_factory() as db:
            updated = db.query(GatewayCredential).filter_by(account=self._account).update(values)
            if not updated:
                db.add(GatewayCredential(account=self._account, **values))
            try:
                db.commit()
            except IntegrityError:
                # Another writer inserted the row first; overwrite it
                db.rollback()
                db.query(GatewayCredential).filter_by(account=self._account).update(values)
                db.commit()

        logger.info("gateway_credential_stored", account=self._account, expires_in=credential.expires_in)
