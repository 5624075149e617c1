"""
Authentication data models.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional

from ..utils.timestamp_utils import from_iso, to_iso, utc_now


@dataclass
class AuthUser:
    """Authenticated user identity returned by the auth endpoints."""
    id: str
    email: str
    name: Optional[str] = None
    email_verified: bool = False
    created_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'email': self.email,
            'name': self.name,
            'emailVerified': self.email_verified,
            'createdAt': to_iso(self.created_at),
        }

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> 'AuthUser':
        return cls(id=str(payload['id']),
                   email=payload.get('email', ''),
                   name=payload.get('name'),
                   email_verified=bool(payload.get('emailVerified', False)),
                   created_at=from_iso(payload.get('createdAt'), utc_now()))


@dataclass
class AuthSession:
    """Token pair and expiry of an authenticated user."""
    user: AuthUser
    access_token: str
    refresh_token: str
    expires_at: datetime

    def __post_init__(self):
        if not self.access_token:
            raise ValueError('An authenticated session requires an access token')

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return (now or utc_now()) >= self.expires_at

    def to_dict(self) -> Dict[str, Any]:
        return {
            'user': self.user.to_dict(),
            'accessToken': self.access_token,
            'refreshToken': self.refresh_token,
            'expiresAt': to_iso(self.expires_at),
        }
