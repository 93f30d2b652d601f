from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any


@dataclass(frozen=True)
class SessionClaims:
    """Signed session payload identifying the caller and their tenant."""

    sub: str  # User ID
    tenant_id: str
    role: str
    exp: datetime
    email: str | None = None

    @property
    def is_expired(self) -> bool:
        return datetime.now(UTC) >= self.exp

    def to_dict(self) -> dict[str, Any]:
        return {
            "sub": self.sub,
            "tenant_id": self.tenant_id,
            "role": self.role,
            "email": self.email,
            "exp": int(self.exp.timestamp()),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SessionClaims:
        return cls(
            sub=str(data["sub"]),
            tenant_id=str(data["tenant_id"]),
            role=str(data["role"]),
            exp=datetime.fromtimestamp(int(data["exp"]), UTC),
            email=data.get("email"),
        )
