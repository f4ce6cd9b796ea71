from __future__ import annotations

import json
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class User:
    id: str
    email: str
    name: str
    password_hash: str
    password_algo: str = "argon2id"
    role: str = "user"
    created_at: datetime = field(default_factory=_utcnow)

    @classmethod
    def new(
        cls,
        email: str,
        name: str,
        password_hash: str,
        *,
        password_algo: str = "argon2id",
        role: str = "user",
    ) -> "User":
        return cls(
            id=str(uuid.uuid4()),
            email=email,
            name=name,
            password_hash=password_hash,
            password_algo=password_algo,
            role=role,
        )


@dataclass(frozen=True)
class RenewalRecord:
    """Provenance payload stored against a live renewal token."""

    subject_id: str
    created_at: datetime

    def to_json(self) -> str:
        return json.dumps(
            {"subject_id": self.subject_id, "created_at": self.created_at.isoformat()},
            separators=(",", ":"),
        )

    @classmethod
    def from_json(cls, raw: Optional[str]) -> Optional["RenewalRecord"]:
        if not raw:
            return None
        try:
            data = json.loads(raw)
            return cls(
                subject_id=str(data["subject_id"]),
                created_at=datetime.fromisoformat(data["created_at"]),
            )
        except (json.JSONDecodeError, KeyError, TypeError, ValueError):
            # Corrupted record - caller treats it like a foreign entry
            return None
