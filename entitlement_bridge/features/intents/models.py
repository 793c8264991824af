"""Intent and pointer records as stored in the key-value store."""
from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Dict, List, Optional


STATUS_PENDING = "pending"
STATUS_APPLIED = "applied"

ENVIRONMENTS = ("test", "live")
DEFAULT_PARTITION = "default"

INTENT_TTL_SECONDS = 7 * 24 * 60 * 60


def intent_key(intent_id: str) -> str:
    return f"intent:{intent_id}"


def member_pointer_key(member_id: str) -> str:
    return f"latest-intent:{member_id}"


def email_pointer_key(env: Optional[str], email: str) -> str:
    return f"latest-intent-email:{env or DEFAULT_PARTITION}:{email}"


@dataclass
class Intent:
    """A user's declared program selection, captured before payment."""
    intent_id: str
    member_id: str
    programs: List[str]
    env: Optional[str] = None
    email: Optional[str] = None
    seats: int = 0
    price_id: Optional[str] = None
    status: str = STATUS_PENDING
    created_at: Optional[str] = None
    applied_at: Optional[str] = None

    @property
    def is_applied(self) -> bool:
        return self.status == STATUS_APPLIED

    def to_record(self) -> Dict[str, Any]:
        data = asdict(self)
        return {
            "intentId": data["intent_id"],
            "env": data["env"],
            "memberId": data["member_id"],
            "email": data["email"],
            "programs": data["programs"],
            "seats": data["seats"],
            "priceId": data["price_id"],
            "status": data["status"],
            "createdAt": data["created_at"],
            "appliedAt": data["applied_at"],
        }

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "Intent":
        raw_id = str(record.get("intentId") or record.get("id") or "")
        # Older records carried the full "intent:<id>" key as their id.
        intent_id = raw_id[len("intent:"):] if raw_id.startswith("intent:") else raw_id
        programs = [str(p) for p in record.get("programs") or []]
        seats = record.get("seats")
        return cls(
            intent_id=intent_id,
            member_id=str(record.get("memberId") or ""),
            programs=programs,
            env=record.get("env") or None,
            email=record.get("email") or None,
            seats=int(seats) if isinstance(seats, (int, float)) else len(programs),
            price_id=record.get("priceId"),
            status=record.get("status") or STATUS_PENDING,
            created_at=_as_text(record.get("createdAt")),
            applied_at=_as_text(record.get("appliedAt")),
        )


@dataclass
class Pointer:
    """Secondary index entry: correlation key -> most recent intent."""
    intent_id: str
    env: Optional[str] = None
    created_ms: int = 0

    def to_record(self) -> Dict[str, Any]:
        return {"intentId": self.intent_id, "env": self.env, "t": self.created_ms}

    @classmethod
    def from_record(cls, record: Any) -> Optional["Pointer"]:
        if not isinstance(record, dict) or not record.get("intentId"):
            return None
        t = record.get("t")
        return cls(
            intent_id=str(record["intentId"]),
            env=record.get("env") or None,
            created_ms=int(t) if isinstance(t, (int, float)) else 0,
        )


def _as_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    return str(value)
