"""
Intent ledger.

Stores purchase intents under ``intent:<id>`` and keeps last-write-wins
pointers from member id and (env, email) to the most recent intent. Every
record expires after INTENT_TTL_SECONDS; nothing is deleted explicitly.
"""
from __future__ import annotations

import secrets
import string
import time
from dataclasses import replace
from datetime import datetime, timezone
from typing import Callable, Iterable, List, Optional, Sequence

from entitlement_bridge.core.errors import StoreError, ValidationError
from entitlement_bridge.core.logging import log_event
from entitlement_bridge.features.entitlements.flags import allowed_slugs
from entitlement_bridge.features.intents.models import (
    DEFAULT_PARTITION,
    ENVIRONMENTS,
    INTENT_TTL_SECONDS,
    STATUS_APPLIED,
    STATUS_PENDING,
    Intent,
    Pointer,
    email_pointer_key,
    intent_key,
    member_pointer_key,
)

MAX_PROGRAMS = 9
RESOLVE_ATTEMPTS = 3
RESOLVE_BACKOFF_SECONDS = 0.15

_BASE36 = string.digits + string.ascii_lowercase



def _base36(value: int) -> str:
    if value == 0:
        return "0"
    out = []
    while value:
        value, rem = divmod(value, 36)
        out.append(_BASE36[rem])
    return "".join(reversed(out))


def new_intent_id(now_ms: Optional[int] = None) -> str:
    """Time-ordered id with a random suffix, e.g. ``i_lx2k9c1a_0f3zq8``."""
    ts = now_ms if now_ms is not None else int(time.time() * 1000)
    suffix = "".join(secrets.choice(_BASE36) for _ in range(6))
    return f"i_{_base36(ts)}_{suffix}"


def normalize_email(value: Optional[str]) -> Optional[str]:
    email = (value or "").strip().lower()
    return email or None


def normalize_env(value: Optional[str]) -> Optional[str]:
    if value is None or str(value).strip() == "":
        return None
    env = str(value).strip().lower()
    if env not in ENVIRONMENTS:
        raise ValidationError(f"env must be one of {', '.join(ENVIRONMENTS)}")
    return env


def clamp_programs(programs: Iterable[object], allow_list: Sequence[str]) -> List[str]:
    """Lower-case, trim, keep allow-listed slugs, dedupe keeping first-seen order."""
    allowed = set(allow_list)
    out: List[str] = []
    for raw in programs or []:
        slug = str(raw if raw is not None else "").strip().lower()
        if slug in allowed and slug not in out:
            out.append(slug)
    return out


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


class IntentLedger:
    def __init__(
        self,
        store,
        *,
        program_slugs: Optional[Sequence[str]] = None,
        ttl_seconds: int = INTENT_TTL_SECONDS,
        resolve_attempts: int = RESOLVE_ATTEMPTS,
        resolve_backoff: float = RESOLVE_BACKOFF_SECONDS,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.allow_list = allowed_slugs(program_slugs)
        self.ttl_seconds = ttl_seconds
        self.resolve_attempts = max(1, resolve_attempts)
        self.resolve_backoff = resolve_backoff
        self._sleep = sleep
        self._clock = clock

    def create_intent(
        self,
        member_id: Optional[str],
        programs: Iterable[object],
        *,
        email: Optional[str] = None,
        env: Optional[str] = None,
        price_id: Optional[str] = None,
        created_at: Optional[str] = None,
    ) -> str:
        """Validate and persist a new intent; repoint member/email indices at it.

        Returns the new intent id (without the ``intent:`` prefix).

        Raises:
            ValidationError: memberId missing, bad env, or 0 / >9 valid programs
            StoreError: the store rejected a write
        """
        if not member_id or not isinstance(member_id, str) or not member_id.strip():
            raise ValidationError("memberId required")
        member_id = member_id.strip()
        env = normalize_env(env)
        email = normalize_email(email)

        selected = clamp_programs(programs, self.allow_list)
        if not selected:
            raise ValidationError("programs required (non-empty & valid IDs)")
        if len(selected) > MAX_PROGRAMS:
            raise ValidationError(f"at most {MAX_PROGRAMS} programs")

        now_ms = int(self._clock() * 1000)
        intent = Intent(
            intent_id=new_intent_id(now_ms),
            member_id=member_id,
            programs=selected,
            env=env,
            email=email,
            seats=len(selected),
            price_id=price_id if isinstance(price_id, str) and price_id else None,
            status=STATUS_PENDING,
            created_at=created_at if isinstance(created_at, str) and created_at else _utc_now_iso(),
        )

        # Intent first, pointers second: a visible pointer always has a target.
        self.store.set_with_expiry(intent_key(intent.intent_id), intent.to_record(), self.ttl_seconds)
        pointer = Pointer(intent_id=intent.intent_id, env=env, created_ms=now_ms).to_record()
        self.store.set_with_expiry(member_pointer_key(member_id), pointer, self.ttl_seconds)
        if email:
            self.store.set_with_expiry(email_pointer_key(env, email), pointer, self.ttl_seconds)

        log_event(
            "info",
            "intent.created",
            intent_id=intent.intent_id,
            member_id=member_id,
            email=email,
            env=env,
            extra={"programs": ",".join(selected), "price_id": intent.price_id},
        )
        return intent.intent_id

    def get_intent(self, intent_id: str) -> Optional[Intent]:
        record = self.store.get(intent_key(intent_id))
        if not isinstance(record, dict):
            return None
        return Intent.from_record(record)

    def _read_pointer(self, key: str) -> Optional[Pointer]:
        return Pointer.from_record(self.store.get(key))

    def find_pointer(
        self,
        member_id: Optional[str] = None,
        email: Optional[str] = None,
        env: Optional[str] = None,
    ) -> Optional[Pointer]:
        """Member pointer first; email pointer (env partition, then default) as fallback."""
        if member_id:
            pointer = self._read_pointer(member_pointer_key(member_id))
            if pointer:
                return pointer
        email = normalize_email(email)
        if email:
            partitions = [env] if env and env != DEFAULT_PARTITION else []
            partitions.append(DEFAULT_PARTITION)
            for partition in partitions:
                pointer = self._read_pointer(email_pointer_key(partition, email))
                if pointer:
                    return pointer
        return None

    def resolve_latest_intent(
        self,
        member_id: Optional[str] = None,
        email: Optional[str] = None,
        env: Optional[str] = None,
    ) -> Optional[Intent]:
        """The most recent intent reachable from member id or email, or None.

        A pointer whose intent is not yet visible is re-read a few times with
        linear backoff before the intent is declared missing.
        """
        pointer = self.find_pointer(member_id=member_id, email=email, env=env)
        if pointer is None:
            return None
        for attempt in range(1, self.resolve_attempts + 1):
            intent = self.get_intent(pointer.intent_id)
            if intent is not None:
                return intent
            if attempt < self.resolve_attempts:
                self._sleep(self.resolve_backoff * attempt)
        log_event("warning", "intent.pointer_dangling", intent_id=pointer.intent_id, member_id=member_id, email=email, env=env)
        return None

    def mark_applied(self, intent_id: str, prior: Intent) -> bool:
        """Rewrite the intent as applied. Returns False (logged) if the write fails."""
        applied = replace(prior, intent_id=intent_id, status=STATUS_APPLIED, applied_at=_utc_now_iso())
        try:
            self.store.set_with_expiry(intent_key(intent_id), applied.to_record(), self.ttl_seconds)
        except StoreError as e:
            log_event(
                "error",
                "intent.mark_applied_failed",
                intent_id=intent_id,
                member_id=prior.member_id,
                email=prior.email,
                env=prior.env,
                error_code=e.code,
                extra={"error": e.message},
            )
            return False
        return True
