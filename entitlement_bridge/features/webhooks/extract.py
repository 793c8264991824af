"""
Identity extraction from provider payloads.

Payload shapes drift between provider versions, so identity is found by an
ordered list of extractors: explicit dotted paths first, then a recursive
key search over the whole payload. Each returns an optional string.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Iterable, Optional, Sequence

Extractor = Callable[[Any], Optional[str]]

MAX_SEARCH_DEPTH = 8


def get_path(obj: Any, path: str) -> Any:
    """Dotted-path lookup that tolerates missing keys and non-dict nodes."""
    node = obj
    for part in path.split("."):
        if isinstance(node, dict) and part in node:
            node = node[part]
        else:
            return None
    return node


def _as_identifier(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def path_extractor(*paths: str) -> Extractor:
    def extract(payload: Any) -> Optional[str]:
        for path in paths:
            found = _as_identifier(get_path(payload, path))
            if found:
                return found
        return None
    return extract


def search_extractor(keys: Iterable[str], *, predicate: Optional[Callable[[str], bool]] = None) -> Extractor:
    """Breadth-first search for the first string value under any of ``keys``."""
    wanted = {k.lower() for k in keys}

    def extract(payload: Any) -> Optional[str]:
        queue = [(payload, 0)]
        while queue:
            node, depth = queue.pop(0)
            if depth > MAX_SEARCH_DEPTH:
                continue
            if isinstance(node, dict):
                for key, value in node.items():
                    if str(key).lower() in wanted:
                        found = _as_identifier(value)
                        if found and (predicate is None or predicate(found)):
                            return found
                for value in node.values():
                    if isinstance(value, (dict, list)):
                        queue.append((value, depth + 1))
            elif isinstance(node, list):
                for value in node:
                    if isinstance(value, (dict, list)):
                        queue.append((value, depth + 1))
        return None
    return extract


def first_match(extractors: Sequence[Extractor], payload: Any) -> Optional[str]:
    for extractor in extractors:
        try:
            found = extractor(payload)
        except (AttributeError, KeyError, TypeError, ValueError):
            found = None
        if found:
            return found
    return None


def _looks_like_email(value: str) -> bool:
    return "@" in value and "." in value.split("@")[-1]


@dataclass(frozen=True)
class IdentityExtractor:
    member_extractors: Sequence[Extractor]
    email_extractors: Sequence[Extractor]

    def resolve(self, payload: Any) -> "Identity":
        member_id = first_match(self.member_extractors, payload)
        email = first_match(self.email_extractors, payload)
        return Identity(member_id=member_id, email=email.lower() if email else None)


@dataclass(frozen=True)
class Identity:
    member_id: Optional[str] = None
    email: Optional[str] = None

    @property
    def empty(self) -> bool:
        return not self.member_id and not self.email


MEMBER_ID_KEYS = ("memberstack_id", "memberstackId", "memberId", "member_id")
EMAIL_KEYS = ("email", "customer_email")

STRIPE_IDENTITY = IdentityExtractor(
    member_extractors=(
        path_extractor("metadata.memberstack_id", "client_reference_id", "metadata.memberId", "subscription_details.metadata.memberstack_id"),
        search_extractor(MEMBER_ID_KEYS),
    ),
    email_extractors=(
        path_extractor("customer_details.email", "customer_email", "receipt_email"),
        search_extractor(EMAIL_KEYS, predicate=_looks_like_email),
    ),
)

MEMBERSTACK_IDENTITY = IdentityExtractor(
    member_extractors=(
        path_extractor("member.id", "memberId", "id"),
        search_extractor(MEMBER_ID_KEYS),
    ),
    email_extractors=(
        path_extractor("member.auth.email", "auth.email", "member.email", "email"),
        search_extractor(EMAIL_KEYS, predicate=_looks_like_email),
    ),
)
