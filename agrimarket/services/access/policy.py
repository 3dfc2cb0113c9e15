# agrimarket/services/access/policy.py
"""
Access control policy shared by proximity search and traceability.

decide() is pure: no I/O, no hidden state, never raises. Rules are checked
in order and the first match wins:

  1. admin role                  -> allow
  2. ORDER                       -> buyer or seller
  3. LISTING                     -> seller, active listing, or reached from
                                    an authorized order
  4. CROP / FARM                 -> allowed iff the referencing hop was
  5. anything else               -> deny ("forbidden")

Crop and farm access is never re-derived from ownership; the caller passes
the decision already made for the record that referenced them.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, FrozenSet, Iterable, Optional

from agrimarket.models.marketplace.marketplace_models import ListingStatus

logger = logging.getLogger(__name__)

ADMIN_ROLE = "admin"


class RecordKind(str, Enum):
    ORDER = "order"
    LISTING = "listing"
    CROP = "crop"
    FARM = "farm"


@dataclass(frozen=True)
class Actor:
    """Authenticated caller; built once per request and passed down."""
    id: str
    roles: FrozenSet[str] = field(default_factory=frozenset)

    @classmethod
    def from_identity(cls, identity: Dict[str, Any]) -> "Actor":
        """
        Build from the token identity payload:
          {"userId": "...", "role": "buyer"} or {"userId": "...", "roles": [...]}
        """
        user_id = str(identity.get("userId") or identity.get("id") or "").strip()
        roles: Iterable[str] = identity.get("roles") or []
        if isinstance(roles, str):
            roles = [roles]
        role = identity.get("role")
        all_roles = {str(r).strip().lower() for r in roles if r}
        if role:
            all_roles.add(str(role).strip().lower())
        return cls(id=user_id, roles=frozenset(all_roles))

    @property
    def is_admin(self) -> bool:
        return ADMIN_ROLE in self.roles


@dataclass(frozen=True)
class Decision:
    allow: bool
    reason: str


FORBIDDEN = Decision(False, "forbidden")


def _get(record: Any, name: str) -> Any:
    if isinstance(record, dict):
        return record.get(name)
    return getattr(record, name, None)


def decide(
    actor: Actor,
    kind: RecordKind,
    record: Any,
    referrer: Optional[Decision] = None,
) -> Decision:
    try:
        return _decide(actor, kind, record, referrer)
    except Exception:
        logger.debug("Policy evaluation failed for %s; denying", kind, exc_info=True)
        return FORBIDDEN


def _decide(actor: Actor, kind: RecordKind, record: Any, referrer: Optional[Decision]) -> Decision:
    if actor is None or record is None:
        return FORBIDDEN

    if actor.is_admin:
        return Decision(True, "admin")

    inherited = referrer is not None and referrer.allow

    if kind == RecordKind.ORDER:
        if actor.id and actor.id in (_get(record, "buyerId"), _get(record, "sellerId")):
            return Decision(True, "participant")
        return FORBIDDEN

    if kind == RecordKind.LISTING:
        if actor.id and actor.id == _get(record, "sellerId"):
            return Decision(True, "owner")
        if _get(record, "status") == ListingStatus.ACTIVE.value:
            return Decision(True, "public")
        if inherited:
            return Decision(True, "inherited")
        return FORBIDDEN

    if kind in (RecordKind.CROP, RecordKind.FARM):
        return Decision(True, "inherited") if inherited else FORBIDDEN

    return FORBIDDEN
