from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from app.models.admin_profile import AdminProfile


PRINCIPAL_ID_MAX_LENGTH = 128
_PRINCIPAL_ID_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.:@-]*$")


class PrincipalKind(str, Enum):
    ADMIN = "admin"
    BUSINESS = "business"
    INVESTOR = "investor"


def normalize_principal_id(value: str) -> str:
    cleaned = value.strip()
    if not cleaned or len(cleaned) > PRINCIPAL_ID_MAX_LENGTH:
        raise ValueError(f"principal id must be between 1 and {PRINCIPAL_ID_MAX_LENGTH} characters")
    if not _PRINCIPAL_ID_RE.fullmatch(cleaned):
        raise ValueError("principal id may only contain letters, numbers, '_', '.', ':', '@' and '-'")
    return cleaned


@dataclass(slots=True)
class ActorContext:
    """The acting principal, passed explicitly into every gated operation."""

    principal_id: str
    kind: PrincipalKind
    admin: "AdminProfile | None" = None
    role: str | None = None

    @property
    def is_admin(self) -> bool:
        return self.kind == PrincipalKind.ADMIN

    @property
    def is_owner_kind(self) -> bool:
        return self.kind in (PrincipalKind.BUSINESS, PrincipalKind.INVESTOR)

    @property
    def role_label(self) -> str:
        return self.role or self.kind.value

    def bind_admin(self, admin: "AdminProfile | None") -> None:
        # role is copied so it stays readable after the session expires the profile
        self.admin = admin
        self.role = str(admin.role) if admin is not None else None
