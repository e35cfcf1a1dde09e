# Overview: Scope (branch/warehouse) value type, lookups and invoice code resolution.

from __future__ import annotations

import logging
import re
from dataclasses import dataclass

from sqlalchemy.orm import Session

from ..models import Branch, Warehouse
from .concurrency import lock_for_update

logger = logging.getLogger(__name__)

SCOPE_BRANCH = "BRANCH"
SCOPE_WAREHOUSE = "WAREHOUSE"

VALID_SCOPE_TYPES = (SCOPE_BRANCH, SCOPE_WAREHOUSE)

_SCOPE_MODELS = {
    SCOPE_BRANCH: Branch,
    SCOPE_WAREHOUSE: Warehouse,
}

# Fallback code prefix when a name yields fewer than two usable characters
_FALLBACK_PREFIX = {
    SCOPE_BRANCH: "BR",
    SCOPE_WAREHOUSE: "WH",
}


class ScopeNotFound(Exception):
    """Raised when a branch/warehouse (or its invoice code) cannot be resolved."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


@dataclass(frozen=True)
class Scope:
    """Partition key for accounts, sales and invoice sequences."""
    kind: str
    id: int

    def __post_init__(self):
        if self.kind not in VALID_SCOPE_TYPES:
            raise ScopeNotFound(
                f"Invalid scope type: {self.kind}. Must be one of {list(VALID_SCOPE_TYPES)}",
                details={"scope_type": self.kind},
            )

    def __str__(self) -> str:
        return f"{self.kind}:{self.id}"

    @classmethod
    def parse(cls, scope_type, scope_id) -> "Scope":
        """Build a Scope from loosely-typed request input."""
        if not scope_type or scope_id in (None, ""):
            raise ScopeNotFound("scope_type and scope_id required")
        try:
            scope_id = int(scope_id)
        except (TypeError, ValueError):
            raise ScopeNotFound("scope_id must be an integer", details={"scope_id": scope_id})
        return cls(str(scope_type).upper(), scope_id)

    @classmethod
    def of(cls, row) -> "Scope":
        """Scope of any row carrying scope_type/scope_id columns."""
        return cls(row.scope_type, row.scope_id)

    def filter_kwargs(self) -> dict:
        return {"scope_type": self.kind, "scope_id": self.id}


def get_scope_record(session: Session, scope: Scope, *, lock: bool = False):
    model = _SCOPE_MODELS[scope.kind]
    query = session.query(model).filter_by(id=scope.id)
    if lock:
        query = lock_for_update(query)
    record = query.first()
    if record is None:
        raise ScopeNotFound(
            f"{scope.kind.title()} not found: {scope.id}",
            details={"scope_type": scope.kind, "scope_id": scope.id},
        )
    return record


def derive_scope_code(kind: str, record_id: int, name: str | None) -> str:
    """
    First four characters of the name, uppercased, alphanumerics only.
    Falls back to BR01/WH01 style codes for names that yield < 2 chars.
    """
    code = re.sub(r"[^A-Z0-9]", "", (name or "")[:4].upper())
    if len(code) < 2:
        code = f"{_FALLBACK_PREFIX[kind]}{record_id:02d}"
    return code


def _code_taken(session: Session, code: str, scope: Scope) -> bool:
    # Branches and warehouses share the invoice_sequences prefix space
    for kind, model in _SCOPE_MODELS.items():
        query = session.query(model.id).filter(model.code == code)
        if kind == scope.kind:
            query = query.filter(model.id != scope.id)
        if query.first():
            return True
    return False


def available_scope_code(session: Session, scope: Scope, record) -> str:
    """
    Derived code for record, unused by any other branch or warehouse.
    Collisions get the record id appended (DOWN02), then the next free
    number after it.
    """
    base = derive_scope_code(scope.kind, record.id, record.name)
    code = base
    suffix = record.id
    while _code_taken(session, code, scope):
        code = f"{base}{suffix:02d}"
        suffix += 1
    return code


def resolve_scope_code(session: Session, scope: Scope) -> str:
    """
    Return the invoice code for a scope, generating and persisting one
    from the name when the branch/warehouse has none yet.
    """
    record = get_scope_record(session, scope, lock=True)
    if record.code:
        return record.code

    code = available_scope_code(session, scope, record)
    record.code = code
    session.flush()
    logger.info("Generated code %s for %s %s", code, scope.kind.lower(), record.name)
    return code


def customer_key_for(name: str | None = None, phone: str | None = None) -> str | None:
    """
    Derive the opaque customer partition key when the directory gives none.

    Phone digits win (names are typed inconsistently at the counter);
    otherwise the whitespace-collapsed, lowercased name.
    """
    digits = re.sub(r"\D", "", phone or "")
    if digits:
        return f"tel:{digits}"
    normalized = " ".join((name or "").split()).lower()
    if normalized:
        return f"name:{normalized}"
    return None
