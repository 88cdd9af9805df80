"""
Taxonomy Store — phase / category / status vocabularies.

Business context:
    Each namespace has a fixed, ordered built-in vocabulary plus an open set
    of custom values contributed by users. Every view (list, kanban, filters,
    charts) must see the same set, so the custom values are persisted on each
    mutation and re-read when a store is loaded.

    Invariants:
      - A custom value never collides with a built-in value of its namespace.
      - Custom values are unique within their namespace.
      - Removing a custom value never touches tasks that carry it; the token
        just stops being offered for new entries.

Rendering:
    ``display_label`` and ``color_class`` are pure and total. Built-ins map
    through fixed tables; custom / unknown values get a title-cased label and
    a palette entry picked from the first character, so the same value renders
    identically everywhere without any colour bookkeeping.

Lifecycle:
    ``TaxonomyStore(backend).load()`` at request / session start; every
    add/remove is a read-modify-write against the backend (last write wins).
"""

import logging
import re
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from diligence.core.exceptions import (
    DuplicateValueError,
    NotFoundError,
    TransportError,
    ValidationError,
)
from diligence.models import db
from diligence.models.taxonomy import DEFAULT_SCOPE, TaxonomyExtension

logger = logging.getLogger(__name__)

PHASE = "phase"
CATEGORY = "category"
STATUS = "status"

NAMESPACES: tuple[str, ...] = (PHASE, CATEGORY, STATUS)

# ── Built-in vocabularies (ordered) ──────────────────────────────────────────

BUILTIN_LABELS: dict[str, dict[str, str]] = {
    PHASE: {
        "loi_signing": "LOI Signing & DD Kickoff",
        "planning_initial": "Planning & Initial Information Requests",
        "document_review": "Document Review & Tracker Updates",
        "mid_phase_review": "Mid-Phase Review",
        "deep_dives": "Deep Dives & Secondary Requests",
        "final_risk_review": "Final Risk Review & Negotiation",
        "deal_closing": "Deal Closing Preparation",
        "post_close": "Post-Close Integration Planning",
    },
    CATEGORY: {
        "operating_team": "Operating Team",
        "seller_broker": "Seller / Broker",
        "ir_bank": "IR / Bank",
        "legal": "Legal",
        "financial": "Financial",
        "investment_committee": "Investment Committee",
    },
    STATUS: {
        "not_started": "Not Started",
        "in_progress": "In Progress",
        "pending": "Pending Review",
        "completed": "Completed",
        "blocked": "Blocked",
        "deferred": "Deferred",
    },
}

BUILTIN_VALUES: dict[str, tuple[str, ...]] = {
    ns: tuple(labels) for ns, labels in BUILTIN_LABELS.items()
}

BUILTIN_COLORS: dict[str, dict[str, str]] = {
    PHASE: {
        "loi_signing": "bg-accent",
        "planning_initial": "bg-sky-100",
        "document_review": "bg-warning",
        "mid_phase_review": "bg-amber-100",
        "deep_dives": "bg-success",
        "final_risk_review": "bg-danger",
        "deal_closing": "bg-indigo-100",
        "post_close": "bg-emerald-100",
    },
    CATEGORY: {
        "operating_team": "bg-blue-50",
        "seller_broker": "bg-orange-50",
        "ir_bank": "bg-cyan-50",
        "legal": "bg-violet-50",
        "financial": "bg-green-50",
        "investment_committee": "bg-red-50",
    },
    STATUS: {
        "not_started": "bg-neutral-100",
        "in_progress": "bg-blue-50",
        "pending": "bg-yellow-50",
        "completed": "bg-green-50",
        "blocked": "bg-red-50",
        "deferred": "bg-slate-100",
    },
}

CUSTOM_PALETTE: tuple[str, ...] = (
    "bg-rose-50",
    "bg-purple-50",
    "bg-sky-50",
    "bg-emerald-50",
    "bg-amber-50",
    "bg-indigo-50",
)

_SEPARATORS = re.compile(r"[_\-\s]+")
_WHITESPACE = re.compile(r"\s+")
MAX_VALUE_LENGTH = 100

# Query-string sentinels of the task views; never valid as custom values.
FILTER_ANY = "all"
UNASSIGNED = "unassigned"
RESERVED_VALUES = frozenset({FILTER_ANY, UNASSIGNED})


# ── Pure rendering helpers ───────────────────────────────────────────────────


def display_label(namespace: str, value) -> str:
    """Human label for a taxonomy token. Never raises, never returns ''."""
    token = "" if value is None else str(value)
    builtin = BUILTIN_LABELS.get(namespace, {}).get(token)
    if builtin:
        return builtin
    words = [w for w in _SEPARATORS.split(token.strip()) if w]
    if not words:
        return token if token else "Unspecified"
    return " ".join(w[:1].upper() + w[1:] for w in words)


def color_class(namespace: str, value) -> str:
    """Opaque style token for a taxonomy value; deterministic per value."""
    token = "" if value is None else str(value)
    builtin = BUILTIN_COLORS.get(namespace, {}).get(token)
    if builtin:
        return builtin
    if not token:
        return CUSTOM_PALETTE[0]
    return CUSTOM_PALETTE[ord(token[0]) % len(CUSTOM_PALETTE)]


def normalize_value(raw) -> str:
    """Canonical token form: trimmed, lower-case, whitespace runs → ``_``."""
    return _WHITESPACE.sub("_", str(raw or "").strip().lower())


def _require_namespace(namespace: str) -> str:
    if namespace not in NAMESPACES:
        raise ValidationError(
            f"Unknown taxonomy namespace '{namespace}'.",
            details={"namespace": f"Must be one of: {', '.join(NAMESPACES)}"},
        )
    return namespace


# ── Persistence backends ─────────────────────────────────────────────────────


class InMemoryTaxonomyBackend:
    """Process-local get-all / set-all surface. Used by scripts and unit tests."""

    def __init__(self, initial: dict[str, list[str]] | None = None):
        self._data: dict[str, list[str]] = {
            ns: list(values) for ns, values in (initial or {}).items()
        }

    def get_all(self, namespace: str) -> list[str]:
        return list(self._data.get(namespace, []))

    def set_all(self, namespace: str, values: list[str]) -> None:
        self._data[namespace] = list(values)


class SqlTaxonomyBackend:
    """get-all / set-all over the ``taxonomy_extensions`` table."""

    def __init__(self, scope: str = DEFAULT_SCOPE):
        self.scope = scope

    def _row(self, namespace: str) -> TaxonomyExtension | None:
        stmt = select(TaxonomyExtension).where(
            TaxonomyExtension.scope == self.scope,
            TaxonomyExtension.namespace == namespace,
        )
        return db.session.execute(stmt).scalar_one_or_none()

    def get_all(self, namespace: str) -> list[str]:
        row = self._row(namespace)
        return list(row.values or []) if row else []

    def set_all(self, namespace: str, values: list[str]) -> None:
        row = self._row(namespace)
        if row is None:
            row = TaxonomyExtension(scope=self.scope, namespace=namespace)
            db.session.add(row)
        row.values = list(values)
        try:
            db.session.commit()
        except SQLAlchemyError as exc:
            db.session.rollback()
            logger.exception("Taxonomy persist failed scope=%s namespace=%s", self.scope, namespace)
            raise TransportError(f"Could not persist {namespace} values: {exc}") from exc


# ── Store ────────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class TaxonomyValues:
    """Snapshot returned by ``TaxonomyStore.list_values``."""

    namespace: str
    builtin: tuple[str, ...]
    custom: frozenset[str]

    def to_dict(self, custom_order: list[str] | None = None) -> dict:
        custom = custom_order if custom_order is not None else sorted(self.custom)
        return {
            "namespace": self.namespace,
            "builtin": [
                {"value": v, "label": display_label(self.namespace, v),
                 "color": color_class(self.namespace, v)}
                for v in self.builtin
            ],
            "custom": [
                {"value": v, "label": display_label(self.namespace, v),
                 "color": color_class(self.namespace, v)}
                for v in custom
            ],
        }


class TaxonomyStore:
    """Built-in vocabularies plus the persisted custom extension sets.

    Pass one instance to every component that renders, filters or validates
    taxonomy values; do not reach for module globals.
    """

    def __init__(self, backend=None):
        self.backend = backend if backend is not None else InMemoryTaxonomyBackend()
        self._custom: dict[str, list[str]] = {ns: [] for ns in NAMESPACES}

    def load(self) -> "TaxonomyStore":
        """(Re-)read every namespace from the backend."""
        for ns in NAMESPACES:
            self._custom[ns] = self._dedupe(ns, self.backend.get_all(ns))
        return self

    @staticmethod
    def _dedupe(namespace: str, values) -> list[str]:
        seen: set[str] = set()
        builtin = set(BUILTIN_VALUES[namespace])
        clean: list[str] = []
        for v in values or []:
            if not isinstance(v, str) or not v or v in seen:
                continue
            if v in builtin or v in RESERVED_VALUES:
                continue
            seen.add(v)
            clean.append(v)
        return clean

    # ── Queries ──────────────────────────────────────────────────────────

    def list_values(self, namespace: str) -> TaxonomyValues:
        _require_namespace(namespace)
        return TaxonomyValues(
            namespace=namespace,
            builtin=BUILTIN_VALUES[namespace],
            custom=frozenset(self._custom[namespace]),
        )

    def custom_values(self, namespace: str) -> list[str]:
        """Custom values in the order they were added."""
        _require_namespace(namespace)
        return list(self._custom[namespace])

    def known_values(self, namespace: str) -> list[str]:
        """Built-ins in canonical order, then customs in insertion order."""
        _require_namespace(namespace)
        return list(BUILTIN_VALUES[namespace]) + list(self._custom[namespace])

    def is_builtin(self, namespace: str, value: str) -> bool:
        return value in BUILTIN_LABELS.get(namespace, {})

    def is_known(self, namespace: str, value: str) -> bool:
        return self.is_builtin(namespace, value) or value in self._custom.get(namespace, [])

    def display_label(self, namespace: str, value) -> str:
        return display_label(namespace, value)

    def color_class(self, namespace: str, value) -> str:
        return color_class(namespace, value)

    # ── Mutations ────────────────────────────────────────────────────────

    def add_custom_value(self, namespace: str, value) -> str:
        """Add a custom value and persist the namespace. Returns the stored token.

        Raises:
            ValidationError: empty, over-long or reserved value, unknown namespace.
            DuplicateValueError: value already built-in or custom.
        """
        _require_namespace(namespace)
        token = normalize_value(value)
        if not token:
            raise ValidationError("A value is required.", details={"value": "required"})
        if len(token) > MAX_VALUE_LENGTH:
            raise ValidationError(
                f"Value must be ≤ {MAX_VALUE_LENGTH} characters.",
                details={"value": "too long"},
            )
        if token in RESERVED_VALUES:
            raise ValidationError(
                f"'{token}' is reserved and cannot be a custom value.",
                details={"value": "reserved"},
            )

        current = self._dedupe(namespace, self.backend.get_all(namespace))
        if token in BUILTIN_LABELS[namespace] or token in current:
            self._custom[namespace] = current
            raise DuplicateValueError(namespace, token)

        updated = current + [token]
        self.backend.set_all(namespace, updated)
        self._custom[namespace] = updated
        logger.info(
            "Custom taxonomy value added: %s=%s", namespace, token,
            extra={"namespace": namespace},
        )
        return token

    def remove_custom_value(self, namespace: str, value) -> None:
        """Remove a custom value and persist the namespace.

        Tasks already carrying the value keep it untouched.

        Raises:
            NotFoundError: value is not a custom value of this namespace.
        """
        _require_namespace(namespace)
        token = str(value or "")
        current = self._dedupe(namespace, self.backend.get_all(namespace))
        if token not in current:
            normalized = normalize_value(token)
            if normalized not in current:
                self._custom[namespace] = current
                raise NotFoundError(resource=f"Custom {namespace} value", resource_id=token)
            token = normalized

        updated = [v for v in current if v != token]
        self.backend.set_all(namespace, updated)
        self._custom[namespace] = updated
        logger.info(
            "Custom taxonomy value removed: %s=%s", namespace, token,
            extra={"namespace": namespace},
        )


def get_taxonomy_store(scope: str = DEFAULT_SCOPE) -> TaxonomyStore:
    """Return a freshly loaded, database-backed store for *scope*."""
    return TaxonomyStore(SqlTaxonomyBackend(scope)).load()
