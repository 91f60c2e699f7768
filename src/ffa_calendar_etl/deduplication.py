"""ffa_calendar_etl.deduplication

Content-hash deduplication of proposed Changes.

Normalization for hashing:
  - FieldChange / RaceAddition / RaceUpdate rendered through to_dict()
  - dict keys sorted, collections sorted by their canonical JSON
  - datetimes rendered as UTC ISO strings
  - volatile keys (confidence, timestamps) stripped

filter_new_changes() drops, in order:
  1. everything, when the hash equals a pending proposal's hash
  2. each field whose new value equals the stored value
  3. each field whose new value is already proposed by a pending proposal
"""

from __future__ import annotations

import hashlib
import json
import logging
from typing import Any, Iterable

from ffa_calendar_etl.models import Changes, PendingProposal, to_jsonable

log = logging.getLogger(__name__)

VOLATILE_KEYS = frozenset({
    "confidence",
    "timestamp",
    "createdAt",
    "updatedAt",
    "created_at",
    "updated_at",
})


# ---------------------------------------------------------------------------
# Normalization + hashing
# ---------------------------------------------------------------------------

def _canonical(value: Any) -> Any:
    if isinstance(value, dict):
        return {
            k: _canonical(v)
            for k, v in sorted(value.items())
            if k not in VOLATILE_KEYS
        }
    if isinstance(value, list):
        items = [_canonical(v) for v in value]
        return sorted(items, key=lambda v: json.dumps(v, sort_keys=True))
    return value


def normalize_for_hashing(value: Any) -> Any:
    """Pure canonical form of a Changes map (or any change value)."""
    return _canonical(to_jsonable(value))


def hash_changes(changes: Changes | dict[str, Any]) -> str:
    canonical = json.dumps(
        normalize_for_hashing(changes), sort_keys=True, separators=(",", ":")
    )
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def has_identical_pending_proposal(
    changes: Changes | dict[str, Any],
    pending: Iterable[PendingProposal],
) -> bool:
    digest = hash_changes(changes)
    return any(hash_changes(p.changes) == digest for p in pending)


# ---------------------------------------------------------------------------
# Field-level comparison
# ---------------------------------------------------------------------------

def values_equal(a: Any, b: Any) -> bool:
    """Deep equality; collections compare order-insensitively, instants in UTC."""
    return normalize_for_hashing(a) == normalize_for_hashing(b)


def get_nested_value(state: dict[str, Any] | None, path: str) -> Any:
    """Resolve a dotted path ("organizer.name") in a nested dict, else None."""
    current: Any = state
    for part in path.split("."):
        if not isinstance(current, dict):
            return None
        current = current.get(part)
    return current


def _pending_new_value(proposal: PendingProposal, field_name: str) -> tuple[bool, Any]:
    entry = proposal.changes.get(field_name)
    if isinstance(entry, dict) and "new" in entry:
        return True, entry["new"]
    return False, None


def filter_new_changes(
    changes: Changes,
    current_state: dict[str, Any] | None,
    pending: list[PendingProposal],
) -> Changes:
    """Return the subset of changes that is neither stored nor already pending."""
    if not changes:
        return {}
    if has_identical_pending_proposal(changes, pending):
        log.info("changes identical to a pending proposal; suppressed")
        return {}

    kept: Changes = {}
    for field_name, change in changes.items():
        if current_state is not None and values_equal(
            change.new, get_nested_value(current_state, field_name)
        ):
            log.debug("%s: new value already stored", field_name)
            continue
        already_pending = False
        for proposal in pending:
            present, pending_new = _pending_new_value(proposal, field_name)
            if present and values_equal(change.new, pending_new):
                already_pending = True
                break
        if already_pending:
            log.debug("%s: new value already pending (%s)", field_name, proposal.id)
            continue
        kept[field_name] = change
    return kept


# ---------------------------------------------------------------------------
# Same-run cache
# ---------------------------------------------------------------------------

class RunProposalCache:
    """Per-target hashes of proposals emitted during the current run."""

    def __init__(self) -> None:
        self._seen: dict[str, set[str]] = {}

    def seen_or_add(self, target: str, changes: Changes) -> bool:
        """True when identical changes were already emitted for target."""
        digest = hash_changes(changes)
        hashes = self._seen.setdefault(target, set())
        if digest in hashes:
            return True
        hashes.add(digest)
        return False

    def __len__(self) -> int:
        return sum(len(h) for h in self._seen.values())
