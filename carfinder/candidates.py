"""Vehicle candidate helpers.

Candidates are plain JSON-shaped dicts. ``make``, ``model`` and ``year`` are the
identity fields: once a candidate exists they never change, and the lower-cased
``make-model`` pair is the dedup key for the whole search.
"""
from __future__ import annotations

from typing import Any, Dict, Iterable, List

Candidate = Dict[str, Any]

IDENTITY_FIELDS = ("make", "model", "year")
# Non-linguistic fields a translation must never recompute.
LOCKED_FIELDS = ("percentage", "precise_model", "configuration")


def dedup_key(car: Candidate) -> str:
    return f"{car.get('make', '')}-{car.get('model', '')}".strip().lower()


def image_key(car: Candidate) -> str:
    return f"{car.get('make', '')}-{car.get('model', '')}"


def describe(car: Candidate) -> str:
    label = f"{car.get('make', '')} {car.get('model', '')}".strip()
    year = car.get("year")
    return f"{label} ({year})" if year not in (None, "") else label


def same_year(a: Any, b: Any) -> bool:
    if a == b:
        return True
    if a is None or b is None:
        return False
    return str(a).strip() == str(b).strip()


def identity_matches(original: Candidate, other: Candidate) -> bool:
    return (
        original.get("make") == other.get("make")
        and original.get("model") == other.get("model")
        and same_year(original.get("year"), other.get("year"))
    )


def pinned_keys(cars: Iterable[Candidate]) -> set[str]:
    return {dedup_key(car) for car in cars if car.get("make") or car.get("model")}


def pinned_hint(pinned: List[Candidate]) -> str:
    """Instruction block enumerating pinned cars for a refinement turn."""
    if not pinned:
        return ""
    listing = "\n".join(f"- {describe(car)}" for car in pinned)
    return (
        "The user has pinned the following cars:\n"
        f"{listing}\n"
        "Re-evaluate every pinned car against the latest feedback and include each one in "
        "`pinned_cars` with exactly the same make, model and year."
    )
