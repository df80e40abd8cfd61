"""Landsraad Normalizer — turns free-form model output into Task Records.

Models often wrap their JSON in prose or code fences, mix up `kind`/`type`,
return numbers as strings or omit fields entirely. This module:

  1. Extracts the outermost JSON array (or single object) from the text.
  2. Coerces every raw entry into the canonical TaskRecord shape.
  3. Scores each record's completeness.
  4. Collapses duplicates per house to the most complete record.

Pure functions, no LLM calls, no I/O.
"""

from __future__ import annotations

import json
import math
from typing import Any

import structlog

from landsraad.modules.analysis.schemas import TaskDetails, TaskRecord

logger = structlog.get_logger()

TASK_TYPES = ("revealed", "unrevealed")
TASK_KINDS = ("deliver", "kill")

# Completeness weights, max score 12
SCORE_REVEALED = 5
SCORE_KIND = 2
SCORE_REQUEST = 2
SCORE_CONTRIBUTION = 1
SCORE_REWARDS = 2


# ---------------------------------------------------------------------------
# Extraction
# ---------------------------------------------------------------------------


def _parse_between(text: str, opener: str, closer: str) -> Any | None:
    start = text.find(opener)
    end = text.rfind(closer)
    if start == -1 or end <= start:
        return None
    try:
        return json.loads(text[start : end + 1])
    except (ValueError, RecursionError):
        return None


def extract_structured(text: str | None) -> list[Any] | None:
    """Find the structured payload in a model completion.

    Tries the outermost ``[...]`` first, then the outermost ``{...}`` (wrapped
    into a one-element list). Returns None when neither parses.
    """
    if not text:
        return None

    parsed = _parse_between(text, "[", "]")
    if isinstance(parsed, list):
        return parsed

    parsed = _parse_between(text, "{", "}")
    if isinstance(parsed, dict):
        return [parsed]

    return None


# ---------------------------------------------------------------------------
# Normalization
# ---------------------------------------------------------------------------


def coerce_number(value: Any) -> float | None:
    """Return ``value`` as a finite float, or None."""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str) and value.strip():
        try:
            number = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    if not math.isfinite(number):
        return None
    return number


def normalize_entry(raw: Any) -> TaskRecord | None:
    """Coerce one raw model entry into a TaskRecord.

    Task fields are read from the nested ``task`` object when the model
    provided one, otherwise from the entry itself. Non-object entries are
    rejected (None).
    """
    if not isinstance(raw, dict):
        return None

    house_raw = raw.get("house")
    house = house_raw if isinstance(house_raw, str) and house_raw.strip() else None

    fields = raw.get("task") if isinstance(raw.get("task"), dict) else raw

    kind = None
    for key in ("kind", "type"):
        if fields.get(key) in TASK_KINDS:
            kind = fields[key]
            break

    raw_request = fields.get("request")
    raw_rewards = fields.get("rewards")
    contribution = coerce_number(fields.get("contribution"))

    if fields.get("type") in TASK_TYPES:
        task_type = fields["type"]
    elif (
        kind is not None
        or isinstance(raw_request, str)
        or isinstance(raw_rewards, dict)
        or contribution is not None
    ):
        task_type = "revealed"
    else:
        task_type = "unrevealed"

    revealed = task_type == "revealed"
    rewards: dict[str, str] = {}
    if revealed and isinstance(raw_rewards, dict):
        rewards = {str(k): v for k, v in raw_rewards.items() if isinstance(v, str)}

    return TaskRecord(
        house=house,
        task=TaskDetails(
            type=task_type,
            kind=kind,
            request=raw_request if revealed and isinstance(raw_request, str) else None,
            contribution=max(contribution, 0.0) if contribution is not None else 0,
            rewards=rewards,
        ),
    )


def normalize_entries(raw_entries: list[Any]) -> list[TaskRecord]:
    """Normalize every entry independently, skipping non-object entries."""
    records: list[TaskRecord] = []
    for raw in raw_entries:
        record = normalize_entry(raw)
        if record is None:
            logger.warning("Normalizer: skipping non-object entry", entry_type=type(raw).__name__)
            continue
        records.append(record)
    return records


# ---------------------------------------------------------------------------
# Scoring + deduplication
# ---------------------------------------------------------------------------


def completeness_score(record: TaskRecord) -> int:
    task = record.task
    score = 0
    if task.type == "revealed":
        score += SCORE_REVEALED
    if task.kind is not None:
        score += SCORE_KIND
    if task.request is not None:
        score += SCORE_REQUEST
    if task.contribution > 0:
        score += SCORE_CONTRIBUTION
    if task.rewards:
        score += SCORE_REWARDS
    return score


def dedupe_by_house(records: list[TaskRecord]) -> list[TaskRecord]:
    """Keep the most complete record per house.

    Ties keep the first-seen record. Housed winners come first (in order of
    first appearance of the house), then house-less records in input order.
    """
    winners: dict[str, TaskRecord] = {}
    scores: dict[str, int] = {}
    unassigned: list[TaskRecord] = []

    for record in records:
        if record.house is None:
            unassigned.append(record)
            continue
        score = completeness_score(record)
        if record.house not in winners or score > scores[record.house]:
            winners[record.house] = record
            scores[record.house] = score

    return [*winners.values(), *unassigned]
