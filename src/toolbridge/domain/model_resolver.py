"""Map a client-requested model id to one the upstream actually serves.

Best-effort approximation for version drift: a client asking for a point
release the upstream has not rolled out yet falls back to the closest
sibling in the same family.
"""

import re
from collections.abc import Sequence
from dataclasses import dataclass
from enum import Enum

_DATE_SUFFIX = re.compile(r"-\d{8}$")
_FAMILY = re.compile(r"^(.*?-)\d")


class ResolutionStrategy(Enum):
    EXACT = "exact"
    NORMALIZED = "normalized"
    FAMILY = "family"


@dataclass(frozen=True)
class ModelResolution:
    requested: str
    model_id: str
    strategy: ResolutionStrategy


def normalize_model_id(model_id: str) -> str:
    """Strip a trailing 8-digit date suffix and turn dots into dashes."""
    return _DATE_SUFFIX.sub("", model_id).replace(".", "-")


def extract_family(model_id: str) -> str:
    """Prefix before the first digit run, e.g. "claude-sonnet-4-5" -> "claude-sonnet-".

    Works for Claude-style naming; every GPT model lands in "gpt-".
    """
    match = _FAMILY.match(model_id)
    return match.group(1) if match else model_id


def _common_prefix_length(a: str, b: str) -> int:
    length = 0
    for left, right in zip(a, b):
        if left != right:
            break
        length += 1
    return length


def resolve_model(requested: str, available: Sequence[str]) -> ModelResolution | None:
    """Resolve requested against the available model ids.

    Order: exact id, exact normalized id, then the same-family candidate with
    the longest common prefix (first one wins on ties).

    Returns:
        The resolution, or None when the family has no candidates.
    """
    if requested in available:
        return ModelResolution(requested, requested, ResolutionStrategy.EXACT)

    normalized_request = normalize_model_id(requested)
    for model_id in available:
        if normalize_model_id(model_id) == normalized_request:
            return ModelResolution(requested, model_id, ResolutionStrategy.NORMALIZED)

    family = extract_family(normalized_request)
    best: str | None = None
    best_length = 0
    for model_id in available:
        normalized = normalize_model_id(model_id)
        if extract_family(normalized) != family:
            continue
        length = _common_prefix_length(normalized_request, normalized)
        if length > best_length:
            best, best_length = model_id, length

    if best is None:
        return None
    return ModelResolution(requested, best, ResolutionStrategy.FAMILY)
