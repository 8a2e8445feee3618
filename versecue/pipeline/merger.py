"""Merge parser and model candidates for one fragment."""

from versecue.models.schemas import DetectionCandidate

DEFAULT_CONFIDENCE_FLOOR = 0.80


def merge_candidates(
    deterministic: list[DetectionCandidate],
    probabilistic: list[DetectionCandidate],
    floor: float = DEFAULT_CONFIDENCE_FLOOR,
    exclude_keys: set[str] | None = None,
) -> list[DetectionCandidate]:
    """Deduplicated union keyed on the canonical reference string.

    Parser matches come first and win every collision. Model candidates keep
    their arrival order, and any below `floor` are dropped even when valid.
    `exclude_keys` suppresses keys already emitted by an earlier wave.
    """
    result = []
    seen = set(exclude_keys or ())

    # Parser matches first (exact, confidence 1.0)
    for c in deterministic:
        if c.key not in seen:
            seen.add(c.key)
            result.append(c)

    # Model candidates (novel ones only)
    for c in probabilistic:
        if c.confidence < floor:
            continue
        if c.key not in seen:
            seen.add(c.key)
            result.append(c)

    return result
