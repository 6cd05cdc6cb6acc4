"""Weighted progress aggregation across a sequence of sub-tasks."""

from typing import Callable, Sequence, TypeVar, Union

T = TypeVar("T")

ProgressCallback = Callable[[float], None]


def create_steps(
    steps: Union[Sequence[float], int],
    on_progress: ProgressCallback,
) -> list[ProgressCallback]:
    """Create one progress callback per step of a multistep process.

    Each callback takes the fraction (0..1) completed for its step. Whenever a
    step's value changes, the overall weighted average
    ``sum(p_i * w_i) / sum(w_i)`` is pushed to ``on_progress``. Reporting the
    value a step already has is a no-op.

    Args:
        steps: Per-step weights, or a step count (every weight is then 1)
        on_progress: Receives the aggregate fraction

    Returns:
        Callbacks, in step order
    """
    weights = [1] * steps if isinstance(steps, int) else list(steps)

    parts = [0.0] * len(weights)
    total = sum(weights)

    def update_progress() -> None:
        weighted = sum(part * weight for part, weight in zip(parts, weights))
        on_progress(weighted / total if total else 0.0)

    def make_callback(idx: int) -> ProgressCallback:
        def callback(progress: float) -> None:
            if parts[idx] != progress:
                parts[idx] = progress
                update_progress()

        return callback

    return [make_callback(idx) for idx in range(len(weights))]


def _weight_of(step) -> float:
    if isinstance(step, (int, float)):
        return step
    size = getattr(step, "size", None)
    if size:
        return size
    try:
        return len(step) or 1
    except TypeError:
        return 1


def with_progress(
    steps: Sequence[T],
    on_progress: ProgressCallback,
) -> list[tuple[T, ProgressCallback]]:
    """Pair each item with its progress callback.

    Items are weighted by ``size`` (images), ``len()`` or 1; bare numbers are
    used as weights directly.
    """
    callbacks = create_steps([_weight_of(step) for step in steps], on_progress)
    return list(zip(steps, callbacks))
