"""Time-window helpers.

Kernels never read the wall clock.  Windows are measured back from an
explicit ``as_of`` parameter or, failing that, the batch's latest timestamp,
so the same batch always produces the same result.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Optional, Sequence, TypeVar

from compass_analytics.domain.observation import ObservationBatch
from compass_analytics.foundation.clock import ensure_utc

T = TypeVar("T")


def reference_time(batch: ObservationBatch, as_of: Optional[datetime]) -> Optional[datetime]:
    if as_of is not None:
        return ensure_utc(as_of)
    return batch.latest_timestamp


def within_days(items: Sequence[T], days: int, reference: Optional[datetime]) -> list[T]:
    """Items stamped in ``[reference - days, reference]``."""
    if reference is None:
        return []
    cutoff = reference - timedelta(days=days)
    return [i for i in items if cutoff <= i.timestamp <= reference]  # type: ignore[attr-defined]
