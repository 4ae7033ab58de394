from __future__ import annotations

from .models import IntegrityStatus, IntegrityVerdict

# Size drift tolerated as repackaging noise before an archive counts as tampered.
TAMPER_THRESHOLD_BYTES = 1024


def audit_integrity(
    actual_size: int,
    expected_size: int,
    *,
    threshold: int = TAMPER_THRESHOLD_BYTES,
) -> IntegrityVerdict:
    """Compare an archive's size with the size the registry publishes for it.

    An expected size of 0 means the registry gave us nothing to compare
    against, which is reported as verified rather than flagged.
    """
    if expected_size <= 0:
        return IntegrityVerdict(
            expected_size=0,
            actual_size=actual_size,
            delta=0,
            status=IntegrityStatus.VERIFIED,
        )

    delta = actual_size - expected_size
    if delta == 0:
        status = IntegrityStatus.VERIFIED
    elif abs(delta) > threshold:
        status = IntegrityStatus.TAMPERED
    else:
        status = IntegrityStatus.MODIFIED
    return IntegrityVerdict(
        expected_size=expected_size,
        actual_size=actual_size,
        delta=delta,
        status=status,
    )
