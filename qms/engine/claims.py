"""Customer claim registration and status changes."""

import logging
import re
from datetime import date, datetime
from typing import Any, Iterable, Optional, Union

from pydantic import ValidationError

from qms.engine.errors import ClaimStateError, InvalidQuantityError, MalformedRecordError
from qms.schemas.claim import ClaimRecord, ClaimStatus


logger = logging.getLogger(__name__)

_CLAIM_NUMBER = re.compile(r"^CLM-(\d{6})-(\d{3,})$")


def next_claim_number(claim_date: date, existing_numbers: Iterable[str] = ()) -> str:
    """Next ``CLM-YYYYMM-NNN`` number in the claim date's month."""
    prefix = f"{claim_date:%Y%m}"
    highest = 0
    for number in existing_numbers:
        match = _CLAIM_NUMBER.match(number or "")
        if match and match.group(1) == prefix:
            highest = max(highest, int(match.group(2)))
    return f"CLM-{prefix}-{highest + 1:03d}"


def register_claim(
    data: Union[dict[str, Any], ClaimRecord],
    existing_numbers: Iterable[str] = (),
) -> ClaimRecord:
    """Validate a new claim and assign its claim number when missing."""
    payload = data.model_dump() if isinstance(data, ClaimRecord) else dict(data)

    for field, minimum in (("shipped_qty", 1), ("defect_qty", 0)):
        value = payload.get(field)
        if value is None:
            raise InvalidQuantityError(field, value, "is required")
        if not isinstance(value, int) or isinstance(value, bool):
            raise InvalidQuantityError(field, value, "must be an integer")
        if value < minimum:
            reason = "must be greater than 0" if minimum else "must be a non-negative integer"
            raise InvalidQuantityError(field, value, reason)

    if not payload.get("claim_date"):
        payload["claim_date"] = date.today()
    if not payload.get("claim_number"):
        claim_date = payload["claim_date"]
        if isinstance(claim_date, str):
            try:
                claim_date = date.fromisoformat(claim_date)
            except ValueError as e:
                raise MalformedRecordError(f"Invalid claim_date {claim_date!r}") from e
        payload["claim_number"] = next_claim_number(claim_date, existing_numbers)

    try:
        claim = ClaimRecord.model_validate(payload)
    except ValidationError as e:
        raise MalformedRecordError(f"Claim could not be parsed: {e}") from e

    logger.info(
        "Registered claim %s (%s, %s): %d of %d defective",
        claim.claim_number, claim.claim_category.value, claim.customer,
        claim.defect_qty, claim.shipped_qty,
    )
    return claim


def update_claim_status(
    claim: ClaimRecord,
    status: Union[ClaimStatus, str],
    at: Optional[datetime] = None,
    **fields: Optional[str],
) -> ClaimRecord:
    """Return a copy of the claim with a new status.

    ``closed`` is terminal. Extra keyword fields (``root_cause``,
    ``containment_action``, ``corrective_action``) are recorded with the change.
    """
    try:
        status = ClaimStatus(status)
    except ValueError as e:
        raise ClaimStateError(f"Unknown claim status {status!r}", status=str(status)) from e

    if claim.status == ClaimStatus.CLOSED:
        raise ClaimStateError(
            f"Claim {claim.claim_number} is closed",
            claim_number=claim.claim_number,
            requested_status=status.value,
        )

    allowed = {"root_cause", "containment_action", "corrective_action"}
    unknown = set(fields) - allowed
    if unknown:
        raise ClaimStateError(
            f"Cannot update claim fields: {', '.join(sorted(unknown))}",
            claim_number=claim.claim_number,
        )

    updates: dict[str, Any] = {"status": status}
    updates.update({k: v for k, v in fields.items() if v is not None})
    if status == ClaimStatus.CLOSED:
        updates["closed_at"] = at or datetime.utcnow()

    logger.info("Claim %s: %s -> %s", claim.claim_number, claim.status.value, status.value)
    return claim.model_copy(update=updates)
