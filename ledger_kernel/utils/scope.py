"""
Business scope enforcement.

Every invoice and payment belongs to exactly one business.  Resolving one
from another business's scope is a security violation, logged on the
dedicated ``ledger_kernel.security`` logger, not a data error.
"""

from uuid import UUID

from ledger_kernel.exceptions import CrossBusinessAccessError
from ledger_kernel.logging_config import get_logger

security_logger = get_logger("security")


def ensure_business(
    entity_type: str,
    entity_id: UUID,
    owner_business_id: UUID,
    business_id: UUID,
) -> None:
    """
    Raise CrossBusinessAccessError unless the entity belongs to ``business_id``.
    """
    if owner_business_id == business_id:
        return
    security_logger.error(
        "cross_business_access_denied",
        extra={
            "entity_type": entity_type,
            "entity_id": str(entity_id),
            "business_id": str(business_id),
            "owner_business_id": str(owner_business_id),
        },
    )
    raise CrossBusinessAccessError(entity_type, str(entity_id), str(business_id))
