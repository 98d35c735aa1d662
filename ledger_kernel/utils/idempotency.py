"""
Settlement key generation utilities.

Settlement keys ensure that the same provider notification is applied to a
payment at most once, even when the provider redelivers it.
"""

from uuid import UUID


def make_settlement_key(payment_id: UUID | str, outcome: str) -> str:
    """
    Generate the settlement key for a notification.

    Format: settlement:payment_id:outcome

    The key is stored on the Payment and has a unique constraint.

    Example:
        >>> make_settlement_key(uuid, "succeeded")
        "settlement:550e8400-e29b-41d4-a716-446655440000:succeeded"
    """
    return f"settlement:{payment_id}:{outcome}"


def parse_settlement_key(key: str) -> tuple[UUID, str]:
    """
    Parse a settlement key into (payment_id, outcome).

    Raises:
        ValueError: If key format is invalid.
    """
    parts = key.split(":")
    if len(parts) != 3 or parts[0] != "settlement":
        raise ValueError(f"Invalid settlement key format: {key}")
    return UUID(parts[1]), parts[2]
