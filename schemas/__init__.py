"""
Pydantic schemas for data validation and serialization.

This package defines the Pydantic models that sit between the remote API
and the database:

Schemas:
    external: Raw API payloads (ExternalRecord, ExternalBan, ...) with
        explicit optional fields
    normalized: Storage-ready rows, natural keys and reject reasons
    checkpoint: Durable per-stream progress (CheckpointState)

Usage:
    from schemas.external import ExternalRecord
    from schemas.normalized import NormalizedRecord, RejectReason
    from schemas.checkpoint import CheckpointState

Example:
    payload = ExternalRecord.model_validate({"id": 42, "time": "30.5"})
    assert payload.steamid64 is None

Validation:
    Payload models accept any value types; the normalizer owns coercion
    and defaulting. Row models are frozen once built.
"""

__all__ = [
    "ExternalRecord",
    "ExternalBan",
    "ExternalPlayer",
    "ExternalServer",
    "ExternalMap",
    "NormalizedRecord",
    "NormalizedBan",
    "NormalizedPlayer",
    "NormalizedServer",
    "NormalizedMap",
    "PlayerKey",
    "MapKey",
    "ServerKey",
    "RejectReason",
    "CheckpointState",
]
