"""
Idempotency key helpers.
"""
import hashlib
import json
import logging
from typing import Optional, Dict, Any
from datetime import datetime, timezone, timedelta, date, time
from decimal import Decimal
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, delete

from ..models import IdempotencyKey

logger = logging.getLogger(__name__)


def _json_default(obj):
    """JSON serializer for datetime, date, time, Decimal and bytes values"""
    if isinstance(obj, (datetime, date, time)):
        return obj.isoformat()
    if isinstance(obj, Decimal):
        return float(obj)
    if isinstance(obj, bytes):
        return obj.decode('utf-8')
    raise TypeError(f"Type {type(obj)} not serializable")


def scoped_key(owner_id: str, key: str) -> str:
    """Client supplied key namespaced by its owner"""
    return f"{owner_id}:{key.strip()}"


def generate_request_hash(request_data: Dict[str, Any]) -> str:
    """
    Hash a request payload so a replayed key can be checked against it.

    Args:
        request_data: request payload

    Returns:
        SHA256 hex digest
    """
    sorted_data = json.dumps(request_data, sort_keys=True, ensure_ascii=False, default=_json_default)
    return hashlib.sha256(sorted_data.encode('utf-8')).hexdigest()


async def check_idempotency_key(
    db: AsyncSession,
    key: str,
    operation_type: str,
    request_hash: Optional[str] = None
) -> Optional[Dict[str, Any]]:
    """
    Return the cached response for a live idempotency key.

    Args:
        db: DB session
        key: Idempotency-Key header value
        operation_type: operation name
        request_hash: hash of the current request; a mismatch means no replay

    Returns:
        cached response_data, or None
    """
    result = await db.execute(
        select(IdempotencyKey).where(
            IdempotencyKey.key == key,
            IdempotencyKey.operation_type == operation_type,
            IdempotencyKey.expires_at > datetime.now(timezone.utc)
        )
    )
    idempotency_record = result.scalar_one_or_none()

    if not idempotency_record:
        return None

    if request_hash and idempotency_record.request_hash:
        if idempotency_record.request_hash != request_hash:
            logger.warning(f"Idempotency key {key} reused with a different request, not replaying")
            return None

    return idempotency_record.response_data


async def store_idempotency_key(
    db: AsyncSession,
    key: str,
    operation_type: str,
    resource_id: Optional[str] = None,
    request_hash: Optional[str] = None,
    response_data: Optional[Dict[str, Any]] = None,
    ttl_hours: int = 24
) -> None:
    """
    Store (or refresh) an idempotency key with its response.

    Args:
        db: DB session
        key: Idempotency-Key header value
        operation_type: operation name
        resource_id: id of the created resource
        request_hash: request hash
        response_data: response body to replay
        ttl_hours: key lifetime in hours
    """
    expires_at = datetime.now(timezone.utc) + timedelta(hours=ttl_hours)

    serialized_response_data = None
    if response_data:
        try:
            serialized_response_data = json.loads(json.dumps(response_data, default=_json_default))
        except (TypeError, ValueError) as e:
            logger.warning(f"Failed to serialize response_data for idempotency key {key}: {e}")

    result = await db.execute(
        select(IdempotencyKey).where(
            IdempotencyKey.key == key,
            IdempotencyKey.operation_type == operation_type,
        )
    )
    record = result.scalar_one_or_none()
    if record is None:
        record = IdempotencyKey(key=key, operation_type=operation_type)
        db.add(record)

    record.resource_id = resource_id
    record.request_hash = request_hash
    record.response_data = serialized_response_data
    record.expires_at = expires_at
    await db.flush()


async def cleanup_expired_keys(db: AsyncSession) -> int:
    """
    Delete expired idempotency keys.

    Returns:
        number of deleted keys
    """
    result = await db.execute(
        delete(IdempotencyKey).where(
            IdempotencyKey.expires_at < datetime.now(timezone.utc)
        )
    )
    deleted_count = result.rowcount
    await db.flush()
    return deleted_count
