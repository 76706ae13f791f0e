"""
Shared utility functions for routers and services
"""
import json
import logging
import uuid
from pathlib import Path
from typing import Optional

import aiofiles
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import settings, UNIT_COST
from crud.usage import UsageRepository

logger = logging.getLogger(__name__)


def log_endpoint_event(endpoint: str, user_id: Optional[str] = None, result: str = "success", details: Optional[dict] = None):
    """Log endpoint execution to app.log"""
    logger.info(f"{endpoint} | user={user_id or 'none'} | {result} | {json.dumps(details or {}, default=str)}")


def get_upload_root() -> Path:
    return Path(settings.upload_dir).resolve()


def get_user_upload_dir(user_id: str) -> Path:
    path = get_upload_root() / user_id
    path.mkdir(parents=True, exist_ok=True)
    return path


async def save_upload(user_id: str, filename: str, content: bytes) -> str:
    """
    Write an upload under the user's directory.

    Returns:
        Path relative to the upload root, used as `file_path` by the feature endpoints
    """
    stored_name = f"{uuid.uuid4().hex}_{filename}"
    destination = get_user_upload_dir(user_id) / stored_name

    async with aiofiles.open(destination, "wb") as f:
        await f.write(content)

    logger.info(f"File uploaded: {stored_name} ({len(content)} bytes) for user {user_id}")
    return f"{user_id}/{stored_name}"


def resolve_upload_path(user_id: str, file_path: str) -> Path:
    """
    Absolute path of a previously uploaded file. The file must sit inside the
    user's own upload directory.

    Raises:
        FileNotFoundError: If the path escapes the user's directory or does not exist
    """
    user_dir = (get_upload_root() / user_id).resolve()
    candidate = (get_upload_root() / file_path).resolve()

    if user_dir not in candidate.parents or not candidate.is_file():
        raise FileNotFoundError(file_path)

    return candidate


def delete_upload(path: Path) -> None:
    """Remove a processed upload. Failure is logged, never raised."""
    try:
        path.unlink()
    except OSError as e:
        logger.warning(f"Failed to delete upload {path}: {e}")


async def record_usage(db: AsyncSession, user_id: str, feature: str, ai_result: Optional[dict] = None) -> None:
    """
    Append a usage event for a successful feature call, priced from the unit
    cost table. A failed write is logged and does not fail the request.
    """
    usage = (ai_result or {}).get("usage") or {}
    try:
        async with db.begin_nested():
            await UsageRepository(db).log_event(
                user_id,
                feature,
                model=(ai_result or {}).get("model"),
                prompt_tokens=usage.get("prompt_tokens", 0),
                completion_tokens=usage.get("completion_tokens", 0),
                total_tokens=usage.get("total_tokens", 0),
                cost=UNIT_COST[feature],
            )
    except SQLAlchemyError as e:
        logger.error(f"Failed to write {feature} usage log for user {user_id}: {e}")
