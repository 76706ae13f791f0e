"""
Feature Router - metered AI endpoints (url, vision, chat, video) and uploads
"""
import logging
from typing import Optional

import aiofiles
from fastapi import APIRouter, Depends, File, UploadFile
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from auth import require_active_plan, get_current_user
from backend.utils.responses import success_response, error_response, service_error_response
from config.settings import (
    DEFAULT_SYSTEM_PROMPT,
    FEATURE_URL,
    FEATURE_VISION,
    FEATURE_CHAT,
    FEATURE_VIDEO,
)
from crud.profile import ProfileRepository
from crud.usage import UsageRepository
from database import get_db
from database_models import Profile
from services.ai_service import AIService
from services.plan_service import (
    get_plan_state,
    check_feature_access,
    video_usage_window,
    utcnow,
    TRIAL,
)
from utils.security_utils import (
    validate_uploaded_file,
    detect_mime_type_from_content,
    is_image_mime,
    is_video_mime,
)
from utils.shared_utils import (
    log_endpoint_event,
    save_upload,
    resolve_upload_path,
    delete_upload,
    record_usage,
)

logger = logging.getLogger(__name__)

feature_router = APIRouter(prefix="/api", tags=["features"])

VIDEO_DENIED_MESSAGES = {
    "trial_video_limit": "You have used all video generations included in the free trial.",
    "pro_video_limit": "You have used all video generations for this month.",
    "starter_not_allowed": "Video is not included in the Starter plan. Upgrade to Pro to use it.",
    "trial_expired": "Your free trial has ended. Choose a plan to keep using video.",
    "no_plan": "Video requires an active plan.",
}


class UrlRequest(BaseModel):
    url: str
    tone: Optional[str] = None


class VisionRequest(BaseModel):
    file_path: str
    prompt: Optional[str] = None


class ChatRequest(BaseModel):
    user_text: str


class ChatSettingsRequest(BaseModel):
    system_prompt: Optional[str] = None


class VideoRequest(BaseModel):
    file_path: str
    prompt: str


def get_ai_service() -> AIService:
    return AIService()


def _ai_error(endpoint: str, user_id: str, result: dict):
    log_endpoint_event(endpoint, user_id, "error", {"error": result.get("error")})
    return service_error_response(result, status=500, default_code="openai_error")


@feature_router.post("/url")
async def summarize_url(
    request: UrlRequest,
    profile: Profile = Depends(require_active_plan),
    ai: AIService = Depends(get_ai_service),
    db: AsyncSession = Depends(get_db),
):
    """Summary, titles and hashtags for an article URL"""
    url = request.url.strip()
    if not url:
        return error_response("missing_url", message="url is required.")

    result = await ai.summarize_url(url, request.tone)
    if result.get("is_error"):
        return _ai_error("/api/url", profile.id, result)

    await record_usage(db, profile.id, FEATURE_URL, result)
    log_endpoint_event("/api/url", profile.id, "success", {"url": url})
    return success_response(data=result["data"])


@feature_router.post("/uploads")
async def upload_file(
    file: UploadFile = File(...),
    profile: Profile = Depends(require_active_plan),
):
    """Store an image or video for a later vision or video call"""
    sanitized_filename, content, mime_type = await validate_uploaded_file(file)
    file_path = await save_upload(profile.id, sanitized_filename, content)
    log_endpoint_event("/api/uploads", profile.id, "success", {"mime_type": mime_type, "size": len(content)})
    return success_response(data={"file_path": file_path, "mime_type": mime_type})


@feature_router.post("/vision")
async def caption_image(
    request: VisionRequest,
    profile: Profile = Depends(require_active_plan),
    ai: AIService = Depends(get_ai_service),
    db: AsyncSession = Depends(get_db),
):
    """Post copy for an uploaded image"""
    try:
        path = resolve_upload_path(profile.id, request.file_path)
    except FileNotFoundError:
        return error_response("file_not_found", status=404, message="The uploaded file was not found.")

    async with aiofiles.open(path, "rb") as f:
        image_bytes = await f.read()

    mime_type = detect_mime_type_from_content(image_bytes)
    if not is_image_mime(mime_type):
        delete_upload(path)
        return error_response("invalid_upload", message="The uploaded file is not an image.")

    try:
        result = await ai.caption_image(image_bytes, mime_type, request.prompt)
    finally:
        delete_upload(path)

    if result.get("is_error"):
        return _ai_error("/api/vision", profile.id, result)

    await record_usage(db, profile.id, FEATURE_VISION, result)
    log_endpoint_event("/api/vision", profile.id, "success")
    return success_response(data=result["data"])


@feature_router.post("/chat")
async def chat(
    request: ChatRequest,
    profile: Profile = Depends(require_active_plan),
    ai: AIService = Depends(get_ai_service),
    db: AsyncSession = Depends(get_db),
):
    """Chat reply using the user's saved system prompt"""
    user_text = request.user_text.strip()
    if not user_text:
        return error_response("missing_user_text", message="user_text is required.")

    system_prompt = await ProfileRepository(db).get_system_prompt(profile.id) or DEFAULT_SYSTEM_PROMPT

    result = await ai.chat(system_prompt, user_text)
    if result.get("is_error"):
        return _ai_error("/api/chat", profile.id, result)

    await record_usage(db, profile.id, FEATURE_CHAT, result)
    log_endpoint_event("/api/chat", profile.id, "success")
    return success_response(data=result["data"])


@feature_router.get("/chat/settings")
async def get_chat_settings(
    user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    system_prompt = await ProfileRepository(db).get_system_prompt(user["user_id"])
    return success_response(data={
        "system_prompt": system_prompt or DEFAULT_SYSTEM_PROMPT,
        "is_default": system_prompt is None,
    })


@feature_router.put("/chat/settings")
async def update_chat_settings(
    request: ChatSettingsRequest,
    user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Save the chat system prompt; an empty prompt restores the default"""
    system_prompt = (request.system_prompt or "").strip() or None
    await ProfileRepository(db).set_system_prompt(user["user_id"], system_prompt)
    return success_response(
        data={
            "system_prompt": system_prompt or DEFAULT_SYSTEM_PROMPT,
            "is_default": system_prompt is None,
        },
        message="Chat settings saved",
    )


@feature_router.post("/video")
async def video_post(
    request: VideoRequest,
    profile: Profile = Depends(require_active_plan),
    ai: AIService = Depends(get_ai_service),
    db: AsyncSession = Depends(get_db),
):
    """
    Transcribe an uploaded video and write post copy from it.
    Counts against the trial or monthly Pro video quota.
    """
    now = utcnow()
    plan = get_plan_state(profile, now)
    window = video_usage_window(profile, plan, now)

    used = 0
    if window is not None:
        start, end = window
        used = await UsageRepository(db).count_in_range(
            profile.id,
            FEATURE_VIDEO,
            start,
            end,
            end_inclusive=plan.kind == TRIAL,
        )

    access = check_feature_access(plan, {FEATURE_VIDEO: used}, FEATURE_VIDEO)
    if not access.ok:
        log_endpoint_event("/api/video", profile.id, "denied", {"reason": access.reason, "used": used})
        return error_response(
            access.reason,
            status=403,
            message=VIDEO_DENIED_MESSAGES.get(access.reason, "Video is not available on your plan."),
            data={"remaining": access.remaining, "limit": access.limit},
        )

    try:
        path = resolve_upload_path(profile.id, request.file_path)
    except FileNotFoundError:
        return error_response("file_not_found", status=404, message="The uploaded file was not found.")

    async with aiofiles.open(path, "rb") as f:
        head = await f.read(64)
    if not is_video_mime(detect_mime_type_from_content(head)):
        delete_upload(path)
        return error_response("invalid_upload", message="The uploaded file is not a video.")

    try:
        result = await ai.transcribe_video(path, request.prompt)
    finally:
        delete_upload(path)

    if result.get("is_error"):
        return _ai_error("/api/video", profile.id, result)

    await record_usage(db, profile.id, FEATURE_VIDEO, result)
    remaining = max(access.remaining - 1, 0)
    log_endpoint_event("/api/video", profile.id, "success", {"remaining": remaining})

    return success_response(data={
        "text": result["data"]["text"],
        "transcript": result["data"]["transcript"],
        "remaining": remaining,
        "limit": access.limit,
    })
