"""
AI Service - OpenAI calls behind the metered features
"""
import asyncio
import base64
import json
import logging
from pathlib import Path
from typing import Optional, Dict, Any, List

from openai import OpenAI

from config.settings import settings

logger = logging.getLogger(__name__)

URL_SYSTEM_PROMPT = "You are an editor who writes social media copy from web articles."

URL_PROMPT_TEMPLATE = """Read the article at the URL below and write social media material for it.

- Target URL: {url}
- Output:
  1. A summary of roughly 200-300 characters
  2. Three catchy post titles (about 30 characters each) based on the summary
  3. 10-15 related hashtag candidates
{tone_text}
Return only JSON in exactly this shape:

{{
  "summary": "summary text",
  "titles": ["title 1", "title 2", "title 3"],
  "hashtags": ["#tag1", "#tag2", "..."]
}}"""

VISION_SYSTEM_PROMPT = (
    "You are a social media copywriter. Read the image and the notes that come with it "
    "and write the best post for the requested platform."
)

VIDEO_SYSTEM_PROMPT = (
    "You are a social media editor. You receive the transcript of a short video and "
    "write post copy that conveys its story and mood."
)


def _usage_dict(usage: Any) -> Dict[str, int]:
    if usage is None:
        return {"prompt_tokens": 0, "completion_tokens": 0, "total_tokens": 0}
    return {
        "prompt_tokens": getattr(usage, "prompt_tokens", 0) or 0,
        "completion_tokens": getattr(usage, "completion_tokens", 0) or 0,
        "total_tokens": getattr(usage, "total_tokens", 0) or 0,
    }


class AIService:
    """Service class wrapping the OpenAI API. One client per instance."""

    def __init__(self, api_key: Optional[str] = None, model: Optional[str] = None):
        self.api_key = api_key if api_key is not None else settings.openai_api_key
        self.model = model or settings.openai_model
        self.transcription_model = settings.openai_transcription_model
        self._client: Optional[OpenAI] = None

    @property
    def client(self) -> OpenAI:
        if self._client is None:
            self._client = OpenAI(api_key=self.api_key)
        return self._client

    def _missing_key(self) -> Dict[str, Any]:
        logger.error("OpenAI API key not configured")
        return {
            "error": "openai_not_configured",
            "message": "OPENAI_API_KEY is not configured.",
            "is_error": True,
        }

    async def _complete(self, messages: List[dict], **kwargs) -> Dict[str, Any]:
        response = await asyncio.to_thread(
            self.client.chat.completions.create,
            model=self.model,
            messages=messages,
            **kwargs,
        )
        text = response.choices[0].message.content if response.choices else None
        return {
            "text": (text or "").strip(),
            "model": getattr(response, "model", None) or self.model,
            "usage": _usage_dict(getattr(response, "usage", None)),
        }

    async def summarize_url(self, url: str, tone: Optional[str] = None) -> Dict[str, Any]:
        """
        Summarize an article URL into post material.

        Returns:
            {"data": {"summary", "titles", "hashtags"}, "model", "usage", "is_error": False}
            or {"error": code, "message": str, "is_error": True}
        """
        if not self.api_key:
            return self._missing_key()

        tone_text = f"\nWrite in this tone: {tone.strip()}\n" if tone and tone.strip() else ""
        prompt = URL_PROMPT_TEMPLATE.format(url=url, tone_text=tone_text)

        try:
            result = await self._complete(
                [
                    {"role": "system", "content": URL_SYSTEM_PROMPT},
                    {"role": "user", "content": prompt},
                ],
                temperature=0.7,
                response_format={"type": "json_object"},
            )
        except Exception as e:
            logger.error(f"OpenAI URL summarization failed: {e}", exc_info=True)
            return {"error": "openai_error", "message": str(e), "is_error": True}

        raw = result["text"]
        if not raw:
            logger.error("OpenAI response has no text for URL summarization")
            return {
                "error": "openai_no_text",
                "message": "Text generation failed. Please try again later.",
                "is_error": True,
            }

        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError:
            logger.error(f"Failed to parse OpenAI JSON: {raw}")
            return {
                "error": "openai_parse_error",
                "message": "Could not read the generated result.",
                "is_error": True,
            }

        return {
            "data": {
                "summary": parsed.get("summary", ""),
                "titles": list(parsed.get("titles") or []),
                "hashtags": list(parsed.get("hashtags") or []),
            },
            "model": result["model"],
            "usage": result["usage"],
            "is_error": False,
        }

    async def caption_image(self, image_bytes: bytes, mime_type: str, prompt: Optional[str] = None) -> Dict[str, Any]:
        """Write a post for an uploaded image."""
        if not self.api_key:
            return self._missing_key()

        data_url = f"data:{mime_type};base64,{base64.b64encode(image_bytes).decode('ascii')}"
        instructions = (
            (prompt or "")
            + "\n\nUsing the conditions above and the content, mood and notes of the image, "
              "write a social media post."
        ).strip()

        try:
            result = await self._complete(
                [
                    {"role": "system", "content": VISION_SYSTEM_PROMPT},
                    {
                        "role": "user",
                        "content": [
                            {"type": "text", "text": instructions},
                            {"type": "image_url", "image_url": {"url": data_url, "detail": "low"}},
                        ],
                    },
                ],
                max_tokens=800,
                temperature=0.7,
            )
        except Exception as e:
            logger.error(f"OpenAI image captioning failed: {e}", exc_info=True)
            return {"error": "openai_error", "message": str(e), "is_error": True}

        return {"data": {"text": result["text"]}, "model": result["model"], "usage": result["usage"], "is_error": False}

    async def chat(self, system_prompt: str, user_text: str) -> Dict[str, Any]:
        if not self.api_key:
            return self._missing_key()

        try:
            result = await self._complete(
                [
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_text},
                ],
                max_tokens=800,
                temperature=0.7,
            )
        except Exception as e:
            logger.error(f"OpenAI chat failed: {e}", exc_info=True)
            return {"error": "openai_error", "message": str(e), "is_error": True}

        return {"data": {"text": result["text"]}, "model": result["model"], "usage": result["usage"], "is_error": False}

    async def transcribe_video(self, file_path: Path, prompt: str) -> Dict[str, Any]:
        """
        Transcribe a video and write post copy from the transcript.

        Returns:
            {"data": {"text", "transcript"}, "model", "usage", "is_error": False}
            or {"error": code, "message": str, "is_error": True}
        """
        if not self.api_key:
            return self._missing_key()

        def _transcribe() -> str:
            with open(file_path, "rb") as f:
                transcription = self.client.audio.transcriptions.create(
                    model=self.transcription_model,
                    file=f,
                )
            return (getattr(transcription, "text", "") or "").strip()

        try:
            transcript = await asyncio.to_thread(_transcribe)
        except Exception as e:
            logger.error(f"OpenAI transcription failed: {e}", exc_info=True)
            return {"error": "transcription_failed", "message": str(e), "is_error": True}

        if not transcript:
            return {
                "error": "transcription_empty",
                "message": "No speech was found in the video.",
                "is_error": True,
            }

        try:
            result = await self._complete(
                [
                    {"role": "system", "content": VIDEO_SYSTEM_PROMPT},
                    {"role": "user", "content": f"{prompt}\n\nTranscript:\n{transcript}"},
                ],
                max_tokens=1200,
                temperature=0.7,
            )
        except Exception as e:
            logger.error(f"OpenAI video post generation failed: {e}", exc_info=True)
            return {"error": "openai_error", "message": str(e), "is_error": True}

        return {
            "data": {"text": result["text"], "transcript": transcript},
            "model": result["model"],
            "usage": result["usage"],
            "is_error": False,
        }
