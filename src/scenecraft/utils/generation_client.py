from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence, Union
import asyncio
import json
import logging

import aiohttp
from pydantic import BaseModel, ConfigDict, field_validator

from .json_extract import extract_object_list, extract_string_list
from .rate_limiter import AsyncRateLimiter, RateLimitConfig
from .token_tracker import TokenTracker
from ..config import GenerationConfig
from ..errors import GenerationError

logger = logging.getLogger(__name__)

CHAT_PATH = "/compatible-mode/v1/chat/completions"
FILES_PATH = "/compatible-mode/v1/files"
MULTIMODAL_PATH = "/api/v1/services/aigc/multimodal-generation/generation"

DEFAULT_SUMMARY_PROMPT = """Read the whole novel and write a summary of its plot, setting and main \
characters in no more than 300 words. Answer in the novel's own language and \
return only the summary text."""

DEFAULT_ROLE_PROMPT = """Analyse this novel and list its main characters (those who appear often or \
matter to the plot). For each character give:
- name
- gender (male / female / unknown)
- character: a short description of their personality
- appearance: a concrete description of their looks, used to draw a portrait

Answer in the novel's own language. Return ONLY a JSON array, for example:
[{"name": "...", "gender": "...", "character": "...", "appearance": "..."}]"""

DEFAULT_SCENE_PROMPT = """Split the chapter below into 0 to 3 key scenes for a comic strip.
Each scene is one sentence usable as an image prompt and names the place, the \
people, the action and the mood. Return an empty array if the chapter is too \
short to illustrate. Answer in the chapter's own language and return ONLY a \
JSON array of strings, for example: ["scene one", "scene two"]

Chapter:
{content}"""

COVER_PROMPT = """Design a polished book cover for this novel.

Summary:
{summary}

Match the novel's era and genre in style and palette, include the key \
characters, places or symbols, use a professional cover composition with room \
for a title, high detail."""


class RoleInfo(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: str = ""
    gender: str = ""
    character: str = ""
    appearance: str = ""

    @field_validator("*", mode="before")
    @classmethod
    def _coerce_text(cls, value: Any) -> str:
        if value is None:
            return ""
        if isinstance(value, (list, tuple)):
            return ", ".join(str(v) for v in value)
        return str(value).strip()


def build_image_prompt(scene: str, summary: str, roles: Sequence[RoleInfo]) -> str:
    parts = []
    if summary:
        parts.append(f"Story summary: {summary}\n")
    described = [r for r in roles if r.appearance]
    if described:
        lines = ["Main characters:"]
        for role in described:
            lines.append(f"- {role.name}: gender: {role.gender}; personality: {role.character}; "
                         f"appearance: {role.appearance}")
        lines.append("Any character named in the scene must follow the matching description.\n")
        parts.append("\n".join(lines))
    parts.append(f"Draw an anime style illustration of this scene: {scene}")
    return "\n".join(parts)


class GenerationClient:
    """Async client for the DashScope text, image and speech endpoints."""

    def __init__(self, config: GenerationConfig,
                 token_tracker: Optional[TokenTracker] = None,
                 rate_limiter: Optional[AsyncRateLimiter] = None):
        self.config = config
        self.base_url = config.base_url.rstrip("/")
        self._session: Optional[aiohttp.ClientSession] = None
        self.token_tracker = token_tracker or TokenTracker(log_file=config.usage_log)
        self._rate_limiter = rate_limiter or AsyncRateLimiter(
            RateLimitConfig(requests_per_window=config.requests_per_minute, window_seconds=60)
        )

    @property
    def headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.config.api_key}"}

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.config.request_timeout)
            )
        return self._session

    async def _post(self, path: str, payload: Optional[Dict[str, Any]] = None,
                    form: Optional[Callable[[], aiohttp.FormData]] = None) -> Dict[str, Any]:
        """POST and decode a JSON body, retrying HTTP 429 up to ``max_retries`` times."""
        url = f"{self.base_url}{path}"
        attempt = 0
        while True:
            await self._rate_limiter.wait_for_token()
            session = await self._get_session()
            try:
                async with session.post(
                    url,
                    headers=self.headers,
                    json=payload if form is None else None,
                    data=form() if form is not None else None,
                ) as response:
                    status = response.status
                    body = await response.text()
                    retry_after = response.headers.get("Retry-After")
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                raise GenerationError(f"request to {path} failed: {e!r}") from e

            if status == 429 and attempt < self.config.max_retries:
                attempt += 1
                delay = _parse_retry_after(retry_after)
                logger.warning("Rate limited by %s, retry %d/%d in %.0fs",
                               path, attempt, self.config.max_retries, delay)
                await asyncio.sleep(delay)
                continue
            if status != 200:
                raise GenerationError(f"{path} returned status {status}", status=status, body=body)
            try:
                return json.loads(body)
            except ValueError as e:
                raise GenerationError(f"{path} returned invalid JSON", status=status, body=body) from e

    async def _chat(self, messages: List[Dict[str, str]]) -> str:
        result = await self._post(CHAT_PATH, {
            "model": self.config.chat_model,
            "messages": messages,
            "stream": False,
        })
        usage = result.get("usage") or {}
        if usage:
            await self.token_tracker.add_usage(
                self.config.chat_model,
                int(usage.get("prompt_tokens", 0)),
                int(usage.get("completion_tokens", 0)),
            )
        choices = result.get("choices") or []
        if not choices:
            raise GenerationError("no choices in chat response", body=json.dumps(result))
        return (choices[0].get("message") or {}).get("content") or ""

    def _file_messages(self, file_id: str, prompt: str) -> List[Dict[str, str]]:
        return [
            {"role": "system", "content": "You are a helpful assistant."},
            {"role": "system", "content": f"fileid://{file_id}"},
            {"role": "user", "content": prompt},
        ]

    async def upload_source(self, path: Union[str, Path]) -> str:
        path = Path(path)
        content = await asyncio.to_thread(path.read_bytes)
        logger.info("Uploading %s (%d bytes)", path.name, len(content))

        def form() -> aiohttp.FormData:
            data = aiohttp.FormData()
            data.add_field("file", content, filename=path.name)
            data.add_field("purpose", "file-extract")
            return data

        result = await self._post(FILES_PATH, form=form)
        file_id = result.get("id") or ""
        if not file_id:
            raise GenerationError("file id missing from upload response", body=json.dumps(result))
        logger.info("Uploaded %s as %s", path.name, file_id)
        return file_id

    async def extract_summary(self, file_id: str) -> str:
        prompt = self.config.summary_prompt or DEFAULT_SUMMARY_PROMPT
        summary = (await self._chat(self._file_messages(file_id, prompt))).strip()
        logger.info("Extracted summary for %s, length: %d", file_id, len(summary))
        return summary

    async def extract_roles(self, file_id: str, summary: str = "") -> List[RoleInfo]:
        prompt = self.config.role_prompt or DEFAULT_ROLE_PROMPT
        if summary:
            prompt = f"Novel summary:\n{summary}\n\n{prompt}"
        content = await self._chat(self._file_messages(file_id, prompt))
        roles = [RoleInfo.model_validate(item) for item in extract_object_list(content)]
        roles = [role for role in roles if role.name]
        if not roles:
            logger.warning("No roles found in model output: %s", content[:200])
        return roles

    async def generate_scenes(self, chapter_text: str) -> List[str]:
        template = self.config.scene_prompt or DEFAULT_SCENE_PROMPT
        content = await self._chat([
            {"role": "system", "content": "You are a helpful assistant."},
            {"role": "user", "content": template.replace("{content}", chapter_text)},
        ])
        return extract_string_list(content)

    async def _generate_image(self, prompt: str) -> str:
        result = await self._post(MULTIMODAL_PATH, {
            "model": self.config.image_model,
            "input": {"messages": [{"role": "user", "content": [{"text": prompt}]}]},
            "parameters": {
                "negative_prompt": "",
                "prompt_extend": True,
                "watermark": self.config.image_watermark,
                "size": self.config.image_size,
            },
        })
        try:
            image_url = result["output"]["choices"][0]["message"]["content"][0]["image"]
        except (KeyError, IndexError, TypeError) as e:
            raise GenerationError("image missing from response", body=json.dumps(result)) from e
        if not image_url:
            raise GenerationError("empty image url in response", body=json.dumps(result))
        return image_url

    async def generate_image(self, scene_text: str, summary: str = "",
                             roles: Sequence[RoleInfo] = ()) -> str:
        image_url = await self._generate_image(build_image_prompt(scene_text, summary, roles))
        logger.info("Generated scene image %s", image_url)
        return image_url

    async def generate_cover_image(self, summary: str) -> str:
        image_url = await self._generate_image(COVER_PROMPT.format(summary=summary))
        logger.info("Generated cover image %s", image_url)
        return image_url

    async def generate_speech(self, text: str) -> str:
        result = await self._post(MULTIMODAL_PATH, {
            "model": self.config.tts_model,
            "input": {
                "text": text,
                "voice": self.config.voice,
                "language_type": self.config.language_type,
            },
        })
        audio_url = ((result.get("output") or {}).get("audio") or {}).get("url") or ""
        if not audio_url:
            raise GenerationError("audio url missing from response", body=json.dumps(result))
        logger.info("Generated speech %s", audio_url)
        return audio_url

    async def cleanup(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()
        self._session = None
        await self._rate_limiter.cleanup()


def _parse_retry_after(value: Optional[str]) -> float:
    try:
        return max(0.0, float(value)) if value is not None else 60.0
    except ValueError:
        return 60.0
