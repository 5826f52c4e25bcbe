"""
Idea analysis backed by the IBM watsonx Granite chat API.

Given a transcribed idea, the model returns a `<think>` block with 3-5 short
theme labels and a `<response>` block with numbered follow-up prompts. The
client exchanges the IBM Cloud api key for an IAM bearer token, caches it
until shortly before expiry, and parses both blocks tolerantly.
"""

import asyncio
import logging
import re
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable, List, Optional

import aiohttp

from config import Settings
from errors import CollaboratorFailure

logger = logging.getLogger(__name__)

FALLBACK_THEMES = ["Idea", "Concept", "Innovation"]
FALLBACK_PROMPTS = ["**Exploration**: How might this idea be developed further?"]
FAILURE_PROMPTS = ["**Exploration**: Could not generate specific prompts. Please try again."]

# Refresh the IAM token this many seconds before it actually expires
TOKEN_REFRESH_MARGIN = 5 * 60
DEFAULT_TOKEN_LIFETIME = 60 * 60

SYSTEM_PROMPT = """You are an AI assistant designed to enhance brainstorming sessions. Given a transcribed spoken idea, perform two tasks in sequence:

1. **Analyze**: Extract 3-5 key themes or domains from the idea as single-word or very short (1-2 words maximum) labels. Examples: "Healthcare", "Blockchain", "Remote Work", "AI Ethics", "UX Design". Place each theme on a new line starting with "•". Output this analysis within <think> tags.

2. **Generate**: Based on the identified themes and the original idea, create 3 creative prompts that would help expand this brainstorming idea further. Format each as a numbered item with a bold header followed by a question. Output these prompts within <response> tags.

Example format:
<think>
• Healthcare
• AI Ethics
• Data Privacy
• Patient Care
</think>

<response>
1. **Implementation**: How could this solution be integrated with existing systems?
2. **Ethics**: What privacy safeguards would need to be in place?
3. **Impact**: How would this technology change patient outcomes?
</response>

Be extremely concise with theme labels - each MUST be only 1-2 words maximum."""

_THINK_REGEX = re.compile(r"<think>(.*?)</think>", re.DOTALL)
_RESPONSE_REGEX = re.compile(r"<response>(.*?)</response>", re.DOTALL)
_NUMBERED_REGEX = re.compile(r"\d+\.\s*(.*?)(?=\n\s*\d+\.|\s*\Z)", re.DOTALL)
_THEME_MARKER_REGEX = re.compile(r"^[\d.\s•-]*")
_PROMPT_NUMBER_REGEX = re.compile(r"^\d+\.\s*")


@dataclass(frozen=True)
class Analysis:
    themes: List[str] = field(default_factory=list)
    prompts: List[str] = field(default_factory=list)


FAILURE_ANALYSIS = Analysis(themes=list(FALLBACK_THEMES), prompts=list(FAILURE_PROMPTS))

Analyzer = Callable[[str], Awaitable[Analysis]]


def parse_themes(content: str) -> List[str]:
    """Split a `<think>` block into theme labels."""
    cleaned = content.strip()
    if "•" in cleaned:
        return [line.strip() for line in cleaned.split("•") if line.strip()]

    # No bullets: one theme per line, stripped of list markers
    themes = []
    for line in cleaned.splitlines():
        label = _THEME_MARKER_REGEX.sub("", line.strip()).strip()
        if label:
            themes.append(label)
    return themes


def parse_prompts(content: str) -> List[str]:
    """Split a `<response>` block into prompts, keeping markdown intact."""
    cleaned = content.strip()
    matches = [m.group(1).strip() for m in _NUMBERED_REGEX.finditer(cleaned)]
    matches = [m for m in matches if m]
    if matches:
        return matches

    return [
        _PROMPT_NUMBER_REGEX.sub("", line.strip()).strip()
        for line in cleaned.splitlines()
        if line.strip()
    ]


def parse_analysis(content: str) -> Analysis:
    theme_match = _THINK_REGEX.search(content)
    themes = parse_themes(theme_match.group(1)) if theme_match else []

    prompt_match = _RESPONSE_REGEX.search(content)
    prompts = parse_prompts(prompt_match.group(1)) if prompt_match else []

    return Analysis(
        themes=themes or list(FALLBACK_THEMES),
        prompts=prompts or list(FALLBACK_PROMPTS),
    )


class GraniteClient:
    """Async analyzer: `await client(transcript) -> Analysis`."""

    def __init__(
        self,
        api_key: Optional[str],
        project_id: Optional[str],
        model_id: str,
        chat_url: str,
        iam_url: str,
        timeout: float = 60.0,
        fallback_on_failure: bool = False,
    ):
        self.api_key = api_key
        self.project_id = project_id
        self.model_id = model_id
        self.chat_url = chat_url
        self.iam_url = iam_url
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self.fallback_on_failure = fallback_on_failure
        self._token: Optional[str] = None
        self._token_expires_at = 0.0
        self._token_lock = asyncio.Lock()

    @classmethod
    def from_settings(cls, settings: Settings) -> "GraniteClient":
        return cls(
            api_key=settings.ibm_api_key,
            project_id=settings.ibm_project_id,
            model_id=settings.ibm_model_id,
            chat_url=settings.ibm_chat_url,
            iam_url=settings.ibm_iam_url,
            timeout=settings.ai_timeout_seconds,
            fallback_on_failure=settings.ai_fallback_on_failure,
        )

    async def __call__(self, transcript: str) -> Analysis:
        return await self.generate(transcript)

    async def generate(self, transcript: str) -> Analysis:
        try:
            async with aiohttp.ClientSession(timeout=self.timeout) as session:
                content = await self._complete(session, transcript)
        except (aiohttp.ClientError, asyncio.TimeoutError, CollaboratorFailure, KeyError, IndexError, TypeError) as exc:
            logger.error("Granite analysis failed: %s", exc)
            if self.fallback_on_failure:
                return FAILURE_ANALYSIS
            if isinstance(exc, CollaboratorFailure):
                raise
            raise CollaboratorFailure() from exc

        analysis = parse_analysis(content)
        logger.debug("Parsed themes: %s", analysis.themes)
        logger.debug("Parsed prompts: %s", analysis.prompts)
        return analysis

    async def _get_token(self, session: aiohttp.ClientSession) -> str:
        async with self._token_lock:
            if self._token and self._token_expires_at > time.monotonic():
                return self._token

            if not self.api_key:
                raise CollaboratorFailure("AI analysis is not configured")

            async with session.post(
                self.iam_url,
                headers={"Accept": "application/json"},
                data={
                    "grant_type": "urn:ibm:params:oauth:grant-type:apikey",
                    "apikey": self.api_key,
                },
            ) as resp:
                if resp.status != 200:
                    raise CollaboratorFailure(f"Failed to authenticate with IBM Cloud ({resp.status})")
                payload = await resp.json()

            lifetime = int(payload.get("expires_in") or DEFAULT_TOKEN_LIFETIME)
            self._token = payload["access_token"]
            self._token_expires_at = time.monotonic() + max(lifetime - TOKEN_REFRESH_MARGIN, 0)
            return self._token

    async def _complete(self, session: aiohttp.ClientSession, transcript: str) -> str:
        token = await self._get_token(session)
        body = {
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": [{"type": "text", "text": transcript}]},
            ],
            "project_id": self.project_id,
            "model_id": self.model_id,
            "frequency_penalty": 0,
            "max_tokens": 2000,
            "presence_penalty": 0,
            "temperature": 0,
            "top_p": 1,
        }
        headers = {
            "Accept": "application/json",
            "Content-Type": "application/json",
            "Authorization": f"Bearer {token}",
        }
        async with session.post(self.chat_url, json=body, headers=headers) as resp:
            if resp.status != 200:
                error_text = await resp.text()
                logger.error("Granite API error response: %s", error_text)
                raise CollaboratorFailure(f"Non-200 response from Granite API: {resp.status}")
            result = await resp.json()

        return result["choices"][0]["message"]["content"]
