"""
Thin client for the hosted language model.

Two providers are supported, selected by configuration:
- Gemini REST API (default): POST {base}/models/{model}:generateContent
- any OpenAI-compatible API: POST {OPENAI_API_BASE}/chat/completions

Both return the model's raw text. No validation of the text shape happens here;
callers decide whether to parse it as JSON.
"""

import asyncio
import logging
from typing import Dict, List, Optional

import httpx
from fastapi import HTTPException

from config import Settings, settings as default_settings
from prompts import RELAY_INSTRUCTION

logger = logging.getLogger(__name__)


class AIClient:
    def __init__(self, settings: Optional[Settings] = None, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.settings = settings or default_settings
        self._transport = transport

    @property
    def provider(self) -> str:
        if self.settings.use_openai_api and self.settings.openai_api_base:
            return "openai"
        return "gemini"

    async def generate(
        self,
        messages: List[Dict[str, str]],
        max_tokens: int = 8000,
        timeout: Optional[float] = None,
    ) -> str:
        """
        Send role-tagged turns to the model and return its text.

        Raises HTTPException 504 when ``timeout`` seconds pass, 503 when the provider
        is unreachable and 502 for any non-2xx answer.
        """
        timeout = timeout or self.settings.ai_timeout_seconds
        try:
            return await asyncio.wait_for(self._generate(messages, max_tokens, timeout), timeout=timeout)
        except asyncio.TimeoutError:
            raise HTTPException(status_code=504, detail=f"AI request timed out after {timeout:g} seconds")

    async def generate_result(self, prompt: str, timeout: Optional[float] = None) -> str:
        """Relay helper: ask for a JSON reply of the form {text, fileTree?}."""
        messages = [
            {"role": "system", "content": RELAY_INSTRUCTION},
            {"role": "user", "content": prompt},
        ]
        return await self.generate(messages, max_tokens=8000, timeout=timeout)

    async def _generate(self, messages: List[Dict[str, str]], max_tokens: int, timeout: float) -> str:
        try:
            async with httpx.AsyncClient(timeout=timeout, transport=self._transport) as client:
                if self.provider == "openai":
                    return await self._openai(client, messages, max_tokens)
                return await self._gemini(client, messages, max_tokens)
        except httpx.ConnectError:
            raise HTTPException(status_code=503, detail="AI provider is unreachable")
        except httpx.TimeoutException:
            raise HTTPException(status_code=504, detail=f"AI request timed out after {timeout:g} seconds")
        except httpx.HTTPError as e:
            raise HTTPException(status_code=502, detail=f"AI request failed: {e}")

    async def _gemini(self, client: httpx.AsyncClient, messages: List[Dict[str, str]], max_tokens: int) -> str:
        if not self.settings.gemini_api_key:
            raise HTTPException(status_code=503, detail="GEMINI_API_KEY is not configured")

        system_parts = [{"text": m["content"]} for m in messages if m["role"] == "system"]
        contents = [
            {
                "role": "model" if m["role"] == "assistant" else "user",
                "parts": [{"text": m["content"]}],
            }
            for m in messages
            if m["role"] != "system"
        ]
        payload = {
            "contents": contents,
            "generationConfig": {"maxOutputTokens": max_tokens},
        }
        if system_parts:
            payload["systemInstruction"] = {"parts": system_parts}

        url = f"{self.settings.gemini_api_base}/models/{self.settings.gemini_model}:generateContent"
        response = await client.post(url, json=payload, params={"key": self.settings.gemini_api_key})
        if response.status_code != 200:
            logger.error("Gemini returned %s: %s", response.status_code, response.text[:500])
            raise HTTPException(status_code=502, detail=f"AI provider returned {response.status_code}")

        data = response.json()
        candidates = data.get("candidates") or []
        if not candidates:
            return ""
        parts = candidates[0].get("content", {}).get("parts", [])
        return "".join(part.get("text", "") for part in parts)

    async def _openai(self, client: httpx.AsyncClient, messages: List[Dict[str, str]], max_tokens: int) -> str:
        headers = {}
        if self.settings.openai_api_key:
            headers["Authorization"] = f"Bearer {self.settings.openai_api_key}"
        payload = {
            "model": self.settings.openai_api_model,
            "messages": messages,
            "max_tokens": max_tokens,
            "stream": False,
        }

        response = await client.post(f"{self.settings.openai_api_base}/chat/completions", json=payload, headers=headers)
        if response.status_code != 200:
            logger.error("OpenAI-compatible API returned %s: %s", response.status_code, response.text[:500])
            raise HTTPException(status_code=502, detail=f"AI provider returned {response.status_code}")

        data = response.json()
        if "choices" in data and len(data["choices"]) > 0:
            return data["choices"][0].get("message", {}).get("content") or ""
        return ""
