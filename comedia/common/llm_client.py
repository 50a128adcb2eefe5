"""
Text-generation client for the extraction step.

One LLMClient talks to one provider (Anthropic, OpenAI or Google Gemini).
SDKs are imported lazily so a missing package only disables that provider.
Every failure of a call, including an unavailable client, is raised as
UpstreamServiceError; the caller decides whether to try another provider.
"""

from __future__ import annotations

import logging
from typing import Optional

from .errors import UpstreamServiceError

logger = logging.getLogger("comedia.common.llm_client")

SUPPORTED_PROVIDERS = ("anthropic", "openai", "google")

# Gemini sampling used for extraction
GOOGLE_GENERATION_CONFIG = {"temperature": 0.3, "top_p": 0.8, "top_k": 40}


class LLMClient:
    """Single-provider client with a per-call timeout and no retries."""

    def __init__(
        self,
        provider: str = "google",
        model: str = "",
        anthropic_api_key: Optional[str] = None,
        openai_api_key: Optional[str] = None,
        google_api_key: Optional[str] = None,
        timeout: float = 30.0,
        max_tokens: int = 2048,
    ) -> None:
        self.provider = (provider or "google").lower()
        self.model = model
        self.timeout = timeout
        self.max_tokens = max_tokens
        self._client = None
        self._google_model = None

        if self.provider not in SUPPORTED_PROVIDERS:
            logger.warning("Unsupported LLM provider: %s", self.provider)
            return

        api_key = {
            "anthropic": anthropic_api_key,
            "openai": openai_api_key,
            "google": google_api_key,
        }[self.provider]
        if not api_key:
            logger.info("%s API key not provided, LLM client unavailable", self.provider)
            return

        try:
            self._client = getattr(self, f"_connect_{self.provider}")(api_key)
        except ImportError as e:
            logger.warning("SDK for %s not installed: %s", self.provider, e)
        except Exception as e:
            logger.warning("Failed to initialize %s client: %s", self.provider, e)

    @staticmethod
    def _connect_anthropic(api_key: str):
        import anthropic

        return anthropic.Anthropic(api_key=api_key)

    @staticmethod
    def _connect_openai(api_key: str):
        from openai import OpenAI

        return OpenAI(api_key=api_key)

    @staticmethod
    def _connect_google(api_key: str):
        import google.generativeai as genai

        genai.configure(api_key=api_key)
        return genai  # the module; the model is built on first use

    @property
    def is_available(self) -> bool:
        return self._client is not None

    def generate(
        self,
        prompt: str,
        *,
        max_tokens: Optional[int] = None,
        timeout: Optional[float] = None,
    ) -> str:
        """
        Send one prompt and return the stripped response text.

        Raises:
            UpstreamServiceError: client unavailable, SDK error or timeout
        """
        if not self.is_available:
            raise UpstreamServiceError(
                f"LLM client is not available ({self.provider})", provider=self.provider
            )

        try:
            return getattr(self, f"_generate_{self.provider}")(
                prompt,
                max_tokens or self.max_tokens,
                timeout or self.timeout,
            )
        except Exception as e:
            raise UpstreamServiceError(
                f"{self.provider} generation failed: {e}", provider=self.provider
            ) from e

    def _generate_anthropic(self, prompt: str, max_tokens: int, timeout: float) -> str:
        response = self._client.messages.create(
            model=self.model,
            max_tokens=max_tokens,
            messages=[{"role": "user", "content": prompt}],
            timeout=timeout,
        )
        return response.content[0].text.strip()

    def _generate_openai(self, prompt: str, max_tokens: int, timeout: float) -> str:
        response = self._client.chat.completions.create(
            model=self.model,
            max_tokens=max_tokens,
            messages=[{"role": "user", "content": prompt}],
            timeout=timeout,
        )
        return (response.choices[0].message.content or "").strip()

    def _generate_google(self, prompt: str, max_tokens: int, timeout: float) -> str:
        if self._google_model is None:
            self._google_model = self._client.GenerativeModel(model_name=self.model)
        response = self._google_model.generate_content(
            prompt,
            generation_config={"max_output_tokens": max_tokens, **GOOGLE_GENERATION_CONFIG},
            request_options={"timeout": timeout},
        )
        return response.text.strip()
