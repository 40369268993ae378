"""LLM client initialization for the generative reasoning service.

Clients are built from environment variables. Every provider SDK is optional;
a missing SDK or key simply leaves the pipeline in deterministic mode.
"""

import os
from typing import Any, Optional

from .logging import get_logger
from .rate_limiter import RateLimitError, get_rate_limiter

logger = get_logger(__name__)

DEFAULT_MODELS = {
    "openai": "gpt-4o-mini",
    "anthropic": "claude-3-5-haiku-latest",
    "gemini": "gemini-1.5-flash",
}


class LLMClientError(Exception):
    """Raised when a call to the LLM provider fails."""

    pass


class LLMClientWrapper:
    """Unified, rate-limited ``complete(prompt) -> str`` over provider SDKs."""

    def __init__(self, client: Any, provider: str):
        self.client = client
        self.provider = provider
        self.rate_limiter = get_rate_limiter(provider=provider)
        logger.debug(f"LLMClientWrapper initialized for provider: {provider}")

    def complete(self, prompt: str, **kwargs) -> str:
        """Send a single-turn prompt and return the response text.

        Args:
            prompt: Input prompt string
            **kwargs: ``model``, ``temperature``, ``max_tokens``, ``rate_limit_timeout``

        Returns:
            Raw response text (untrusted)

        Raises:
            LLMClientError: If rate limiting times out or the provider call fails
        """
        timeout = kwargs.get("rate_limit_timeout", 300.0)
        try:
            if not self.rate_limiter.acquire(wait=True, timeout=timeout):
                raise LLMClientError(f"Rate limit wait exceeded {timeout}s")
        except RateLimitError as e:
            raise LLMClientError(f"LLM rate limit exceeded: {e}") from e

        model = kwargs.get("model") or DEFAULT_MODELS.get(self.provider)
        temperature = kwargs.get("temperature", 0.2)

        try:
            if self.provider == "openai":
                response = self.client.chat.completions.create(
                    model=model,
                    messages=[{"role": "user", "content": prompt}],
                    temperature=temperature,
                )
                return response.choices[0].message.content

            if self.provider == "anthropic":
                response = self.client.messages.create(
                    model=model,
                    max_tokens=kwargs.get("max_tokens", 2048),
                    temperature=temperature,
                    messages=[{"role": "user", "content": prompt}],
                )
                return response.content[0].text

            if self.provider == "gemini":
                response = self.client.GenerativeModel(model).generate_content(prompt)
                return response.text
        except (KeyError, AttributeError, IndexError) as e:
            raise LLMClientError(
                f"LLM API returned unexpected response format for provider {self.provider}: {e}"
            ) from e
        except Exception as e:
            raise LLMClientError(f"LLM API error for provider {self.provider}: {e}") from e

        raise LLMClientError(f"Unknown provider: {self.provider}")


def _init_openai() -> Optional[LLMClientWrapper]:
    api_key = os.getenv("OPENAI_API_KEY")
    if not api_key:
        return None
    try:
        import openai
    except ImportError:
        logger.warning(
            "OPENAI_API_KEY found but openai package not installed. "
            "Install with: pip install openai"
        )
        return None
    logger.info("Initializing OpenAI client from OPENAI_API_KEY")
    return LLMClientWrapper(openai.OpenAI(api_key=api_key), "openai")


def _init_anthropic() -> Optional[LLMClientWrapper]:
    api_key = os.getenv("ANTHROPIC_API_KEY")
    if not api_key:
        return None
    try:
        import anthropic
    except ImportError:
        logger.warning(
            "ANTHROPIC_API_KEY found but anthropic package not installed. "
            "Install with: pip install anthropic"
        )
        return None
    logger.info("Initializing Anthropic client from ANTHROPIC_API_KEY")
    return LLMClientWrapper(anthropic.Anthropic(api_key=api_key), "anthropic")


def _init_gemini() -> Optional[LLMClientWrapper]:
    api_key = os.getenv("GEMINI_API_KEY")
    if not api_key:
        return None
    try:
        import google.generativeai as genai
    except ImportError:
        logger.warning(
            "GEMINI_API_KEY found but google-generativeai package not installed. "
            "Install with: pip install google-generativeai"
        )
        return None
    logger.info("Initializing Gemini client from GEMINI_API_KEY")
    genai.configure(api_key=api_key)
    return LLMClientWrapper(genai, "gemini")


_INITIALIZERS = {
    "openai": _init_openai,
    "anthropic": _init_anthropic,
    "gemini": _init_gemini,
}


def get_llm_client(preferred_provider: Optional[str] = None) -> Optional[LLMClientWrapper]:
    """Get an LLM client from environment variables.

    If ``preferred_provider`` is given only that provider is attempted,
    otherwise OpenAI, Anthropic and Gemini are tried in that order.

    Returns:
        Wrapped client, or None when no provider is available
    """
    if preferred_provider:
        provider = preferred_provider.lower()
        initializer = _INITIALIZERS.get(provider)
        if initializer is None:
            logger.error(f"Unknown LLM provider requested: {preferred_provider}")
            return None
        client = initializer()
        if client is None:
            logger.error(
                f"Requested provider '{provider}' but its API key is missing or the SDK is unavailable."
            )
        return client

    for initializer in _INITIALIZERS.values():
        client = initializer()
        if client is not None:
            return client

    logger.debug(
        "No LLM API key found in environment variables. "
        "Field mappings will carry deterministic rationales only."
    )
    return None
