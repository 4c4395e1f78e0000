"""LLM wrapper used to generate R code, with multi-provider support.

Supports:
- OpenAI (default)
- Anthropic (Claude)
- Ollama (local)

Provider selection via LLM_PROVIDER environment variable.
"""

import logging
import os
import time
from typing import Callable, List, Optional

logger = logging.getLogger(__name__)

# Provider constants
PROVIDER_OPENAI = "openai"
PROVIDER_ANTHROPIC = "anthropic"
PROVIDER_OLLAMA = "ollama"

DEFAULT_TEMPERATURE = 0.7


def _flag(name: str) -> bool:
    return os.getenv(name, "false").lower() in ("1", "true", "yes")


def _temperature() -> float:
    try:
        return float(os.getenv("LLM_TEMPERATURE", str(DEFAULT_TEMPERATURE)))
    except ValueError:
        return DEFAULT_TEMPERATURE


def _mock_response(prompt: str) -> str:
    """Deterministic R code for local testing without a provider."""
    lower = prompt.lower()
    if "regression" in lower:
        return "```r\nnums <- df[sapply(df, is.numeric)]\nfit <- lm(nums[[2]] ~ nums[[1]])\nsummary(fit)\n```"
    if "plot" in lower or "chart" in lower or "histogram" in lower:
        return "```r\nnums <- df[sapply(df, is.numeric)]\nhist(nums[[1]], main = names(nums)[1])\n```"
    if "correlation" in lower:
        return "```r\nround(cor(df[sapply(df, is.numeric)], use = 'complete.obs'), 2)\n```"
    return "```r\nsummary(df)\n```"


def _message_list(prompt: str, system_prompt: Optional[str], messages: Optional[List[dict]],
                  include_system: bool = True) -> List[dict]:
    message_list = []
    if system_prompt and include_system:
        message_list.append({"role": "system", "content": system_prompt})
    for msg in messages or []:
        role = msg.get("role", "user")
        if role == "system" and not include_system:
            continue
        message_list.append({"role": role, "content": msg.get("content", "")})
    message_list.append({"role": "user", "content": prompt})
    return message_list


def _with_retries(send: Callable[[], str], provider: str, max_retries: int) -> str:
    backoff = 1.0
    last_exception = None

    for attempt in range(max_retries + 1):
        try:
            return send()
        except Exception as e:
            last_exception = e
            logger.warning(f"[LLM] {provider} attempt {attempt + 1}/{max_retries + 1} failed: {type(e).__name__}: {e}")
            if attempt < max_retries:
                time.sleep(backoff)
                backoff *= 2

    raise last_exception or RuntimeError("Max retries exceeded")


def _call_openai(prompt: str, system_prompt: Optional[str], messages: Optional[List[dict]],
                 max_retries: int) -> str:
    try:
        from openai import OpenAI
    except ImportError:
        raise ImportError("OpenAI package not installed. Run: pip install openai")

    api_key = os.getenv("OPENAI_API_KEY")
    if not api_key:
        raise ValueError("OPENAI_API_KEY not set")

    client = OpenAI(api_key=api_key)
    message_list = _message_list(prompt, system_prompt, messages)

    def send() -> str:
        response = client.chat.completions.create(
            model=os.getenv("OPENAI_MODEL", "gpt-4o"),
            messages=message_list,
            temperature=_temperature(),
        )
        return response.choices[0].message.content

    return _with_retries(send, PROVIDER_OPENAI, max_retries)


def _call_anthropic(prompt: str, system_prompt: Optional[str], messages: Optional[List[dict]],
                    max_retries: int) -> str:
    try:
        from anthropic import Anthropic
    except ImportError:
        raise ImportError("Anthropic package not installed. Run: pip install anthropic")

    api_key = os.getenv("ANTHROPIC_API_KEY")
    if not api_key:
        raise ValueError("ANTHROPIC_API_KEY not set")

    client = Anthropic(api_key=api_key)
    # Anthropic takes the system prompt separately
    message_list = _message_list(prompt, system_prompt, messages, include_system=False)

    def send() -> str:
        response = client.messages.create(
            model=os.getenv("ANTHROPIC_MODEL", "claude-sonnet-4-20250514"),
            max_tokens=int(os.getenv("ANTHROPIC_MAX_TOKENS", "4096")),
            temperature=_temperature(),
            system=system_prompt or "",
            messages=message_list,
        )
        return response.content[0].text

    return _with_retries(send, PROVIDER_ANTHROPIC, max_retries)


def _call_ollama(prompt: str, system_prompt: Optional[str], messages: Optional[List[dict]],
                 max_retries: int) -> str:
    try:
        from ollama import chat
    except ImportError:
        raise ImportError("Ollama package not installed. Run: pip install ollama")

    message_list = _message_list(prompt, system_prompt, messages)
    model = os.getenv("OLLAMA_MODEL", "qwen3:4b")
    timeout = float(os.getenv("LLM_TIMEOUT", "120"))
    logger.debug(f"[LLM] Ollama: model '{model}', {len(message_list)} messages, prompt {len(prompt)} chars")

    def send() -> str:
        started = time.time()
        # Streaming avoids empty replies from some models on long generations
        stream = chat(model=model, messages=message_list, stream=True,
                      options={"temperature": _temperature()})
        chunks = []
        for chunk in stream:
            if time.time() - started > timeout:
                raise TimeoutError(f"Ollama generation timed out after {timeout}s")
            content = chunk.get("message", {}).get("content", "")
            if content:
                chunks.append(content)
        logger.debug(f"[LLM] Ollama: response in {time.time() - started:.2f}s")
        return "".join(chunks)

    return _with_retries(send, PROVIDER_OLLAMA, max_retries)


def call_llm(
    prompt: str,
    system_prompt: Optional[str] = None,
    messages: Optional[List[dict]] = None,
    *,
    max_retries: int = 2
) -> str:
    """
    Call the LLM with a prompt and optional system prompt.

    Provider is selected via LLM_PROVIDER environment variable:
    - "openai" (default): Uses OpenAI API
    - "anthropic": Uses Anthropic (Claude) API
    - "ollama": Uses local Ollama server

    Environment Variables:
    - LLM_PROVIDER: Provider selection (openai, anthropic, ollama)
    - MOCK_LLM: Set to "true" to return canned R code
    - LLM_TEMPERATURE: Temperature for generation (default 0.7)

    Provider-specific variables:
    - OpenAI: OPENAI_API_KEY, OPENAI_MODEL (default: gpt-4o)
    - Anthropic: ANTHROPIC_API_KEY, ANTHROPIC_MODEL (default: claude-sonnet-4-20250514)
    - Ollama: OLLAMA_MODEL (default: qwen3:4b)

    Raises:
        ValueError: for an unknown provider or a missing API key.
    """
    if _flag("MOCK_LLM"):
        logger.debug("[LLM] Mock mode enabled, returning canned R code")
        return _mock_response(prompt)

    provider = os.getenv("LLM_PROVIDER", PROVIDER_OPENAI).lower().strip()
    logger.debug(f"[LLM] Provider: {provider}, prompt preview: {prompt[:100]}")

    if provider == PROVIDER_OPENAI:
        return _call_openai(prompt, system_prompt, messages, max_retries)
    elif provider == PROVIDER_ANTHROPIC:
        return _call_anthropic(prompt, system_prompt, messages, max_retries)
    elif provider == PROVIDER_OLLAMA:
        return _call_ollama(prompt, system_prompt, messages, max_retries)
    raise ValueError(f"Unknown LLM provider: {provider}. Use 'openai', 'anthropic', or 'ollama'.")


def get_provider_info() -> dict:
    """Current LLM provider configuration (no secrets)."""
    provider = os.getenv("LLM_PROVIDER", PROVIDER_OPENAI).lower().strip()

    info = {
        "provider": provider,
        "mock_mode": _flag("MOCK_LLM"),
        "temperature": _temperature(),
    }

    if provider == PROVIDER_OPENAI:
        info["model"] = os.getenv("OPENAI_MODEL", "gpt-4o")
        info["api_key_set"] = bool(os.getenv("OPENAI_API_KEY"))
    elif provider == PROVIDER_ANTHROPIC:
        info["model"] = os.getenv("ANTHROPIC_MODEL", "claude-sonnet-4-20250514")
        info["api_key_set"] = bool(os.getenv("ANTHROPIC_API_KEY"))
    elif provider == PROVIDER_OLLAMA:
        info["model"] = os.getenv("OLLAMA_MODEL", "qwen3:4b")
        info["api_key_set"] = True  # Ollama doesn't need an API key

    return info
