import json
import logging
import os
import time
from typing import Any, Optional, Protocol, Tuple

import httpx

logger = logging.getLogger("uvicorn.error")

LLM_TIMEOUT_SECONDS = float(os.getenv("LLM_TIMEOUT_SECONDS", "8"))
LLM_CONNECT_TIMEOUT_SECONDS = float(os.getenv("LLM_CONNECT_TIMEOUT_SECONDS", "3"))
LLM_WRITE_TIMEOUT_SECONDS = float(os.getenv("LLM_WRITE_TIMEOUT_SECONDS", "5"))
LLM_POOL_TIMEOUT_SECONDS = float(os.getenv("LLM_POOL_TIMEOUT_SECONDS", "5"))
LLM_RETRY_COUNT = int(os.getenv("LLM_RETRY_COUNT", "1"))
LLM_RETRY_BACKOFF_SECONDS = float(os.getenv("LLM_RETRY_BACKOFF_SECONDS", "0.5"))
LLM_MAX_TOKENS_CLASSIFICATION = int(os.getenv("LLM_MAX_TOKENS_CLASSIFICATION", "400"))

SUPPORTED_PROVIDERS = {"openai", "gemini"}


def _http_timeout() -> httpx.Timeout:
    return httpx.Timeout(
        connect=LLM_CONNECT_TIMEOUT_SECONDS,
        read=LLM_TIMEOUT_SECONDS,
        write=LLM_WRITE_TIMEOUT_SECONDS,
        pool=LLM_POOL_TIMEOUT_SECONDS,
    )


class LLMRequestError(RuntimeError):
    def __init__(self, provider: str, model: str, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.provider = provider
        self.model = model
        self.status_code = status_code


def parse_llm_json(raw_text: str) -> dict[str, Any]:
    try:
        parsed = json.loads(raw_text)
        if isinstance(parsed, dict):
            return parsed
    except json.JSONDecodeError:
        pass

    # Models occasionally wrap the object in prose or code fences.
    start = raw_text.find("{")
    end = raw_text.rfind("}")
    if start != -1 and end != -1 and end > start:
        try:
            parsed = json.loads(raw_text[start : end + 1])
            if isinstance(parsed, dict):
                return parsed
        except json.JSONDecodeError:
            pass
    raise ValueError("Invalid JSON response from LLM")


def resolve_model_config() -> Tuple[str, str, str]:
    provider = os.getenv("DEFAULT_AI_PROVIDER", "").strip().lower()
    model = os.getenv("DEFAULT_CLASSIFIER_MODEL", "").strip() or os.getenv("DEFAULT_AI_MODEL", "").strip()
    if provider == "openai":
        key = os.getenv("OPENAI_API_KEY", "")
    elif provider == "gemini":
        key = os.getenv("GEMINI_API_KEY", "")
    else:
        key = ""
    if provider in SUPPORTED_PROVIDERS and model and key:
        return provider, model, key
    raise ValueError("AI config missing")


def _openai_request(model: str, api_key: str, prompt: str, system_instruction: str, max_output_tokens: int) -> str:
    payload = {
        "model": model,
        "temperature": 0.1,
        "response_format": {"type": "json_object"},
        "messages": [
            {"role": "system", "content": system_instruction or "Return strict JSON only."},
            {"role": "user", "content": prompt},
        ],
        "max_completion_tokens": max_output_tokens,
    }
    attempts = max(1, LLM_RETRY_COUNT + 1)
    for idx in range(attempts):
        try:
            response = httpx.post(
                "https://api.openai.com/v1/chat/completions",
                headers={"Authorization": f"Bearer {api_key}", "Content-Type": "application/json"},
                json=payload,
                timeout=_http_timeout(),
            )
            response.raise_for_status()
            data = response.json()
            text = str(data["choices"][0]["message"].get("content", "")).strip()
            if not text:
                raise LLMRequestError(provider="openai", model=model, message="OpenAI returned empty content")
            return text
        except httpx.ReadTimeout as exc:
            if idx < attempts - 1:
                time.sleep(LLM_RETRY_BACKOFF_SECONDS * (idx + 1))
                continue
            raise LLMRequestError(
                provider="openai",
                model=model,
                message="OpenAI request timed out while waiting for response.",
            ) from exc
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code if exc.response is not None else None
            detail = (exc.response.text or "").strip()[:220] if exc.response is not None else ""
            raise LLMRequestError(
                provider="openai",
                model=model,
                status_code=status,
                message=f"OpenAI request failed (status={status}): {detail or 'no response body'}",
            ) from exc
        except (httpx.HTTPError, KeyError, IndexError, TypeError, ValueError) as exc:
            if isinstance(exc, LLMRequestError):
                raise
            raise LLMRequestError(
                provider="openai", model=model, message=f"OpenAI request failed: {str(exc)[:220]}"
            ) from exc
    raise LLMRequestError(provider="openai", model=model, message="OpenAI request failed")


def _gemini_request(model: str, api_key: str, prompt: str, system_instruction: str, max_output_tokens: int) -> str:
    url = f"https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent?key={api_key}"
    body: dict[str, Any] = {
        "generationConfig": {
            "responseMimeType": "application/json",
            "temperature": 0.1,
            "maxOutputTokens": max_output_tokens,
        },
        "contents": [{"parts": [{"text": prompt}]}],
    }
    if system_instruction:
        body["systemInstruction"] = {"parts": [{"text": system_instruction}]}
    try:
        response = httpx.post(url, headers={"Content-Type": "application/json"}, json=body, timeout=_http_timeout())
        response.raise_for_status()
        data = response.json()
        return data["candidates"][0]["content"]["parts"][0]["text"]
    except httpx.HTTPStatusError as exc:
        status = exc.response.status_code if exc.response is not None else None
        detail = (exc.response.text or "").strip()[:220] if exc.response is not None else ""
        raise LLMRequestError(
            provider="gemini",
            model=model,
            status_code=status,
            message=f"Gemini request failed (status={status}): {detail or 'no response body'}",
        ) from exc
    except (httpx.HTTPError, KeyError, IndexError, TypeError, ValueError) as exc:
        raise LLMRequestError(provider="gemini", model=model, message=f"Gemini request failed: {str(exc)[:220]}") from exc


class LLMClient(Protocol):
    def generate_json(self, prompt: str, task_type: str = "classification", system_instruction: str = "") -> dict[str, Any]:
        ...


class RealLLMClient:
    def generate_json(self, prompt: str, task_type: str = "classification", system_instruction: str = "") -> dict[str, Any]:
        provider, model, api_key = resolve_model_config()
        if provider == "openai":
            raw = _openai_request(model, api_key, prompt, system_instruction, LLM_MAX_TOKENS_CLASSIFICATION)
        else:
            raw = _gemini_request(model, api_key, prompt, system_instruction, LLM_MAX_TOKENS_CLASSIFICATION)
        logger.debug("llm %s/%s answered task=%s", provider, model, task_type)
        return parse_llm_json(raw)


def get_llm_client() -> LLMClient:
    return RealLLMClient()
