from __future__ import annotations

import json
import time
import urllib.error
import urllib.request
from typing import Dict, List

from eprocurement.errors import TransientIntegrationError
from eprocurement.observability import observe_ai_request


class AiClientError(RuntimeError):
    pass


class ChatCompletionClient:
    """OpenAI-compatible chat completions client (Groq by default)."""

    def __init__(
        self,
        *,
        base_url: str,
        api_key: str | None,
        model: str,
        temperature: float = 0.7,
        max_tokens: int = 2000,
        timeout_seconds: int = 30,
        retry_attempts: int = 2,
        retry_backoff_ms: int = 300,
        enabled: bool = True,
    ) -> None:
        self.base_url = (base_url or "").rstrip("/")
        self.api_key = (api_key or "").strip() or None
        self.model = model
        self.temperature = float(temperature)
        self.max_tokens = int(max_tokens)
        self.timeout_seconds = int(timeout_seconds)
        self.retry_attempts = max(1, int(retry_attempts))
        self.retry_backoff_ms = max(0, int(retry_backoff_ms))
        self._enabled = bool(enabled)

    @classmethod
    def from_config(cls, config) -> "ChatCompletionClient":
        return cls(
            base_url=config.get("AI_BASE_URL") or "",
            api_key=config.get("AI_API_KEY"),
            model=config.get("AI_MODEL") or "llama-3.3-70b-versatile",
            temperature=config.get("AI_TEMPERATURE", 0.7),
            max_tokens=config.get("AI_MAX_TOKENS", 2000),
            timeout_seconds=config.get("AI_TIMEOUT_SECONDS", 30),
            retry_attempts=config.get("AI_RETRY_ATTEMPTS", 2),
            retry_backoff_ms=config.get("AI_RETRY_BACKOFF_MS", 300),
            enabled=config.get("AI_ANALYSIS_ENABLED", True),
        )

    @property
    def enabled(self) -> bool:
        return self._enabled and bool(self.api_key) and bool(self.base_url)

    def complete(
        self,
        messages: List[Dict[str, str]],
        *,
        operation: str = "chat",
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> str:
        started = time.perf_counter()
        try:
            body = self._request_json(
                {
                    "model": self.model,
                    "messages": messages,
                    "temperature": self.temperature if temperature is None else float(temperature),
                    "max_tokens": self.max_tokens if max_tokens is None else int(max_tokens),
                }
            )
            choices = body.get("choices") if isinstance(body, dict) else None
            if not choices:
                raise AiClientError("Respuesta de IA sin choices.")
            content = ((choices[0] or {}).get("message") or {}).get("content")
            if not isinstance(content, str):
                raise AiClientError("Respuesta de IA sin contenido.")
        except AiClientError as exc:
            observe_ai_request(operation, "error", (time.perf_counter() - started) * 1000.0)
            raise TransientIntegrationError(
                code="ai_unavailable",
                message_key="ai_unavailable",
                http_status=502,
                details=str(exc),
            ) from exc
        observe_ai_request(operation, "ok", (time.perf_counter() - started) * 1000.0)
        return content

    def _request_json(self, payload: dict) -> object:
        url = f"{self.base_url}/chat/completions"
        headers = {
            "Accept": "application/json",
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.api_key}",
        }
        data = json.dumps(payload, separators=(",", ":"), ensure_ascii=True).encode("utf-8")
        request = urllib.request.Request(url, data=data, headers=headers, method="POST")

        attempts = self.retry_attempts
        for attempt in range(attempts):
            try:
                with urllib.request.urlopen(request, timeout=self.timeout_seconds) as response:
                    body = response.read().decode("utf-8")
                    if not body:
                        return {}
                    return json.loads(body)
            except urllib.error.HTTPError as exc:  # noqa: PERF203
                error_body = exc.read().decode("utf-8") if exc.fp else ""
                if attempt < attempts - 1 and exc.code >= 500:
                    time.sleep(self.retry_backoff_ms / 1000)
                    continue
                raise AiClientError(f"AI HTTP {exc.code}: {error_body[:200]}") from exc
            except urllib.error.URLError as exc:
                if attempt < attempts - 1:
                    time.sleep(self.retry_backoff_ms / 1000)
                    continue
                raise AiClientError(f"Error de conexion con IA: {exc.reason}") from exc
            except json.JSONDecodeError as exc:
                raise AiClientError("IA retorno JSON invalido.") from exc

        raise AiClientError("Falla al llamar a la IA.")
