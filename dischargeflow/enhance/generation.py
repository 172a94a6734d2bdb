from __future__ import annotations

"""
Generative text service adapters for discharge enhancement.

Design intent:
- Reuse the local MedGemma/llama-cpp execution pattern (chat_format and response_format compat fallbacks).
- Offer an OpenAI-compatible HTTP backend for hosted or LM Studio style endpoints.
- Surface every backend problem as `GenerationError` so the pipeline can absorb it.
"""

import asyncio
import json
import logging
import os
import re
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional, Protocol

import httpx

from dischargeflow.internal_core.config import DischargeConfig
from dischargeflow.utils.model_paths import resolve_medgemma_gguf_path

logger = logging.getLogger(__name__)

_FENCED_BLOCK_RE = re.compile(r"```(?:json)?\s*([\s\S]*?)```", flags=re.IGNORECASE)


class GenerationError(RuntimeError):
    """Raised when the generative backend fails or returns an unusable payload."""


class TextGenerator(Protocol):
    engine: str
    model_name: str

    async def complete(self, *, system: str, user: str, temperature: float, max_tokens: int) -> str: ...


class LlamaCppGenerator:
    """Local GGUF model via llama_cpp; blocking inference runs in a worker thread."""

    engine = "llama_cpp"

    def __init__(
        self,
        *,
        model_path: str | None = None,
        chat_format: str = "gemma",
        n_ctx: int = 8192,
        n_gpu_layers: int = -1,
        n_threads: int | None = None,
        debug_log_path: str | None = None,
    ) -> None:
        self.model_path = resolve_medgemma_gguf_path(model_path).strip()
        self.model_name = Path(self.model_path).name if self.model_path else ""
        self.chat_format = chat_format
        self.n_ctx = int(n_ctx)
        self.n_gpu_layers = int(n_gpu_layers)
        self.n_threads = n_threads
        self.debug_log_path = debug_log_path
        self._llm: Any = None
        self._chat_format_applied: bool | None = None
        self._response_format_supported: bool | None = None
        # llama_cpp contexts are not safe to share across concurrent calls.
        self._lock = threading.Lock()
        self._abandoned = False

    def _load(self) -> Any:
        if self._llm is not None:
            return self._llm
        if not self.model_path:
            raise GenerationError(
                "MedGemma model path is missing. Set DISCHARGE_LLM_MODEL_PATH, "
                "or place a MedGemma GGUF under local model defaults."
            )
        if not os.path.exists(self.model_path):
            raise GenerationError(f"MedGemma model file not found: {self.model_path}")
        try:
            from llama_cpp import Llama  # type: ignore
        except Exception as exc:
            raise GenerationError(f"llama_cpp import failed: {exc}") from exc

        llm_kwargs: dict[str, Any] = {
            "model_path": self.model_path,
            "n_ctx": self.n_ctx,
            "n_gpu_layers": self.n_gpu_layers,
            "verbose": False,
            "chat_format": self.chat_format,
        }
        if self.n_threads is not None:
            llm_kwargs["n_threads"] = int(self.n_threads)
        try:
            self._llm = Llama(**llm_kwargs)
            self._chat_format_applied = True
        except TypeError as exc:
            if "chat_format" not in str(exc):
                raise
            llm_kwargs.pop("chat_format", None)
            self._llm = Llama(**llm_kwargs)
            self._chat_format_applied = False
        return self._llm

    def _complete_blocking(self, system: str, user: str, temperature: float, max_tokens: int) -> str:
        with self._lock:
            llm = self._load()
            completion_kwargs: dict[str, Any] = {
                "messages": [
                    {"role": "system", "content": system},
                    {"role": "user", "content": user},
                ],
                "temperature": float(temperature),
                "top_p": 1.0,
                "max_tokens": int(max_tokens),
            }
            if self._response_format_supported is not False:
                completion_kwargs["response_format"] = {"type": "json_object"}
            try:
                resp = llm.create_chat_completion(**completion_kwargs)
                if "response_format" in completion_kwargs:
                    self._response_format_supported = True
            except TypeError as exc:
                if "response_format" in str(exc) and "response_format" in completion_kwargs:
                    completion_kwargs.pop("response_format", None)
                    resp = llm.create_chat_completion(**completion_kwargs)
                    self._response_format_supported = False
                else:
                    raise
            try:
                return str(resp["choices"][0]["message"]["content"] or "").strip()
            except (KeyError, IndexError, TypeError) as exc:
                raise GenerationError(f"Unexpected llama_cpp response shape: {exc}") from exc

    async def complete(self, *, system: str, user: str, temperature: float, max_tokens: int) -> str:
        append_debug_log(
            self.debug_log_path,
            stage="prompt_input",
            raw=user,
            metadata={"engine": self.engine, "model": self.model_name, "chat_format": self.chat_format},
        )
        if self._abandoned and self._lock.locked():
            raise GenerationError("local model still busy with an abandoned request")
        self._abandoned = False
        try:
            raw = await asyncio.to_thread(self._complete_blocking, system, user, temperature, max_tokens)
        except asyncio.CancelledError:
            # The worker thread cannot be interrupted; it holds the model until inference ends.
            self._abandoned = True
            logger.warning("llama_cpp call abandoned by caller; model stays busy until the running inference ends")
            raise
        append_debug_log(
            self.debug_log_path,
            stage="raw_output",
            raw=raw,
            metadata={
                "engine": self.engine,
                "chat_format_applied": self._chat_format_applied,
                "response_format_supported": self._response_format_supported,
            },
        )
        return raw


class OpenAICompatibleGenerator:
    """`POST {base_url}/chat/completions` against an OpenAI-style endpoint."""

    engine = "openai_compatible"

    def __init__(
        self,
        *,
        base_url: str,
        model: str,
        api_key: str = "",
        timeout_seconds: float = 60.0,
        debug_log_path: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if not base_url:
            raise ValueError("base_url is required for the OpenAI-compatible generator.")
        self.base_url = base_url.rstrip("/")
        self.model_name = model
        self.api_key = api_key
        self.timeout_seconds = float(timeout_seconds)
        self.debug_log_path = debug_log_path
        self._transport = transport

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    async def complete(self, *, system: str, user: str, temperature: float, max_tokens: int) -> str:
        payload: dict[str, Any] = {
            "messages": [
                {"role": "system", "content": system},
                {"role": "user", "content": user},
            ],
            "temperature": float(temperature),
            "max_tokens": int(max_tokens),
        }
        if self.model_name:
            payload["model"] = self.model_name

        append_debug_log(
            self.debug_log_path,
            stage="prompt_input",
            raw=user,
            metadata={"engine": self.engine, "model": self.model_name, "base_url": self.base_url},
        )
        timeout = httpx.Timeout(self.timeout_seconds, connect=min(10.0, self.timeout_seconds))
        try:
            async with httpx.AsyncClient(timeout=timeout, transport=self._transport) as client:
                r = await client.post(f"{self.base_url}/chat/completions", json=payload, headers=self._headers())
        except httpx.TimeoutException as exc:
            raise GenerationError(f"Generative service timed out: {exc}") from exc
        except httpx.HTTPError as exc:
            raise GenerationError(f"Generative service HTTP error: {exc}") from exc

        if r.status_code >= 400:
            raise GenerationError(f"Generative service error {r.status_code}: {r.text[:500]}")
        try:
            data = r.json()
            content = str(data["choices"][0]["message"]["content"] or "").strip()
        except (ValueError, KeyError, IndexError, TypeError) as exc:
            raise GenerationError(f"Unexpected generative service response: {exc}") from exc

        append_debug_log(
            self.debug_log_path,
            stage="raw_output",
            raw=content,
            metadata={"engine": self.engine, "status_code": r.status_code},
        )
        return content


def build_generator(config: DischargeConfig) -> Optional[TextGenerator]:
    """Return the configured generator, or None when generation is disabled."""

    backend = config.DISCHARGE_LLM_BACKEND
    debug_log_path = resolve_debug_log_path(config.DISCHARGE_LLM_DEBUG_LOG)
    if backend == "llama_cpp":
        return LlamaCppGenerator(
            model_path=config.DISCHARGE_LLM_MODEL_PATH or None,
            chat_format=config.DISCHARGE_LLM_CHAT_FORMAT,
            n_ctx=config.DISCHARGE_LLM_N_CTX,
            n_gpu_layers=config.DISCHARGE_LLM_N_GPU_LAYERS,
            n_threads=config.DISCHARGE_LLM_N_THREADS,
            debug_log_path=debug_log_path,
        )
    if backend == "openai_compatible":
        if not config.DISCHARGE_LLM_BASE_URL:
            logger.warning("DISCHARGE_LLM_BACKEND=openai_compatible but DISCHARGE_LLM_BASE_URL is empty; generation disabled")
            return None
        return OpenAICompatibleGenerator(
            base_url=config.DISCHARGE_LLM_BASE_URL,
            model=config.DISCHARGE_LLM_MODEL,
            api_key=config.DISCHARGE_LLM_API_KEY,
            timeout_seconds=config.DISCHARGE_LLM_TIMEOUT_SECONDS,
            debug_log_path=debug_log_path,
        )
    return None


def parse_generated_json(raw: str) -> dict[str, Any] | None:
    """First fenced code block if present, else the whole text, else the first balanced object."""

    if not raw:
        return None
    text = raw.strip()
    fenced = _FENCED_BLOCK_RE.search(text)
    if fenced:
        text = fenced.group(1).strip()
    try:
        data = json.loads(text)
        if isinstance(data, dict):
            return data
    except ValueError:
        pass

    extracted = _extract_first_json_object(text)
    if not extracted:
        return None
    try:
        data = json.loads(extracted)
    except ValueError:
        return None
    return data if isinstance(data, dict) else None


def _extract_first_json_object(text: str) -> str:
    start = text.find("{")
    if start < 0:
        return ""
    depth = 0
    in_str = False
    escape = False
    for i, ch in enumerate(text[start:], start=start):
        if in_str:
            if escape:
                escape = False
            elif ch == "\\":
                escape = True
            elif ch == '"':
                in_str = False
            continue
        if ch == '"':
            in_str = True
            continue
        if ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return text[start : i + 1]
    return ""


def resolve_debug_log_path(raw: str | None) -> str | None:
    raw = (raw or "").strip()
    if not raw:
        return None
    if raw.lower() in {"1", "true", "on", "yes"}:
        return "/tmp/dischargeflow_llm_raw.log"
    return raw


def append_debug_log(path: str | None, *, stage: str, raw: str, metadata: dict[str, Any] | None = None) -> None:
    if not path:
        return
    try:
        target = Path(path).expanduser()
        target.parent.mkdir(parents=True, exist_ok=True)
        stamp = datetime.now(timezone.utc).isoformat()
        meta = json.dumps(metadata or {}, ensure_ascii=True)
        payload = (
            f"[{stamp}] stage={stage} meta={meta}\n"
            "-----BEGIN LLM RAW-----\n"
            f"{raw}\n"
            "-----END LLM RAW-----\n"
        )
        with target.open("a", encoding="utf-8") as f:
            f.write(payload)
    except OSError:
        # Debug logging must never break the enhancement pipeline.
        return
