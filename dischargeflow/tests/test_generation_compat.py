import asyncio
import json
import sys
import threading
from types import SimpleNamespace

import httpx
import pytest

from dischargeflow.enhance.generation import (
    GenerationError,
    LlamaCppGenerator,
    OpenAICompatibleGenerator,
    append_debug_log,
    build_generator,
    parse_generated_json,
)
from dischargeflow.internal_core.config import load_config


def _complete(generator) -> str:
    return asyncio.run(generator.complete(system="sys", user="user prompt", temperature=0.2, max_tokens=64))


def test_parse_generated_json_prefers_fenced_block() -> None:
    raw = 'Here you go:\n```json\n{"diagnoses": {"final": "MI"}}\n```\nThanks {"ignored": true}'
    assert parse_generated_json(raw) == {"diagnoses": {"final": "MI"}}


def test_parse_generated_json_extracts_first_balanced_object() -> None:
    raw = 'Sure. {"hospitalCourse": "Stable {monitored}", "warnings": []} trailing'
    assert parse_generated_json(raw) == {"hospitalCourse": "Stable {monitored}", "warnings": []}


def test_parse_generated_json_rejects_non_objects() -> None:
    assert parse_generated_json("") is None
    assert parse_generated_json("[1, 2, 3]") is None
    assert parse_generated_json("no json here") is None
    assert parse_generated_json('{"broken": ') is None


def test_llama_generator_uses_chat_format_and_response_format(monkeypatch, tmp_path) -> None:
    seen: dict = {}

    class FakeLlama:
        def __init__(self, **kwargs) -> None:
            seen["init"] = kwargs

        def create_chat_completion(self, **kwargs):
            seen["call"] = kwargs
            return {"choices": [{"message": {"content": ' {"warnings": []} '}}]}

    monkeypatch.setitem(sys.modules, "llama_cpp", SimpleNamespace(Llama=FakeLlama))
    model_path = tmp_path / "mock.gguf"
    model_path.write_text("x", encoding="utf-8")

    generator = LlamaCppGenerator(model_path=str(model_path), chat_format="gemma")
    assert _complete(generator) == '{"warnings": []}'
    assert seen["init"]["chat_format"] == "gemma"
    assert seen["call"]["response_format"] == {"type": "json_object"}
    assert seen["call"]["messages"][0] == {"role": "system", "content": "sys"}
    assert seen["call"]["messages"][1]["role"] == "user"


def test_llama_generator_falls_back_when_kwargs_unsupported(monkeypatch, tmp_path) -> None:
    calls: list = []

    class FakeLlama:
        def __init__(self, **kwargs) -> None:
            if "chat_format" in kwargs:
                raise TypeError("__init__() got an unexpected keyword argument 'chat_format'")

        def create_chat_completion(self, **kwargs):
            calls.append(kwargs)
            if "response_format" in kwargs:
                raise TypeError("create_chat_completion() got an unexpected keyword argument 'response_format'")
            return {"choices": [{"message": {"content": "{}"}}]}

    monkeypatch.setitem(sys.modules, "llama_cpp", SimpleNamespace(Llama=FakeLlama))
    model_path = tmp_path / "mock.gguf"
    model_path.write_text("x", encoding="utf-8")

    generator = LlamaCppGenerator(model_path=str(model_path))
    assert _complete(generator) == "{}"
    assert _complete(generator) == "{}"
    # Second call skips response_format once it is known to be unsupported.
    assert ["response_format" in c for c in calls] == [True, False, False]


def test_llama_generator_refuses_calls_while_abandoned_inference_runs(monkeypatch, tmp_path) -> None:
    release = threading.Event()
    calls: list[int] = []

    class SlowLlama:
        def __init__(self, **kwargs) -> None:
            pass

        def create_chat_completion(self, **kwargs):
            calls.append(1)
            if len(calls) == 1:
                release.wait(5)
            return {"choices": [{"message": {"content": '{"warnings": []}'}}]}

    monkeypatch.setitem(sys.modules, "llama_cpp", SimpleNamespace(Llama=SlowLlama))
    model_path = tmp_path / "mock.gguf"
    model_path.write_text("x", encoding="utf-8")
    generator = LlamaCppGenerator(model_path=str(model_path))

    async def scenario() -> str:
        kwargs = {"system": "sys", "user": "u", "temperature": 0.2, "max_tokens": 64}
        with pytest.raises(asyncio.TimeoutError):
            await asyncio.wait_for(generator.complete(**kwargs), timeout=0.05)
        try:
            with pytest.raises(GenerationError, match="busy"):
                await asyncio.wait_for(generator.complete(**kwargs), timeout=1.0)
        finally:
            release.set()
        for _ in range(500):
            if not generator._lock.locked():
                break
            await asyncio.sleep(0.01)
        return await generator.complete(**kwargs)

    assert asyncio.run(scenario()) == '{"warnings": []}'
    assert len(calls) == 2


def test_llama_generator_missing_model_raises(tmp_path) -> None:
    generator = LlamaCppGenerator(model_path=str(tmp_path / "missing.gguf"))
    with pytest.raises(GenerationError, match="not found"):
        _complete(generator)


def test_openai_generator_posts_chat_completion() -> None:
    captured: dict = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["url"] = str(request.url)
        captured["auth"] = request.headers.get("Authorization")
        captured["body"] = json.loads(request.content)
        return httpx.Response(200, json={"choices": [{"message": {"content": '{"warnings": []}'}}]})

    generator = OpenAICompatibleGenerator(
        base_url="http://llm.local/v1/",
        model="sarvam-m",
        api_key="secret",
        transport=httpx.MockTransport(handler),
    )
    assert _complete(generator) == '{"warnings": []}'
    assert captured["url"] == "http://llm.local/v1/chat/completions"
    assert captured["auth"] == "Bearer secret"
    assert captured["body"]["model"] == "sarvam-m"
    assert captured["body"]["temperature"] == 0.2
    assert [m["role"] for m in captured["body"]["messages"]] == ["system", "user"]


def test_openai_generator_maps_http_failures() -> None:
    def server_error(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503, text="overloaded")

    def bad_shape(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"unexpected": True})

    def unreachable(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    for handler in (server_error, bad_shape, unreachable):
        generator = OpenAICompatibleGenerator(
            base_url="http://llm.local/v1", model="m", transport=httpx.MockTransport(handler)
        )
        with pytest.raises(GenerationError):
            _complete(generator)


def test_build_generator_follows_config(monkeypatch) -> None:
    monkeypatch.delenv("DISCHARGE_LLM_BACKEND", raising=False)
    assert build_generator(load_config()) is None

    monkeypatch.setenv("DISCHARGE_LLM_BACKEND", "openai_compatible")
    monkeypatch.setenv("DISCHARGE_LLM_BASE_URL", "http://llm.local/v1")
    generator = build_generator(load_config())
    assert isinstance(generator, OpenAICompatibleGenerator)

    monkeypatch.setenv("DISCHARGE_LLM_BASE_URL", "")
    assert build_generator(load_config()) is None

    monkeypatch.setenv("DISCHARGE_LLM_BACKEND", "llama_cpp")
    assert isinstance(build_generator(load_config()), LlamaCppGenerator)


def test_debug_log_writes_stage_blocks(tmp_path) -> None:
    target = tmp_path / "logs" / "raw.log"
    append_debug_log(str(target), stage="raw_output", raw="{}", metadata={"engine": "x"})
    text = target.read_text(encoding="utf-8")
    assert "stage=raw_output" in text
    assert "-----BEGIN LLM RAW-----\n{}\n-----END LLM RAW-----" in text
