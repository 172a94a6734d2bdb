from __future__ import annotations

"""
Discharge enhancement pipeline: prompt -> generate -> parse -> fact-guard -> validate -> render.

Design intent:
- Express retry and fallback as an ordered strategy chain, not nested conditionals.
- Bound each generative call with a timeout and absorb every failure mode.
- Always return a renderable result; the deterministic fallback closes the chain.
"""

import asyncio
import datetime as _dt
import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Optional, Protocol, Sequence

from dischargeflow.document.fact_guard import apply_fact_guard, fact_guard_input_from_record
from dischargeflow.document.render import render_discharge_html
from dischargeflow.document.schema import validate_structured_document
from dischargeflow.enhance.fallback import build_fallback_document
from dischargeflow.enhance.generation import GenerationError, TextGenerator, parse_generated_json
from dischargeflow.enhance.narrative import synthesize_narrative
from dischargeflow.enhance.prompts import PROMPT_VERSION, SYSTEM_INSTRUCTION, build_full_prompt, build_reduced_prompt
from dischargeflow.internal_core.config import DEFAULT_HOSPITAL_PROFILE, DischargeConfig, HospitalProfile
from dischargeflow.internal_core.contracts import CLINICAL_FIELDS, DischargeRecord, StructuredDocument

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EnhancementSettings:
    timeout_seconds: float = 60.0
    max_tokens: int = 4096
    temperature: float = 0.2
    profile: HospitalProfile = DEFAULT_HOSPITAL_PROFILE

    @classmethod
    def from_config(cls, config: DischargeConfig) -> "EnhancementSettings":
        return cls(
            timeout_seconds=config.DISCHARGE_LLM_TIMEOUT_SECONDS,
            max_tokens=config.DISCHARGE_LLM_MAX_TOKENS,
            temperature=config.DISCHARGE_LLM_TEMPERATURE,
            profile=config.hospital,
        )


@dataclass(frozen=True)
class EnhancementResult:
    narrative_text: str
    rendered_output: str
    structured_document: StructuredDocument
    missing_fields: list[str]
    warnings: list[str]
    engine: str
    strategy: str
    model: Optional[str] = None
    prompt_version: str = PROMPT_VERSION
    attempts: int = 0
    generated_at: str = ""
    debug: dict[str, object] = field(default_factory=dict)


class DocumentStrategy(Protocol):
    name: str
    generative: bool

    async def produce(
        self,
        record: DischargeRecord,
        *,
        generator: Optional[TextGenerator],
        settings: EnhancementSettings,
    ) -> Optional[StructuredDocument]: ...


class GenerativeStrategy:
    generative = True

    def __init__(self, name: str, build_prompt: Callable[[DischargeRecord], str]) -> None:
        self.name = name
        self._build_prompt = build_prompt

    async def produce(
        self,
        record: DischargeRecord,
        *,
        generator: Optional[TextGenerator],
        settings: EnhancementSettings,
    ) -> Optional[StructuredDocument]:
        if generator is None:
            return None

        started = time.perf_counter()
        try:
            raw = await asyncio.wait_for(
                generator.complete(
                    system=SYSTEM_INSTRUCTION,
                    user=self._build_prompt(record),
                    temperature=settings.temperature,
                    max_tokens=settings.max_tokens,
                ),
                timeout=settings.timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.warning("enhance strategy=%s record=%s failed: timeout after %.1fs", self.name, record.id, settings.timeout_seconds)
            return None
        except asyncio.CancelledError:
            task = asyncio.current_task()
            if task is not None and task.cancelling():
                # Our own caller was cancelled; do not swallow it.
                raise
            logger.warning("enhance strategy=%s record=%s failed: generator call cancelled", self.name, record.id)
            return None
        except GenerationError as exc:
            logger.warning("enhance strategy=%s record=%s failed: %s", self.name, record.id, exc)
            return None
        except Exception as exc:
            logger.warning(
                "enhance strategy=%s record=%s failed: unexpected %s: %s", self.name, record.id, type(exc).__name__, exc
            )
            return None

        elapsed_ms = round((time.perf_counter() - started) * 1000.0, 2)
        parsed = parse_generated_json(raw)
        if parsed is None:
            logger.warning("enhance strategy=%s record=%s failed: unparseable payload (%sms)", self.name, record.id, elapsed_ms)
            return None

        guarded = apply_fact_guard(parsed, fact_guard_input_from_record(record))
        outcome = validate_structured_document(guarded)
        if not outcome.ok or outcome.data is None:
            logger.warning(
                "enhance strategy=%s record=%s failed: schema errors=%s",
                self.name,
                record.id,
                outcome.errors[:5],
            )
            return None
        logger.info("enhance strategy=%s record=%s ok (%sms)", self.name, record.id, elapsed_ms)
        return outcome.data


class FallbackStrategy:
    name = "deterministic_fallback"
    generative = False

    async def produce(
        self,
        record: DischargeRecord,
        *,
        generator: Optional[TextGenerator],
        settings: EnhancementSettings,
    ) -> Optional[StructuredDocument]:
        _ = (generator, settings)
        return build_fallback_document(record)


DEFAULT_STRATEGIES: tuple[DocumentStrategy, ...] = (
    GenerativeStrategy("full_prompt", build_full_prompt),
    GenerativeStrategy("reduced_prompt", build_reduced_prompt),
    FallbackStrategy(),
)


def has_usable_input(record: DischargeRecord) -> bool:
    for name in CLINICAL_FIELDS:
        value = getattr(record, name, None)
        if isinstance(value, str) and value.strip():
            return True
        if isinstance(value, list) and value:
            return True
    return False


def narrative_for(doc: StructuredDocument) -> str:
    text = (doc.final_narrative_text or "").strip()
    return text or synthesize_narrative(doc)


def _utc_now_iso() -> str:
    return _dt.datetime.now(_dt.timezone.utc).isoformat()


async def enhance(
    record: DischargeRecord,
    *,
    generator: Optional[TextGenerator],
    settings: Optional[EnhancementSettings] = None,
    strategies: Sequence[DocumentStrategy] = DEFAULT_STRATEGIES,
) -> EnhancementResult:
    """Run the strategy chain until one yields a validated document."""

    settings = settings or EnhancementSettings()
    skip_generative = generator is None or not has_usable_input(record)
    attempts = 0
    failed: list[str] = []

    for strategy in strategies:
        if strategy.generative:
            if skip_generative:
                continue
            attempts += 1
        doc = await strategy.produce(record, generator=generator, settings=settings)
        if doc is None:
            failed.append(strategy.name)
            continue

        engine = getattr(generator, "engine", "unknown") if strategy.generative else "fallback"
        model = getattr(generator, "model_name", None) if strategy.generative else None
        return EnhancementResult(
            narrative_text=narrative_for(doc),
            rendered_output=render_discharge_html(doc, settings.profile),
            structured_document=doc,
            missing_fields=list(doc.missing_fields),
            warnings=list(doc.warnings),
            engine=engine,
            strategy=strategy.name,
            model=model or None,
            attempts=attempts,
            generated_at=_utc_now_iso(),
            debug={"failed_strategies": failed, "generation_skipped": skip_generative},
        )

    # Only reachable with a custom chain that has no terminal fallback.
    doc = build_fallback_document(record)
    return EnhancementResult(
        narrative_text=narrative_for(doc),
        rendered_output=render_discharge_html(doc, settings.profile),
        structured_document=doc,
        missing_fields=list(doc.missing_fields),
        warnings=list(doc.warnings),
        engine="fallback",
        strategy=FallbackStrategy.name,
        attempts=attempts,
        generated_at=_utc_now_iso(),
        debug={"failed_strategies": failed, "generation_skipped": skip_generative},
    )
