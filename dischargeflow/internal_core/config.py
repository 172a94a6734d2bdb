from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional

LLM_BACKENDS: set[str] = {"none", "llama_cpp", "openai_compatible"}
NOTIFY_BACKENDS: set[str] = {"log", "webhook", "none"}


def _getenv_str(name: str, default: str) -> str:
    value = os.getenv(name)
    return default if value is None else value


def _getenv_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return int(value)


def _getenv_opt_int(name: str) -> Optional[int]:
    value = os.getenv(name)
    if value is None or value == "":
        return None
    return int(value)


def _getenv_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return float(value)


def _getenv_choice(name: str, default: str, allowed: set[str]) -> str:
    value = _getenv_str(name, default).strip().lower() or default
    if value not in allowed:
        raise ValueError(f"{name} must be one of {sorted(allowed)}, got {value!r}")
    return value


@dataclass(frozen=True)
class HospitalProfile:
    name: str
    tagline: str
    address: str
    contact: str
    logo_url: str


DEFAULT_HOSPITAL_PROFILE = HospitalProfile(
    name="MAPIMS",
    tagline="Melmaruvathur Adhiparasakthi Institute of Medical Sciences and Research",
    address="Melmaruvathur, Kancheepuram Dist, Tamil Nadu - 603319",
    contact="Contact: +91-44-27529401 | Email: info@mapims.edu.in",
    logo_url="https://mapims.edu.in/wp-content/uploads/2021/03/logo.png",
)


@dataclass(frozen=True)
class DischargeConfig:
    DISCHARGE_LLM_BACKEND: str
    DISCHARGE_LLM_MODEL_PATH: str
    DISCHARGE_LLM_CHAT_FORMAT: str
    DISCHARGE_LLM_N_CTX: int
    DISCHARGE_LLM_N_GPU_LAYERS: int
    DISCHARGE_LLM_N_THREADS: Optional[int]
    DISCHARGE_LLM_BASE_URL: str
    DISCHARGE_LLM_API_KEY: str
    DISCHARGE_LLM_MODEL: str
    DISCHARGE_LLM_TIMEOUT_SECONDS: float
    DISCHARGE_LLM_MAX_TOKENS: int
    DISCHARGE_LLM_TEMPERATURE: float
    DISCHARGE_LLM_DEBUG_LOG: str
    DISCHARGE_NOTIFY_BACKEND: str
    DISCHARGE_NOTIFY_WEBHOOK_URL: str
    DISCHARGE_NOTIFY_TIMEOUT_SECONDS: float
    DISCHARGE_LOG_LEVEL: str
    hospital: HospitalProfile = DEFAULT_HOSPITAL_PROFILE

    @property
    def generation_enabled(self) -> bool:
        return self.DISCHARGE_LLM_BACKEND != "none"


def load_config() -> DischargeConfig:
    hospital = HospitalProfile(
        name=_getenv_str("DISCHARGE_HOSPITAL_NAME", DEFAULT_HOSPITAL_PROFILE.name),
        tagline=_getenv_str("DISCHARGE_HOSPITAL_TAGLINE", DEFAULT_HOSPITAL_PROFILE.tagline),
        address=_getenv_str("DISCHARGE_HOSPITAL_ADDRESS", DEFAULT_HOSPITAL_PROFILE.address),
        contact=_getenv_str("DISCHARGE_HOSPITAL_CONTACT", DEFAULT_HOSPITAL_PROFILE.contact),
        logo_url=_getenv_str("DISCHARGE_HOSPITAL_LOGO_URL", DEFAULT_HOSPITAL_PROFILE.logo_url),
    )

    timeout_seconds = _getenv_float("DISCHARGE_LLM_TIMEOUT_SECONDS", 60.0)
    if timeout_seconds <= 0:
        raise ValueError("DISCHARGE_LLM_TIMEOUT_SECONDS must be > 0")

    return DischargeConfig(
        DISCHARGE_LLM_BACKEND=_getenv_choice("DISCHARGE_LLM_BACKEND", "none", LLM_BACKENDS),
        DISCHARGE_LLM_MODEL_PATH=_getenv_str("DISCHARGE_LLM_MODEL_PATH", "").strip(),
        DISCHARGE_LLM_CHAT_FORMAT=_getenv_str("DISCHARGE_LLM_CHAT_FORMAT", "gemma"),
        DISCHARGE_LLM_N_CTX=_getenv_int("DISCHARGE_LLM_N_CTX", 8192),
        DISCHARGE_LLM_N_GPU_LAYERS=_getenv_int("DISCHARGE_LLM_N_GPU_LAYERS", -1),
        DISCHARGE_LLM_N_THREADS=_getenv_opt_int("DISCHARGE_LLM_N_THREADS"),
        DISCHARGE_LLM_BASE_URL=_getenv_str("DISCHARGE_LLM_BASE_URL", "").strip().rstrip("/"),
        DISCHARGE_LLM_API_KEY=_getenv_str("DISCHARGE_LLM_API_KEY", ""),
        DISCHARGE_LLM_MODEL=_getenv_str("DISCHARGE_LLM_MODEL", ""),
        DISCHARGE_LLM_TIMEOUT_SECONDS=timeout_seconds,
        DISCHARGE_LLM_MAX_TOKENS=_getenv_int("DISCHARGE_LLM_MAX_TOKENS", 4096),
        DISCHARGE_LLM_TEMPERATURE=_getenv_float("DISCHARGE_LLM_TEMPERATURE", 0.2),
        DISCHARGE_LLM_DEBUG_LOG=_getenv_str("DISCHARGE_LLM_DEBUG_LOG", "").strip(),
        DISCHARGE_NOTIFY_BACKEND=_getenv_choice("DISCHARGE_NOTIFY_BACKEND", "log", NOTIFY_BACKENDS),
        DISCHARGE_NOTIFY_WEBHOOK_URL=_getenv_str("DISCHARGE_NOTIFY_WEBHOOK_URL", "").strip(),
        DISCHARGE_NOTIFY_TIMEOUT_SECONDS=_getenv_float("DISCHARGE_NOTIFY_TIMEOUT_SECONDS", 10.0),
        DISCHARGE_LOG_LEVEL=_getenv_str("DISCHARGE_LOG_LEVEL", "INFO").strip().upper() or "INFO",
        hospital=hospital,
    )
