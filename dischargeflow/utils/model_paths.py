from __future__ import annotations

import os
from pathlib import Path
from typing import Iterator

MEDGEMMA_GGUF_FILENAMES: tuple[str, ...] = (
    "medgemma-1.5-4b-it-Q5_K_M.gguf",
    "medgemma-4b-it-Q4_K_M.gguf",
)


def repo_root() -> Path:
    # dischargeflow/utils/model_paths.py -> repository checkout
    return Path(__file__).resolve().parents[2]


def search_roots() -> list[Path]:
    """DISCHARGE_MODEL_ROOT first, then repo-local and sibling `models/` folders."""

    configured = os.getenv("DISCHARGE_MODEL_ROOT", "").strip()
    base = repo_root()
    ordered = [Path(configured).expanduser()] if configured else []
    ordered += [base / "models", base, base.parent / "models"]
    # dict.fromkeys keeps first-seen order while dropping repeats.
    return list(dict.fromkeys(ordered))


def iter_model_candidates() -> Iterator[Path]:
    for root in search_roots():
        for filename in MEDGEMMA_GGUF_FILENAMES:
            yield root / "MedGemma" / filename
            yield root / filename


def discover_medgemma_gguf() -> str:
    for candidate in iter_model_candidates():
        if candidate.is_file():
            return str(candidate.resolve())
    return ""


def resolve_medgemma_gguf_path(explicit_path: str | None = None) -> str:
    """
    Resolve the GGUF model used by the local generator:
    explicit argument, then DISCHARGE_LLM_MODEL_PATH, then discovery.
    Returns "" when nothing is found; the generator reports that on first use.
    """

    for value in (explicit_path, os.getenv("DISCHARGE_LLM_MODEL_PATH")):
        path = str(value or "").strip()
        if path:
            return path
    return discover_medgemma_gguf()
