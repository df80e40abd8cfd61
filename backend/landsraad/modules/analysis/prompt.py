"""Landsraad prompt loading.

The instruction prompt lives in a Markdown document so it can be edited
without touching code. Markdown decoration only costs tokens, so it is
stripped before the text is sent to the model. The sanitized prompt is
computed once per process.
"""

from __future__ import annotations

import re
from functools import lru_cache
from pathlib import Path

import structlog

from landsraad.core.config import settings

logger = structlog.get_logger()

# Directory where prompt templates live
_PROMPTS_DIR = Path(__file__).parent / "prompts"
DEFAULT_PROMPT_FILE = _PROMPTS_DIR / "task_extraction.md"

_FENCE_RE = re.compile(r"^\s*```[\w-]*\s*$", re.MULTILINE)
_HEADING_RE = re.compile(r"^\s{0,3}#{1,6}\s*", re.MULTILINE)
_EMPHASIS_RES = (
    re.compile(r"\*\*(.+?)\*\*"),
    re.compile(r"__(.+?)__"),
    re.compile(r"(?<![\w*])\*(?!\s)(.+?)(?<!\s)\*(?![\w*])"),
    re.compile(r"(?<![\w_])_(?!\s)(.+?)(?<!\s)_(?![\w_])"),
    re.compile(r"`([^`\n]+)`"),
)
_BLANK_LINES_RE = re.compile(r"\n\s*\n(\s*\n)+")


def sanitize_prompt(text: str) -> str:
    """Strip code fences, heading markers and inline emphasis; collapse blank lines."""
    text = text.replace("\r\n", "\n")
    text = _FENCE_RE.sub("", text)
    text = _HEADING_RE.sub("", text)
    for pattern in _EMPHASIS_RES:
        text = pattern.sub(r"\1", text)
    text = _BLANK_LINES_RE.sub("\n\n", text)
    return text.strip()


def load_prompt(path: Path) -> str:
    """Read and sanitize a prompt document."""
    if not path.exists():
        raise FileNotFoundError(f"Prompt file not found: {path}")
    return sanitize_prompt(path.read_text(encoding="utf-8"))


@lru_cache(maxsize=1)
def get_prompt() -> str:
    """Process-wide instruction prompt (loaded on first use)."""
    path = Path(settings.analysis_prompt_path) if settings.analysis_prompt_path else DEFAULT_PROMPT_FILE
    prompt = load_prompt(path)
    logger.info("Analysis prompt loaded", path=str(path), chars=len(prompt))
    return prompt
