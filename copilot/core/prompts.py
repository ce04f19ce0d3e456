"""Prompt text loading.

Prompt files live in ``copilot/prompts`` and are read once per process.
The loaded text is never mutated, so concurrent tasks can share it.
"""

from functools import lru_cache
from pathlib import Path

PROMPTS_DIR = Path(__file__).resolve().parent.parent / "prompts"


@lru_cache(maxsize=None)
def load_prompt(filename: str) -> str:
    """
    Load a prompt file by name.

    Args:
        filename: File name inside the prompts directory (e.g. "icp_fit.md")

    Returns:
        Prompt text, stripped

    Raises:
        FileNotFoundError: If the prompt does not exist
    """
    name = filename.lstrip("/")
    path = PROMPTS_DIR / name
    if not path.is_file():
        raise FileNotFoundError(f"Prompt not found: {filename} (tried {path})")
    return path.read_text(encoding="utf-8").strip()
