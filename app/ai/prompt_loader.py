from pathlib import Path

from app.ai.exceptions import AdapterPermanentError

_DEFAULT_PROMPT_DIR = Path(__file__).parent / "prompts"


def load_prompt(name: str, prompt_dir: Path | None = None) -> str:
    """Load a bundled prompt file by name.

    Args:
        name: File name inside the prompt directory, e.g. "classify_prompt.txt".
        prompt_dir: Directory override. Defaults to the bundled prompts.

    Returns:
        The raw template string with placeholders.

    Raises:
        AdapterPermanentError: if the file cannot be read.
    """
    path = (prompt_dir or _DEFAULT_PROMPT_DIR) / name
    try:
        return path.read_text(encoding="utf-8")
    except OSError as exc:
        raise AdapterPermanentError(f"Failed to load prompt {name}: {exc}") from exc
