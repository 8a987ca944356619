"""Per-agent memory files."""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Optional

from .process.normalize import strip_ansi
from .utils.atomic import atomic_write_text

logger = logging.getLogger(__name__)

# Progress lines produced by the engine decoders; they describe the run, not
# its result.
_PROGRESS_PREFIXES = (
    "🧠 THINKING:",
    "🔧 COMMAND:",
    "✅ COMMAND RESULT:",
    "❌ COMMAND FAILED:",
    "⏱️",
)
_MESSAGE_PREFIX = "💬 MESSAGE: "
_SAFE_ID = re.compile(r"[^A-Za-z0-9._-]+")


def sanitize_output(output: str, prompt: Optional[str] = None) -> str:
    """Reduce an engine transcript to the content worth remembering."""
    text = strip_ansi(output)
    if prompt:
        stripped_prompt = prompt.strip()
        if stripped_prompt:
            text = text.replace(stripped_prompt, "")

    kept = []
    for line in text.splitlines():
        if line.startswith(_PROGRESS_PREFIXES):
            continue
        if line.startswith(_MESSAGE_PREFIX):
            line = line[len(_MESSAGE_PREFIX):]
        kept.append(line.rstrip())

    cleaned = "\n".join(kept).strip()
    cleaned = re.sub(r"\n{3,}", "\n\n", cleaned)
    return cleaned + "\n" if cleaned else ""


class MemoryStore:
    """Latest known context for each agent, one file per agent id.

    Every write replaces the whole file: memory is a snapshot, not a log.
    """

    def __init__(self, root: Path | str) -> None:
        self.root = Path(root)

    def path_for(self, agent_id: str) -> Path:
        return self.root / f"{_SAFE_ID.sub('_', agent_id)}.md"

    def write(self, agent_id: str, output: str, prompt: Optional[str] = None) -> Path:
        path = self.path_for(agent_id)
        content = sanitize_output(output, prompt=prompt)
        atomic_write_text(path, content)
        logger.debug(f"Memory for {agent_id} updated ({len(content)} chars)")
        return path

    def read(self, agent_id: str) -> str:
        path = self.path_for(agent_id)
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return ""
