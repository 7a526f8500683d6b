"""
Long-term learnings log: a human-readable markdown journal kept next to the
knowledge files. Conversation summaries and weekly reviews append entries here.
"""

import asyncio
import logging
from pathlib import Path
from typing import Optional

from adsteward.utils import utcnow

logger = logging.getLogger(__name__)


class LearningsLog:

    def __init__(self, path: str):
        self.path = Path(path)

    def _write(self, entry: str) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        is_new = not self.path.exists()
        with self.path.open("a", encoding="utf-8") as f:
            if is_new:
                f.write("# Learnings\n\n")
            f.write(entry)

    async def append(self, title: str, body: str, bullets: Optional[list[str]] = None,
                     source: Optional[str] = None) -> None:
        stamp = utcnow().strftime("%Y-%m-%d %H:%M")
        lines = [f"## {stamp} — {title}", ""]
        if source:
            lines.append(f"_source: {source}_")
            lines.append("")
        if body:
            lines.append(body.strip())
            lines.append("")
        for b in bullets or []:
            lines.append(f"- {b}")
        if bullets:
            lines.append("")
        await asyncio.to_thread(self._write, "\n".join(lines) + "\n")
        logger.info(f"Learnings log entry appended: {title}")

    def read(self) -> str:
        if not self.path.exists():
            return ""
        return self.path.read_text(encoding="utf-8")
