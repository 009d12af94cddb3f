"""On-disk layout of recording sessions and their screenshots."""

import logging
import time
from collections import defaultdict
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Tuple, Union

from sitewalker.models.recording import RecordingSession

logger = logging.getLogger(__name__)

SCREENSHOT_KINDS = ("page", "modal", "modal_change", "capture", "training")


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


class RecordingStore:
    """Files of one session live under ``<base_dir>/session_<id>/``.

    Screenshots are named ``<slug>_<kind>_<NNN>.png`` with a separate counter
    per slug and kind, starting at 001.
    """

    def __init__(self, base_dir: Union[str, Path], session_id: str):
        self.base_dir = Path(base_dir)
        self.session_id = session_id
        self._counters: Dict[Tuple[str, str], int] = defaultdict(int)

    @property
    def session_dir(self) -> Path:
        return self.base_dir / f"session_{self.session_id}"

    @property
    def screenshots_dir(self) -> Path:
        return self.session_dir / "screenshots"

    def next_screenshot(self, slug: str, kind: str) -> Tuple[str, Path]:
        """Reserve the next filename for *slug*/*kind*; return ``(filename, path)``."""
        if kind not in SCREENSHOT_KINDS:
            raise ValueError(f"Unknown screenshot kind: {kind}")
        self._counters[(slug, kind)] += 1
        filename = f"{slug}_{kind}_{self._counters[(slug, kind)]:03d}.png"
        self.screenshots_dir.mkdir(parents=True, exist_ok=True)
        return filename, self.screenshots_dir / filename

    def save(self, session: RecordingSession) -> Path:
        self.session_dir.mkdir(parents=True, exist_ok=True)
        path = self.session_dir / f"session_{session.id}_{int(time.time() * 1000)}.json"
        path.write_text(session.model_dump_json(indent=2), encoding="utf-8")
        logger.info(
            "Saved recording session",
            extra={
                "session_id": session.id,
                "actions": len(session.actions),
                "modals": len(session.modals),
                "path": str(path),
            },
        )
        return path
