"""Optional diagnostic capture at defined extension points.

Hooks receive a capture point name (``navigator.level_failed``,
``playbook.phase_failed``) and a JSON-safe payload. A hook failure is
logged and ignored; nothing in a run depends on a hook having run.
"""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from repairflow.core.logging import get_logger

_logger = get_logger("diagnostics")


class DiagnosticHook(ABC):
    """Receives snapshots at capture points."""

    @abstractmethod
    async def capture(self, point: str, data: dict[str, Any]) -> None:
        ...


class JsonDumpHook(DiagnosticHook):
    """Write each capture as a JSON file under ``directory``."""

    def __init__(self, directory: Path) -> None:
        self.directory = Path(directory)

    async def capture(self, point: str, data: dict[str, Any]) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        stamp = datetime.now(UTC).strftime("%Y%m%dT%H%M%S%f")
        path = self.directory / f"{point.replace('.', '-')}-{stamp}.json"
        path.write_text(json.dumps({"point": point, **data}, indent=2, default=str))


async def capture(hook: DiagnosticHook | None, point: str, **data: Any) -> None:
    """Invoke ``hook`` if one is installed, swallowing its failures."""
    if hook is None:
        return
    try:
        await hook.capture(point, data)
    except Exception:
        _logger.warning("diagnostics.capture_failed", point=point, exc_info=True)


__all__ = ["DiagnosticHook", "JsonDumpHook", "capture"]
