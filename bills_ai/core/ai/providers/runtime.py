"""Local runtime process support: binary discovery, process handle, pull progress.

Kept separate from the provider so each piece can be exercised without an
HTTP server.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import shutil
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional

from ..base import DownloadProgress
from ..exceptions import RuntimeSpawnError

logger = logging.getLogger(__name__)

DEFAULT_SEARCH_DIRS = ["/opt/homebrew/bin", "/usr/local/bin", "/usr/bin"]


def augmented_path(search_dirs: Iterable[str], base_path: Optional[str] = None) -> str:
    """PATH with the common install dirs prepended (deduplicated, order kept)."""
    base = os.environ.get("PATH", "") if base_path is None else base_path
    parts: List[str] = []
    for entry in list(search_dirs) + base.split(os.pathsep):
        if entry and entry not in parts:
            parts.append(entry)
    return os.pathsep.join(parts)


def _is_executable(path: Path) -> bool:
    return path.is_file() and os.access(path, os.X_OK)


def resolve_binary(
    name: str,
    override: Optional[str] = None,
    search_dirs: Optional[Iterable[str]] = None,
) -> Optional[str]:
    """Locate ``name``: explicit override, then ordered install dirs, then PATH lookup.

    The override may also come from ``<NAME>_BIN`` in the environment.
    Returns ``None`` when nothing resolves.
    """
    dirs = list(DEFAULT_SEARCH_DIRS if search_dirs is None else search_dirs)
    candidates: List[Path] = []
    explicit = override or os.environ.get(f"{name.upper()}_BIN")
    if explicit:
        candidates.append(Path(explicit))
    candidates.extend(Path(d) / name for d in dirs)
    for candidate in candidates:
        if _is_executable(candidate):
            return str(candidate)
    return shutil.which(name, path=augmented_path(dirs))


class RuntimeProcess:
    """Owned handle on a spawned ``<binary> serve`` process.

    The child runs in its own session so it outlives incidental parent
    signal handling; only ``terminate`` stops it.
    """

    def __init__(self, proc: asyncio.subprocess.Process, binary: str):
        self._proc = proc
        self.binary = binary

    @property
    def pid(self) -> Optional[int]:
        return self._proc.pid

    @property
    def alive(self) -> bool:
        return self._proc.returncode is None

    @classmethod
    async def spawn(
        cls,
        binary: str,
        args: Iterable[str] = ("serve",),
        search_dirs: Iterable[str] = DEFAULT_SEARCH_DIRS,
    ) -> "RuntimeProcess":
        env = dict(os.environ)
        env["PATH"] = augmented_path(search_dirs)
        try:
            proc = await asyncio.create_subprocess_exec(
                binary,
                *args,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.DEVNULL,
                env=env,
                start_new_session=True,
            )
        except OSError as e:
            raise RuntimeSpawnError(
                f"Failed to start {binary}: {e}", provider="ollama", stage="spawn"
            ) from e
        logger.info("ai.runtime.spawned", extra={"binary": binary, "pid": proc.pid})
        return cls(proc, binary)

    async def terminate(self, grace_seconds: float = 5.0) -> None:
        if not self.alive:
            return
        try:
            self._proc.terminate()
        except ProcessLookupError:
            return
        try:
            await asyncio.wait_for(self._proc.wait(), timeout=grace_seconds)
        except asyncio.TimeoutError:
            logger.warning("ai.runtime.kill", extra={"pid": self.pid})
            try:
                self._proc.kill()
            except ProcessLookupError:
                return
            await self._proc.wait()


def parse_progress_line(line: str) -> Optional[Dict[str, Any]]:
    """Decode one newline-delimited progress event; ``None`` for blank/malformed lines."""
    line = line.strip()
    if not line:
        return None
    try:
        event = json.loads(line)
    except json.JSONDecodeError:
        return None
    return event if isinstance(event, dict) else None


class PullProgressTracker:
    """Accumulates pull events into successive ``DownloadProgress`` snapshots.

    Fields missing from an event keep their previous value; each call to
    ``apply`` returns a fresh snapshot meant to replace the published one.
    """

    def __init__(self, message: str = "Starting download"):
        self._state: Dict[str, Any] = {"in_progress": True, "message": message}

    @property
    def snapshot(self) -> DownloadProgress:
        return DownloadProgress(**self._state)

    def apply(self, event: Mapping[str, Any]) -> DownloadProgress:
        if isinstance(event.get("error"), str):
            self._state["message"] = event["error"]
        total = event.get("total")
        if isinstance(total, (int, float)) and not isinstance(total, bool):
            self._state["total_bytes"] = int(total)
        completed = event.get("completed")
        if isinstance(completed, (int, float)) and not isinstance(completed, bool):
            self._state["completed_bytes"] = int(completed)
        percent = event.get("percent")
        if isinstance(percent, (int, float)) and not isinstance(percent, bool):
            self._state["percent"] = float(percent)
        status = event.get("status")
        if isinstance(status, str):
            self._state["message"] = status
        return self.snapshot
