"""
Handle around one booted ffmpeg engine.

The engine owns a private workspace directory that holds the input and output
files of the job currently being converted, and publishes "progress" and
"log" events while a command runs. It is not reentrant: only one command may
run at a time.
"""

import asyncio
import collections
import logging
import re
import shutil
import tempfile
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from config import LOG_TAIL_LINES
from core.assets import EngineAssets
from core.exceptions import EngineBootError, EngineBusyError, EngineCommandError, WorkspaceError
from core.progress import ProgressEvent, parse_duration, parse_time

logger = logging.getLogger(__name__)

EVENTS = ("progress", "log")
_LINE_SPLIT_RE = re.compile(r"[\r\n]+")


class FFmpegEngine:
    def __init__(self, assets: EngineAssets, workspace_root: Path):
        self.assets = assets
        self.workspace_root = Path(workspace_root)
        self.workspace: Optional[Path] = None
        self.version: Optional[str] = None
        self._listeners: Dict[str, List[Callable[[Any], None]]] = {name: [] for name in EVENTS}
        self._process: Optional[asyncio.subprocess.Process] = None
        self._busy = False

    @property
    def loaded(self) -> bool:
        return self.workspace is not None

    async def load(self):
        """Boots the engine once and prepares its workspace."""
        try:
            proc = await asyncio.create_subprocess_exec(
                str(self.assets.ffmpeg_path), "-hide_banner", "-version",
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
            stdout, stderr = await proc.communicate()
        except OSError as e:
            raise EngineBootError(f"Could not start ffmpeg at {self.assets.ffmpeg_path}: {e}") from e

        if proc.returncode != 0:
            raise EngineBootError(
                f"ffmpeg exited with code {proc.returncode} during boot",
                output=stderr.decode(errors="replace"),
            )

        first_line = stdout.decode(errors="replace").splitlines()[:1]
        self.version = first_line[0].strip() if first_line else "unknown"

        self.workspace_root.mkdir(parents=True, exist_ok=True)
        self.workspace = Path(tempfile.mkdtemp(prefix="engine-", dir=self.workspace_root))
        logger.info(f"Engine booted: {self.version}")

    async def close(self):
        if self._process and self._process.returncode is None:
            self._process.kill()
            await self._process.wait()
        if self.workspace:
            shutil.rmtree(self.workspace, ignore_errors=True)
            self.workspace = None

    # -- Events --

    def on(self, event: str, listener: Callable[[Any], None]):
        if event not in self._listeners:
            raise ValueError(f"Unknown engine event: {event}")
        self._listeners[event].append(listener)

    def off(self, event: str, listener: Callable[[Any], None]):
        if listener in self._listeners.get(event, []):
            self._listeners[event].remove(listener)

    def _dispatch(self, event: str, payload: Any):
        for listener in list(self._listeners[event]):
            try:
                listener(payload)
            except Exception as e:
                logger.error(f"Error in engine {event} listener: {e}")

    # -- Workspace --

    def _entry(self, name: str) -> Path:
        if not self.workspace:
            raise WorkspaceError("Engine is not loaded")
        if not name or name in (".", "..") or "/" in name or "\\" in name:
            raise WorkspaceError(f"Invalid workspace entry name: {name!r}")
        return self.workspace / name

    async def write_file(self, name: str, data: bytes):
        path = self._entry(name)
        try:
            await asyncio.to_thread(path.write_bytes, data)
        except OSError as e:
            raise WorkspaceError(f"Could not write {name}: {e}") from e

    async def read_file(self, name: str) -> bytes:
        path = self._entry(name)
        try:
            return await asyncio.to_thread(path.read_bytes)
        except OSError as e:
            raise WorkspaceError(f"Could not read {name}: {e}") from e

    async def delete_file(self, name: str):
        path = self._entry(name)
        try:
            path.unlink()
        except OSError as e:
            raise WorkspaceError(f"Could not delete {name}: {e}") from e

    def list_files(self) -> List[str]:
        if not self.workspace:
            return []
        return sorted(p.name for p in self.workspace.iterdir())

    # -- Commands --

    async def exec(self, args: List[str]):
        """
        Runs one ffmpeg command inside the workspace.
        Raises EngineCommandError with the tail of the engine log on failure.
        """
        if not self.workspace:
            raise EngineCommandError("Engine is not loaded", command=args)
        if self._busy:
            raise EngineBusyError("Engine is already running a command", command=args)

        self._busy = True
        cmd = [str(self.assets.ffmpeg_path), "-hide_banner", "-nostdin", "-y", *args]
        tail = collections.deque(maxlen=LOG_TAIL_LINES)
        try:
            try:
                self._process = await asyncio.create_subprocess_exec(
                    *cmd,
                    cwd=str(self.workspace),
                    stdout=asyncio.subprocess.DEVNULL,
                    stderr=asyncio.subprocess.PIPE,
                )
            except OSError as e:
                raise EngineCommandError(f"Could not start ffmpeg: {e}", command=args) from e

            duration = None
            async for line in self._read_lines(self._process.stderr):
                tail.append(line)
                self._dispatch("log", line)

                if duration is None:
                    duration = parse_duration(line)
                    continue
                elapsed = parse_time(line)
                if elapsed is not None and duration > 0:
                    self._dispatch("progress", ProgressEvent(fraction=elapsed / duration, elapsed_time=elapsed))

            returncode = await self._process.wait()
            if returncode != 0:
                message = "\n".join(tail) or f"ffmpeg exited with code {returncode}"
                raise EngineCommandError(message, command=args, output=list(tail))
        except asyncio.CancelledError:
            if self._process and self._process.returncode is None:
                logger.warning("Killing ffmpeg after the command was cancelled")
                self._process.kill()
                await self._process.wait()
            raise
        finally:
            self._process = None
            self._busy = False

    @staticmethod
    async def _read_lines(stream: asyncio.StreamReader):
        # ffmpeg rewrites its stats line with \r, so readline() would stall on it
        buffer = ""
        while True:
            chunk = await stream.read(4096)
            if not chunk:
                break
            buffer += chunk.decode(errors="replace")
            parts = _LINE_SPLIT_RE.split(buffer)
            buffer = parts.pop()
            for part in parts:
                line = part.strip()
                if line:
                    yield line
        if buffer.strip():
            yield buffer.strip()
