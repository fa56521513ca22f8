import asyncio
from pathlib import Path

import pytest

from core.assets import EngineAssets
from core.engine_loader import EngineLoader
from core.exceptions import EngineCommandError, WorkspaceError
from core.progress import ProgressEvent
from schemas.models import EnvironmentInfo


class FakeEngine:
    """
    In-memory stand-in for FFmpegEngine.

    exec() emits the first scripted progress fraction, signals `started`,
    optionally waits for `release` (for call indexes in hold_calls), emits the
    remaining fractions and writes an output derived from the input bytes.
    """

    def __init__(self, progress=(0.1, 0.5, 0.4, 1.3), fail_calls=(), hold_calls=(), output_prefix=b"mp4:"):
        self.files = {}
        self.listeners = {"progress": [], "log": []}
        self.commands = []
        self.progress = list(progress)
        self.fail_calls = set(fail_calls)
        self.hold_calls = set(hold_calls)
        self.output_prefix = output_prefix
        self.started = asyncio.Event()
        self.release = asyncio.Event()
        self.version = "ffmpeg version fake"
        self.loaded = False
        self.closed = False

    async def load(self):
        self.loaded = True

    async def close(self):
        self.closed = True

    def on(self, event, listener):
        self.listeners[event].append(listener)

    def off(self, event, listener):
        if listener in self.listeners[event]:
            self.listeners[event].remove(listener)

    async def write_file(self, name, data):
        self.files[name] = data

    async def read_file(self, name):
        if name not in self.files:
            raise WorkspaceError(f"Could not read {name}")
        return self.files[name]

    async def delete_file(self, name):
        if name not in self.files:
            raise WorkspaceError(f"Could not delete {name}")
        del self.files[name]

    def _emit(self, event, payload):
        for listener in list(self.listeners[event]):
            listener(payload)

    async def exec(self, args):
        index = len(self.commands)
        self.commands.append(args)
        self._emit("log", f"running {' '.join(args)}")

        fractions = self.progress
        if fractions:
            self._emit("progress", ProgressEvent(fraction=fractions[0], elapsed_time=fractions[0] * 10))
        self.started.set()
        if index in self.hold_calls:
            await self.release.wait()
        for fraction in fractions[1:]:
            self._emit("progress", ProgressEvent(fraction=fraction, elapsed_time=fraction * 10))
            await asyncio.sleep(0)

        if index in self.fail_calls:
            raise EngineCommandError("Invalid data found when processing input", command=args)
        input_name, output_name = args[1], args[-1]
        self.files[output_name] = self.output_prefix + self.files[input_name]


def ready_environment():
    return EnvironmentInfo(platform="test", python_version="3", shared_memory=True, sufficient_ram=True)

def missing_environment():
    return EnvironmentInfo(platform="test", python_version="3", shared_memory=False, sufficient_ram=True)

def make_loader(engine=None, probe=ready_environment, fetch=None):
    engine = engine or FakeEngine()

    async def default_fetch():
        return EngineAssets(ffmpeg_path=Path("ffmpeg"))

    return EngineLoader(
        capability_probe=probe,
        asset_fetcher=fetch or default_fetch,
        engine_factory=lambda assets, root: engine,
        workspace_root=Path("unused"),
    )


@pytest.fixture()
def make_source(tmp_path):
    def _make(name="clip.mkv", data=None):
        path = tmp_path / name
        path.write_bytes(data if data is not None else name.encode())
        return path
    return _make
