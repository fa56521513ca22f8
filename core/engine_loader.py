"""
One-time acquisition of the shared ffmpeg engine.

Every caller goes through EngineLoader.ensure_ready(). Concurrent callers are
multiplexed onto a single in-flight acquisition; they all receive the same
engine or the same failure. A failed attempt is not sticky: the next call
starts a fresh one.
"""

import asyncio
import logging
from pathlib import Path
from typing import Awaitable, Callable, Optional

from config import WORKSPACE_DIR
from core.assets import EngineAssets, fetch_engine_assets
from core.engine import FFmpegEngine
from core.environment import probe_environment
from core.exceptions import (
    AssetFetchError,
    CapabilityMissing,
    EngineAcquisitionFailed,
    EngineNotReady,
    ForgeError,
)
from schemas.models import EngineState, EnvironmentInfo, FailureDiagnostics, FailureKind

logger = logging.getLogger(__name__)


class EngineLoader:
    def __init__(
        self,
        capability_probe: Callable[[], EnvironmentInfo] = probe_environment,
        asset_fetcher: Callable[[], Awaitable[EngineAssets]] = fetch_engine_assets,
        engine_factory: Callable[[EngineAssets, Path], FFmpegEngine] = FFmpegEngine,
        workspace_root: Path = WORKSPACE_DIR,
    ):
        self._probe = capability_probe
        self._fetch_assets = asset_fetcher
        self._engine_factory = engine_factory
        self._workspace_root = workspace_root

        self.state: EngineState = EngineState.IDLE
        self.engine: Optional[FFmpegEngine] = None
        self.diagnostics: Optional[FailureDiagnostics] = None
        self.environment: Optional[EnvironmentInfo] = None
        self.attempts = 0
        self._inflight: Optional[asyncio.Future] = None

    @property
    def is_ready(self) -> bool:
        return self.state == EngineState.READY

    async def ensure_ready(self) -> FFmpegEngine:
        """
        Returns the shared engine, acquiring it first if needed.
        Raises CapabilityMissing or EngineAcquisitionFailed on failure.
        """
        if self.state == EngineState.READY:
            return self.engine

        # No await between the check and the assignment, so this is race-free
        # for every caller on the event loop.
        if self._inflight is None:
            self.state = EngineState.ACQUIRING
            self._inflight = asyncio.ensure_future(self._acquire())
            self._inflight.add_done_callback(self._consume_result)

        # A waiter giving up must not cancel the attempt for everyone else
        return await asyncio.shield(self._inflight)

    def require_ready(self) -> FFmpegEngine:
        if self.state != EngineState.READY:
            raise EngineNotReady(f"Engine not ready (state: {self.state.value})")
        return self.engine

    def clear_diagnostics(self):
        self.diagnostics = None

    async def close(self):
        if self.engine:
            await self.engine.close()

    @staticmethod
    def _consume_result(future: asyncio.Future):
        # Mark the exception as retrieved when nobody is left waiting on it
        if not future.cancelled():
            future.exception()

    async def _acquire(self) -> FFmpegEngine:
        self.state = EngineState.ACQUIRING
        self.diagnostics = None
        self.environment = None
        self.attempts += 1
        logger.info(f"Acquiring engine (attempt {self.attempts})")

        try:
            try:
                self.environment = await asyncio.to_thread(self._probe)
            except Exception as e:
                message = f"Could not inspect host environment: {e}"
                raise EngineAcquisitionFailed(
                    message, diagnostics=self._fail(FailureKind.ENGINE_ACQUISITION_FAILED, message)
                ) from e

            missing = self.environment.missing_capabilities()
            if missing:
                message = f"Required host capability not available: {', '.join(missing)}"
                raise CapabilityMissing(message, diagnostics=self._fail(FailureKind.CAPABILITY_MISSING, message))

            try:
                assets = await self._fetch_assets()
                engine = self._engine_factory(assets, self._workspace_root)
                await engine.load()
            except AssetFetchError as e:
                raise EngineAcquisitionFailed(
                    e.message,
                    diagnostics=self._fail(FailureKind.ENGINE_ACQUISITION_FAILED, e.message, resource=e.url),
                ) from e
            except Exception as e:
                message = f"{type(e).__name__}: {e}"
                if e.__cause__ is not None:
                    message += f" | Cause: {e.__cause__}"
                raise EngineAcquisitionFailed(
                    message,
                    diagnostics=self._fail(FailureKind.ENGINE_ACQUISITION_FAILED, message),
                ) from e

            self.engine = engine
            self.state = EngineState.READY
            logger.info("Engine ready")
            return engine
        except ForgeError as e:
            logger.error(f"Engine acquisition failed: {e.message}")
            raise
        finally:
            # Cleared before the future resolves so a caller reacting to the
            # failure can start a new attempt straight away.
            self._inflight = None

    def _fail(self, kind: FailureKind, message: str, resource: Optional[str] = None) -> FailureDiagnostics:
        self.diagnostics = FailureDiagnostics(
            kind=kind,
            message=message,
            environment=self.environment,
            resource=resource,
        )
        self.state = EngineState.FAILED
        return self.diagnostics
