import asyncio
import hashlib
import logging
import os
import shutil
import stat
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import httpx
import static_ffmpeg

from config import ENGINE_BASE_URL, ENGINE_DIR, ENGINE_SHA256
from core.exceptions import AssetFetchError

logger = logging.getLogger(__name__)

BINARY_NAME = "ffmpeg.exe" if sys.platform == "win32" else "ffmpeg"

@dataclass(frozen=True)
class EngineAssets:
    ffmpeg_path: Path


def _sha256(path: Path) -> str:
    hasher = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(65536), b""):
            hasher.update(chunk)
    return hasher.hexdigest()

def _make_executable(path: Path):
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)

async def download_engine(base_url: str, target_dir: Path, expected_sha256: Optional[str] = None) -> EngineAssets:
    """
    Downloads the ffmpeg binary from a self-hosted location.
    Verifies SHA256 checksum on completion when one is configured.
    """
    target_dir.mkdir(parents=True, exist_ok=True)
    filepath = target_dir / BINARY_NAME
    url = f"{base_url.rstrip('/')}/{BINARY_NAME}"

    if filepath.exists() and (not expected_sha256 or _sha256(filepath) == expected_sha256):
        logger.info(f"Engine binary already present at {filepath}")
        return EngineAssets(ffmpeg_path=filepath)

    partial = filepath.with_suffix(filepath.suffix + ".part")
    hasher = hashlib.sha256()
    try:
        async with httpx.AsyncClient(follow_redirects=True) as client:
            async with client.stream("GET", url) as response:
                response.raise_for_status()
                with open(partial, "wb") as f:
                    async for chunk in response.aiter_bytes(chunk_size=65536):
                        f.write(chunk)
                        hasher.update(chunk)
    except httpx.HTTPError as e:
        partial.unlink(missing_ok=True)
        raise AssetFetchError(f"Failed to download engine binary: {e}", url=url) from e

    downloaded_hash = hasher.hexdigest()
    if expected_sha256 and downloaded_hash != expected_sha256:
        partial.unlink(missing_ok=True)
        raise AssetFetchError(
            f"SHA256 mismatch for {BINARY_NAME}. Expected {expected_sha256}, got {downloaded_hash}",
            url=url,
        )

    os.replace(partial, filepath)
    _make_executable(filepath)
    logger.info(f"Downloaded engine binary to {filepath}")
    return EngineAssets(ffmpeg_path=filepath)

def locate_static_engine(download_dir: Path) -> EngineAssets:
    """Lets static_ffmpeg fetch (once) and expose its bundled binaries on PATH."""
    download_dir.mkdir(parents=True, exist_ok=True)
    try:
        static_ffmpeg.add_paths(weak=True, download_dir=str(download_dir))
    except Exception as e:
        raise AssetFetchError(f"static_ffmpeg could not provide the engine: {e}") from e

    found = shutil.which("ffmpeg")
    if not found:
        raise AssetFetchError("ffmpeg binary not found on PATH after static_ffmpeg setup")
    return EngineAssets(ffmpeg_path=Path(found))

async def fetch_engine_assets() -> EngineAssets:
    if ENGINE_BASE_URL:
        return await download_engine(ENGINE_BASE_URL, ENGINE_DIR, ENGINE_SHA256)
    # static_ffmpeg blocks while downloading; keep the loop responsive
    return await asyncio.to_thread(locate_static_engine, ENGINE_DIR / sys.platform)
