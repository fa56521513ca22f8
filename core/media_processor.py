import re
from pathlib import PurePath
from typing import Dict, List

from schemas.models import ConversionProfile

# Bump when the argument lists change so stored outputs can be traced back.
PROFILE_TABLE_VERSION = 1

OUTPUT_EXTENSION = ".mp4"
DEFAULT_INPUT_EXTENSION = ".mp4"

PROFILE_ARGS: Dict[ConversionProfile, List[str]] = {
    ConversionProfile.FAST_REMUX: [
        "-c", "copy",                # Stream copy, no re-encode
        "-movflags", "+faststart",   # moov atom up front for progressive playback
    ],
    ConversionProfile.FULL_REENCODE: [
        "-c:v", "libx264",
        "-preset", "fast",
        "-crf", "23",
        "-c:a", "aac",
        "-b:a", "128k",
        "-movflags", "+faststart",
    ],
}

_EXT_RE = re.compile(r"\.[^.]+$")

def input_extension(filename: str) -> str:
    """Lowercased extension of the source file, '.mp4' when it has none."""
    match = _EXT_RE.search(PurePath(filename).name)
    return match.group(0).lower() if match else DEFAULT_INPUT_EXTENSION

def output_filename(filename: str) -> str:
    name = PurePath(filename).name
    if _EXT_RE.search(name):
        return _EXT_RE.sub(OUTPUT_EXTENSION, name)
    return name + OUTPUT_EXTENSION

def build_command(profile: ConversionProfile, input_name: str, output_name: str) -> List[str]:
    """Builds the ffmpeg argument list for a workspace input/output pair."""
    return ["-i", input_name, *PROFILE_ARGS[ConversionProfile(profile)], output_name]
