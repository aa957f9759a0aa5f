"""Soundboard sound files."""
import asyncio
import json
import os
import re
import subprocess
from typing import List, Optional
from typing_extensions import Final

import filmklub.exceptions

import logging
log = logging.getLogger(__name__)


SOUND_EXTENSION: Final = ".mp3"
VALID_NAME_REGEX: Final = re.compile(r"^[\w\- ]{1,20}$")


class SoundLibrary():
    """Directory of uploaded soundboard sounds.

    Args:
        directory: Directory holding the sound files. Created if missing.
        max_size: Largest accepted upload in bytes, ``None`` for no limit.

    """
    def __init__(self, directory: str, max_size: Optional[int] = None) -> None:
        self.directory = directory
        self.max_size = max_size
        os.makedirs(self.directory, exist_ok=True)

    def sounds(self) -> List[str]:
        """Lists the sound file names, sorted alphabetically ignoring case."""
        return sorted(
            (
                f for f in os.listdir(self.directory)
                if f.endswith(SOUND_EXTENSION)
                and os.path.isfile(os.path.join(self.directory, f))
            ),
            key=lambda f: (f.casefold(), f)
        )

    def names(self) -> List[str]:
        return [display_name(sound) for sound in self.sounds()]

    def path(self, name: str) -> str:
        """Finds the file of a sound.

        Args:
            name: Sound name, with or without the file extension.

        Returns:
            Absolute path to the sound file.

        Raises:
            filmklub.exceptions.NotFoundError: If there is no such sound.

        """
        filename = file_name(name)
        if filename not in self.sounds():
            raise filmklub.exceptions.NotFoundError(f"There is no sound called \"{name}\"")
        return os.path.abspath(os.path.join(self.directory, filename))

    async def save(self, name: str, data: bytes) -> str:
        """Adds a new sound to the library.

        Args:
            name: Name for the new sound.
            data: Audio file contents.

        Returns:
            File name of the saved sound.

        Raises:
            filmklub.exceptions.DuplicateError: If a sound with this name exists.
            filmklub.exceptions.MalformedFile: If the name or file is unusable.

        """
        name = name.strip()
        if VALID_NAME_REGEX.match(name) is None:
            raise filmklub.exceptions.MalformedFile(
                "Sound names can only use letters, numbers, spaces, - and _ (20 max)"
            )
        if self.max_size is not None and len(data) > self.max_size:
            raise filmklub.exceptions.MalformedFile("Sound file is too large")
        filename = file_name(name)
        if filename.casefold() in [s.casefold() for s in self.sounds()]:
            raise filmklub.exceptions.DuplicateError(
                f"A sound with the name \"{name}\" already exists"
            )
        path = os.path.join(self.directory, filename)
        upload_path = path + ".upload"
        loop = asyncio.get_running_loop()

        def write() -> None:
            with open(upload_path, "wb") as f:
                f.write(data)
        await loop.run_in_executor(None, write)
        try:
            if not await probe_audio(upload_path):
                raise filmklub.exceptions.MalformedFile("Invalid audio format")
            os.replace(upload_path, path)
        finally:
            if os.path.exists(upload_path):
                os.remove(upload_path)
        log.info(f"Saved sound {filename}")
        return filename


def file_name(name: str) -> str:
    name = os.path.basename(name.strip())
    return name if name.endswith(SOUND_EXTENSION) else name + SOUND_EXTENSION


def display_name(filename: str) -> str:
    return filename[:-len(SOUND_EXTENSION)] if filename.endswith(SOUND_EXTENSION) else filename


async def probe_audio(path: str) -> bool:
    """Checks with ffprobe that a file holds decodable audio.

    Args:
        path: File to check.

    Returns:
        `True` if ffprobe found an audio stream.

    """
    loop = asyncio.get_running_loop()
    completed_probe_process = await loop.run_in_executor(
        None,
        lambda: subprocess.run([
            "ffprobe",
            path,
            "-of", "json",
            "-show_streams",
            "-show_error",
            "-loglevel", "quiet"
        ], stdout=subprocess.PIPE)
    )
    try:
        probe = json.loads(completed_probe_process.stdout.decode("utf-8"))
    except ValueError:
        return False
    return any(s.get("codec_type") == "audio" for s in probe.get("streams", []))
