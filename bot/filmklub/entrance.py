"""Per-user entrance sounds."""
import asyncio
import json
import os
from typing import Callable, Dict, Optional

import filmklub.exceptions

import logging
log = logging.getLogger(__name__)


EntranceMap = Dict[str, Dict[str, str]]


class EntranceSounds():
    """Remembers which sound greets each user when they join a voice channel.

    Stored as a JSON object of ``{guild_id: {user_id: sound_file_name}}``. File access runs in
    the default executor and writes are serialized.

    Args:
        filename: Path to the JSON file. Created on first write if missing.

    """
    def __init__(self, filename: str) -> None:
        self.filename = filename
        self._lock = asyncio.Lock()

    async def get(self, guild_id: str, user_id: str) -> Optional[str]:
        """Retrieves a user's entrance sound.

        Args:
            guild_id: Server the sound was set in.
            user_id: User to look up.

        Returns:
            Sound file name, ``None`` if the user has no entrance sound.

        Raises:
            filmklub.exceptions.StoreError: If the file cannot be read.

        """
        loop = asyncio.get_running_loop()
        sounds = await loop.run_in_executor(None, self._load)
        return sounds.get(guild_id, {}).get(user_id)

    async def set(self, guild_id: str, user_id: str, sound: str) -> None:
        """Sets a user's entrance sound.

        Args:
            guild_id: Server to set the sound in.
            user_id: User to update.
            sound: Sound file name.

        """
        def change(sounds: EntranceMap) -> bool:
            sounds.setdefault(guild_id, {})[user_id] = sound
            return True
        await self._update(change)

    async def remove(self, guild_id: str, user_id: str) -> None:
        """Clears a user's entrance sound."""
        def change(sounds: EntranceMap) -> bool:
            if user_id not in sounds.get(guild_id, {}):
                return False
            del sounds[guild_id][user_id]
            if len(sounds[guild_id]) == 0:
                del sounds[guild_id]
            return True
        await self._update(change)

    async def _update(self, change: Callable[[EntranceMap], bool]) -> None:
        loop = asyncio.get_running_loop()
        async with self._lock:
            sounds = await loop.run_in_executor(None, self._load)
            if change(sounds):
                await loop.run_in_executor(None, lambda: self._save(sounds))

    def _load(self) -> EntranceMap:
        if not os.path.exists(self.filename):
            return {}
        try:
            with open(self.filename, "r", encoding="utf-8") as f:
                return {
                    str(guild_id): {str(k): str(v) for k, v in users.items()}
                    for guild_id, users in json.load(f).items()
                }
        except (OSError, ValueError, AttributeError) as e:
            log.error(f"Error loading entrance sounds: {e}")
            raise filmklub.exceptions.StoreError(f"Failed to read {self.filename}") from e

    def _save(self, sounds: EntranceMap) -> None:
        try:
            with open(self.filename, "w", encoding="utf-8") as f:
                json.dump(sounds, f, indent=2)
        except OSError as e:
            log.error(f"Error saving entrance sounds: {e}")
            raise filmklub.exceptions.StoreError(f"Failed to write {self.filename}") from e
