"""Reads and writes the movie night document."""
import asyncio
import json
import os
from typing import Callable, TypeVar

import filmklub.exceptions
from filmklub.types import MovieNightData

import logging
log = logging.getLogger(__name__)


T = TypeVar("T")


class MovieNightStore():
    """Holds the movie night document in a single JSON file.

    Every read loads the whole document and every update rewrites it wholesale. Updates made
    through the same store object are applied one at a time. Nothing protects the file from
    other writers, whose changes can be lost, and a failed write leaves the previous file in
    an unknown state.

    Args:
        filename: Path to the JSON document. Created on first write if missing.

    Attributes:
        filename (str): Path to the JSON document.

    """
    def __init__(self, filename: str) -> None:
        self.filename = filename
        self._lock = asyncio.Lock()

    async def read(self) -> MovieNightData:
        """Loads a fresh copy of the document.

        Returns:
            The document, empty if the file does not exist yet.

        Raises:
            filmklub.exceptions.StoreError: If the file cannot be read or decoded.

        """
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._load)

    async def update(self, function: Callable[[MovieNightData], T]) -> T:
        """Applies a change to the document and writes it back.

        The function receives a freshly loaded document and mutates it in place. If it raises,
        nothing is written and the exception propagates to the caller.

        Args:
            function: Mutates the document, may return a value.

        Returns:
            Whatever ``function`` returned.

        Raises:
            filmklub.exceptions.StoreError: If the file cannot be read or written.

        """
        loop = asyncio.get_running_loop()
        async with self._lock:
            data = await loop.run_in_executor(None, self._load)
            result = function(data)
            await loop.run_in_executor(None, lambda: self._save(data))
            return result

    def _load(self) -> MovieNightData:
        if not os.path.exists(self.filename):
            return MovieNightData()
        try:
            with open(self.filename, "r", encoding="utf-8") as f:
                return MovieNightData.from_dict(json.load(f))
        except (OSError, ValueError, KeyError, TypeError) as e:
            log.error(f"Failed to read {self.filename}: {e}")
            raise filmklub.exceptions.StoreError(f"Failed to read {self.filename}") from e

    def _save(self, data: MovieNightData) -> None:
        try:
            with open(self.filename, "w", encoding="utf-8") as f:
                json.dump(data.to_dict(), f, indent=2)
        except OSError as e:
            log.error(f"Failed to write {self.filename}: {e}")
            raise filmklub.exceptions.StoreError(f"Failed to write {self.filename}") from e
