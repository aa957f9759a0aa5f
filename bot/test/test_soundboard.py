import pytest
from unittest.mock import Mock, patch

import json
import os

import filmklub.exceptions
import filmklub.soundboard


@pytest.fixture
def library(tmp_path):
    return filmklub.soundboard.SoundLibrary(str(tmp_path / "sounds"), max_size=64)


def probe_output(codec_type):
    return Mock(stdout=json.dumps({"streams": [{"codec_type": codec_type}]}).encode("utf-8"))


def test_sounds(library):
    for name in ["bruh.mp3", "Airhorn.mp3", "cheer.mp3", "notes.txt"]:
        with open(os.path.join(library.directory, name), "wb") as f:
            f.write(b"\0")
    os.mkdir(os.path.join(library.directory, "folder.mp3"))

    assert library.sounds() == ["Airhorn.mp3", "bruh.mp3", "cheer.mp3"]
    assert library.names() == ["Airhorn", "bruh", "cheer"]
    assert library.path("bruh") == os.path.abspath(os.path.join(library.directory, "bruh.mp3"))
    assert library.path("bruh.mp3") == library.path("bruh")
    with pytest.raises(filmklub.exceptions.NotFoundError):
        library.path("missing")
    with pytest.raises(filmklub.exceptions.NotFoundError):
        library.path("notes.txt")


@pytest.mark.asyncio
async def test_save(library):
    with patch("filmklub.soundboard.subprocess.run") as mock_run:
        mock_run.return_value = probe_output("audio")
        filename = await library.save(" airhorn ", b"data")
        assert filename == "airhorn.mp3"
        assert library.sounds() == ["airhorn.mp3"]
        assert mock_run.call_args[0][0][0] == "ffprobe"

        with pytest.raises(filmklub.exceptions.DuplicateError):
            await library.save("AIRHORN", b"data")


@pytest.mark.asyncio
async def test_save_rejects(library):
    with patch("filmklub.soundboard.subprocess.run") as mock_run:
        mock_run.return_value = probe_output("video")
        with pytest.raises(filmklub.exceptions.MalformedFile):
            await library.save("clip", b"data")

        mock_run.return_value = Mock(stdout=b"")
        with pytest.raises(filmklub.exceptions.MalformedFile):
            await library.save("empty", b"data")

        with pytest.raises(filmklub.exceptions.MalformedFile):
            await library.save("../escape", b"data")
        with pytest.raises(filmklub.exceptions.MalformedFile):
            await library.save("big", b"\0" * 65)

    # No leftovers from failed uploads
    assert os.listdir(library.directory) == []
