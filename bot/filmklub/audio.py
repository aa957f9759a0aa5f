"""Sound playback on Discord voice connections."""
import array
import asyncio
import atexit
import discord
import enum
import subprocess
import threading
import uuid
from typing import cast, Any, Callable, List, Optional, Sequence
from typing_extensions import Final

import logging
log = logging.getLogger(__name__)


FRAME_SIZE: Final = discord.opus.Encoder.FRAME_SIZE
SAMPLE_MIN: Final = -32768
SAMPLE_MAX: Final = 32767


class Status(enum.IntEnum):
    """Playback status of a sound."""
    IDLE = 0
    PLAYING = 1
    ERROR = 2


class FfmpegStream():
    """Decodes an audio file into raw PCM frames with an ffmpeg process.

    Output matches what the Discord opus encoder expects: 48kHz, stereo, signed 16-bit little
    endian samples.

    Args:
        path: Path to the audio file.

    """
    def __init__(self, path: str) -> None:
        self.path = path
        process_options = [
            "ffmpeg",
            "-i", path,
            "-f", "s16le",
            "-ac", str(discord.opus.Encoder.CHANNELS),
            "-ar", str(discord.opus.Encoder.SAMPLING_RATE),
            "-acodec", "pcm_s16le",
            "-vn",
            "-loglevel", "quiet",
            "pipe:1"
        ]
        self._process = subprocess.Popen(
            process_options,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE
        )
        # Ensure ffmpeg processes are cleaned up at exit
        atexit.register(self.stop)

    def read(self) -> bytes:
        """Returns the next frame of PCM data, shorter than a full frame at the end of the file."""
        return cast(bytes, self._process.stdout.read(FRAME_SIZE))

    def stop(self) -> None:
        """Stops the ffmpeg process if it is still running."""
        try:
            if self._process.poll() is None:
                self._process.kill()
            self._process.stdout.close()
        except OSError as e:
            log.debug(f"ffmpeg cleanup for {self.path} failed: {e}")
        finally:
            atexit.unregister(self.stop)


class PlaybackTask():
    """A single sound being played on a voice connection.

    Frames are pulled from the player thread through :meth:`read`. Status changes are delivered
    to ``on_status_change`` on the event loop that started the task.

    Args:
        path: Path to the sound file.
        stream: Decoded frame source, needs ``read()`` and ``stop()`` methods.

    Attributes:
        id (str): Unique 32 character long ID.
        path (str): Path to the sound file.
        status (filmklub.audio.Status): Current playback status.
        on_status_change (Optional[Callable]): Called with the task and its new status.

    """
    StatusCallbackType = Callable[["PlaybackTask", Status], None]

    def __init__(self, path: str, stream: Any) -> None:
        self.id = uuid.uuid4().hex
        self.path = path
        self.status = Status.IDLE
        self.on_status_change: Optional[PlaybackTask.StatusCallbackType] = None
        self._stream = stream
        self._stopped = False
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    def start(self) -> None:
        """Marks the task as playing. Must be called from the event loop."""
        self._loop = asyncio.get_running_loop()
        self._change_status(Status.PLAYING)

    def read(self) -> bytes:
        """Returns the next full frame of PCM data, or an empty byte string once finished."""
        if self.status is not Status.PLAYING:
            return b""
        try:
            data = self._stream.read()
        except Exception as e:
            log.error(f"Audio stream error for {self.path}: {e}")
            self._change_status(Status.ERROR)
            return b""
        if len(data) < FRAME_SIZE:
            self._change_status(Status.IDLE)
            if len(data) == 0:
                return b""
            # Pad out the final partial frame with silence
            return data + bytes(FRAME_SIZE - len(data))
        return data

    def stop(self) -> None:
        """Stops decoding. Safe to call more than once."""
        if self._stopped:
            return
        self._stopped = True
        if self.status is Status.PLAYING:
            self.status = Status.IDLE
        self._stream.stop()

    def _change_status(self, status: Status) -> None:
        self.status = status
        if self._loop is not None and self.on_status_change is not None:
            # May be called from the player thread
            self._loop.call_soon_threadsafe(self.on_status_change, self, status)


def mix(frames: Sequence[bytes]) -> bytes:
    """Mixes PCM frames of equal length into one by summing their samples.

    Args:
        frames: Signed 16-bit PCM frames.

    Returns:
        Mixed frame, with samples clipped to the 16-bit range.

    """
    if len(frames) == 1:
        return frames[0]
    channels = [array.array("h", frame) for frame in frames]
    mixed = array.array("h", (
        max(SAMPLE_MIN, min(SAMPLE_MAX, sum(samples)))
        for samples in zip(*channels)
    ))
    return mixed.tobytes()


class Mixer(discord.AudioSource):
    """Provides a single audio source for a voice connection that plays any number of sounds.

    discord.py can only play one source per voice connection, so every playback task on the
    connection is read and mixed together frame by frame.

    """
    def __init__(self) -> None:
        self._tasks: List[PlaybackTask] = []
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._tasks)

    def add(self, task: PlaybackTask) -> None:
        with self._lock:
            self._tasks.append(task)

    def remove(self, task: PlaybackTask) -> None:
        with self._lock:
            if task in self._tasks:
                self._tasks.remove(task)

    def clear(self) -> None:
        with self._lock:
            self._tasks = []

    def is_active(self) -> bool:
        """Checks if any task still has frames to give."""
        with self._lock:
            return any(task.status is Status.PLAYING for task in self._tasks)

    def read(self) -> bytes:
        """Returns one mixed frame, or an empty byte string when nothing is playing."""
        with self._lock:
            tasks = list(self._tasks)
        frames = [frame for frame in (task.read() for task in tasks) if len(frame) > 0]
        if len(frames) == 0:
            # Empty read stops the player, it is restarted by the next subscription
            return b""
        return mix(frames)

    def is_opus(self) -> bool:
        """Produces raw PCM audio data."""
        return False

    def cleanup(self) -> None:
        """Tasks are cleaned up by their owner, the player restarts this source."""
        pass


class VoiceConnection():
    """A live connection to a voice channel that playback tasks can subscribe to."""

    @property
    def channel_id(self) -> str:
        raise NotImplementedError

    def is_connected(self) -> bool:
        raise NotImplementedError

    def subscribe(self, task: PlaybackTask) -> None:
        """Starts playing a task on this connection, alongside anything already playing."""
        raise NotImplementedError

    def unsubscribe(self, task: PlaybackTask) -> None:
        raise NotImplementedError

    async def destroy(self) -> None:
        """Disconnects from the voice channel."""
        raise NotImplementedError


class AudioTransport():
    """Opens voice connections and decodes sounds for them."""

    async def connect(self, channel: discord.abc.Connectable) -> VoiceConnection:
        raise NotImplementedError

    def create_task(self, path: str) -> PlaybackTask:
        raise NotImplementedError


class DiscordVoiceConnection(VoiceConnection):
    """Voice connection backed by a ``discord.VoiceClient``.

    Args:
        voice: Connected discord.py voice client.

    """
    def __init__(self, voice: discord.VoiceClient) -> None:
        self._voice = voice
        self._mixer = Mixer()
        self._loop = asyncio.get_running_loop()

    @property
    def channel_id(self) -> str:
        return str(self._voice.channel.id)

    def is_connected(self) -> bool:
        return self._voice.is_connected()

    def subscribe(self, task: PlaybackTask) -> None:
        self._mixer.add(task)
        self._play()

    def unsubscribe(self, task: PlaybackTask) -> None:
        self._mixer.remove(task)

    async def destroy(self) -> None:
        self._mixer.clear()
        if self._voice.is_playing():
            self._voice.stop()
        try:
            await self._voice.disconnect(force=True)
        except asyncio.CancelledError:
            log.warning("Failed to disconnect from channel")

    def _play(self) -> None:
        if not self._voice.is_connected() or self._voice.is_playing() or not self._mixer.is_active():
            return
        self._voice.play(self._mixer, after=self._after)

    def _after(self, error: Optional[Exception]) -> None:
        # Runs in the player thread
        if error is not None:
            log.error(f"Voice player error in {self.channel_id}: {error}")
        # A sound may have been subscribed while the player was winding down
        self._loop.call_soon_threadsafe(self._play)


class DiscordAudioTransport(AudioTransport):
    """Connects to voice channels with discord.py and decodes sounds with ffmpeg."""

    async def connect(self, channel: discord.abc.Connectable) -> VoiceConnection:
        voice = await channel.connect(timeout=5, self_deaf=False, self_mute=False)
        return DiscordVoiceConnection(cast(discord.VoiceClient, voice))

    def create_task(self, path: str) -> PlaybackTask:
        return PlaybackTask(path, FfmpegStream(path))
