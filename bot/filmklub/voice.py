"""Per-guild voice connections and soundboard playback."""
import asyncio
import discord
import os
from typing import Dict, List, Optional

import filmklub.exceptions
import filmklub.utils
from filmklub.audio import AudioTransport, PlaybackTask, Status, VoiceConnection
from filmklub.timers import Timers

import logging
log = logging.getLogger(__name__)


class VoiceSession():
    """Voice state of a single guild.

    Args:
        guild_id: Guild the session belongs to.

    Attributes:
        guild_id (str): Guild the session belongs to.
        connection (Optional[filmklub.audio.VoiceConnection]): Current connection, ``None``
            while disconnected.
        tasks (List[filmklub.audio.PlaybackTask]): Sounds playing on the connection.

    """
    def __init__(self, guild_id: str) -> None:
        self.guild_id = guild_id
        self.connection: Optional[VoiceConnection] = None
        self.tasks: List[PlaybackTask] = []
        self.lock = asyncio.Lock()

    @property
    def channel_id(self) -> Optional[str]:
        if self.connection is None:
            return None
        return self.connection.channel_id

    def is_connected(self) -> bool:
        return self.connection is not None and self.connection.is_connected()

    def remove_task(self, task: PlaybackTask) -> None:
        task.stop()
        if task in self.tasks:
            self.tasks.remove(task)
        if self.connection is not None:
            self.connection.unsubscribe(task)

    def stop_tasks(self) -> None:
        for task in list(self.tasks):
            self.remove_task(task)


class VoiceSessionManager():
    """Owns every voice connection of the bot, at most one per guild.

    Callers ask to join, switch or play and never touch connections directly. Joins are
    serialized per guild, so concurrent requests for the same guild never open two connections.

    Args:
        transport: Opens connections and decodes sounds.
        timers: Where leave checks and task cleanup run.
        idle_grace: Seconds a finished sound stays registered before it is removed.

    Attributes:
        sessions (Dict[str, filmklub.voice.VoiceSession]): Voice sessions indexed by guild ID.

    """
    def __init__(self, transport: AudioTransport, timers: Timers, idle_grace: float = 1.0) -> None:
        self.sessions: Dict[str, VoiceSession] = {}
        self._transport = transport
        self._timers = timers
        self.idle_grace = idle_grace

    def session(self, guild_id: str) -> VoiceSession:
        if guild_id not in self.sessions:
            self.sessions[guild_id] = VoiceSession(guild_id)
        return self.sessions[guild_id]

    def is_connected(self, guild_id: str) -> bool:
        session = self.sessions.get(guild_id)
        return session is not None and session.is_connected()

    def is_alone(self, guild: discord.Guild) -> bool:
        """Checks if nobody but bots is left in the bot's voice channel.

        Args:
            guild: Guild to check.

        Returns:
            `True` if connected to a channel without any non-bot members.

        """
        session = self.sessions.get(str(guild.id))
        if session is None or not session.is_connected() or session.channel_id is None:
            return False
        channel = guild.get_channel(int(session.channel_id))
        if channel is None:
            return False
        return filmklub.utils.human_members(channel) == 0

    async def ensure_joined(
        self,
        channel: discord.abc.GuildChannel,
        force_switch: bool = False
    ) -> VoiceSession:
        """Makes sure the bot is connected to a voice channel in the channel's guild.

        If already connected to a different channel, stays put unless ``force_switch`` is set,
        in which case the old connection and everything playing on it is torn down first.

        Args:
            channel: Voice channel to join.
            force_switch: Move away from another channel in the same guild.

        Returns:
            The guild's voice session.

        """
        session = self.session(str(channel.guild.id))
        async with session.lock:
            await self._ensure_joined(session, channel, force_switch)
        return session

    async def play_sound(
        self,
        channel: discord.abc.GuildChannel,
        path: str,
        force_switch: bool = False
    ) -> PlaybackTask:
        """Plays a sound file in a voice channel, joining it if needed.

        Every call gets its own playback task, so sounds played in quick succession overlap
        instead of cutting each other off.

        Args:
            channel: Voice channel to play in.
            path: Path to the sound file.
            force_switch: Move to ``channel`` if connected elsewhere in the guild.

        Returns:
            The started playback task.

        Raises:
            filmklub.exceptions.NotFoundError: If the sound file does not exist.

        """
        if not os.path.isfile(path):
            raise filmklub.exceptions.NotFoundError("Sound not found")
        session = self.session(str(channel.guild.id))
        async with session.lock:
            switch = (
                force_switch
                and session.is_connected()
                and session.channel_id != str(channel.id)
            )
            connection = await self._ensure_joined(session, channel, switch)
            task = self._transport.create_task(path)
            task.on_status_change = lambda t, s: self._on_task_status(session, t, s)
            session.tasks.append(task)
            try:
                task.start()
                connection.subscribe(task)
            except Exception:
                session.remove_task(task)
                raise
        log.debug(f"Playing {os.path.basename(path)} in {channel.guild.id}:{channel.id}")
        return task

    def leave_if_alone(self, guild: discord.Guild, delay: float = 2.0) -> None:
        """Schedules a check that disconnects the bot if it was left alone.

        Calling this again before the check runs replaces the pending check.

        Args:
            guild: Guild to check.
            delay: Seconds to wait before checking.

        """
        guild_id = str(guild.id)

        async def check() -> None:
            if self.is_alone(guild):
                log.info(f"Alone in {guild_id}, leaving voice")
                await self.disconnect(guild_id)
        self._timers.schedule(("leave", guild_id), delay, check)

    async def disconnect(self, guild_id: str) -> None:
        """Stops everything playing in a guild and leaves its voice channel."""
        session = self.sessions.get(guild_id)
        if session is None:
            return
        async with session.lock:
            await self._teardown(session)

    def handle_disconnect(self, guild_id: str, channel_id: Optional[str] = None) -> None:
        """Cleans up after a connection was closed from outside, e.g. the bot was kicked.

        discord.py reports the disconnect before the voice client marks itself closed, so the
        connection may still look alive here. The notification is ignored only when it names a
        channel other than the current one, which happens when it belongs to a connection that
        was replaced by a channel switch.

        Args:
            guild_id: Guild that lost its connection.
            channel_id: Channel the bot was disconnected from, if known.

        """
        session = self.sessions.get(guild_id)
        if session is None:
            return
        if (
            channel_id is not None and session.channel_id is not None
            and channel_id != session.channel_id
        ):
            log.debug(f"Ignoring disconnect from replaced channel {guild_id}:{channel_id}")
            return
        self._timers.cancel(("leave", guild_id))
        session.stop_tasks()
        session.connection = None
        log.info(f"Voice connection in {guild_id} closed")

    async def close(self) -> None:
        """Leaves every voice channel. Used on shutdown."""
        for guild_id in list(self.sessions):
            await self.disconnect(guild_id)

    async def _ensure_joined(
        self,
        session: VoiceSession,
        channel: discord.abc.GuildChannel,
        force_switch: bool
    ) -> VoiceConnection:
        if session.connection is not None:
            if session.is_connected() and (
                session.channel_id == str(channel.id) or not force_switch
            ):
                return session.connection
            # Either switching, or a stale connection that closed without notifying us
            await self._teardown(session)
        session.connection = await self._transport.connect(channel)
        log.info(f"Joined voice channel {channel.guild.id}:{channel.id}")
        return session.connection

    async def _teardown(self, session: VoiceSession) -> None:
        connection = session.connection
        if connection is None:
            return
        session.stop_tasks()
        session.connection = None
        self._timers.cancel(("leave", session.guild_id))
        await connection.destroy()
        log.info(f"Left voice channel in {session.guild_id}")

    def _on_task_status(self, session: VoiceSession, task: PlaybackTask, status: Status) -> None:
        if status is Status.ERROR:
            log.warning(f"Stopping {os.path.basename(task.path)} after a stream error")
            session.remove_task(task)
        elif status is Status.IDLE:
            task.stop()

            async def remove() -> None:
                session.remove_task(task)
            self._timers.defer(self.idle_grace, remove)
