import pytest
from unittest.mock import Mock, patch

import asyncio
import uuid

import filmklub.audio
import filmklub.exceptions
import filmklub.voice
from filmklub.audio import Status


class FakeStream():
    def read(self):
        return b""

    def stop(self):
        pass


class FakeConnection(filmklub.audio.VoiceConnection):
    def __init__(self, channel):
        self._channel_id = str(channel.id)
        self.connected = True
        self.subscribed = []
        self.destroyed = False

    @property
    def channel_id(self):
        return self._channel_id

    def is_connected(self):
        return self.connected

    def subscribe(self, task):
        self.subscribed.append(task)

    def unsubscribe(self, task):
        if task in self.subscribed:
            self.subscribed.remove(task)

    async def destroy(self):
        self.connected = False
        self.destroyed = True


class FakeTransport(filmklub.audio.AudioTransport):
    def __init__(self):
        self.connections = []
        self.error = None

    async def connect(self, channel):
        # Give other coroutines a chance to interleave
        await asyncio.sleep(0.01)
        if self.error is not None:
            raise self.error
        connection = FakeConnection(channel)
        self.connections.append(connection)
        return connection

    def create_task(self, path):
        return filmklub.audio.PlaybackTask(path, FakeStream())


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def manager(transport, timers):
    return filmklub.voice.VoiceSessionManager(transport, timers, idle_grace=0.01)


@pytest.fixture
def guild():
    mock_guild = Mock()
    mock_guild.id = uuid.uuid4().int
    mock_guild.channels = {}
    mock_guild.get_channel.side_effect = lambda channel_id: mock_guild.channels.get(channel_id)
    return mock_guild


@pytest.fixture
def channel(guild):
    def make_channel(humans=1):
        mock_channel = Mock()
        mock_channel.id = uuid.uuid4().int
        mock_channel.guild = guild
        mock_channel.members = [Mock(bot=True)] + [Mock(bot=False) for _ in range(humans)]
        guild.channels[mock_channel.id] = mock_channel
        return mock_channel
    return make_channel


@pytest.fixture
def sound(tmp_path):
    path = tmp_path / "airhorn.mp3"
    path.write_bytes(b"\0")
    return str(path)


@pytest.mark.asyncio
async def test_rapid_plays_share_connection(manager, transport, channel, guild, sound):
    voice_channel = channel()
    first, second = await asyncio.gather(
        manager.play_sound(voice_channel, sound),
        manager.play_sound(voice_channel, sound)
    )
    assert len(transport.connections) == 1
    session = manager.sessions[str(guild.id)]
    assert session.tasks == [first, second]
    assert transport.connections[0].subscribed == [first, second]
    assert first.status is Status.PLAYING
    assert manager.is_connected(str(guild.id))


@pytest.mark.asyncio
async def test_play_missing_sound(manager, transport, channel, tmp_path):
    with pytest.raises(filmklub.exceptions.NotFoundError):
        await manager.play_sound(channel(), str(tmp_path / "missing.mp3"))
    assert transport.connections == []


@pytest.mark.asyncio
async def test_ensure_joined(manager, transport, channel, guild):
    first_channel = channel()
    other_channel = channel()

    session = await manager.ensure_joined(first_channel)
    await manager.ensure_joined(first_channel)
    assert len(transport.connections) == 1
    assert session.channel_id == str(first_channel.id)

    # Stays put unless asked to switch
    await manager.ensure_joined(other_channel)
    assert len(transport.connections) == 1
    assert session.channel_id == str(first_channel.id)

    await manager.ensure_joined(other_channel, force_switch=True)
    assert len(transport.connections) == 2
    assert transport.connections[0].destroyed
    assert session.channel_id == str(other_channel.id)


@pytest.mark.asyncio
async def test_ensure_joined_stale_connection(manager, transport, channel):
    voice_channel = channel()
    session = await manager.ensure_joined(voice_channel)
    # Dropped without a notification
    transport.connections[0].connected = False

    await manager.ensure_joined(voice_channel)
    assert len(transport.connections) == 2
    assert session.connection is transport.connections[1]


@pytest.mark.asyncio
async def test_connect_failure(manager, transport, channel, guild):
    transport.error = asyncio.TimeoutError()
    with pytest.raises(asyncio.TimeoutError):
        await manager.ensure_joined(channel())
    assert not manager.is_connected(str(guild.id))
    assert manager.sessions[str(guild.id)].connection is None


@pytest.mark.asyncio
async def test_play_switches_channel(manager, transport, channel, guild, sound):
    first_channel = channel()
    other_channel = channel()
    old_task = await manager.play_sound(first_channel, sound)

    # Not forced, plays where the bot already is
    task = await manager.play_sound(other_channel, sound)
    assert len(transport.connections) == 1
    assert task in transport.connections[0].subscribed

    new_task = await manager.play_sound(other_channel, sound, force_switch=True)
    assert len(transport.connections) == 2
    session = manager.sessions[str(guild.id)]
    assert session.tasks == [new_task]
    assert session.channel_id == str(other_channel.id)
    assert old_task not in transport.connections[1].subscribed
    assert transport.connections[0].destroyed


@pytest.mark.asyncio
async def test_subscribe_failure(manager, transport, channel, guild, sound):
    voice_channel = channel()
    await manager.ensure_joined(voice_channel)

    def fail(task):
        raise RuntimeError("player broke")
    transport.connections[0].subscribe = fail
    with pytest.raises(RuntimeError):
        await manager.play_sound(voice_channel, sound)
    assert manager.sessions[str(guild.id)].tasks == []


@pytest.mark.asyncio
async def test_leave_if_alone_debounced(manager, transport, channel, guild):
    voice_channel = channel(humans=0)
    await manager.ensure_joined(voice_channel)

    with patch.object(manager, "is_alone", wraps=manager.is_alone) as mock_is_alone:
        for _ in range(3):
            manager.leave_if_alone(guild, delay=0.01)
        await asyncio.sleep(0.05)
        assert mock_is_alone.call_count == 1

    assert not manager.is_connected(str(guild.id))
    assert transport.connections[0].destroyed


@pytest.mark.asyncio
async def test_leave_if_not_alone(manager, transport, channel, guild):
    voice_channel = channel(humans=1)
    await manager.ensure_joined(voice_channel)
    assert not manager.is_alone(guild)

    manager.leave_if_alone(guild, delay=0.01)
    await asyncio.sleep(0.05)
    assert manager.is_connected(str(guild.id))

    # Everyone left in the meantime
    voice_channel.members = [m for m in voice_channel.members if m.bot]
    assert manager.is_alone(guild)


@pytest.mark.asyncio
async def test_handle_disconnect(manager, transport, channel, guild, sound, timers):
    voice_channel = channel(humans=0)
    task = await manager.play_sound(voice_channel, sound)
    session = manager.sessions[str(guild.id)]
    manager.leave_if_alone(guild, delay=1)

    # Kicked: the notification arrives while the client still reports connected
    manager.handle_disconnect(str(guild.id), str(voice_channel.id))
    assert session.tasks == []
    assert session.connection is None
    assert ("leave", str(guild.id)) not in timers
    assert task.status is Status.IDLE
    assert transport.connections[0].subscribed == []

    # Unknown guild
    manager.handle_disconnect("0")


@pytest.mark.asyncio
async def test_handle_disconnect_after_switch(manager, transport, channel, guild, sound):
    first_channel = channel()
    other_channel = channel()
    await manager.ensure_joined(first_channel)
    task = await manager.play_sound(other_channel, sound, force_switch=True)
    session = manager.sessions[str(guild.id)]

    # Belongs to the connection that was replaced
    manager.handle_disconnect(str(guild.id), str(first_channel.id))
    assert session.tasks == [task]
    assert session.is_connected()

    # Channel unknown, assume the current connection is gone
    manager.handle_disconnect(str(guild.id))
    assert session.tasks == []
    assert session.connection is None


@pytest.mark.asyncio
async def test_finished_tasks_are_removed(manager, transport, channel, guild, sound):
    voice_channel = channel()
    finished = await manager.play_sound(voice_channel, sound)
    broken = await manager.play_sound(voice_channel, sound)
    session = manager.sessions[str(guild.id)]

    broken._change_status(Status.ERROR)
    await asyncio.sleep(0)
    assert broken not in session.tasks

    finished._change_status(Status.IDLE)
    await asyncio.sleep(0)
    assert finished in session.tasks
    await asyncio.sleep(0.05)
    assert session.tasks == []
    assert transport.connections[0].subscribed == []


@pytest.mark.asyncio
async def test_close(manager, transport, channel):
    await manager.ensure_joined(channel())
    await manager.close()
    assert transport.connections[0].destroyed
    await manager.disconnect("0")
