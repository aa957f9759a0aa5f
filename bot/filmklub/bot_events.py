"""Event triggers for Discord client to drive movie nights and voice sessions."""
import asyncio
import discord
from typing import Any, Awaitable, Callable, Optional

import filmklub.bot_commands
import filmklub.exceptions
import filmklub.utils
from filmklub.types import EventStatus
import filmklub

import logging
log = logging.getLogger(__name__)


def bot_ready(function: Callable[..., Awaitable[None]]) -> Callable[..., Awaitable[None]]:
    """Decorator that awaits execution of a function until Discord client is ready."""
    async def wrapper(*args: Any, **kwargs: Any) -> None:
        await filmklub.bot.wait_until_ready()
        await function(*args, **kwargs)
    wrapper.__name__ = function.__name__
    return wrapper


def _event_status(status: Optional[discord.EventStatus]) -> Optional[EventStatus]:
    if status is None:
        return None
    try:
        return EventStatus(status.value)
    except ValueError:
        return None


async def _join(channel: discord.VoiceChannel) -> None:
    try:
        await filmklub.state.voice.ensure_joined(channel)
    except (discord.DiscordException, asyncio.TimeoutError) as e:
        log.warning(f"Failed to join {channel.guild.id}:{channel.id}: {e}")


async def _play_entrance(member: discord.Member, channel: discord.VoiceChannel) -> None:
    try:
        sound = await filmklub.state.entrance.get(str(member.guild.id), str(member.id))
        if sound is None:
            return
        path = filmklub.state.sounds.path(sound)
        await filmklub.state.voice.play_sound(channel, path, force_switch=True)
    except filmklub.exceptions.NotFoundError:
        log.warning(f"Entrance sound of {member.id} in {member.guild.id} is missing")
    except (
        filmklub.exceptions.StoreError,
        discord.DiscordException,
        asyncio.TimeoutError
    ) as e:
        log.error(f"Failed to play entrance sound of {member.id}: {e}")


@filmklub.bot.event
async def on_ready() -> None:
    log.info("Bot connected to Discord")
    await filmklub.bot_commands.set_prefix(filmklub.state.config.discord.command_prefix or ".")

    # Join wherever people are already hanging out
    for guild in filmklub.bot.guilds:
        if filmklub.state.voice.is_connected(str(guild.id)):
            continue
        channel = next(
            (c for c in guild.voice_channels if filmklub.utils.human_members(c) > 0),
            None
        )
        if channel is not None:
            await _join(channel)


@filmklub.bot.event
@bot_ready
async def on_message(message: discord.Message) -> None:
    if (
        message.author.id == filmklub.bot.user.id
        or isinstance(message.channel, discord.abc.PrivateChannel)
    ):
        return
    await filmklub.bot_commands.parse(message)


@filmklub.bot.event
@bot_ready
async def on_voice_state_update(
    member: discord.Member,
    before: discord.VoiceState,
    after: discord.VoiceState
) -> None:
    guild = member.guild
    if member.id == filmklub.bot.user.id:
        # Kicked, moved out by force or dropped
        if after.channel is None:
            filmklub.state.voice.handle_disconnect(
                str(guild.id),
                str(before.channel.id) if before.channel is not None else None
            )
        return
    if member.bot:
        return
    leave_delay = filmklub.state.config.soundboard.leave_delay
    if before.channel is None and after.channel is not None:
        if not filmklub.state.voice.is_connected(str(guild.id)):
            await _join(after.channel)
        await _play_entrance(member, after.channel)
    elif before.channel is not None and after.channel is None:
        filmklub.state.voice.leave_if_alone(guild, leave_delay)
    elif (
        before.channel is not None and after.channel is not None
        and before.channel.id != after.channel.id
    ):
        filmklub.state.voice.leave_if_alone(guild, leave_delay)
        await _play_entrance(member, after.channel)


@filmklub.bot.event
@bot_ready
async def on_scheduled_event_update(
    before: discord.ScheduledEvent,
    after: discord.ScheduledEvent
) -> None:
    new_status = _event_status(after.status)
    if new_status is None:
        return
    await filmklub.state.movie_night.on_event_status_change(
        str(after.id),
        after.name,
        _event_status(before.status),
        new_status
    )


@filmklub.bot.event
@bot_ready
async def on_scheduled_event_delete(event: discord.ScheduledEvent) -> None:
    await filmklub.state.movie_night.on_event_deleted(str(event.id), event.name)
