"""Bot commands issued by Discord chat."""
import discord
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple
from typing_extensions import Final

import filmklub.catalog
import filmklub.exceptions
import filmklub.movie_night
import filmklub.soundboard
import filmklub.utils
import filmklub

import logging
log = logging.getLogger(__name__)


# With how generator routing works some kind of global soup was inevitable
_COMMAND_PREFIX = "."
_COMMANDS = {}
_COMMAND_HELP: List[Tuple[Tuple[str, ...], str]] = []
_EMBED_COLOUR: Final = 14721770
_EMBED_DESCRIPTION_MAX_LENGTH: Final = 4096
_NICKNAME_MAX_LENGTH: Final = 32
_EMOJI: Final[Dict[str, Any]] = {
    "ok": "\u2B55",
    "error": "\u274C",
    "loading": "\U0001F504",
    "sound": "\U0001F3B5",
    "movie": "\U0001F3AC"
}


CommandCallbackType = Callable[[discord.Message, str], Awaitable[None]]


def command(
    *args: str,
    help: str = "No description",
    require_manage_nicknames: bool = False
) -> Callable[[CommandCallbackType], CommandCallbackType]:
    """Decorator to bind bot commands to a given function.

    Callback function should accept a ``discord.Message`` and ``str`` as its parameters.
    Client errors raised by the callback are reported back to the channel.

    Args:
        *args: Commands to be bound to this function.
        help: Descriptive message provided when help command is called.
        require_manage_nicknames: Require the manage nicknames permission to use command.

    """
    def decorator(function: CommandCallbackType) -> CommandCallbackType:
        async def wrapper(message: discord.Message, params: str) -> None:
            # Check if command requires nickname privileges
            if (
                require_manage_nicknames and
                not filmklub.utils.can_manage_nicknames(message.author)
            ):
                await message.channel.send(
                    f"{_EMOJI['error']} This command requires the Manage Nicknames permission"
                )
                return
            # Run command
            try:
                return await function(message, params)
            except filmklub.exceptions.ClientError as error:
                await message.channel.send(f"{_EMOJI['error']} {error.message}")
            except filmklub.exceptions.MalformedFile as error:
                await message.channel.send(f"{_EMOJI['error']} {error}")
            except (
                filmklub.exceptions.ExternalServiceError,
                filmklub.exceptions.StoreError
            ) as error:
                log.error(f"Command {args[0]} failed: {error}")
                await message.channel.send(f"{_EMOJI['error']} Not feeling up to it, sorry!")

        for arg in args:
            _COMMANDS[arg] = wrapper
        _COMMAND_HELP.append((args, help))
        return wrapper
    return decorator


async def parse(message: discord.Message) -> None:
    """Parses a message for commands and dispatches to a matching callback.

    Messages that don't match a known command are ignored.

    Args:
        message: Message to be run.

    """
    # Check that message is using command syntax
    if (
        not message.content.startswith(_COMMAND_PREFIX)
        or len(message.content) <= len(_COMMAND_PREFIX)
    ):
        return
    # Separate message command and parameters by the first space and strip the prefix
    command, _, params = message.content[len(_COMMAND_PREFIX):].partition(" ")
    try:
        if command in _COMMANDS:
            log.debug(f"[{message.author.name}:{message.author.id}] "
                      f"{message.content} -> {message.guild.name}")
            await _COMMANDS[command](message, params.strip())
    except discord.errors.Forbidden as e:
        log.warning(f"Failure using Discord API in "
                    f"{message.guild.name}({message.guild.id}): {e.text}")


async def set_prefix(prefix: str) -> None:
    """Sets the prefix used to trigger bot commands. Updates client presence to show help command.

    Args:
        prefix: Command prefix.

    """
    global _COMMAND_PREFIX
    _COMMAND_PREFIX = prefix
    await filmklub.bot.change_presence(
        activity=discord.Activity(
            name=f"{_COMMAND_PREFIX}help",
            type=discord.ActivityType.listening
        )
    )


def split_movie_reference(params: str) -> Tuple[Optional[str], Optional[str]]:
    """Splits ``suggest`` parameters into an IMDb reference and a name query.

    A leading URL or title ID is taken as the reference, anything else as the query.

    Args:
        params: Command parameters.

    Returns:
        Tuple of the title reference and the search query, either may be ``None``.

    """
    reference, _, rest = params.strip().partition(" ")
    if (
        reference.startswith("http://") or reference.startswith("https://")
        or filmklub.catalog.TITLE_ID_REGEX.match(reference) is not None
    ):
        return reference, rest.strip() or None
    return None, params.strip() or None


def _voice_channel(message: discord.Message) -> Any:
    message_voice = message.author.voice
    if message_voice is None or message_voice.channel is None:
        raise filmklub.exceptions.NotFoundError("You aren't in a voice channel (that I can see)")
    return message_voice.channel


@command("help", "?", help="Shows this potentially useful message")
async def help(message: discord.Message, params: str) -> None:
    help_message = discord.Embed(
        title="Help info",
        description=(
            "**{}** runs movie nights and plays sounds in voice channels\n\n" +
            "**Commands**"
        ).format(filmklub.bot.user.name),
        color=_EMBED_COLOUR
    )
    for cmd in _COMMAND_HELP:
        name = ", ".join([f"`{_COMMAND_PREFIX}{c}`" for c in cmd[0]])
        help_message.add_field(
            name=name,
            value=cmd[1],
            inline=False
        )
    await message.channel.send("", embed=help_message)


@command("suggest", help="Suggests a movie by `<IMDB URL>` or `<NAME>`")
async def suggest(message: discord.Message, params: str) -> None:
    title_id, query = split_movie_reference(params)
    response = await message.channel.send(f"{_EMOJI['loading']} Looking it up...")
    try:
        movie, details = await filmklub.state.movie_night.suggest(
            str(message.author.id),
            title_id=title_id,
            query=query
        )
    except Exception:
        await response.delete()
        raise
    # Build an embedded (nice looking) message that describes the movie
    movie_info = discord.Embed(
        title=f"{details.title} ({details.year or 'N/A'})",
        url=details.url,
        description=filmklub.catalog.truncate(details.plot) if details.plot else None,
        color=_EMBED_COLOUR
    )
    if details.poster is not None:
        movie_info.set_thumbnail(url=details.poster)
    movie_info.add_field(
        name="IMDb Rating",
        value=filmklub.catalog.rating_text(details),
        inline=True
    )
    await response.edit(
        content=f"{_EMOJI['ok']} Movie added: **{movie.movie_name}**",
        embed=movie_info
    )


@command("vote", help="Starts a poll to pick the next movie")
async def vote(message: discord.Message, params: str) -> None:
    await filmklub.state.movie_night.open_vote(str(message.channel.id))


@command("start", help="Ends the poll and schedules a movie night for the winner")
async def start(message: discord.Message, params: str) -> None:
    _, details = await filmklub.state.movie_night.start(
        str(message.guild.id),
        str(message.channel.id)
    )
    await message.channel.send(
        f"{_EMOJI['movie']} Movie night scheduled: **{details.title}** ({details.url})"
    )


@command("history", help="Shows the most recent movie nights and their ratings")
async def history(message: discord.Message, params: str) -> None:
    nights = await filmklub.state.movie_night.history()
    if len(nights) == 0:
        await message.channel.send(f"{_EMOJI['error']} No movie nights yet")
        return
    history_message = discord.Embed(
        title="Movie night history",
        description="\n".join(
            f"{i}. {filmklub.movie_night.format_night(n)}" for i, n in enumerate(nights, 1)
        ),
        color=_EMBED_COLOUR
    )
    await message.channel.send("", embed=history_message)


@command("rate", help="Starts a poll to rate the last movie night")
async def rate(message: discord.Message, params: str) -> None:
    await filmklub.state.movie_night.request_rating(str(message.channel.id))


@command("sounds", help="Lists the soundboard sounds")
async def sounds(message: discord.Message, params: str) -> None:
    names = filmklub.state.sounds.names()
    if len(names) == 0:
        await message.channel.send(f"{_EMOJI['error']} No sounds uploaded yet")
        return
    description = ", ".join(f"`{name}`" for name in names)
    if len(description) > _EMBED_DESCRIPTION_MAX_LENGTH:
        description = filmklub.catalog.truncate(description, _EMBED_DESCRIPTION_MAX_LENGTH - 3)
    sound_list = discord.Embed(
        title=f"{_EMOJI['sound']} Sounds",
        description=description,
        color=_EMBED_COLOUR
    )
    await message.channel.send("", embed=sound_list)


@command("play", "p", help="Plays a `<SOUND>` in your voice channel")
async def play(message: discord.Message, params: str) -> None:
    channel = _voice_channel(message)
    path = filmklub.state.sounds.path(params)
    await filmklub.state.voice.play_sound(channel, path, force_switch=True)


@command(
    "upload",
    help="Adds the attached file as `<NAME>`. Add `entrance` to make it your entrance sound"
)
async def upload(message: discord.Message, params: str) -> None:
    if len(message.attachments) == 0:
        raise filmklub.exceptions.NotFoundError("Attach a sound file to upload")
    name, entrance = params, False
    head, _, tail = params.rpartition(" ")
    if head and tail.lower() == "entrance":
        name, entrance = head, True
    response = await message.channel.send(f"{_EMOJI['loading']} Processing...")
    try:
        data = await message.attachments[0].read()
        filename = await filmklub.state.sounds.save(name, data)
        if entrance:
            await filmklub.state.entrance.set(
                str(message.guild.id), str(message.author.id), filename
            )
    except Exception:
        await response.delete()
        raise
    await response.edit(content=(
        f"{_EMOJI['ok']} Added `{filmklub.soundboard.display_name(filename)}`"
        + (" as your entrance sound" if entrance else "")
    ))


@command("entrance", help="Sets your entrance `<SOUND>`. Leave empty to remove it")
async def entrance(message: discord.Message, params: str) -> None:
    guild_id, user_id = str(message.guild.id), str(message.author.id)
    if len(params) == 0:
        await filmklub.state.entrance.remove(guild_id, user_id)
        await message.channel.send(f"{_EMOJI['ok']} Removed your entrance sound")
        return
    # Raises if the sound doesn't exist
    filmklub.state.sounds.path(params)
    await filmklub.state.entrance.set(guild_id, user_id, filmklub.soundboard.file_name(params))
    await message.channel.send(f"{_EMOJI['ok']} Entrance sound set to `{params}`")


@command("join", "j", help="Joins your voice channel")
async def join(message: discord.Message, params: str) -> None:
    channel = _voice_channel(message)
    await filmklub.state.voice.ensure_joined(channel, force_switch=True)


@command("leave", "l", help="Leaves the voice channel")
async def leave(message: discord.Message, params: str) -> None:
    await filmklub.state.voice.disconnect(str(message.guild.id))


@command(
    "nick",
    help="Changes the nickname of a `<@MEMBER>`. Leave the nickname empty to reset it",
    require_manage_nicknames=True
)
async def nick(message: discord.Message, params: str) -> None:
    if len(message.mentions) == 0:
        raise filmklub.exceptions.NotFoundError("Mention the member to rename")
    if not filmklub.utils.can_manage_nicknames(message.guild.me):
        raise filmklub.exceptions.ClientError("I need the Manage Nicknames permission for that")
    member = message.mentions[0]
    # Whatever follows the mention is the new nickname
    _, _, nickname = params.partition(" ")
    nickname = nickname.strip()
    if len(nickname) > _NICKNAME_MAX_LENGTH:
        raise filmklub.exceptions.ClientError(
            f"Nicknames can't be longer than {_NICKNAME_MAX_LENGTH} characters"
        )
    try:
        await member.edit(nick=nickname or None)
    except discord.Forbidden:
        raise filmklub.exceptions.ClientError(f"I'm not allowed to rename {member.display_name}")
    if nickname:
        await message.channel.send(f"{_EMOJI['ok']} Renamed {member.mention} to **{nickname}**")
    else:
        await message.channel.send(f"{_EMOJI['ok']} Reset the nickname of {member.mention}")
