"""Polls, messages and scheduled events through the Discord API"""
import datetime
import discord
from typing import cast, Any, Dict, Optional, Sequence

import filmklub.exceptions
from filmklub.types import EventScheduler, PollAnswer, PollResult, PollService

import logging
log = logging.getLogger(__name__)


def poll_result(message: discord.Message) -> PollResult:
    """Converts a message holding a poll into a :class:`filmklub.types.PollResult`.

    Args:
        message: discord.py message with a poll attached.

    Returns:
        Snapshot of the poll answers in display order.

    """
    poll = cast(discord.Poll, message.poll)
    return PollResult(
        str(message.id),
        [PollAnswer(answer.id, answer.text, answer.vote_count) for answer in poll.answers],
        poll.is_finalised()
    )


class DiscordPolls(PollService):
    """Posts and manages polls as a discord.py client.

    Args:
        client: Logged in discord.py client.

    """
    def __init__(self, client: discord.Client) -> None:
        self._client = client

    async def create_poll(
        self,
        channel_id: str,
        question: str,
        answers: Sequence[str],
        multiselect: bool,
        duration: int
    ) -> str:
        channel = await self._channel(channel_id)
        poll = discord.Poll(
            question=question,
            duration=datetime.timedelta(hours=duration),
            multiple=multiselect
        )
        for answer in answers:
            poll.add_answer(text=answer)
        try:
            message = await channel.send(poll=poll)
        except discord.HTTPException as e:
            raise filmklub.exceptions.ExternalServiceError(f"Failed to post poll: {e}") from e
        return str(message.id)

    async def fetch_poll(self, channel_id: str, message_id: str) -> Optional[PollResult]:
        message = await self._message(channel_id, message_id)
        if message is None or message.poll is None:
            return None
        return poll_result(message)

    async def end_poll(self, channel_id: str, message_id: str) -> PollResult:
        message = await self._message(channel_id, message_id)
        if message is None or message.poll is None:
            raise filmklub.exceptions.NotFoundError("Poll not found")
        try:
            message = await message.end_poll()
        except discord.HTTPException as e:
            raise filmklub.exceptions.ExternalServiceError(f"Failed to end poll: {e}") from e
        return poll_result(message)

    async def delete_message(self, channel_id: str, message_id: str) -> None:
        channel = await self._channel(channel_id)
        try:
            await channel.get_partial_message(int(message_id)).delete()
        except discord.NotFound:
            log.debug(f"Message {message_id} was already deleted")
        except discord.HTTPException as e:
            raise filmklub.exceptions.ExternalServiceError(
                f"Failed to delete message: {e}"
            ) from e

    async def _channel(self, channel_id: str) -> Any:
        channel = self._client.get_channel(int(channel_id))
        if channel is not None:
            return channel
        try:
            return await self._client.fetch_channel(int(channel_id))
        except discord.NotFound:
            raise filmklub.exceptions.NotFoundError("Channel not found")
        except discord.HTTPException as e:
            raise filmklub.exceptions.ExternalServiceError(f"Failed to fetch channel: {e}") from e

    async def _message(self, channel_id: str, message_id: str) -> Optional[discord.Message]:
        channel = await self._channel(channel_id)
        try:
            return cast(discord.Message, await channel.fetch_message(int(message_id)))
        except discord.NotFound:
            return None
        except discord.HTTPException as e:
            raise filmklub.exceptions.ExternalServiceError(f"Failed to fetch message: {e}") from e


class DiscordEvents(EventScheduler):
    """Creates guild scheduled events as a discord.py client.

    Args:
        client: Logged in discord.py client.

    """
    def __init__(self, client: discord.Client) -> None:
        self._client = client

    async def create_event(
        self,
        guild_id: str,
        name: str,
        start_time: datetime.datetime,
        end_time: datetime.datetime,
        description: str,
        location: str,
        image: Optional[bytes] = None
    ) -> str:
        guild = self._client.get_guild(int(guild_id))
        if guild is None:
            raise filmklub.exceptions.NotFoundError("Server not found")
        options: Dict[str, Any] = {}
        if image is not None:
            options["image"] = image
        try:
            event = await guild.create_scheduled_event(
                name=name,
                start_time=start_time,
                end_time=end_time,
                privacy_level=discord.PrivacyLevel.guild_only,
                entity_type=discord.EntityType.external,
                location=location,
                description=description,
                reason=f"Scheduled for {name}",
                **options
            )
        except discord.HTTPException as e:
            raise filmklub.exceptions.ExternalServiceError(
                f"Failed to create scheduled event: {e}"
            ) from e
        return str(event.id)
