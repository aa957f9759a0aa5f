"""Closes movie night rating polls and records their score."""
from typing import Optional, Sequence, Tuple
from typing_extensions import Final

import filmklub.exceptions
from filmklub.store import MovieNightStore
from filmklub.timers import Timers
from filmklub.types import MovieNightData, Night, PollService

import logging
log = logging.getLogger(__name__)


RATING_OPTIONS: Final = [str(n) for n in range(1, 11)]


def compute_score(vote_counts: Sequence[int]) -> Tuple[float, int]:
    """Averages rating poll votes.

    Args:
        vote_counts: Votes per option, where the option at index ``i`` is worth ``i + 1``.

    Returns:
        Tuple of the weighted average score and the total number of votes. The score is ``0``
        when nobody voted.

    """
    total_votes = sum(vote_counts)
    if total_votes == 0:
        return 0.0, 0
    total_score = sum((i + 1) * votes for i, votes in enumerate(vote_counts))
    return total_score / total_votes, total_votes


class RatingPollFinalizer():
    """Finalizes a rating poll a fixed time after it was posted.

    Finalization is scheduled once per poll and cannot be called off. If the night it belongs to
    has been removed by the time it fires, it does nothing.

    Args:
        store: Movie night document.
        polls: Service used to read, close and delete the poll.
        timers: Where the deferred finalization and cleanup run.
        delay: Seconds from scheduling until the poll is finalized.
        cleanup_delay: Seconds to leave the results visible before deleting the poll message.

    """
    def __init__(
        self,
        store: MovieNightStore,
        polls: PollService,
        timers: Timers,
        delay: float = 60,
        cleanup_delay: float = 5
    ) -> None:
        self._store = store
        self._polls = polls
        self._timers = timers
        self.delay = delay
        self.cleanup_delay = cleanup_delay

    def schedule(self, channel_id: str, message_id: str) -> None:
        """Queues a rating poll to be finalized after :attr:`delay` seconds.

        Args:
            channel_id: Channel holding the poll.
            message_id: Message holding the poll.

        """
        async def fire() -> None:
            await self.finalize(channel_id, message_id)
        self._timers.schedule(("rating", message_id), self.delay, fire)

    async def finalize(self, channel_id: str, message_id: str) -> Optional[Night]:
        """Closes a rating poll if needed and stores its score on the matching night.

        Args:
            channel_id: Channel holding the poll.
            message_id: Message holding the poll.

        Returns:
            The rated night, ``None`` if the night or the poll no longer exists.

        """
        data = await self._store.read()
        if data.find_night_by_poll(message_id) is None:
            log.debug(f"Rating poll {message_id} has no night anymore, skipping")
            return None
        poll = await self._polls.fetch_poll(channel_id, message_id)
        if poll is None:
            log.info(f"Rating poll {message_id} disappeared before it was finalized")
            return None
        if not poll.finalized:
            try:
                poll = await self._polls.end_poll(channel_id, message_id)
            except filmklub.exceptions.ExternalServiceError as e:
                log.error(f"Error ending rating poll {message_id}: {e}")
                return None
        answers = sorted(poll.answers, key=lambda a: a.id)
        score, votes = compute_score([answer.vote_count for answer in answers])

        def record(data: MovieNightData) -> Optional[Night]:
            night = data.find_night_by_poll(message_id)
            if night is None:
                return None
            night.rating_score = score
            night.rating_votes = votes
            movie = data.find_movie(night.movie_id)
            if movie is not None:
                movie.watched = True
            return night
        night = await self._store.update(record)
        if night is not None:
            log.info(f"Rated {night.movie_name} {score:.1f}/10 from {votes} votes")
        self._timers.defer(
            self.cleanup_delay,
            lambda: delete_message(self._polls, channel_id, message_id)
        )
        return night


async def delete_message(polls: PollService, channel_id: str, message_id: str) -> None:
    """Deletes a poll message, logging instead of raising on failure."""
    try:
        await polls.delete_message(channel_id, message_id)
    except filmklub.exceptions.ExternalServiceError as e:
        log.error(f"Error deleting poll message {message_id}: {e}")
