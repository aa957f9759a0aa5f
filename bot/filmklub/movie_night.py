"""Movie night lifecycle: suggestions, votes, scheduled events and ratings."""
import datetime
import random
import time
from typing import Callable, List, Optional, Sequence, Tuple
from typing_extensions import Final

import filmklub.catalog
import filmklub.exceptions
import filmklub.rating
from filmklub.catalog import CatalogClient, MovieDetails
from filmklub.config import ConfigMovieNight
from filmklub.rating import RatingPollFinalizer
from filmklub.store import MovieNightStore
from filmklub.timers import Timers
from filmklub.types import (
    EventScheduler, EventStatus, Movie, MovieNightData, Night, PendingEvent, PollAnswer,
    PollService
)

import logging
log = logging.getLogger(__name__)


EVENT_PREFIX: Final = "Movie Night:"
VOTE_QUESTION: Final = "What movie should we watch?"
MAX_POLL_ANSWERS: Final = 10
HISTORY_LENGTH: Final = 15


def pick_winner(answers: Sequence[PollAnswer]) -> Optional[PollAnswer]:
    """Finds the answer with the most votes. Ties go to the answer listed first.

    Args:
        answers: Poll answers in display order.

    Returns:
        Winning answer, ``None`` if there are no answers.

    """
    winner = None
    for answer in answers:
        if winner is None or answer.vote_count > winner.vote_count:
            winner = answer
    return winner


def format_night(night: Night) -> str:
    if night.rating_score is None or night.rating_votes is None:
        return f"**{night.movie_name}** - not rated yet"
    return f"**{night.movie_name}** - {night.rating_score:.1f}/10 ({night.rating_votes} votes)"


def is_movie_night(name: Optional[str]) -> bool:
    return name is not None and name.startswith(EVENT_PREFIX)


class MovieNightController():
    """Drives a movie night from suggestion to rating.

    Commands and scheduled event notifications both go through here, and every change is
    written to the store before the call returns.

    Args:
        store: Movie night document.
        catalog: IMDb client.
        polls: Service for vote and rating polls.
        events: Service for creating scheduled events.
        finalizer: Finalizes rating polls.
        timers: Where deferred cleanup runs.
        config: Movie night settings.
        clock: Returns the current Unix time, defaults to ``time.time``.
        rng: Source of randomness for vote candidates, defaults to the ``random`` module.

    """
    def __init__(
        self,
        store: MovieNightStore,
        catalog: CatalogClient,
        polls: PollService,
        events: EventScheduler,
        finalizer: RatingPollFinalizer,
        timers: Timers,
        config: ConfigMovieNight,
        clock: Callable[[], float] = time.time,
        rng: Optional[random.Random] = None
    ) -> None:
        self._store = store
        self._catalog = catalog
        self._polls = polls
        self._events = events
        self._finalizer = finalizer
        self._timers = timers
        self._config = config
        self._clock = clock
        self._random = rng or random.Random()

    async def suggest(
        self,
        user_id: Optional[str],
        title_id: Optional[str] = None,
        query: Optional[str] = None
    ) -> Tuple[Movie, MovieDetails]:
        """Adds a movie to the list of vote candidates.

        Exactly one of ``title_id`` and ``query`` must be given. Suggesting a movie that was
        already watched puts it back on the list.

        Args:
            user_id: User making the suggestion.
            title_id: IMDb title ID or title URL.
            query: Movie name to search for.

        Returns:
            Tuple of the stored movie and its catalog metadata.

        Raises:
            filmklub.exceptions.AmbiguousInputError: If both or neither inputs are given.
            filmklub.exceptions.NotFoundError: If the catalog has no match.
            filmklub.exceptions.WrongKindError: If the match is not a movie.
            filmklub.exceptions.DuplicateError: If the movie is already an unwatched suggestion.

        """
        if title_id and query:
            raise filmklub.exceptions.AmbiguousInputError(
                "Provide only one of an IMDb URL or a movie name, not both"
            )
        if not title_id and not query:
            raise filmklub.exceptions.AmbiguousInputError(
                "Provide either an IMDb URL or a movie name"
            )
        if title_id:
            movie_id = filmklub.catalog.parse_title_id(title_id)
            if movie_id is None:
                raise filmklub.exceptions.NotFoundError("Invalid IMDb URL")
        else:
            results = await self._catalog.search(query or "")
            movie_id = filmklub.catalog.first_movie(results)
            if movie_id is None:
                raise filmklub.exceptions.NotFoundError("No movie found for that search")
        details = await self._catalog.title(movie_id)
        if not details.is_movie:
            raise filmklub.exceptions.WrongKindError("This is not a movie")

        def upsert(data: MovieNightData) -> Movie:
            movie = data.find_movie(details.id)
            if movie is not None and not movie.watched:
                raise filmklub.exceptions.DuplicateError("This movie has already been suggested")
            if movie is None:
                movie = Movie(details.id, details.title, False, user_id)
                data.movies.append(movie)
            else:
                movie.watched = False
                movie.suggested_by_user_id = user_id
            return movie
        movie = await self._store.update(upsert)
        log.info(f"[{user_id}] Suggested {movie.movie_name}({movie.movie_id})")
        return movie, details

    async def open_vote(self, channel_id: str) -> Tuple[str, List[Movie]]:
        """Posts a poll to choose the next movie from the unwatched suggestions.

        At most :data:`MAX_POLL_ANSWERS` movies fit in a poll. When there are more, a random
        selection is drawn every time so that each suggestion gets a fair chance over time.

        Args:
            channel_id: Channel to post the poll in.

        Returns:
            Tuple of the poll message ID and the movies on the ballot.

        Raises:
            filmklub.exceptions.EmptyError: If there are no unwatched movies.

        """
        data = await self._store.read()
        candidates = data.unwatched_movies()
        if len(candidates) == 0:
            raise filmklub.exceptions.EmptyError("No movies to vote on")
        self._random.shuffle(candidates)
        candidates = candidates[:MAX_POLL_ANSWERS]
        message_id = await self._polls.create_poll(
            channel_id,
            VOTE_QUESTION,
            [movie.movie_name for movie in candidates],
            multiselect=True,
            duration=self._config.poll_duration
        )

        def activate(data: MovieNightData) -> None:
            data.active_poll_id = message_id
            data.active_poll_channel_id = channel_id
        await self._store.update(activate)
        log.info(f"Opened vote {message_id} with {len(candidates)} movies")
        return message_id, candidates

    async def start(self, guild_id: str, channel_id: str) -> Tuple[str, MovieDetails]:
        """Ends the active vote and schedules an event for the winning movie.

        Args:
            guild_id: Guild to schedule the event in.
            channel_id: Channel the command was issued from.

        Returns:
            Tuple of the scheduled event ID and the winning movie's metadata.

        Raises:
            filmklub.exceptions.NotFoundError: If there is no open vote, or its winner cannot
                be found.
            filmklub.exceptions.ExternalServiceError: If the catalog or event creation fails.
                The vote stays closed.

        """
        data = await self._store.read()
        if data.active_poll_id is None:
            raise filmklub.exceptions.NotFoundError("No active poll found")
        poll_id = data.active_poll_id
        poll_channel_id = data.active_poll_channel_id or channel_id
        poll = await self._polls.fetch_poll(poll_channel_id, poll_id)
        if poll is None or poll.finalized:
            raise filmklub.exceptions.NotFoundError("No active poll found")
        poll = await self._polls.end_poll(poll_channel_id, poll_id)
        self._timers.defer(
            self._config.cleanup_delay,
            lambda: filmklub.rating.delete_message(self._polls, poll_channel_id, poll_id)
        )

        def deactivate(data: MovieNightData) -> None:
            if data.active_poll_id == poll_id:
                data.active_poll_id = None
                data.active_poll_channel_id = None
        await self._store.update(deactivate)

        winner = pick_winner(poll.answers)
        movie = self._find_candidate(data, winner.text) if winner is not None else None
        if movie is None:
            raise filmklub.exceptions.NotFoundError("Movie not found")
        details = await self._catalog.title(movie.movie_id)

        now = datetime.datetime.fromtimestamp(self._clock(), tz=datetime.timezone.utc)
        start_time = now + datetime.timedelta(seconds=self._config.start_delay)
        end_time = start_time + datetime.timedelta(
            seconds=details.runtime or self._config.default_runtime
        )
        image = await self._poster(details)
        event_id = await self._events.create_event(
            guild_id,
            name=f"{EVENT_PREFIX} {details.title} ({details.year or 'N/A'})",
            start_time=start_time,
            end_time=end_time,
            description=filmklub.catalog.describe(details),
            location=self._config.event_location,
            image=image
        )

        def add_pending(data: MovieNightData) -> None:
            data.pending_events[event_id] = PendingEvent(
                channel_id, guild_id, movie.movie_id, details.title
            )
        await self._store.update(add_pending)
        log.info(f"Scheduled {details.title}({movie.movie_id}) as event {event_id}")
        return event_id, details

    async def on_event_status_change(
        self,
        event_id: str,
        name: Optional[str],
        old_status: Optional[EventStatus],
        new_status: EventStatus
    ) -> None:
        """Reconciles movie night history with a scheduled event status change.

        A night is recorded when its event goes live. Because event notifications can be
        missed, a night is also recorded when the event completes without ever having been
        seen live. Events not created by :meth:`start` are ignored.

        Args:
            event_id: Scheduled event ID.
            name: Event name.
            old_status: Status before the change, ``None`` if unknown.
            new_status: Status after the change.

        """
        if not is_movie_night(name):
            return
        if new_status == EventStatus.CANCELLED:
            await self._store.update(lambda data: data.remove_event(event_id))
            log.info(f"Movie night event {event_id} was cancelled")
        elif new_status == EventStatus.ACTIVE and old_status != EventStatus.ACTIVE:
            night = await self._store.update(lambda data: self._begin_night(data, event_id))
            if night is not None:
                log.info(f"Movie night started for {night.movie_name}")
        elif new_status == EventStatus.COMPLETED and old_status != EventStatus.COMPLETED:
            def complete(data: MovieNightData) -> Optional[Night]:
                night = data.find_night(event_id) or self._begin_night(data, event_id)
                if night is None:
                    return None
                movie = data.find_movie(night.movie_id)
                if movie is not None:
                    movie.watched = True
                return night
            night = await self._store.update(complete)
            if night is not None:
                log.info(f"Movie night finished for {night.movie_name}")

    async def on_event_deleted(self, event_id: str, name: Optional[str]) -> None:
        """Forgets a movie night whose event was deleted.

        Args:
            event_id: Scheduled event ID.
            name: Event name.

        """
        if not is_movie_night(name):
            return
        await self._store.update(lambda data: data.remove_event(event_id))
        log.info(f"Movie night event {event_id} was deleted")

    async def history(self) -> List[Night]:
        """Retrieves the most recent movie nights, newest first.

        Returns:
            Up to :data:`HISTORY_LENGTH` nights.

        """
        data = await self._store.read()
        nights = sorted(data.nights, key=lambda n: n.start_time or 0, reverse=True)
        return nights[:HISTORY_LENGTH]

    async def request_rating(self, channel_id: str) -> Night:
        """Posts a rating poll for the most recent night without a rating.

        Args:
            channel_id: Channel to post the poll in.

        Returns:
            The night being rated.

        Raises:
            filmklub.exceptions.NotFoundError: If every night has been rated.

        """
        data = await self._store.read()
        unrated = sorted(
            [n for n in data.nights if not n.rated],
            key=lambda n: n.start_time or 0,
            reverse=True
        )
        if len(unrated) == 0:
            raise filmklub.exceptions.NotFoundError("No night without a rating found")
        event_id = unrated[0].event_id
        message_id = await self._polls.create_poll(
            channel_id,
            f"How much did you enjoy \"{unrated[0].movie_name or 'the movie'}\"?",
            filmklub.rating.RATING_OPTIONS,
            multiselect=False,
            duration=self._config.poll_duration
        )

        def attach_poll(data: MovieNightData) -> Night:
            night = data.find_night(event_id)
            if night is None:
                raise filmklub.exceptions.NotFoundError("That movie night was removed")
            night.rating_poll_message_id = message_id
            night.rating_poll_channel_id = channel_id
            return night
        night = await self._store.update(attach_poll)
        self._finalizer.schedule(channel_id, message_id)
        log.info(f"Opened rating poll {message_id} for {night.movie_name}")
        return night

    def _begin_night(self, data: MovieNightData, event_id: str) -> Optional[Night]:
        if data.find_night(event_id) is not None:
            return None
        pending = data.pending_events.pop(event_id, None)
        if pending is None:
            return None
        movie = data.find_movie(pending.movie_id)
        night = Night(
            event_id,
            pending.movie_id,
            pending.movie_name,
            pending.channel_id,
            pending.guild_id,
            self._clock(),
            movie.suggested_by_user_id if movie is not None else None
        )
        data.nights.append(night)
        return night

    def _find_candidate(self, data: MovieNightData, movie_name: str) -> Optional[Movie]:
        # Poll answers only carry the movie name
        unwatched = [m for m in data.unwatched_movies() if m.movie_name == movie_name]
        if len(unwatched) > 0:
            return unwatched[0]
        return next((m for m in data.movies if m.movie_name == movie_name), None)

    async def _poster(self, details: MovieDetails) -> Optional[bytes]:
        if details.poster is None:
            return None
        try:
            return await self._catalog.download(details.poster)
        except filmklub.exceptions.ExternalServiceError as e:
            log.warning(f"Could not download poster for {details.title}: {e}")
            return None
