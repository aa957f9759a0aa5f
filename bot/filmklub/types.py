"""Defines the movie night records and the Discord services the bot depends on."""
import datetime
import enum
from typing import Any, Dict, List, NamedTuple, Optional, Sequence


# NOTE: Values must match discord.EventStatus
class EventStatus(enum.IntEnum):
    """Status of a scheduled event."""
    SCHEDULED = 1
    ACTIVE = 2
    COMPLETED = 3
    CANCELLED = 4


class Movie():
    """Container for a suggested movie.

    Args:
        movie_id: IMDb title ID, unique within the catalog.
        movie_name: Display title.
        watched: Whether a movie night for this movie has been completed.
        suggested_by_user_id: ID of the user who suggested the movie, if known.

    Attributes:
        movie_id (str): IMDb title ID, unique within the catalog.
        movie_name (str): Display title.
        watched (bool): Whether a movie night for this movie has been completed.
        suggested_by_user_id (Optional[str]): ID of the user who suggested the movie, if known.

    """
    def __init__(
        self,
        movie_id: str,
        movie_name: str,
        watched: bool = False,
        suggested_by_user_id: Optional[str] = None
    ) -> None:
        self.movie_id = movie_id
        self.movie_name = movie_name
        self.watched = watched
        self.suggested_by_user_id = suggested_by_user_id

    def to_dict(self) -> Dict[str, Any]:
        return dict(self.__dict__)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Movie":
        return cls(
            str(data["movie_id"]),
            data["movie_name"],
            bool(data.get("watched", False)),
            data.get("suggested_by_user_id")
        )


class PendingEvent():
    """Bridges a scheduled event to the night it becomes once it goes live.

    Args:
        channel_id: Channel the movie night was started from.
        guild_id: Guild the event belongs to.
        movie_id: IMDb title ID of the movie being watched.
        movie_name: Display title of the movie being watched.

    """
    def __init__(self, channel_id: str, guild_id: str, movie_id: str, movie_name: str) -> None:
        self.channel_id = channel_id
        self.guild_id = guild_id
        self.movie_id = movie_id
        self.movie_name = movie_name

    def to_dict(self) -> Dict[str, Any]:
        return dict(self.__dict__)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PendingEvent":
        return cls(
            str(data["channel_id"]),
            str(data["guild_id"]),
            str(data["movie_id"]),
            data["movie_name"]
        )


class Night():
    """Container for a single movie night, tied to one scheduled event.

    Args:
        event_id: Scheduled event ID, unique within the history.
        movie_id: IMDb title ID of the movie watched.
        movie_name: Display title of the movie watched.
        channel_id: Channel the movie night was started from.
        guild_id: Guild the movie night took place in.
        start_time: Unix timestamp of when the night began.
        suggested_by_user_id: ID of the user who suggested the movie, if known.

    Attributes:
        rating_poll_message_id (Optional[str]): Message holding the rating poll, once requested.
        rating_poll_channel_id (Optional[str]): Channel the rating poll was posted in.
        rating_score (Optional[float]): Average rating between 1 and 10, 0 if nobody voted.
        rating_votes (Optional[int]): Number of rating votes cast.

    """
    def __init__(
        self,
        event_id: str,
        movie_id: str,
        movie_name: str,
        channel_id: str,
        guild_id: str,
        start_time: float,
        suggested_by_user_id: Optional[str] = None
    ) -> None:
        self.event_id = event_id
        self.movie_id = movie_id
        self.movie_name = movie_name
        self.channel_id = channel_id
        self.guild_id = guild_id
        self.start_time = start_time
        self.suggested_by_user_id = suggested_by_user_id
        self.rating_poll_message_id: Optional[str] = None
        self.rating_poll_channel_id: Optional[str] = None
        self.rating_score: Optional[float] = None
        self.rating_votes: Optional[int] = None

    @property
    def rated(self) -> bool:
        return self.rating_score is not None or self.rating_votes is not None

    def to_dict(self) -> Dict[str, Any]:
        return dict(self.__dict__)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Night":
        night = cls(
            str(data["event_id"]),
            str(data["movie_id"]),
            data["movie_name"],
            str(data["channel_id"]),
            str(data["guild_id"]),
            float(data.get("start_time") or 0.0),
            data.get("suggested_by_user_id")
        )
        night.rating_poll_message_id = data.get("rating_poll_message_id")
        night.rating_poll_channel_id = data.get("rating_poll_channel_id")
        night.rating_score = data.get("rating_score")
        night.rating_votes = data.get("rating_votes")
        return night


class MovieNightData():
    """The whole movie night document, as stored on disk.

    Attributes:
        movies (List[filmklub.types.Movie]): Every movie ever suggested.
        nights (List[filmklub.types.Night]): Movie night history in insertion order.
        active_poll_id (Optional[str]): Message ID of the most recent vote poll.
        active_poll_channel_id (Optional[str]): Channel the most recent vote poll was posted in.
        pending_events (Dict[str, filmklub.types.PendingEvent]): Scheduled events that have not
            started yet, indexed by event ID.

    """
    def __init__(self) -> None:
        self.movies: List[Movie] = []
        self.nights: List[Night] = []
        self.active_poll_id: Optional[str] = None
        self.active_poll_channel_id: Optional[str] = None
        self.pending_events: Dict[str, PendingEvent] = {}

    def find_movie(self, movie_id: str) -> Optional[Movie]:
        return next((m for m in self.movies if m.movie_id == movie_id), None)

    def find_night(self, event_id: str) -> Optional[Night]:
        return next((n for n in self.nights if n.event_id == event_id), None)

    def find_night_by_poll(self, message_id: str) -> Optional[Night]:
        return next((n for n in self.nights if n.rating_poll_message_id == message_id), None)

    def unwatched_movies(self) -> List[Movie]:
        return [m for m in self.movies if not m.watched]

    def remove_event(self, event_id: str) -> None:
        """Forgets everything known about a scheduled event.

        Args:
            event_id: Scheduled event ID to be purged from pending events and history.

        """
        self.pending_events.pop(event_id, None)
        self.nights = [n for n in self.nights if n.event_id != event_id]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "movies": [m.to_dict() for m in self.movies],
            "nights": [n.to_dict() for n in self.nights],
            "active_poll_id": self.active_poll_id,
            "active_poll_channel_id": self.active_poll_channel_id,
            "pending_events": {k: v.to_dict() for k, v in self.pending_events.items()}
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MovieNightData":
        document = cls()
        document.movies = [Movie.from_dict(m) for m in data.get("movies") or []]
        document.nights = [Night.from_dict(n) for n in data.get("nights") or []]
        document.active_poll_id = data.get("active_poll_id")
        document.active_poll_channel_id = data.get("active_poll_channel_id")
        document.pending_events = {
            str(k): PendingEvent.from_dict(v)
            for k, v in (data.get("pending_events") or {}).items()
        }
        return document


class PollAnswer(NamedTuple):
    id: int
    text: str
    vote_count: int


class PollResult(NamedTuple):
    """Snapshot of a poll and its votes."""
    message_id: str
    answers: List[PollAnswer]
    finalized: bool


class PollService():
    """Posts polls and manages the messages holding them."""

    async def create_poll(
        self,
        channel_id: str,
        question: str,
        answers: Sequence[str],
        multiselect: bool,
        duration: int
    ) -> str:
        """Posts a new poll.

        Args:
            channel_id: Channel to post the poll in.
            question: Poll question.
            answers: Answer texts in display order.
            multiselect: Allow voting for more than one answer.
            duration: Poll duration in hours.

        Returns:
            ID of the message holding the poll.

        Raises:
            filmklub.exceptions.ExternalServiceError: If the poll could not be posted.

        """
        raise NotImplementedError

    async def fetch_poll(self, channel_id: str, message_id: str) -> Optional[PollResult]:
        """Retrieves a poll and its current votes, ``None`` if the message or poll is gone."""
        raise NotImplementedError

    async def end_poll(self, channel_id: str, message_id: str) -> PollResult:
        """Closes a poll early and returns its final votes."""
        raise NotImplementedError

    async def delete_message(self, channel_id: str, message_id: str) -> None:
        raise NotImplementedError


class EventScheduler():
    """Creates scheduled events in a guild."""

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
        """Creates an external scheduled event.

        Args:
            guild_id: Guild to create the event in.
            name: Event name.
            start_time: Timezone aware start time.
            end_time: Timezone aware end time.
            description: Event description.
            location: Free text location of the event.
            image: Cover image data, if any.

        Returns:
            ID of the created event.

        Raises:
            filmklub.exceptions.ExternalServiceError: If the event could not be created.

        """
        raise NotImplementedError
