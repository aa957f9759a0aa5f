import pytest
from pathlib import Path

import filmklub.catalog
import filmklub.config
import filmklub.exceptions
import filmklub.movie_night
import filmklub.rating
import filmklub.store
import filmklub.timers
import filmklub.types
import filmklub.utils


def make_details(title_id="tt0000001", title="Movie", kind="movie", runtime=5400, **kwargs):
    values = dict(
        id=title_id,
        title=title,
        kind=kind,
        year=1999,
        runtime=runtime,
        plot="A plot.",
        genres=["Drama"],
        rating=7.5,
        rating_votes=1000,
        metacritic=None,
        metacritic_reviews=None,
        directors=["Director"],
        writers=["Writer"],
        stars=["Star"],
        countries=["Norway"],
        languages=["Norwegian"],
        poster=None
    )
    values.update(kwargs)
    return filmklub.catalog.MovieDetails(**values)


class FakeCatalog(filmklub.catalog.CatalogClient):
    def __init__(self):
        super().__init__("https://api.example.com")
        self.titles = {}
        self.results = []
        self.downloads = {}

    def add(self, details):
        self.titles[details.id] = details
        return details

    async def title(self, title_id):
        if title_id not in self.titles:
            raise filmklub.exceptions.NotFoundError("Movie not found")
        return self.titles[title_id]

    async def search(self, query):
        return self.results

    async def download(self, url):
        if url not in self.downloads:
            raise filmklub.exceptions.ExternalServiceError("Download failed")
        return self.downloads[url]


class FakePolls(filmklub.types.PollService):
    def __init__(self):
        self.polls = {}
        self.created = []
        self.ended = []
        self.deleted = []
        self.fail_end = False
        self._next_id = 100

    async def create_poll(self, channel_id, question, answers, multiselect, duration):
        self._next_id += 1
        message_id = str(self._next_id)
        self.polls[message_id] = filmklub.types.PollResult(
            message_id,
            [filmklub.types.PollAnswer(i + 1, text, 0) for i, text in enumerate(answers)],
            False
        )
        self.created.append((channel_id, question, list(answers), multiselect, duration))
        return message_id

    def vote(self, message_id, counts):
        poll = self.polls[message_id]
        self.polls[message_id] = poll._replace(answers=[
            answer._replace(vote_count=count) for answer, count in zip(poll.answers, counts)
        ])

    async def fetch_poll(self, channel_id, message_id):
        return self.polls.get(message_id)

    async def end_poll(self, channel_id, message_id):
        if self.fail_end:
            raise filmklub.exceptions.ExternalServiceError("Failed to end poll")
        self.ended.append(message_id)
        self.polls[message_id] = self.polls[message_id]._replace(finalized=True)
        return self.polls[message_id]

    async def delete_message(self, channel_id, message_id):
        self.deleted.append((channel_id, message_id))
        self.polls.pop(message_id, None)


class FakeEvents(filmklub.types.EventScheduler):
    def __init__(self):
        self.created = []

    async def create_event(
        self, guild_id, name, start_time, end_time, description, location, image=None
    ):
        self.created.append(dict(
            guild_id=guild_id,
            name=name,
            start_time=start_time,
            end_time=end_time,
            description=description,
            location=location,
            image=image
        ))
        return str(1000 + len(self.created))


class FakeClock():
    def __init__(self, now=1700000000.0):
        self.now = now

    def __call__(self):
        return self.now


@pytest.fixture
def config(data_dir):
    return filmklub.config.load(str(data_dir / "config.test.json"))


@pytest.fixture(autouse=True)
def patch_install_dir(tmp_path, monkeypatch):
    assert filmklub.utils.install_dir.__annotations__["return"] == str
    install_dir = tmp_path / "bot"
    install_dir.mkdir()
    monkeypatch.setattr(filmklub.utils, "install_dir", lambda: str(install_dir))


@pytest.fixture
def data_dir():
    return Path(__file__).parent / "data"


@pytest.fixture
def store(tmp_path):
    return filmklub.store.MovieNightStore(str(tmp_path / "movie_night.json"))


@pytest.fixture
def timers():
    return filmklub.timers.Timers()


@pytest.fixture
def catalog():
    return FakeCatalog()


@pytest.fixture
def polls():
    return FakePolls()


@pytest.fixture
def events():
    return FakeEvents()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def finalizer(store, polls, timers):
    return filmklub.rating.RatingPollFinalizer(store, polls, timers, delay=0.01, cleanup_delay=0)


@pytest.fixture
def controller(store, catalog, polls, events, finalizer, timers, config, clock):
    return filmklub.movie_night.MovieNightController(
        store,
        catalog,
        polls,
        events,
        finalizer,
        timers,
        config.movie_night._replace(cleanup_delay=0),
        clock=clock
    )
