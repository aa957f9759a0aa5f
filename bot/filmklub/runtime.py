"""Runtime state shared by bot commands and events."""
import discord

import filmklub.utils
from filmklub.audio import DiscordAudioTransport
from filmklub.catalog import CatalogClient
from filmklub.config import Config
from filmklub.discord_api import DiscordEvents, DiscordPolls
from filmklub.entrance import EntranceSounds
from filmklub.movie_night import MovieNightController
from filmklub.rating import RatingPollFinalizer
from filmklub.soundboard import SoundLibrary
from filmklub.store import MovieNightStore
from filmklub.timers import Timers
from filmklub.voice import VoiceSessionManager


class BotState():
    """Container for the services behind the bot.

    Services are created by :meth:`initialize` once the config is loaded.

    Attributes:
        config (filmklub.config.Config): Loaded configuration.
        timers (filmklub.timers.Timers): Deferred tasks, cancelled on shutdown.
        movie_night (filmklub.movie_night.MovieNightController): Movie night lifecycle.
        voice (filmklub.voice.VoiceSessionManager): Voice connections and playback.
        sounds (filmklub.soundboard.SoundLibrary): Soundboard sound files.
        entrance (filmklub.entrance.EntranceSounds): Entrance sound of each user.

    """
    config: Config
    timers: Timers
    movie_night: MovieNightController
    voice: VoiceSessionManager
    sounds: SoundLibrary
    entrance: EntranceSounds

    def __init__(self) -> None:
        self.initialized = False

    def initialize(self, config: Config, client: discord.Client) -> None:
        """Creates every service from a config.

        Args:
            config: Loaded configuration.
            client: Client used for polls, events and voice.

        """
        movie_config = config.movie_night
        sound_config = config.soundboard
        self.config = config
        self.timers = Timers()
        store = MovieNightStore(filmklub.utils.data_path(movie_config.data_file))
        polls = DiscordPolls(client)
        finalizer = RatingPollFinalizer(
            store,
            polls,
            self.timers,
            delay=movie_config.rating_delay,
            cleanup_delay=movie_config.cleanup_delay
        )
        self.movie_night = MovieNightController(
            store,
            CatalogClient(movie_config.catalog_url),
            polls,
            DiscordEvents(client),
            finalizer,
            self.timers,
            movie_config
        )
        self.voice = VoiceSessionManager(
            DiscordAudioTransport(),
            self.timers,
            idle_grace=sound_config.idle_grace
        )
        self.sounds = SoundLibrary(
            filmklub.utils.data_path(sound_config.sounds_dir),
            sound_config.upload_max_size
        )
        self.entrance = EntranceSounds(filmklub.utils.data_path(sound_config.entrance_file))
        self.initialized = True
