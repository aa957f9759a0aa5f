"""Loads JSON configuration files."""

import json
from typing import cast, Any, Dict, List, NamedTuple, Type, Union
from typing_extensions import Final

import filmklub.exceptions


# Can't use nested class defs until https://github.com/python/mypy/issues/5362 is fixed
class ConfigDiscord(NamedTuple):
    token: str
    command_prefix: str


class ConfigBot(NamedTuple):
    verbose_logging: bool


class ConfigMovieNight(NamedTuple):
    data_file: str
    catalog_url: str
    event_location: str
    start_delay: float
    default_runtime: int
    poll_duration: int
    rating_delay: float
    cleanup_delay: float


class ConfigSoundboard(NamedTuple):
    sounds_dir: str
    entrance_file: str
    upload_max_size: int
    idle_grace: float
    leave_delay: float


class Config(NamedTuple):
    """Named tuple carrying configuration options. See ``config.example.json`` for defaults."""
    discord: ConfigDiscord
    bot: ConfigBot
    movie_night: ConfigMovieNight
    soundboard: ConfigSoundboard


_ConfigType = Union[
    Config,
    ConfigDiscord,
    ConfigBot,
    ConfigMovieNight,
    ConfigSoundboard
]
_CONFIGNAMES: Final[Dict[str, Type[_ConfigType]]] = {
    "config": Config,
    "config.discord": ConfigDiscord,
    "config.bot": ConfigBot,
    "config.movie_night": ConfigMovieNight,
    "config.soundboard": ConfigSoundboard
}


def load(filename: str) -> Config:
    """Loads a JSON formatted config file.

    Converts empty strings to ``None``.

    Args:
        filename: Filename of config file to load.

    Returns:
        Object containing config file values as attributes.

    Raises:
        filmklub.exceptions.MalformedConfig: If config file does not match expected structure.
    """
    with open(filename, "r") as f:
        def convert_types(namespace: List[str], obj: Any) -> _ConfigType:
            try:
                for k, v in obj.items():
                    if not k.isidentifier():
                        raise ValueError
                    if isinstance(v, dict):
                        obj[k] = convert_types(namespace + [k], v)
                    # Convert empty strings to none
                    if isinstance(v, str) and len(v) == 0:
                        obj[k] = None
                return _CONFIGNAMES[".".join(namespace)](**obj)
            except (KeyError, TypeError, ValueError):
                raise filmklub.exceptions.MalformedConfig
        return cast(Config, convert_types(["config"], json.load(f)))
