try:
    import asyncio
    import sys

    import filmklub
    import filmklub.config
    import filmklub.exceptions
    import filmklub.utils

    import logging
    log = logging.getLogger("filmklub")
except KeyboardInterrupt:
    import sys
    sys.exit(0)


def initialize_logging(level: int = logging.DEBUG) -> None:
    log_handler = logging.StreamHandler(stream=sys.stdout)
    log_handler.setFormatter(logging.Formatter("[%(asctime)s] %(message)s"))
    log.setLevel(level)
    log.addHandler(log_handler)
    log.info("filmklub@{}".format(filmklub.__version__))


def check_ffmpeg() -> None:
    try:
        version = filmklub.utils.ffmpeg_version()
        if version is None:
            log.error("FFmpeg version is unknown, may affect sound playback")
        elif version[0] < 4:
            log.warning("FFmpeg version is older than 4.0, may affect sound playback")
    except FileNotFoundError:
        log.critical("FFmpeg not found, must be installed to play sounds")
        sys.exit(0)


async def run(config: filmklub.config.Config) -> None:
    filmklub.state.initialize(config, filmklub.bot)
    try:
        async with filmklub.bot:
            await filmklub.bot.start(config.discord.token)
    finally:
        # Stop running services
        filmklub.state.timers.cancel_all()
        await filmklub.state.voice.close()


if __name__ == "__main__":
    try:
        # Initialization
        config = filmklub.config.load(filmklub.utils.config_file())
        initialize_logging(level=logging.INFO if not config.bot.verbose_logging else logging.DEBUG)
        check_ffmpeg()
        # Main loop
        asyncio.run(run(config))
    except KeyboardInterrupt:
        pass
    except filmklub.exceptions.MalformedConfig:
        log.critical("Expected config structure did not match {}".format(
            filmklub.utils.config_file()
        ))
