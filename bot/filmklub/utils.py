"""Utility functions."""
import discord
import os
import re
import subprocess
import sys
from typing import Optional, Tuple


def install_dir() -> str:
    """Gets the absolute path to the script being run.

    Returns:
        Path to running script.

    """
    return os.path.abspath(os.path.dirname(sys.argv[0]))


def config_file() -> str:
    """Gets the absolute path to the config file.

    Returns:
        Path to config file.

    """
    config = os.path.join(install_dir(), os.path.pardir, "config.json")
    return config


def data_path(path: str) -> str:
    """Resolves a path from the config file.

    Relative paths are taken from the directory holding the config file.

    Args:
        path: Absolute or relative path.

    Returns:
        Absolute path.

    """
    if os.path.isabs(path):
        return path
    return os.path.abspath(os.path.join(install_dir(), os.path.pardir, path))


def ffmpeg_version() -> Optional[Tuple[int, ...]]:
    """Gets the version of the installed FFmpeg binary.

    Returns:
        Version numbers as a tuple, ``None`` if the version string could not be parsed.

    Raises:
        FileNotFoundError: If FFmpeg is not installed.

    """
    process = subprocess.run(["ffmpeg", "-version"], stdout=subprocess.PIPE)
    output = process.stdout.decode("utf-8", errors="replace")
    match = re.match(r"^ffmpeg version n?(\d+(?:\.\d+)*)", output)
    if match is None:
        return None
    return tuple(int(n) for n in match.group(1).split("."))


def human_members(channel: discord.abc.GuildChannel) -> int:
    """Counts the members of a voice channel that aren't bots.

    Args:
        channel: discord.py voice channel.

    Returns:
        Number of non-bot members connected to the channel.

    """
    return len([member for member in channel.members if not member.bot])


def can_manage_nicknames(member: discord.Member) -> bool:
    """Checks whether a member may change the nicknames of others.

    Args:
        member: discord.py server member.

    Returns:
        `True` if the member has the manage nicknames permission or is a server administrator.

    """
    permissions = member.guild_permissions
    return permissions.administrator or permissions.manage_nicknames
