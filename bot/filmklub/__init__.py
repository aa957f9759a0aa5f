"""Discord bot for movie nights and a voice channel soundboard"""

__version__ = "1.0.0"
__author__ = "Dalles Filmklub"
__copyright__ = "2024, Dalles Filmklub"
__license__ = "ISC"
__url__ = "https://github.com/dalles-filmklub/filmklub"

from discord import Client, Intents
from filmklub.runtime import BotState

# Use a bunch of globals because of decorator class methods
bot: Client = Client(
    intents=Intents(
        guilds=True,                 # List which guilds bot is in
        members=True,                # Count who is left in voice channels, change nicknames
        voice_states=True,           # Auto-join, entrance sounds and leaving empty channels
        guild_messages=True,         # Chat commands
        message_content=True,        # Chat command parameters
        guild_scheduled_events=True  # Movie night event status
    )
)
state: BotState = BotState()

# Initialize bot decorators
import filmklub.bot_events  # noqa: E401,E402,F401
