"""Specialized exceptions."""


class ClientError(Exception):
    """Occurs when a command fails and the user needs to be told why.

    Raised before any state is written, so catching it never leaves the store half updated.

    Args:
        message: Short explanation to be shown to the user.

    Attributes:
        message (str): Short explanation to be shown to the user.

    Raises:
        TypeError: If initialized with a type other than str

    """
    def __init__(self, message: str) -> None:
        if not isinstance(message, str):
            raise TypeError(
                "filmklub.exceptions.ClientError must be initialized with str"
            )
        super().__init__(message)
        self.message = message


class NotFoundError(ClientError):
    """Occurs when a poll, movie, night, sound or catalog entry does not exist."""
    pass


class AmbiguousInputError(ClientError):
    """Occurs when a command is given conflicting or missing inputs."""
    pass


class WrongKindError(ClientError):
    """Occurs when a catalog entry resolves to something other than a movie."""
    pass


class DuplicateError(ClientError):
    """Occurs when adding something that already exists, like an unwatched movie suggestion."""
    pass


class EmptyError(ClientError):
    """Occurs when there is nothing eligible for an operation."""
    pass


class ExternalServiceError(Exception):
    """Occurs when a request to the movie catalog or the Discord API fails."""
    pass


class StoreError(IOError):
    """Occurs when the movie night document cannot be read or written."""
    pass


class MalformedConfig(Exception):
    """Occurs when a config file is malformed."""
    pass


class MalformedFile(Exception):
    """Occurs when an uploaded file is malformed."""
    pass
