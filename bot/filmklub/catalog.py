"""Async HTTP requests to the IMDb API"""
import asyncio
import re
import requests
from typing import cast, Any, Dict, List, NamedTuple, Optional
from typing_extensions import Final

import filmklub
import filmklub.exceptions

import logging
log = logging.getLogger(__name__)


# API config definitions
BASE_HEADERS: Final = {
    "Accept": "application/json",
    "User-Agent": "filmklub ({}, {})".format(filmklub.__url__, filmklub.__version__)
}
API_URL: Final = "https://api.imdbapi.dev"
REQUEST_TIMEOUT: Final = 10
TITLE_ID_REGEX: Final = re.compile(r"^(tt\d+)$")
TITLE_URL_REGEX: Final = re.compile(r"^https://(?:www\.|m\.)?imdb\.com/title/(tt\d+)")
PLOT_MAX_LENGTH: Final = 500
# Discord rejects event descriptions longer than this
DESCRIPTION_MAX_LENGTH: Final = 1000


class MovieDetails(NamedTuple):
    """Metadata of a single IMDb title. Missing values are ``None`` or empty lists."""
    id: str
    title: str
    kind: Optional[str]
    year: Optional[int]
    runtime: Optional[int]
    plot: Optional[str]
    genres: List[str]
    rating: Optional[float]
    rating_votes: Optional[int]
    metacritic: Optional[int]
    metacritic_reviews: Optional[int]
    directors: List[str]
    writers: List[str]
    stars: List[str]
    countries: List[str]
    languages: List[str]
    poster: Optional[str]

    @property
    def is_movie(self) -> bool:
        return self.kind == "movie"

    @property
    def url(self) -> str:
        return build_url(self.id)


class CatalogClient():
    """Looks up movies in the IMDb API.

    requests is not asynchronous, so every request runs in the default executor.

    Args:
        api_url: Base URL of the API, defaults to :data:`API_URL`.

    """
    def __init__(self, api_url: Optional[str] = None) -> None:
        self.api_url = (api_url or API_URL).rstrip("/")

    async def title(self, title_id: str) -> MovieDetails:
        """Retrieves the metadata of a title.

        Args:
            title_id: IMDb title ID, like ``tt0133093``.

        Returns:
            Parsed title metadata.

        Raises:
            filmklub.exceptions.NotFoundError: If the title does not exist.
            filmklub.exceptions.ExternalServiceError: If the API could not be reached.

        """
        if TITLE_ID_REGEX.match(title_id) is None:
            raise filmklub.exceptions.NotFoundError("That is not an IMDb title")
        response = await self._get(f"{self.api_url}/titles/{title_id}")
        if response.status_code == 404:
            raise filmklub.exceptions.NotFoundError("Movie not found")
        if response.status_code != 200:
            raise filmklub.exceptions.ExternalServiceError(
                f"IMDb API returned {response.status_code} for {title_id}"
            )
        data = response.json()
        if not data or "id" not in data:
            raise filmklub.exceptions.NotFoundError("Movie not found")
        return parse_title(data)

    async def search(self, query: str) -> List[Dict[str, Any]]:
        """Searches titles by name.

        Args:
            query: Free text search query.

        Returns:
            Raw search results in ranking order, possibly empty.

        Raises:
            filmklub.exceptions.ExternalServiceError: If the API could not be reached.

        """
        response = await self._get(f"{self.api_url}/search/titles", params={"query": query})
        if response.status_code != 200:
            raise filmklub.exceptions.ExternalServiceError(
                f"IMDb API returned {response.status_code} for search"
            )
        return cast(List[Dict[str, Any]], response.json().get("titles") or [])

    async def download(self, url: str) -> bytes:
        """Downloads a file, like a poster image.

        Raises:
            filmklub.exceptions.ExternalServiceError: If the download failed.

        """
        response = await self._get(url)
        if response.status_code != 200:
            raise filmklub.exceptions.ExternalServiceError(
                f"Download returned {response.status_code}"
            )
        return cast(bytes, response.content)

    async def _get(self, url: str, params: Optional[Dict[str, str]] = None) -> requests.Response:
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(
                None,
                lambda: requests.get(
                    url,
                    params=params,
                    headers=BASE_HEADERS,
                    timeout=REQUEST_TIMEOUT
                )
            )
        except requests.RequestException as e:
            log.warning(f"Request to {url} failed: {e}")
            raise filmklub.exceptions.ExternalServiceError(str(e)) from e


def parse_title_id(reference: str) -> Optional[str]:
    """Extracts an IMDb title ID from user input.

    Args:
        reference: Either a bare title ID or an IMDb title URL.

    Returns:
        The title ID, ``None`` if the input is neither.

    """
    reference = reference.strip()
    match = TITLE_ID_REGEX.match(reference) or TITLE_URL_REGEX.match(reference)
    if match is None:
        return None
    return match.group(1)


def build_url(title_id: str) -> str:
    """Converts an IMDb title ID into a valid URL.

    Args:
        title_id: IMDb title ID.

    Returns:
        IMDb title URL.

    """
    return "https://www.imdb.com/title/{}/".format(title_id)


def first_movie(results: List[Dict[str, Any]]) -> Optional[str]:
    """Picks the best search result, preferring the first one that is a movie.

    Args:
        results: Search results from :meth:`CatalogClient.search`.

    Returns:
        Title ID of the chosen result, ``None`` if there is nothing usable.

    """
    choice = next((r for r in results if r.get("type") == "movie"), None)
    if choice is None and len(results) > 0:
        choice = results[0]
    if choice is None or not choice.get("id"):
        return None
    return str(choice["id"])


def parse_title(data: Dict[str, Any]) -> MovieDetails:
    """Converts an API title response into :class:`MovieDetails`."""
    def names(key: str, field: str) -> List[str]:
        return [str(entry[field]) for entry in data.get(key) or [] if entry.get(field)]
    rating = data.get("rating") or {}
    metacritic = data.get("metacritic") or {}
    return MovieDetails(
        id=str(data["id"]),
        title=data.get("primaryTitle") or data.get("originalTitle") or str(data["id"]),
        kind=data.get("type"),
        year=data.get("startYear"),
        runtime=data.get("runtimeSeconds"),
        plot=data.get("plot"),
        genres=list(data.get("genres") or []),
        rating=rating.get("aggregateRating"),
        rating_votes=rating.get("voteCount"),
        metacritic=metacritic.get("score"),
        metacritic_reviews=metacritic.get("reviewCount"),
        directors=names("directors", "displayName"),
        writers=names("writers", "displayName"),
        stars=names("stars", "displayName"),
        countries=names("originCountries", "name"),
        languages=names("spokenLanguages", "name"),
        poster=(data.get("primaryImage") or {}).get("url")
    )


def truncate(text: str, limit: int = PLOT_MAX_LENGTH) -> str:
    """Shortens text to a length limit, cutting at the last whitespace within the limit.

    Args:
        text: Text to be shortened.
        limit: Maximum number of characters kept before the ellipsis.

    Returns:
        The text unchanged if it fits, otherwise the cut text followed by ``...``.

    """
    if len(text) <= limit:
        return text
    trimmed = text[:limit]
    cutoff = max((i for i, c in enumerate(trimmed) if c.isspace()), default=-1)
    if cutoff > 0:
        trimmed = trimmed[:cutoff]
    return f"{trimmed}..."


def rating_text(details: MovieDetails) -> str:
    if details.rating is None:
        return "N/A"
    return f"{details.rating}/10 ({details.rating_votes} votes)"


def describe(details: MovieDetails) -> str:
    """Builds a scheduled event description from title metadata.

    Args:
        details: Title metadata.

    Returns:
        Markdown description, never longer than :data:`DESCRIPTION_MAX_LENGTH`.

    """
    def join(values: List[str]) -> str:
        return ", ".join(values) or "N/A"
    duration = f"{details.runtime // 60} minutes" if details.runtime else "N/A"
    metacritic = (
        f"{details.metacritic}/100 ({details.metacritic_reviews} reviews)"
        if details.metacritic is not None else "N/A"
    )
    description = f"\n*{truncate(details.plot)}*\n\n" if details.plot else "\n"
    description += (
        f"**Genres:** {join(details.genres)}\n"
        f"**Duration:** {duration}\n"
        f"**Directors:** {join(details.directors)}\n"
        f"**Writers:** {join(details.writers)}\n"
        f"**Stars:** {join(details.stars)}\n"
        f"**Country:** {join(details.countries)}\n"
        f"**Languages:** {join(details.languages)}\n"
        f"**IMDb Rating:** {rating_text(details)}\n"
        f"**Metacritic:** {metacritic}\n"
    )
    return truncate(description, DESCRIPTION_MAX_LENGTH - 3)
