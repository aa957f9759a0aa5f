import pytest
from unittest.mock import Mock, patch

import json
import requests

import filmklub.catalog
import filmklub.exceptions

from conftest import make_details


def json_response(path, status_code=200):
    with open(path, "rb") as f:
        content = f.read()
    mock_response = Mock(status_code=status_code, content=content)
    mock_response.json.return_value = json.loads(content)
    return mock_response


@pytest.mark.asyncio
async def test_title(data_dir):
    with patch("requests.get") as mock_get:
        mock_get.return_value = json_response(data_dir / "imdb-title.json")
        client = filmklub.catalog.CatalogClient("https://api.example.com/")
        details = await client.title("tt0133093")

        assert mock_get.call_args[0][0] == "https://api.example.com/titles/tt0133093"
        assert mock_get.call_args[1]["timeout"] == filmklub.catalog.REQUEST_TIMEOUT
        assert details.title == "The Matrix"
        assert details.is_movie
        assert details.year == 1999
        assert details.runtime == 8160
        assert details.rating == 8.7
        assert details.directors == ["Lana Wachowski", "Lilly Wachowski"]
        assert details.countries == ["United States", "Australia"]
        assert details.languages == ["English"]
        assert details.poster == "https://example.com/matrix.jpg"
        assert details.url == "https://www.imdb.com/title/tt0133093/"


@pytest.mark.asyncio
async def test_title_errors():
    client = filmklub.catalog.CatalogClient()
    with patch("requests.get") as mock_get:
        with pytest.raises(filmklub.exceptions.NotFoundError):
            await client.title("not-an-id")
        assert mock_get.call_count == 0

        mock_get.return_value = Mock(status_code=404)
        with pytest.raises(filmklub.exceptions.NotFoundError):
            await client.title("tt1")

        mock_get.return_value = Mock(status_code=500)
        with pytest.raises(filmklub.exceptions.ExternalServiceError):
            await client.title("tt1")

        mock_get.return_value = Mock(status_code=200, **{"json.return_value": {}})
        with pytest.raises(filmklub.exceptions.NotFoundError):
            await client.title("tt1")

        mock_get.side_effect = requests.ConnectionError("offline")
        with pytest.raises(filmklub.exceptions.ExternalServiceError):
            await client.title("tt1")


@pytest.mark.asyncio
async def test_search(data_dir):
    with patch("requests.get") as mock_get:
        mock_get.return_value = json_response(data_dir / "imdb-search.json")
        results = await filmklub.catalog.CatalogClient().search("matrix")

        assert mock_get.call_args[1]["params"] == {"query": "matrix"}
        assert len(results) == 3
        assert filmklub.catalog.first_movie(results) == "tt0133093"


def test_first_movie():
    assert filmklub.catalog.first_movie([]) is None
    assert filmklub.catalog.first_movie([{"id": "tt1", "type": "tvSeries"}]) == "tt1"
    assert filmklub.catalog.first_movie([{"type": "movie"}]) is None


def test_parse_title_id():
    assert filmklub.catalog.parse_title_id("tt0133093") == "tt0133093"
    assert filmklub.catalog.parse_title_id(
        "https://www.imdb.com/title/tt0133093/?ref_=nv_sr_srsg_0"
    ) == "tt0133093"
    assert filmklub.catalog.parse_title_id("https://m.imdb.com/title/tt0133093") == "tt0133093"
    assert filmklub.catalog.parse_title_id("https://example.com/title/tt0133093") is None
    assert filmklub.catalog.parse_title_id("The Matrix") is None


def test_truncate():
    assert filmklub.catalog.truncate("short") == "short"
    assert filmklub.catalog.truncate("x" * 500) == "x" * 500

    # Cut at the last whitespace inside the limit
    plot = "a" * 480 + " " + "b" * 119
    assert len(plot) == 600
    truncated = filmklub.catalog.truncate(plot)
    assert truncated == "a" * 480 + "..."

    # No whitespace to cut at
    assert filmklub.catalog.truncate("c" * 600) == "c" * 500 + "..."


def test_describe():
    details = make_details(
        plot="p" * 480 + " " + "q" * 200,
        runtime=8160,
        metacritic=73,
        metacritic_reviews=36
    )
    description = filmklub.catalog.describe(details)
    assert "p" * 480 + "..." in description
    assert "q" not in description
    assert "**Duration:** 136 minutes" in description
    assert "**IMDb Rating:** 7.5/10 (1000 votes)" in description
    assert "**Metacritic:** 73/100 (36 reviews)" in description
    assert len(description) <= filmklub.catalog.DESCRIPTION_MAX_LENGTH

    details = make_details(runtime=None, rating=None, genres=[], stars=["s" * 60] * 30)
    description = filmklub.catalog.describe(details)
    assert "**Duration:** N/A" in description
    assert "**Genres:** N/A" in description
    assert len(description) <= filmklub.catalog.DESCRIPTION_MAX_LENGTH
    assert description.endswith("...")
