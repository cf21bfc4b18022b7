"""Tests for the Wikimedia Commons image fallback."""

from unittest.mock import MagicMock, patch

import requests

from timemachine.tools.wikimedia_search import extract_search_query, pick_thumbnails, search_images


def test_query_from_places_and_year():
    text = "Am 9. November 1989 öffnete sich die Mauer an der Bornholmer Straße in Berlin."
    assert extract_search_query(text) == "Am November Mauer 1989 historical"


def test_multiword_place_names_stay_together():
    text = "Bornholmer Straße und Brandenburger Tor, 1989"
    assert extract_search_query(text) == "Bornholmer Straße Brandenburger Tor 1989 historical"


def test_duplicate_keywords_collapse():
    assert extract_search_query("Berlin, Berlin, 1961 und 1989") == "Berlin 1961 historical"


def test_fallback_to_long_words():
    text = "the quick brown fox jumps over the lazy dogs tonight"
    assert extract_search_query(text) == "quick brown jumps over lazy historical photo"


def test_single_keyword_is_not_enough():
    assert extract_search_query("Paris was very quiet") == "Paris very quiet historical photo"


def _page(title, index, thumb="https://upload.wikimedia.org/t.jpg"):
    return {"title": title, "index": index, "imageinfo": [{"thumburl": thumb}]}


def test_pick_thumbnails_filters_and_keeps_rank():
    data = {
        "query": {
            "pages": {
                "11": _page("File:Berlin Wall 1989.jpg", 3, "https://u/3.jpg"),
                "12": _page("File:Berlin logo.png", 1, "https://u/logo.png"),
                "13": _page("File:Map of Berlin.jpg", 2, "https://u/map.jpg"),
                "14": _page("File:Crowd at the wall.JPEG", 4, "https://u/4.jpeg"),
                "15": _page("File:Wall.svg", 0, "https://u/wall.svg"),
                "16": _page("File:Checkpoint.png", 5, None),
                "17": _page("File:Brandenburger Tor.png", 6, "https://u/6.png"),
            }
        }
    }
    assert pick_thumbnails(data, 3) == ["https://u/3.jpg", "https://u/4.jpeg", "https://u/6.png"]
    assert pick_thumbnails(data, 1) == ["https://u/3.jpg"]
    assert pick_thumbnails({}, 3) == []


def test_search_images_queries_commons():
    resp = MagicMock(status_code=200)
    resp.json.return_value = {"query": {"pages": {"1": _page("File:Berlin 1989.jpg", 1, "https://u/1.jpg")}}}

    with patch("timemachine.tools.wikimedia_search.requests.get", return_value=resp) as get:
        urls = search_images("Berlin 1989", count=2)

    assert urls == ["https://u/1.jpg"]
    params = get.call_args.kwargs["params"]
    assert params["gsrsearch"] == "Berlin 1989 historical"
    assert params["gsrnamespace"] == "6"
    assert params["gsrlimit"] == "12"
    assert params["iiurlwidth"] == "800"


def test_search_images_swallows_http_errors():
    with patch("timemachine.tools.wikimedia_search.requests.get", return_value=MagicMock(status_code=503)):
        assert search_images("Berlin 1989", count=3) == []

    with patch("timemachine.tools.wikimedia_search.requests.get", side_effect=requests.ConnectionError("offline")):
        assert search_images("Berlin 1989", count=3) == []


def test_zero_count_makes_no_request():
    with patch("timemachine.tools.wikimedia_search.requests.get") as get:
        assert search_images("Berlin 1989", count=0) == []
    get.assert_not_called()
