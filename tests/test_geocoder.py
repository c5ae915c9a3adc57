import asyncio
from unittest import mock

import pytest
import requests

from keke.geocoder import MapboxGeocoder

TOKEN = "pk.eyJ1IjoiY29ycGtla2UiLCJhIjoiY2x0ZXN0In0"

FEATURES = {
    "features": [
        {"place_name": "Bayero University, Kano, Nigeria", "center": [8.4733, 11.9764]},
        {"place_name": "Kano State Secretariat, Kano, Nigeria", "center": [8.5204, 11.9876]},
        {"place_name": "Broken feature"},
    ]
}


def response_with(payload):
    response = mock.Mock()
    response.json.return_value = payload
    response.raise_for_status.return_value = None
    return response


@pytest.fixture
def http_get():
    with mock.patch("keke.geocoder.requests.get") as get:
        get.return_value = response_with(FEATURES)
        yield get


def test_short_or_missing_token_disables_geocoding():
    assert not MapboxGeocoder(token="").enabled
    assert not MapboxGeocoder(token="x" * 20).enabled
    assert MapboxGeocoder(token="x" * 21).enabled


async def test_maps_features_to_suggestions(http_get):
    suggestions = await MapboxGeocoder(token=TOKEN).search("Bayero")

    assert [s.label for s in suggestions] == [
        "Bayero University, Kano, Nigeria",
        "Kano State Secretariat, Kano, Nigeria",
    ]
    assert suggestions[0].lat == pytest.approx(11.9764)
    assert suggestions[0].lng == pytest.approx(8.4733)


async def test_request_is_biased_to_kano(http_get):
    http_get.return_value = response_with({"features": []})

    await MapboxGeocoder(token=TOKEN).search("Sabon Gari")

    url = http_get.call_args.args[0]
    params = http_get.call_args.kwargs["params"]
    assert url.endswith("/Sabon%20Gari.json")
    assert params["proximity"] == "8.5167,11.9667"
    assert params["country"] == "NG"
    assert params["limit"] == 5
    assert params["access_token"] == TOKEN


@pytest.mark.parametrize("token, query", [("", "Bayero University"), (TOKEN, "Ba"), (TOKEN, "  ")])
async def test_no_lookup_when_disabled_or_query_too_short(http_get, token, query):
    assert await MapboxGeocoder(token=token).search(query) == []
    http_get.assert_not_called()


async def test_http_errors_propagate(http_get):
    http_get.return_value.raise_for_status.side_effect = requests.HTTPError("401 Unauthorized")

    with pytest.raises(requests.HTTPError):
        await MapboxGeocoder(token=TOKEN).search("Bayero")


async def test_concurrent_lookups_keep_their_own_results(http_get):
    def by_query(url, **kwargs):
        name = url.rsplit("/", 1)[-1][: -len(".json")]
        return response_with({"features": [{"place_name": name, "center": [8.5, 12.0]}]})

    http_get.side_effect = by_query
    geocoder = MapboxGeocoder(token=TOKEN)

    results = await asyncio.gather(*(geocoder.search(query) for query in ["Kofar", "Zoo Road", "Sabon Gari"]))

    assert [[s.label for s in suggestions] for suggestions in results] == [
        ["Kofar"], ["Zoo%20Road"], ["Sabon%20Gari"],
    ]
    assert http_get.call_count == 3
