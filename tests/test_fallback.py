"""
Unit tests for the remote fallback country lookup.
"""

from unittest.mock import Mock

import pytest
import requests

from geofilter.compliance.fallback import FallbackLookupClient, FallbackOutcome


def make_response(status_code=200, text=""):
    resp = Mock()
    resp.status_code = status_code
    resp.text = text
    return resp


@pytest.fixture
def session():
    s = Mock(spec=requests.Session)
    s.headers = {}
    return s


@pytest.fixture
def client(metrics, session):
    return FallbackLookupClient(metrics, url_template="https://geo.example/country/{0}", timeout=5, session=session)


class TestFallbackLookup:

    def test_success_is_trimmed_and_uppercased(self, client, session, sample):
        session.get.return_value = make_response(text=" cz\n")

        assert client.lookup("203.0.113.7") == "CZ"
        session.get.assert_called_once_with("https://geo.example/country/203.0.113.7", timeout=5)
        assert sample("geofilter_geo_api_calls_total", result="success") == 1

    def test_sets_user_agent(self, session, metrics):
        FallbackLookupClient(metrics, session=session)
        assert session.headers["User-Agent"] == "geofilter/1.0"

    @pytest.mark.parametrize("body", ["", "   ", "nil", "NIL", " Nil "])
    def test_empty_or_nil_body_is_no_result(self, client, session, sample, body):
        session.get.return_value = make_response(text=body)

        result = client.fetch("203.0.113.7")

        assert result.outcome is FallbackOutcome.EMPTY
        assert result.country_code is None
        assert sample("geofilter_geo_api_calls_total", result="empty") == 1

    def test_http_error(self, client, session, sample):
        session.get.return_value = make_response(status_code=503, text="busy")

        assert client.lookup("203.0.113.7") is None
        assert sample("geofilter_geo_api_calls_total", result="http_error") == 1

    @pytest.mark.parametrize("status_code", [300, 301, 304])
    def test_redirect_status_is_not_success(self, client, session, sample, status_code):
        session.get.return_value = make_response(status_code=status_code, text="<html>x</html>")

        result = client.fetch("203.0.113.7")

        assert result.outcome is FallbackOutcome.HTTP_ERROR
        assert result.country_code is None
        assert sample("geofilter_geo_api_calls_total", result="http_error") == 1

    def test_timeout(self, client, session, sample):
        session.get.side_effect = requests.exceptions.ReadTimeout("slow")

        result = client.fetch("203.0.113.7")

        assert result.outcome is FallbackOutcome.TIMEOUT
        assert sample("geofilter_geo_api_calls_total", result="timeout") == 1

    def test_transport_exception_does_not_propagate(self, client, session, sample):
        session.get.side_effect = requests.exceptions.ConnectionError("refused")

        assert client.lookup("203.0.113.7") is None
        assert sample("geofilter_geo_api_calls_total", result="exception") == 1

    @pytest.mark.parametrize("template", [
        "https://geo.example/country",
        "https://geo.example/{0}/{0}",
    ])
    def test_bad_template_makes_no_network_call(self, metrics, session, sample, template):
        client = FallbackLookupClient(metrics, url_template=template, session=session)

        result = client.fetch("203.0.113.7")

        assert result.outcome is FallbackOutcome.CONFIG_ERROR
        session.get.assert_not_called()
        assert sample("geofilter_geo_api_calls_total", result="config_error") == 1
