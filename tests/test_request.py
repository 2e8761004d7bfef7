"""Tests for outbound request construction."""

import pytest

from iam_signed import ConstructionError, OutboundRequest, ServiceIdentifier, build_request


class TestServiceIdentifier:
    """Tests for the ServiceIdentifier enum."""

    def test_values(self):
        assert ServiceIdentifier.APPSYNC.value == "appsync"
        assert ServiceIdentifier.API_GATEWAY.value == "execute-api"


class TestBuildRequest:
    """Tests for build_request."""

    def test_sets_json_content_type_and_body(self):
        request = build_request("POST", "https://example.com/graphql", b'{"query": "{}"}')

        assert request.method == "POST"
        assert request.url == "https://example.com/graphql"
        assert request.body == b'{"query": "{}"}'
        assert request.headers == {"Content-Type": "application/json"}
        assert request.signed is False

    def test_method_is_upper_cased(self):
        request = build_request("patch", "https://example.com/items/1", b"{}")

        assert request.method == "PATCH"

    def test_str_payload_is_utf8_encoded(self):
        request = build_request("POST", "https://example.com/", '{"name": "café"}')

        assert request.body == '{"name": "café"}'.encode("utf-8")

    def test_none_payload_is_empty_body(self):
        request = build_request("GET", "https://example.com/", None)

        assert request.body == b""

    @pytest.mark.parametrize("method", ["", "FETCH", "GET POST", None])
    def test_invalid_method(self, method):
        with pytest.raises(ConstructionError, match="invalid method"):
            build_request(method, "https://example.com/", b"")

    @pytest.mark.parametrize(
        "endpoint",
        [
            "",
            "not a url",
            "ftp://example.com/file",
            "https://",
            "/relative/path",
            "https://example.com:notaport/",
        ],
    )
    def test_invalid_endpoint(self, endpoint):
        with pytest.raises(ConstructionError, match="invalid endpoint"):
            build_request("POST", endpoint, b"")

    def test_invalid_payload_type(self):
        with pytest.raises(ConstructionError, match="payload"):
            build_request("POST", "https://example.com/", {"not": "bytes"})

    def test_builds_fresh_request_each_time(self):
        first = build_request("POST", "https://example.com/", b"{}")
        second = build_request("POST", "https://example.com/", b"{}")

        first.headers["X-Test"] = "1"

        assert "X-Test" not in second.headers


class TestOutboundRequest:
    """Tests for OutboundRequest helpers."""

    @pytest.mark.parametrize(
        "url,host",
        [
            ("https://example.com/graphql", "example.com"),
            ("https://example.com:443/graphql", "example.com"),
            ("http://example.com:80/", "example.com"),
            ("https://example.com:8443/graphql", "example.com:8443"),
            ("http://localhost:4566/restapis", "localhost:4566"),
        ],
    )
    def test_host_omits_default_port(self, url, host):
        assert OutboundRequest(method="GET", url=url).host == host

    def test_header_lookup_is_case_insensitive(self):
        request = OutboundRequest(method="GET", url="https://example.com/", headers={"X-Amz-Date": "x"})

        assert request.header("x-amz-date") == "x"
        assert request.header("missing") is None

    def test_set_header_replaces_other_casing(self):
        request = OutboundRequest(
            method="GET",
            url="https://example.com/",
            headers={"content-type": "text/plain"},
        )

        request.set_header("Content-Type", "application/json")

        assert request.headers == {"Content-Type": "application/json"}
