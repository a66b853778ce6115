"""Tests for the QuickChart client."""

import requests

from jobtrace.charts import (
    THEMES,
    QuickChartClient,
    Series,
    line_chart_config,
    picture_html,
    stacked_area_chart_config,
)
from jobtrace.config import ChartConfig

LIGHT, DARK = THEMES


class FakeResponse:
    def __init__(self, payload=None, status_code=200, bad_json=False):
        self._payload = payload
        self.status_code = status_code
        self._bad_json = bad_json

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")

    def json(self):
        if self._bad_json:
            raise ValueError("not json")
        return self._payload


class FakeSession:
    """Answers chart requests per theme background colour."""

    def __init__(self, responses):
        self.responses = responses
        self.requests = []

    def post(self, url, json=None, timeout=None):
        self.requests.append((url, json, timeout))
        response = self.responses[json["backgroundColor"]]
        if isinstance(response, Exception):
            raise response
        return response


def ok(url):
    return FakeResponse({"success": True, "url": url})


SERIES = Series("Read", "#be4d25", [{"x": 1, "y": 2}])


class TestChartConfigs:
    """Tests for the Chart.js configs sent to the service."""

    def test_line_chart(self):
        """Test a line chart has one unfilled dataset and themed axes."""
        config = line_chart_config("Disk I/O Read (MB)", SERIES, DARK)

        dataset = config["data"]["datasets"][0]
        assert dataset["fill"] is False
        assert dataset["backgroundColor"] == "#be4d2533"
        y_axis = config["options"]["scales"]["yAxes"][0]
        assert y_axis["scaleLabel"]["labelString"] == "Disk I/O Read (MB)"
        assert y_axis["ticks"]["fontColor"] == "#FFFFFF"
        assert "stacked" not in y_axis

    def test_stacked_area_chart(self):
        """Test areas fill onto the previous one and the y axis stacks."""
        areas = [Series("Used", "#377eb899", []), Series("Free", "#4daf4a99", [])]
        config = stacked_area_chart_config("Memory Usage (MB)", areas, LIGHT)

        assert [d["fill"] for d in config["data"]["datasets"]] == ["origin", "-1"]
        assert config["options"]["scales"]["yAxes"][0]["stacked"] is True

    def test_picture_html(self):
        """Test one source per theme and the light image as fallback."""
        html = picture_html({"light": "L", "dark": "D"}, "CPU")

        assert '<source media="(prefers-color-scheme: light)" srcset="L">' in html
        assert '<source media="(prefers-color-scheme: dark)" srcset="D">' in html
        assert html.endswith('<img alt="CPU" src="L"></picture>')


class TestQuickChartClient:
    """Tests for rendering through the HTTP service."""

    def test_renders_both_themes(self):
        """Test a successful call per theme yields a picture with both."""
        session = FakeSession({"white": ok("https://c/light.png"), "#0d1117": ok("https://c/dark.png")})
        client = QuickChartClient(ChartConfig(api_url="https://charts.local/create"), session=session)

        html = client.line_graph("Network I/O Read (MB)", SERIES)

        assert "https://c/light.png" in html
        assert "https://c/dark.png" in html
        url, payload, timeout = session.requests[0]
        assert url == "https://charts.local/create"
        assert payload["width"] == 800
        assert payload["height"] == 400
        assert payload["chart"]["type"] == "line"
        assert timeout == 10.0

    def test_failed_theme_is_left_out(self):
        """Test a theme whose request fails is omitted."""
        session = FakeSession({"white": ok("https://c/light.png"), "#0d1117": requests.ConnectionError("down")})
        html = QuickChartClient(session=session).stacked_area_graph("CPU Load (%)", [SERIES])

        assert "https://c/light.png" in html
        assert "dark" not in html

    def test_no_theme_rendered(self):
        """Test a chart with no rendered theme is None, not an exception."""
        session = FakeSession(
            {
                "white": FakeResponse({"success": False}),
                "#0d1117": FakeResponse(status_code=503),
            }
        )
        assert QuickChartClient(session=session).line_graph("x", SERIES) is None

    def test_bad_json(self):
        """Test an unparseable response is treated as a failure."""
        session = FakeSession({"white": FakeResponse(bad_json=True), "#0d1117": requests.Timeout("slow")})
        assert QuickChartClient(session=session).line_graph("x", SERIES) is None

    def test_render_without_url(self):
        """Test success without a URL yields no image."""
        session = FakeSession({"white": FakeResponse({"success": True})})
        assert QuickChartClient(session=session).render({}, LIGHT) is None
