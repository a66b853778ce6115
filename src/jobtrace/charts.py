"""Chart images rendered by a QuickChart-compatible HTTP service."""

import logging
from dataclasses import dataclass
from typing import Any

import requests

from jobtrace.config import ChartConfig

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Theme:
    name: str
    axis_color: str
    background_color: str


THEMES = (
    Theme("light", axis_color="#000000", background_color="white"),
    Theme("dark", axis_color="#FFFFFF", background_color="#0d1117"),
)

TIME_DISPLAY_FORMATS = {
    "millisecond": "HH:mm:ss",
    "second": "HH:mm:ss",
    "minute": "HH:mm:ss",
    "hour": "HH:mm",
}


@dataclass(frozen=True)
class Series:
    """One plotted line: ``points`` are ``{"x": time_ms, "y": value}``."""

    label: str
    color: str
    points: list[dict[str, float]]


def _time_axis(theme: Theme) -> dict[str, Any]:
    return {
        "type": "time",
        "time": {"displayFormats": TIME_DISPLAY_FORMATS, "unit": "second"},
        "scaleLabel": {"display": True, "labelString": "Time", "fontColor": theme.axis_color},
        "ticks": {"fontColor": theme.axis_color},
    }


def _value_axis(theme: Theme, label: str, stacked: bool) -> dict[str, Any]:
    axis: dict[str, Any] = {
        "scaleLabel": {"display": True, "labelString": label, "fontColor": theme.axis_color},
        "ticks": {"fontColor": theme.axis_color, "beginAtZero": True},
    }
    if stacked:
        axis["stacked"] = True
    return axis


def line_chart_config(label: str, line: Series, theme: Theme) -> dict[str, Any]:
    return {
        "type": "line",
        "data": {
            "datasets": [
                {
                    "label": line.label,
                    "data": line.points,
                    "borderColor": line.color,
                    "backgroundColor": line.color + "33",
                    "fill": False,
                    "tension": 0.1,
                }
            ]
        },
        "options": {
            "scales": {
                "xAxes": [_time_axis(theme)],
                "yAxes": [_value_axis(theme, label, stacked=False)],
            },
            "legend": {"labels": {"fontColor": theme.axis_color}},
        },
    }


def stacked_area_chart_config(label: str, areas: list[Series], theme: Theme) -> dict[str, Any]:
    datasets = [
        {
            "label": area.label,
            "data": area.points,
            "borderColor": area.color,
            "backgroundColor": area.color,
            # Each area fills down to the previous one
            "fill": "origin" if index == 0 else "-1",
            "tension": 0.1,
        }
        for index, area in enumerate(areas)
    ]
    return {
        "type": "line",
        "data": {"datasets": datasets},
        "options": {
            "scales": {
                "xAxes": [_time_axis(theme)],
                "yAxes": [_value_axis(theme, label, stacked=True)],
            },
            "legend": {"labels": {"fontColor": theme.axis_color}},
        },
    }


def picture_html(theme_urls: dict[str, str], label: str) -> str:
    sources = "".join(
        f'<source media="(prefers-color-scheme: {theme})" srcset="{url}">'
        for theme, url in theme_urls.items()
    )
    fallback = theme_urls.get("light", "")
    return f'<picture>{sources}<img alt="{label}" src="{fallback}"></picture>'


class QuickChartClient:
    """
    Renders Chart.js configs to hosted images, one per colour theme.

    A theme whose request fails is simply left out; a chart with no theme
    rendered at all comes back as None.
    """

    def __init__(self, config: ChartConfig | None = None, session: requests.Session | None = None) -> None:
        self._config = config or ChartConfig()
        self._session = session or requests.Session()

    def render(self, chart: dict[str, Any], theme: Theme) -> str | None:
        """POST one chart; returns the image URL or None."""
        payload = {
            "width": self._config.width,
            "height": self._config.height,
            "backgroundColor": theme.background_color,
            "chart": chart,
        }
        try:
            response = self._session.post(
                self._config.api_url, json=payload, timeout=self._config.timeout
            )
            response.raise_for_status()
            data = response.json()
        except (requests.RequestException, ValueError):
            logger.warning("Chart rendering failed for %s theme", theme.name, exc_info=True)
            return None

        if isinstance(data, dict) and data.get("success") and data.get("url"):
            return data["url"]
        logger.warning("Chart service returned no image for %s theme: %s", theme.name, data)
        return None

    def line_graph(self, label: str, line: Series) -> str | None:
        return self._picture(label, lambda theme: line_chart_config(label, line, theme))

    def stacked_area_graph(self, label: str, areas: list[Series]) -> str | None:
        return self._picture(label, lambda theme: stacked_area_chart_config(label, areas, theme))

    def _picture(self, label, build) -> str | None:
        theme_urls: dict[str, str] = {}
        for theme in THEMES:
            url = self.render(build(theme), theme)
            if url:
                theme_urls[theme.name] = url
        if not theme_urls:
            return None
        return picture_html(theme_urls, label)
