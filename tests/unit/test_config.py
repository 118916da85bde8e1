"""
Unit tests for params loading and run configuration
"""

import os
import sys
from pathlib import Path
from unittest.mock import patch

import pytest

# Add project root to path
project_root = os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
sys.path.append(project_root)

from common.types import BoundingBox, ZoomRange
from mbtiler.config import (
    DEFAULT_CONFIG_PATH,
    DEFAULT_PARAMS,
    RunConfig,
    TileSource,
    build_config,
    clip_latitude_note,
    load_params,
    resolve_source,
)
from mbtiler.errors import ConfigError

OSM = TileSource("osm", "https://tile.openstreetmap.org/{z}/{x}/{y}.png")


class TestLoadParams:
    def test_missing_default_file_uses_builtins(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        params = load_params(DEFAULT_CONFIG_PATH)
        assert params == DEFAULT_PARAMS
        assert params is not DEFAULT_PARAMS

    def test_missing_explicit_file(self, tmp_path):
        with pytest.raises(ConfigError, match="not found"):
            load_params(str(tmp_path / "nope.yaml"))

    def test_yaml_overrides_builtins(self, tmp_path):
        p = tmp_path / "params.yaml"
        p.write_text(
            "zoom: {start: 3, end: 5}\n"
            "fetch: {workers: 4}\n"
            "sources:\n"
            "  local: {url: 'http://localhost:8080/{z}/{x}/{y}.png'}\n"
        )
        params = load_params(str(p))
        assert params["zoom"] == {"start": 3, "end": 5}
        assert params["fetch"]["workers"] == 4
        # nested defaults survive the merge
        assert params["fetch"]["timeout_s"] == DEFAULT_PARAMS["fetch"]["timeout_s"]
        assert "osm" in params["sources"] and "local" in params["sources"]

    def test_bad_yaml(self, tmp_path):
        p = tmp_path / "params.yaml"
        p.write_text("zoom: [1, 2\n")
        with pytest.raises(ConfigError, match="cannot parse"):
            load_params(str(p))

    def test_top_level_must_be_mapping(self, tmp_path):
        p = tmp_path / "params.yaml"
        p.write_text("- a\n- b\n")
        with pytest.raises(ConfigError):
            load_params(str(p))

    def test_shipped_params_file(self):
        params = load_params(os.path.join(project_root, "config", "params.yaml"))
        config = build_config(params)
        assert config.source.name == "google"
        assert config.zooms == ZoomRange(17, 19)
        assert config.workers == 20


class TestBuildConfig:
    def test_defaults(self):
        config = build_config(DEFAULT_PARAMS)
        assert config.bbox == BoundingBox(55.397945, 25.291090, 55.402741, 25.292889)
        assert config.zooms == ZoomRange(17, 19)
        assert config.output == Path("outputFile.mbtiles")
        assert config.source.image_format == "image/jpg"
        assert config.source.extension == "jpg"
        assert config.workers == 20
        assert config.queue_size == 0
        assert config.write_metadata

    def test_overrides_win_and_none_is_ignored(self):
        config = build_config(
            DEFAULT_PARAMS,
            {"min_lon": 13.3, "max_lon": 13.5, "min_lat": 52.4, "max_lat": 52.6, "zoom_start": 11,
             "zoom_end": 12, "source": "osm", "workers": 5, "output": None, "write_metadata": False},
        )
        assert config.bbox == BoundingBox(13.3, 52.4, 13.5, 52.6)
        assert config.zooms == ZoomRange(11, 12)
        assert config.source.name == "osm"
        assert config.workers == 5
        assert config.output == Path("outputFile.mbtiles")
        assert not config.write_metadata

    def test_url_template_override(self):
        config = build_config(
            DEFAULT_PARAMS, {"url_template": "https://t.example.com/{z}/{y}/{x}.jpg", "image_format": "image/jpeg"}
        )
        assert config.source == TileSource("custom", "https://t.example.com/{z}/{y}/{x}.jpg", "image/jpeg")

    def test_unknown_source(self):
        with pytest.raises(ConfigError, match="unknown tile source 'bing'"):
            build_config(DEFAULT_PARAMS, {"source": "bing"})

    def test_inverted_zoom(self):
        with pytest.raises(ConfigError, match="invalid zoom range"):
            build_config(DEFAULT_PARAMS, {"zoom_start": 19, "zoom_end": 17})

    @pytest.mark.parametrize(
        "fetch", [{"workers": "many"}, {"queue_size": [1]}, {"timeout_s": "soon"}]
    )
    def test_non_numeric_fetch_settings(self, fetch):
        params = dict(DEFAULT_PARAMS, fetch=dict(DEFAULT_PARAMS["fetch"], **fetch))
        with pytest.raises(ConfigError, match="fetch settings"):
            build_config(params)

    def test_null_zoom(self):
        params = dict(DEFAULT_PARAMS, zoom={"start": None, "end": 3})
        with pytest.raises(ConfigError, match="invalid zoom range"):
            build_config(params)

    def test_non_numeric_bbox(self):
        params = dict(DEFAULT_PARAMS, bbox={"min_lon": "east", "min_lat": 0, "max_lon": 1, "max_lat": 1})
        with pytest.raises(ConfigError, match="four numbers"):
            build_config(params)

    def test_env_token_expansion(self):
        with patch.dict(os.environ, {"MAPBOX_ACCESS_TOKEN": "pk.test"}):
            source = resolve_source(DEFAULT_PARAMS, "mapbox-satellite-streets")
        assert source.url_template.endswith("access_token=pk.test")

    def test_unset_env_token(self):
        with patch.dict(os.environ, {}, clear=True):
            with pytest.raises(ConfigError, match="environment variable"):
                build_config(DEFAULT_PARAMS, {"source": "mapbox-satellite-streets"})


class TestRunConfigValidation:
    def _make(self, **kw):
        params = dict(bbox=BoundingBox(0.0, 0.0, 1.0, 1.0), zooms=ZoomRange(1, 2), output=Path("x.mbtiles"), source=OSM)
        params.update(kw)
        return RunConfig(**params)

    def test_valid(self):
        assert self._make().timeout_s == 30.0

    @pytest.mark.parametrize(
        "bbox",
        [
            BoundingBox(1.0, 0.0, 0.0, 1.0),
            BoundingBox(0.0, 1.0, 1.0, 0.0),
            BoundingBox(-181.0, 0.0, 1.0, 1.0),
            BoundingBox(0.0, -91.0, 1.0, 1.0),
        ],
    )
    def test_bad_bbox(self, bbox):
        with pytest.raises(ConfigError):
            self._make(bbox=bbox)

    def test_degenerate_bbox_is_valid(self):
        assert self._make(bbox=BoundingBox(5.0, 5.0, 5.0, 5.0)).bbox.min_lon == 5.0

    @pytest.mark.parametrize(
        "url",
        [
            "https://t.example.com/{z}/{x}.png",
            "https://t.example.com/{x}/{y}.png",
            "ftp://t.example.com/{z}/{x}/{y}.png",
            "t.example.com/{z}/{x}/{y}.png",
        ],
    )
    def test_bad_template(self, url):
        with pytest.raises(ConfigError):
            self._make(source=TileSource("bad", url))

    def test_bad_format(self):
        with pytest.raises(ConfigError, match="unsupported format"):
            self._make(source=TileSource("osm", OSM.url_template, "image/webp"))

    @pytest.mark.parametrize("kw", [{"workers": 0}, {"queue_size": -1}, {"timeout_s": 0.0}])
    def test_bad_fetch_settings(self, kw):
        with pytest.raises(ConfigError):
            self._make(**kw)

    def test_config_error_is_value_error(self):
        with pytest.raises(ValueError):
            self._make(workers=0)


class TestLatitudeNote:
    def test_inside_mercator(self):
        assert clip_latitude_note(BoundingBox(0.0, -80.0, 1.0, 80.0)) is None

    def test_beyond_mercator(self):
        assert "clipped" in clip_latitude_note(BoundingBox(0.0, -89.0, 1.0, 1.0))
