"""
Unit tests for configuration, format parsing and the encoder
"""

import io
import os
import sys
from pathlib import Path
from unittest.mock import patch

import pytest
from PIL import Image

# Add project root to path
project_root = os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
sys.path.append(project_root)

from common.errors import EncodeError, RequestError
from common.types import AssetCollection, ImageFormat
from image_server.config import ServerConfig, config_from_env, load_config
from image_server.encoder import PillowEncoder


class TestImageFormat:
    """Test cases for ImageFormat.parse"""

    @pytest.mark.parametrize("value", [None, ""])
    def test_absent_is_passthrough(self, value):
        """Test missing or empty type means pass-through"""
        assert ImageFormat.parse(value) is ImageFormat.PNG
        assert ImageFormat.PNG.is_passthrough

    @pytest.mark.parametrize("value,expected", [("jpg", ImageFormat.JPG), ("jpeg", ImageFormat.JPEG), ("webp", ImageFormat.WEBP)])
    def test_known_values(self, value, expected):
        """Test each supported type parses to its format"""
        assert ImageFormat.parse(value) is expected
        assert not expected.is_passthrough

    @pytest.mark.parametrize("value", ["gif", "JPG", "png ", "../x"])
    def test_unknown_value_is_request_error(self, value):
        """Test unsupported types are rejected, not defaulted"""
        with pytest.raises(RequestError) as exc:
            ImageFormat.parse(value)
        assert exc.value.value == value


class TestAssetCollection:
    """Test cases for AssetCollection"""

    def test_under_builds_roots(self, tmp_path):
        """Test collection roots are derived from the shared roots"""
        c = AssetCollection.under("Logos", tmp_path / "images", tmp_path / "cache")
        assert c.source_root == tmp_path / "images" / "Logos"
        assert c.cache_root == tmp_path / "cache" / "Logos"

    def test_roots_must_be_distinct(self, tmp_path):
        """Test identical source and cache roots are rejected"""
        with pytest.raises(ValueError):
            AssetCollection("Logos", tmp_path, tmp_path)

    def test_roots_must_not_nest(self, tmp_path):
        """Test a cache root inside the source root is rejected"""
        with pytest.raises(ValueError):
            AssetCollection("Logos", tmp_path / "images", tmp_path / "images" / "cache")

    def test_roots_are_normalized(self, tmp_path):
        """Test parent segments in roots are collapsed"""
        c = AssetCollection("Logos", tmp_path / "x" / ".." / "images", tmp_path / "cache" / "." / "Logos")
        assert c.source_root == tmp_path / "images"
        assert c.cache_root == tmp_path / "cache" / "Logos"

    def test_nesting_detected_through_parent_segments(self, tmp_path):
        """Test nesting check applies after normalization"""
        with pytest.raises(ValueError):
            AssetCollection("Logos", tmp_path / "images", tmp_path / "other" / ".." / "images" / "cache")

    @pytest.mark.parametrize("name", ["", "..", "a/b"])
    def test_bad_names(self, tmp_path, name):
        """Test invalid collection names"""
        with pytest.raises(ValueError):
            AssetCollection(name, tmp_path / "i", tmp_path / "c")


class TestServerConfig:
    """Test cases for configuration loading"""

    def test_defaults(self):
        """Test defaults with an empty environment"""
        cfg = config_from_env({})
        assert cfg.images_root == Path("images").absolute()
        assert cfg.cache_root == Path("cache").absolute()
        assert cfg.port == 8000
        assert cfg.url_prefix == ""
        assert cfg.debug is False
        assert cfg.delete_token is None
        assert cfg.collection_names == ("Logos", "Screenshots")
        assert cfg.precache_format is ImageFormat.JPG
        assert cfg.precache_on_startup is True

    def test_env_overrides(self, tmp_path):
        """Test every variable overrides its default"""
        cfg = config_from_env({
            "IMAGES_FOLDER": str(tmp_path / "src"),
            "CACHE_FOLDER": str(tmp_path / "dst"),
            "PORT": "9123",
            "URL_PREFIX": "/assets/",
            "DEBUG": "true",
            "DELETE_TOKEN": "s3cret",
            "COLLECTIONS": "Logos, Icons ,",
            "PRECACHE_FORMAT": "webp",
            "PRECACHE_ON_STARTUP": "0",
        })
        assert cfg.images_root == tmp_path / "src"
        assert cfg.port == 9123
        assert cfg.url_prefix == "/assets"
        assert cfg.debug is True
        assert cfg.delete_token == "s3cret"
        assert cfg.collection_names == ("Logos", "Icons")
        assert cfg.precache_format is ImageFormat.WEBP
        assert cfg.precache_on_startup is False
        assert [c.cache_root for c in cfg.collections] == [tmp_path / "dst" / "Logos", tmp_path / "dst" / "Icons"]

    def test_relative_roots_with_parent_segments_are_normalized(self, tmp_path, monkeypatch):
        """Test ../ roots collapse to plain absolute paths"""
        work = tmp_path / "work"
        work.mkdir()
        monkeypatch.chdir(work)
        cfg = config_from_env({"IMAGES_FOLDER": "../images", "CACHE_FOLDER": "../cache", "FAILURE_LOG_DIR": "../logs"})
        assert cfg.images_root == tmp_path / "images"
        assert cfg.cache_root == tmp_path / "cache"
        assert cfg.failure_log_dir == tmp_path / "logs"
        logos = cfg.collections[0]
        assert ".." not in logos.source_root.parts
        assert logos.source_root == tmp_path / "images" / "Logos"

    def test_token_not_in_repr_or_summary(self):
        """Test the delete token never appears in logs"""
        cfg = ServerConfig(delete_token="s3cret")
        assert "s3cret" not in repr(cfg)
        assert cfg.summary()["delete_token"] == "set"

    def test_passthrough_precache_format_rejected(self):
        """Test png cannot be the precache format"""
        with pytest.raises(ValueError):
            config_from_env({"PRECACHE_FORMAT": "png"})

    def test_invalid_precache_format_is_request_error(self):
        """Test unknown precache format"""
        with pytest.raises(RequestError):
            config_from_env({"PRECACHE_FORMAT": "tga"})

    def test_load_config_reads_dotenv_without_overriding(self, tmp_path):
        """Test .env values fill gaps but real env wins"""
        env_file = tmp_path / ".env"
        env_file.write_text("PORT=7001\nDELETE_TOKEN=from-file\n")
        with patch.dict(os.environ, {"DELETE_TOKEN": "from-env"}, clear=True):
            cfg = load_config(str(env_file))
        assert cfg.port == 7001
        assert cfg.delete_token == "from-env"


class TestPillowEncoder:
    """Test cases for PillowEncoder"""

    def _png(self, mode="RGBA") -> bytes:
        buf = io.BytesIO()
        Image.new(mode, (16, 16), (10, 120, 200, 128) if mode == "RGBA" else (10, 120, 200)).save(buf, format="PNG")
        return buf.getvalue()

    def test_rgba_to_jpeg_flattens(self):
        """Test alpha is flattened for JPEG output"""
        out = PillowEncoder().encode(self._png("RGBA"), ImageFormat.JPG)
        with Image.open(io.BytesIO(out)) as img:
            assert img.format == "JPEG"
            assert img.mode == "RGB"

    def test_webp(self):
        """Test WEBP output"""
        out = PillowEncoder().encode(self._png("RGB"), ImageFormat.WEBP)
        with Image.open(io.BytesIO(out)) as img:
            assert img.format == "WEBP"

    def test_deterministic(self):
        """Test identical input gives identical output"""
        data = self._png()
        enc = PillowEncoder(quality=70)
        assert enc.encode(data, ImageFormat.JPEG) == enc.encode(data, ImageFormat.JPEG)

    def test_garbage_raises_encode_error(self):
        """Test undecodable bytes raise EncodeError"""
        with pytest.raises(EncodeError) as exc:
            PillowEncoder().encode(b"nope", ImageFormat.JPG, source="x/y.png")
        assert exc.value.source == Path("x/y.png")


class TestJsonFormatter:
    """Test cases for the JSON log formatter"""

    def test_payload_shape(self):
        """Test JSON log payload fields"""
        import json
        import logging

        from common.logging_setup import JsonFormatter

        record = logging.LogRecord("image_server.precache", logging.WARNING, __file__, 1, "failed %s", ("x.png",), None)
        record.extra = {"collection": "Logos", "path": Path("a/b.png")}
        payload = json.loads(JsonFormatter().format(record))
        assert payload["lvl"] == "WARNING"
        assert payload["name"] == "image_server.precache"
        assert payload["msg"] == "failed x.png"
        assert payload["extra"] == {"collection": "Logos", "path": "a/b.png"}
