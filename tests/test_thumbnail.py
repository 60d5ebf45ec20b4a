"""Tests for the Thumbnail processor."""

import logging
import shutil
from pathlib import Path
from unittest.mock import patch

import pytest
from PIL import Image

from config import Settings
from engines.kinds import EngineKind
from exceptions import (
    EngineUnavailableError,
    GeometryNotDetectedError,
    InvalidGeometryError,
    ProcessingError,
    ToolTimeoutError,
    UnreadableSourceError,
)
from geometry.detector import CurrentGeometry
from geometry.parser import GeometrySpec
from pipeline.compiler import (
    ApplyDirective,
    AutoOrient,
    ConvertFormat,
    Load,
    OptimizeFrames,
    Resize,
    Save,
    SelectAllFrames,
    SelectFrame,
)
from pipeline.thumbnail import Thumbnail, make_thumbnail
from schemas import ThumbnailOptions


@pytest.fixture
def config(tmp_path):
    out = tmp_path / "out"
    out.mkdir()
    return Settings(temp_dir=str(out))


def fake_run_tool(geometry=b"434x66,1", frames=b"1\n", convert_error=None):
    """Stand-in for run_tool answering identify and recording convert calls."""
    calls = []

    async def run(cmd, input_data=None, timeout=None, allowed_exit_codes=None):
        calls.append(cmd)
        if "%n\n" in cmd:
            if isinstance(frames, Exception):
                raise frames
            return frames, b"", 0
        if "-format" in cmd:
            return geometry, b"", 0
        if convert_error is not None:
            raise convert_error
        return b"", b"", 0

    run.calls = calls
    return run


def static_geometry(width=434, height=66, orientation=1):
    return lambda path, backend: CurrentGeometry(width, height, orientation)


# --- Construction ---


def test_defaults(sample_png, config):
    thumbnail = Thumbnail(sample_png, config=config)
    assert thumbnail.whiny
    assert thumbnail.animated
    assert thumbnail.auto_orient
    assert thumbnail.format is None
    assert thumbnail.current_format == ".png"
    assert thumbnail.basename == "5k"
    assert thumbnail.target_geometry.is_identity
    assert thumbnail.backend == EngineKind.IMAGE_MAGICK


def test_accepts_file_like_source(sample_png, config):
    with open(sample_png, "rb") as fh:
        thumbnail = Thumbnail(fh, {"geometry": "50x50"}, config=config)
    assert thumbnail.source_path == sample_png
    assert thumbnail.basename == "5k"


def test_invalid_geometry_raises(sample_png, config):
    with pytest.raises(InvalidGeometryError):
        Thumbnail(sample_png, {"geometry": "huge", "whiny": False}, config=config)


def test_custom_string_geometry_parser(sample_png, config):
    parser = lambda text: GeometrySpec(10, 10)  # noqa: E731
    thumbnail = Thumbnail(sample_png, {"geometry": "anything", "string_geometry_parser": parser}, config=config)
    assert thumbnail.target_geometry == GeometrySpec(10, 10)


@pytest.mark.parametrize(
    "options,attachment,default,expected",
    [
        ({"backend": "vips"}, {"backend": "image_magick"}, "image_magick", EngineKind.VIPS),
        ({}, {"backend": "vips"}, "image_magick", EngineKind.VIPS),
        ({}, None, "vips", EngineKind.VIPS),
        ({}, None, "image_magick", EngineKind.IMAGE_MAGICK),
        ({"backend": "bogus"}, None, "vips", EngineKind.IMAGE_MAGICK),
    ],
)
def test_backend_resolution(sample_png, tmp_path, options, attachment, default, expected):
    config = Settings(default_backend=default, temp_dir=str(tmp_path))
    thumbnail = Thumbnail(sample_png, options, attachment, config=config)
    assert thumbnail.backend == expected
    assert thumbnail.engine.kind == expected


def test_frame_index_only_for_multi_frame_formats(sample_png, animated_gif, config):
    assert Thumbnail(sample_png, {"frame_index": 3}, config=config).frame_index == 0
    assert Thumbnail(animated_gif, {"frame_index": 3}, config=config).frame_index == 3


# --- Geometry detection ---


@pytest.mark.asyncio
async def test_detect_geometry_auto_orients(rotated_jpeg, config):
    thumbnail = Thumbnail(
        rotated_jpeg, {"file_geometry_parser": static_geometry(300, 200, 6)}, config=config
    )
    assert await thumbnail.detect_geometry() == CurrentGeometry(200, 300, 1)


@pytest.mark.asyncio
async def test_detect_geometry_without_auto_orient(rotated_jpeg, config):
    thumbnail = Thumbnail(
        rotated_jpeg,
        {"file_geometry_parser": static_geometry(300, 200, 6), "auto_orient": False},
        config=config,
    )
    geometry = await thumbnail.detect_geometry()
    assert (geometry.width, geometry.height) == (300, 200)


@pytest.mark.asyncio
async def test_detect_geometry_awaits_async_parser(sample_png, config):
    async def parser(path, backend):
        assert backend == EngineKind.IMAGE_MAGICK
        return CurrentGeometry(1, 2)

    thumbnail = Thumbnail(sample_png, {"file_geometry_parser": parser}, config=config)
    assert await thumbnail.detect_geometry() == CurrentGeometry(1, 2)


@pytest.mark.asyncio
async def test_blank_source_is_unreadable_even_when_not_whiny(config):
    thumbnail = Thumbnail("", {"whiny": False}, config=config)
    with pytest.raises(UnreadableSourceError):
        await thumbnail.make()


# --- Pipeline construction ---


@pytest.mark.asyncio
async def test_build_pipeline_order(sample_png, config):
    thumbnail = Thumbnail(
        sample_png,
        {
            "geometry": "100x100#",
            "format": "jpg",
            "convert_options": "-strip -quality 80",
            "source_file_options": "-density 300",
            "file_geometry_parser": static_geometry(),
        },
        config=config,
    )
    await thumbnail.detect_geometry()
    operations = list(thumbnail.build_pipeline(Path("/tmp/out.jpg")))

    assert [type(op) for op in operations] == [
        Load, AutoOrient, Resize, ApplyDirective, ApplyDirective, ConvertFormat, Save,
    ]
    assert operations[0].loader_options == {"density": "300"}
    assert operations[2].operation.width == 100
    assert operations[5].extension == "jpg"


@pytest.mark.asyncio
async def test_build_pipeline_skips_noop_resize(sample_png, config):
    thumbnail = Thumbnail(
        sample_png, {"geometry": "1000x1000>", "file_geometry_parser": static_geometry()}, config=config
    )
    await thumbnail.detect_geometry()
    operations = list(thumbnail.build_pipeline(Path("/tmp/out.png")))
    assert not any(isinstance(op, Resize) for op in operations)
    assert not any(isinstance(op, ConvertFormat) for op in operations)


def test_build_pipeline_requires_detected_geometry(sample_png, config):
    thumbnail = Thumbnail(sample_png, {"geometry": "100x100#"}, config=config)
    with pytest.raises(GeometryNotDetectedError, match="detect_geometry"):
        thumbnail.build_pipeline(Path("/tmp/out.png"))


def test_build_pipeline_without_geometry_needs_no_detection(sample_png, config):
    thumbnail = Thumbnail(sample_png, {"convert_options": "-strip"}, config=config)
    operations = list(thumbnail.build_pipeline(Path("/tmp/out.png")))
    assert not any(isinstance(op, Resize) for op in operations)


@pytest.mark.asyncio
async def test_animated_gif_keeps_all_frames(animated_gif, config):
    thumbnail = Thumbnail(
        animated_gif, {"geometry": "20x20", "file_geometry_parser": static_geometry(50, 50)}, config=config
    )
    with patch("engines.imagemagick.run_tool", fake_run_tool(frames=b"3\n")):
        await thumbnail.detect_geometry()
        assert await thumbnail.detect_animated_source()
    assert thumbnail.is_animated

    operations = list(thumbnail.build_pipeline(Path("/tmp/out.gif")))
    assert isinstance(operations[1], SelectAllFrames)
    assert any(isinstance(op, OptimizeFrames) for op in operations)


@pytest.mark.asyncio
async def test_animated_gif_to_png_selects_one_frame(animated_gif, config):
    thumbnail = Thumbnail(
        animated_gif,
        {"format": "png", "frame_index": 1, "file_geometry_parser": static_geometry(50, 50)},
        config=config,
    )
    with patch("engines.imagemagick.run_tool", fake_run_tool(frames=b"3\n")):
        await thumbnail.detect_geometry()
        await thumbnail.detect_animated_source()
    assert not thumbnail.is_animated

    operations = list(thumbnail.build_pipeline(Path("/tmp/out.png")))
    assert operations[1] == SelectFrame(1)
    assert not any(isinstance(op, OptimizeFrames) for op in operations)


@pytest.mark.asyncio
async def test_animated_false_selects_first_frame(animated_gif, config):
    thumbnail = Thumbnail(
        animated_gif, {"animated": False, "file_geometry_parser": static_geometry(50, 50)}, config=config
    )
    with patch("engines.imagemagick.run_tool", fake_run_tool(frames=b"3\n")):
        await thumbnail.detect_animated_source()
    await thumbnail.detect_geometry()
    operations = list(thumbnail.build_pipeline(Path("/tmp/out.gif")))
    assert operations[1] == SelectFrame(0)


@pytest.mark.asyncio
async def test_animation_falls_back_to_header_sniffing(animated_gif, config):
    thumbnail = Thumbnail(animated_gif, config=config)
    run = fake_run_tool(frames=ProcessingError("identify failed"))
    with patch("engines.imagemagick.run_tool", run):
        assert await thumbnail.detect_animated_source()


@pytest.mark.asyncio
async def test_missing_engine_is_not_masked_by_sniffing(animated_gif, config):
    thumbnail = Thumbnail(animated_gif, config=config)
    with patch("engines.imagemagick.run_tool", side_effect=FileNotFoundError):
        with pytest.raises(EngineUnavailableError):
            await thumbnail.detect_animated_source()


# --- make ---


@pytest.mark.asyncio
async def test_make_runs_one_convert(sample_png, config):
    run = fake_run_tool()
    with patch("engines.imagemagick.run_tool", run):
        destination = await make_thumbnail(
            sample_png,
            {"geometry": "100x100>", "convert_options": "-strip", "format": "jpg"},
            config=config,
        )

    assert destination.suffix == ".jpg"
    assert destination.parent == Path(config.temp_dir)
    convert = run.calls[-1]
    assert convert[-6:] == [
        str(sample_png),
        "-auto-orient",
        "-resize", "100x100>",
        "-strip",
        f"jpg:{destination}",
    ]


@pytest.mark.asyncio
async def test_make_whiny_raises_and_cleans_up(sample_png, config):
    run = fake_run_tool(convert_error=ProcessingError("convert failed with exit code 1: boom"))
    thumbnail = Thumbnail(sample_png, {"geometry": "50x50#"}, config=config)
    with patch("engines.imagemagick.run_tool", run):
        with pytest.raises(ProcessingError) as exc_info:
            await thumbnail.make()

    message = exc_info.value.message
    assert message.startswith("There was an error processing the thumbnail for 5k using ImageMagick:\n")
    assert "boom" in message
    assert exc_info.value.details["backend"] == "image_magick"
    assert list(Path(config.temp_dir).iterdir()) == []


@pytest.mark.asyncio
async def test_make_whiny_keeps_error_kind(sample_png, config):
    run = fake_run_tool(convert_error=ToolTimeoutError("Tool convert timed out after 60s"))
    with patch("engines.imagemagick.run_tool", run):
        with pytest.raises(ToolTimeoutError):
            await make_thumbnail(sample_png, {"geometry": "50x50"}, config=config)


@pytest.mark.asyncio
async def test_make_not_whiny_returns_source(sample_png, config, caplog):
    caplog.set_level(logging.ERROR, logger="thumbwright")
    run = fake_run_tool(convert_error=ProcessingError("convert failed"))
    with patch("engines.imagemagick.run_tool", run):
        result = await make_thumbnail(sample_png, {"geometry": "50x50", "whiny": False}, config=config)

    assert result == sample_png
    assert "Processing failed: convert failed" in caplog.text
    assert list(Path(config.temp_dir).iterdir()) == []


@pytest.mark.asyncio
async def test_make_records_directive_outcomes(sample_png, config):
    thumbnail = Thumbnail(sample_png, {"convert_options": "-write /tmp/x.png -strip"}, config=config)
    with patch("engines.imagemagick.run_tool", fake_run_tool()):
        await thumbnail.make()
    assert [o.status.value for o in thumbnail.warnings] == ["disallowed", "applied"]


def test_options_model_is_accepted(sample_png, config):
    options = ThumbnailOptions(geometry="10x10", format=".webp")
    thumbnail = Thumbnail(sample_png, options, config=config)
    assert thumbnail.format == "webp"


# --- transformation_command ---


@pytest.mark.asyncio
async def test_transformation_command(sample_png, config):
    thumbnail = Thumbnail(
        sample_png, {"geometry": "50x50#", "file_geometry_parser": static_geometry(400, 100)}, config=config
    )
    await thumbnail.detect_geometry()
    thumbnail._animated_source = False
    assert thumbnail.transformation_command() == [
        "-auto-orient", "-resize", '"x50"', "-crop", '"50x50+75+0"', "+repage",
    ]


@pytest.mark.asyncio
async def test_transformation_command_warns_on_vips(sample_png, config, caplog):
    caplog.set_level(logging.WARNING, logger="thumbwright")
    thumbnail = Thumbnail(
        sample_png,
        {"geometry": "50x50", "backend": "vips", "file_geometry_parser": static_geometry()},
        config=config,
    )
    await thumbnail.detect_geometry()
    thumbnail._animated_source = False
    assert thumbnail.transformation_command() == ["-auto-orient", "-resize", '"50x50"']
    assert "Warning: transformation_command called but using vips backend" in caplog.text


def test_transformation_command_requires_detected_geometry(sample_png, config):
    thumbnail = Thumbnail(sample_png, {"geometry": "50x50#"}, config=config)
    thumbnail._animated_source = False
    with pytest.raises(GeometryNotDetectedError) as exc_info:
        thumbnail.transformation_command()
    assert exc_info.value.error_code == "geometry_not_detected"
    assert exc_info.value.details == {"source": thumbnail.basename}


# --- Real engines ---


def _has_libvips() -> bool:
    try:
        import pyvips  # noqa: F401
    except (ImportError, OSError):
        return False
    return True


requires_imagemagick = pytest.mark.skipif(
    not (shutil.which("magick") or (shutil.which("convert") and shutil.which("identify"))),
    reason="ImageMagick not installed",
)
requires_libvips = pytest.mark.skipif(not _has_libvips(), reason="libvips/pyvips not installed")


@requires_imagemagick
@pytest.mark.asyncio
@pytest.mark.parametrize(
    "geometry,size",
    [
        ("50x50#", (50, 50)),
        ("100x100>", (100, 15)),
        ("50%", (217, 33)),
        ("600x600>", (434, 66)),
        ("400x400>", (400, 61)),
        ("32x32<", (434, 66)),
    ],
)
async def test_imagemagick_end_to_end(sample_png, config, geometry, size):
    destination = await make_thumbnail(sample_png, {"geometry": geometry}, config=config)
    with Image.open(destination) as img:
        assert img.size == size


@requires_imagemagick
@pytest.mark.asyncio
async def test_imagemagick_auto_orients(rotated_jpeg, config):
    destination = await make_thumbnail(rotated_jpeg, {}, config=config)
    with Image.open(destination) as img:
        assert img.size == (200, 300)


@requires_imagemagick
@pytest.mark.asyncio
async def test_imagemagick_crop_directive_without_resize(sample_png, config):
    destination = await make_thumbnail(
        sample_png, {"geometry": "", "convert_options": "-gravity center -crop 300x300+0-0"}, config=config
    )
    with Image.open(destination) as img:
        assert img.size == (300, 66)


@requires_imagemagick
@pytest.mark.asyncio
async def test_imagemagick_strip_drops_orientation(rotated_jpeg, config):
    destination = await make_thumbnail(rotated_jpeg, {"convert_options": "-strip"}, config=config)
    with Image.open(destination) as img:
        assert img.getexif().get(0x0112) is None


@requires_libvips
@pytest.mark.asyncio
@pytest.mark.parametrize(
    "geometry,size",
    [
        ("50x50#", (50, 50)),
        ("100x100>", (100, 15)),
        ("50%", (217, 33)),
        ("600x600>", (434, 66)),
        ("400x400>", (400, 61)),
        ("32x32<", (434, 66)),
    ],
)
async def test_vips_end_to_end(sample_png, config, geometry, size):
    destination = await make_thumbnail(sample_png, {"geometry": geometry, "backend": "vips"}, config=config)
    with Image.open(destination) as img:
        assert img.size == size


@requires_libvips
@pytest.mark.asyncio
async def test_vips_converts_format(sample_png, config):
    destination = await make_thumbnail(
        sample_png, {"geometry": "50x50", "format": "jpg", "backend": "vips"}, config=config
    )
    with Image.open(destination) as img:
        assert img.format == "JPEG"


@requires_libvips
@pytest.mark.asyncio
async def test_vips_strip_drops_orientation(rotated_jpeg, config):
    destination = await make_thumbnail(
        rotated_jpeg, {"convert_options": "-strip", "backend": "vips"}, config=config
    )
    with Image.open(destination) as img:
        assert img.size == (200, 300)
        assert img.getexif().get(0x0112) is None
