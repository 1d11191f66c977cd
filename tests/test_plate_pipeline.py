import math
from unittest import mock

import numpy as np
import pytest
from PIL import Image

from parkwatch.plate_pipeline import (
    FRAME_BYTES,
    PlatePipeline,
    assemble_text,
    crop_box,
    i420_to_bgr,
    is_file_ready,
    perspective_coefficients,
    plate_corners,
)

CORNERS = [(10.0, 10.0), (118.0, 10.0), (118.0, 118.0), (10.0, 118.0)]


def _logit(value):
    p = value / 128.0
    return math.log(p / (1.0 - p))


RAW_CORNERS = [_logit(c) for point in CORNERS for c in point]


class FakeDetector:
    def __init__(self, proposal, error=None):
        self.proposal = proposal
        self.error = error
        self.shapes = []

    def get_proposal(self, image):
        if self.error is not None:
            raise self.error
        self.shapes.append(np.asarray(image).shape)
        return self.proposal


class FakeAligner:
    def __init__(self, raw):
        self.raw = raw
        self.shapes = []

    def get_coordinate(self, image):
        self.shapes.append(np.asarray(image).shape)
        return self.raw


def _write_frame(path, value=128, size=FRAME_BYTES):
    path.write_bytes(bytes([value]) * size)
    return path


def _pipeline(proposal, symbols=(("1", 90.0), ("2", 95.0)), error=None):
    return PlatePipeline(
        FakeDetector(proposal, error), FakeAligner(RAW_CORNERS), lambda image: list(symbols)
    )


class _Stop(Exception):
    pass


def test_is_file_ready(tmp_path):
    assert is_file_ready(_write_frame(tmp_path / "a.yuv")) is True
    assert is_file_ready(_write_frame(tmp_path / "b.yuv", size=FRAME_BYTES - 1)) is False
    assert is_file_ready(tmp_path / "missing.yuv") is False


def test_full_frame_converts_to_800x600():
    image = i420_to_bgr(bytes([128]) * FRAME_BYTES, 800, 600)
    assert image.shape == (600, 800, 3)


def test_i420_black_and_white_levels():
    w, h = 4, 2
    black = bytes([16] * (w * h)) + bytes([128] * (w * h // 2))
    white = bytes([235] * (w * h)) + bytes([128] * (w * h // 2))
    assert i420_to_bgr(black, w, h).shape == (2, 4, 3)
    assert np.all(i420_to_bgr(black, w, h) == 0)
    assert np.all(i420_to_bgr(white, w, h) == 255)


def test_i420_neutral_chroma_gives_gray():
    w, h = 6, 4
    luma = bytes(range(60, 60 + w * h))
    image = i420_to_bgr(luma + bytes([128] * (w * h // 2)), w, h)
    assert np.array_equal(image[:, :, 0], image[:, :, 1])
    assert np.array_equal(image[:, :, 1], image[:, :, 2])


def test_i420_blue_chroma_raises_blue():
    w, h = 2, 2
    image = i420_to_bgr(bytes([128] * 4) + bytes([200, 128]), w, h)
    assert image.shape == (2, 2, 3)
    blue = int(image[0, 0, 0])
    red = int(image[0, 0, 2])
    assert blue > red
    assert [int(v) for v in image[:, :, 0].ravel()] == [blue] * 4


@pytest.mark.parametrize("size", [0, 5, 7])
def test_i420_wrong_length(size):
    with pytest.raises(ValueError):
        i420_to_bgr(bytes(size), 2, 2)


def test_i420_odd_size():
    with pytest.raises(ValueError):
        i420_to_bgr(bytes(9), 3, 2)


def test_crop_box_centre():
    assert crop_box((0.5, 0.5, 0.5, 0.5, 0.9), 800, 600) == (200, 150, 600, 450)


def test_crop_box_clamps_to_image():
    assert crop_box((0.5, 0.5, 4.0, 4.0, 0.9), 800, 600) == (0, 0, 799, 599)


def test_crop_box_short_proposal():
    with pytest.raises(ValueError):
        crop_box((0.5, 0.5, 0.1), 800, 600)


def test_plate_corners_zero_is_centre():
    assert plate_corners([0.0] * 8) == [(64.0, 64.0)] * 4


def test_plate_corners_inverts_logit():
    for (x, y), (ex, ey) in zip(plate_corners(RAW_CORNERS), CORNERS):
        assert x == pytest.approx(ex)
        assert y == pytest.approx(ey)


def test_plate_corners_too_few():
    with pytest.raises(ValueError):
        plate_corners([0.0] * 7)


def test_perspective_identity():
    square = [(0, 0), (1, 0), (1, 1), (0, 1)]
    assert perspective_coefficients(square, square) == pytest.approx(
        (1.0, 0.0, 0.0, 0.0, 1.0, 0.0, 0.0, 0.0), abs=1e-12
    )


def test_perspective_maps_source_onto_destination():
    src = [(3.0, 5.0), (90.0, 12.0), (100.0, 80.0), (8.0, 70.0)]
    dst = [(0.0, 0.0), (255.0, 0.0), (255.0, 127.0), (0.0, 127.0)]
    a, b, c, d, e, f, g, h = perspective_coefficients(src, dst)
    for (x, y), (u, v) in zip(src, dst):
        w = g * x + h * y + 1.0
        assert (a * x + b * y + c) / w == pytest.approx(u, abs=1e-6)
        assert (d * x + e * y + f) / w == pytest.approx(v, abs=1e-6)


def test_perspective_degenerate():
    with pytest.raises(ValueError):
        perspective_coefficients([(1, 1)] * 4, [(0, 0), (1, 0), (1, 1), (0, 1)])


def test_perspective_wrong_point_count():
    with pytest.raises(ValueError):
        perspective_coefficients([(0, 0)] * 3, [(0, 0)] * 3)


def test_assemble_text_filters_low_confidence():
    symbols = [("1", 70.0), ("x", 69.9), (None, 99.0), ("가", 85.0)]
    assert assemble_text(symbols) == "1가"
    assert assemble_text(symbols, min_confidence=80.0) == "가"
    assert assemble_text([]) == ""


def test_process_file_saves_plate(tmp_path):
    frame = _write_frame(tmp_path / "f.yuv")
    out_dir = tmp_path / "out"
    out_dir.mkdir()
    pipeline = _pipeline((0.5, 0.5, 0.5, 0.5, 0.9))
    saved = pipeline.process_file(frame, out_dir)
    assert saved == str(out_dir / "12.jpg")
    assert not frame.exists()
    with Image.open(saved) as image:
        assert image.size == (256, 128)
    assert pipeline.detector.shapes == [(600, 800, 3)]
    assert pipeline.aligner.shapes == [(128, 128, 3)]


def test_process_file_unknown_text(tmp_path):
    frame = _write_frame(tmp_path / "f.yuv")
    pipeline = _pipeline((0.5, 0.5, 0.5, 0.5, 0.8), symbols=[("7", 10.0)])
    assert pipeline.process_file(frame, tmp_path) == str(tmp_path / "unknown.jpg")
    assert (tmp_path / "unknown.jpg").exists()


def test_process_file_low_confidence_only_deletes(tmp_path):
    frame = _write_frame(tmp_path / "f.yuv")
    pipeline = _pipeline((0.5, 0.5, 0.5, 0.5, 0.5))
    assert pipeline.process_file(frame, tmp_path) is None
    assert not frame.exists()
    assert list(tmp_path.glob("*.jpg")) == []
    assert pipeline.aligner.shapes == []


def test_process_file_not_ready_is_kept(tmp_path):
    frame = _write_frame(tmp_path / "f.yuv", size=100)
    pipeline = _pipeline((0.5, 0.5, 0.5, 0.5, 0.9))
    assert pipeline.process_file(frame, tmp_path) is None
    assert frame.exists()
    assert pipeline.detector.shapes == []


def test_process_file_empty_region(tmp_path):
    frame = _write_frame(tmp_path / "f.yuv")
    pipeline = _pipeline((0.5, 0.5, 0.0, 0.0, 0.9))
    with pytest.raises(ValueError):
        pipeline.process_file(frame, tmp_path)
    assert frame.exists()


def test_scan_processes_only_yuv(tmp_path):
    watch = tmp_path / "watch"
    watch.mkdir()
    _write_frame(watch / "b.yuv")
    _write_frame(watch / "a.yuv")
    (watch / "note.txt").write_text("keep")
    pipeline = _pipeline((0.5, 0.5, 0.5, 0.5, 0.1))
    assert pipeline.scan(watch, tmp_path) == []
    assert sorted(p.name for p in watch.iterdir()) == ["note.txt"]
    assert len(pipeline.detector.shapes) == 2


def test_monitor_scans_then_sleeps(tmp_path):
    watch = tmp_path / "watch"
    watch.mkdir()
    frame = _write_frame(watch / "a.yuv")
    pipeline = _pipeline((0.5, 0.5, 0.5, 0.5, 0.1))
    with mock.patch("parkwatch.plate_pipeline.time.sleep", side_effect=_Stop) as sleep:
        with pytest.raises(_Stop):
            pipeline.monitor(watch, tmp_path, 0.25)
    assert not frame.exists()
    sleep.assert_called_once_with(0.25)


def test_monitor_survives_errors(tmp_path):
    watch = tmp_path / "watch"
    watch.mkdir()
    frame = _write_frame(watch / "a.yuv")
    pipeline = _pipeline((0.5, 0.5, 0.5, 0.5, 0.9), error=RuntimeError("boom"))
    with mock.patch("parkwatch.plate_pipeline.time.sleep", side_effect=_Stop) as sleep:
        with pytest.raises(_Stop):
            pipeline.monitor(watch, tmp_path)
    assert frame.exists()
    sleep.assert_called_once_with(0.1)