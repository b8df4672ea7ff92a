#!/usr/bin/env python3
"""End-to-end tests for the measurement driver, raw YUV reading and CSV output.

Usage:
    python -m pytest test_cases/test_quality_metrics.py
"""

import sys, os
import math
import numpy as np
import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
from common import (VideoYUV, FrameReadError, frame_size, chroma_plane_shape,
                    format_record, result_filename)
from metrics import MetricSizeError
from quality_metrics import (MetricSlot, build_selection, build_metrics,
                             enabled_keys, run_metrics, main)


# ---------------------------------------------------------------------------
# Fixture helpers
# ---------------------------------------------------------------------------

def write_yuv(path, lumas, chroma=0, chroma_value=128):
    """Write 8-bit planar YUV frames built from a list of luma planes."""
    with open(path, "wb") as f:
        for y in lumas:
            h, w = y.shape
            f.write(np.asarray(y, dtype=np.uint8).tobytes())
            shape = chroma_plane_shape(h, w, chroma)
            if shape is not None:
                plane = np.full(shape, chroma_value, dtype=np.uint8).tobytes()
                f.write(plane)
                f.write(plane)
    return str(path)


def gen_frames(n, h, w, seed=0, sigma=0.0):
    rng = np.random.RandomState(seed)
    yy, xx = np.mgrid[:h, :w].astype(np.float64)
    base = 128 + 60 * np.sin(2 * np.pi * xx / 16.0) * np.cos(2 * np.pi * yy / 12.0)
    frames = []
    for i in range(n):
        f = base + 3 * i + rng.normal(0, sigma, (h, w)) if sigma else base + 3 * i
        frames.append(np.clip(np.round(f), 0, 255).astype(np.uint8))
    return frames


def read_lines(path):
    with open(path) as f:
        return f.read().splitlines()


# ---------------------------------------------------------------------------
# Frame source
# ---------------------------------------------------------------------------

@pytest.mark.parametrize("chroma,expected", [(0, 256), (1, 384), (2, 512), (3, 768)])
def test_frame_size_per_chroma(chroma, expected):
    assert frame_size(16, 16, chroma) == expected


def test_unknown_chroma_rejected():
    with pytest.raises(ValueError):
        frame_size(16, 16, 4)


def test_video_yuv_reads_luma_and_chroma(tmp_path):
    frames = gen_frames(2, 16, 32)
    path = write_yuv(tmp_path / "v.yuv", frames, chroma=1, chroma_value=77)
    with VideoYUV(path, 16, 32, 2, 1) as video:
        assert video.read_one_frame()
        y = video.get_luma()
        assert y.dtype == np.float64
        assert np.array_equal(y, frames[0].astype(np.float64))
        u, v = video.get_chroma()
        assert u.shape == (8, 16) and v.shape == (8, 16)
        assert np.all(u == 77)
        assert video.read_one_frame()
        assert np.array_equal(video.get_luma(), frames[1].astype(np.float64))
        assert not video.read_one_frame()
        assert video.frames_read == 2
    assert video._file is None


def test_video_yuv_400_has_no_chroma(tmp_path):
    path = write_yuv(tmp_path / "v.yuv", gen_frames(1, 8, 8))
    with VideoYUV(path, 8, 8, 1, 0) as video:
        assert video.read_one_frame()
        assert video.get_chroma() is None


def test_video_yuv_short_read(tmp_path):
    path = tmp_path / "short.yuv"
    path.write_bytes(b"\x00" * 100)
    with VideoYUV(str(path), 16, 16, 1, 0) as video:
        assert not video.read_one_frame()
        with pytest.raises(FrameReadError):
            video.get_luma()


# ---------------------------------------------------------------------------
# Selection and accumulation
# ---------------------------------------------------------------------------

def test_unknown_metric_is_warned_and_ignored(capsys):
    selection = build_selection(["PSNR", "FOO", "WSSSIM"])
    out = capsys.readouterr().out
    assert "WARNING: Metric FOO not recognized and will be ignored." in out
    assert enabled_keys(selection) == ["PSNR", "WSSSIM"]


def test_ssim_instance_bypassed_when_msssim_enabled():
    selection = build_selection(["SSIM", "MSSSIM", "PSNRHVSM"])
    instances = build_metrics(selection, 32, 32)
    assert "SSIM" not in instances
    assert "MSSSIM" in instances
    assert "PSNRHVS" in instances


def test_accumulator_average_large_n():
    rng = np.random.RandomState(5)
    scores = rng.uniform(20.0, 50.0, 10000)
    slot = MetricSlot("PSNR", enabled=True)
    for i, s in enumerate(scores):
        slot.record(i, float(s))
    average = slot.finalize(10000)
    assert average == pytest.approx(math.fsum(scores) / 10000, rel=1e-10)


def test_record_format():
    assert format_record(3, 31.4159265) == "3,31.415927\n"
    assert format_record("average", float("inf")) == "average,inf\n"
    assert result_filename("out/run", "WSPSNR") == "out/run_wspsnr.csv"


# ---------------------------------------------------------------------------
# End-to-end runs
# ---------------------------------------------------------------------------

def test_identical_single_frame_wspsnr(tmp_path):
    frames = gen_frames(1, 32, 64)
    orig = write_yuv(tmp_path / "orig.yuv", frames)
    proc = write_yuv(tmp_path / "proc.yuv", frames)
    prefix = str(tmp_path / "results")
    averages = run_metrics(orig, proc, 32, 64, 1, 0, prefix, ["WSPSNR"], verbose=False)
    assert averages == {"WSPSNR": float("inf")}
    assert read_lines(prefix + "_wspsnr.csv") == ["frame,value", "0,inf", "average,inf"]
    assert not os.path.exists(prefix + "_psnr.csv")


def test_black_versus_white_wspsnr(tmp_path):
    orig = write_yuv(tmp_path / "orig.yuv", [np.zeros((16, 16), np.uint8)], chroma=1)
    proc = write_yuv(tmp_path / "proc.yuv", [np.full((16, 16), 255, np.uint8)], chroma=1)
    prefix = str(tmp_path / "bw")
    run_metrics(orig, proc, 16, 16, 1, 1, prefix, ["WSPSNR", "PSNR"], verbose=False)
    ws = read_lines(prefix + "_wspsnr.csv")
    assert ws[1] == f"0,{10 * math.log10(2.0):.6f}"
    assert read_lines(prefix + "_psnr.csv")[1] == "0,0.000000"


def test_all_metrics_multi_frame(tmp_path):
    n, h, w = 3, 32, 48
    orig = write_yuv(tmp_path / "orig.yuv", gen_frames(n, h, w), chroma=2)
    proc = write_yuv(tmp_path / "proc.yuv", gen_frames(n, h, w, seed=1, sigma=6.0), chroma=2)
    prefix = str(tmp_path / "all")
    names = ["PSNR", "SSIM", "MSSSIM", "VIFP", "PSNRHVS", "PSNRHVSM", "WSPSNR", "WSSSIM"]
    averages = run_metrics(orig, proc, h, w, n, 2, prefix, names, verbose=False)
    assert list(averages) == names
    for key in names:
        lines = read_lines(result_filename(prefix, key))
        assert lines[0] == "frame,value"
        assert [l.split(",")[0] for l in lines[1:]] == ["0", "1", "2", "average"]
        values = [float(l.split(",")[1]) for l in lines[1:-1]]
        assert all(math.isfinite(v) for v in values)
        assert float(lines[-1].split(",")[1]) == pytest.approx(sum(values) / n, abs=2e-6)


def test_ssim_from_msssim_matches_standalone(tmp_path):
    n, h, w = 2, 32, 32
    orig = write_yuv(tmp_path / "orig.yuv", gen_frames(n, h, w))
    proc = write_yuv(tmp_path / "proc.yuv", gen_frames(n, h, w, seed=2, sigma=8.0))
    run_metrics(orig, proc, h, w, n, 0, str(tmp_path / "a"), ["SSIM"], verbose=False)
    run_metrics(orig, proc, h, w, n, 0, str(tmp_path / "b"), ["SSIM", "MSSSIM"], verbose=False)
    assert read_lines(str(tmp_path / "a_ssim.csv")) == read_lines(str(tmp_path / "b_ssim.csv"))


def test_size_violation_fails_before_io(tmp_path):
    frames = gen_frames(1, 24, 24)
    orig = write_yuv(tmp_path / "orig.yuv", frames)
    proc = write_yuv(tmp_path / "proc.yuv", frames)
    prefix = str(tmp_path / "bad")
    with pytest.raises(MetricSizeError):
        run_metrics(orig, proc, 24, 24, 1, 0, prefix, ["PSNR", "MSSSIM"], verbose=False)
    assert not os.path.exists(prefix + "_psnr.csv")
    assert not os.path.exists(prefix + "_msssim.csv")


def test_truncated_source_aborts_and_keeps_partial_output(tmp_path):
    orig = write_yuv(tmp_path / "orig.yuv", gen_frames(3, 16, 16))
    proc = write_yuv(tmp_path / "proc.yuv", gen_frames(2, 16, 16, seed=4, sigma=5.0))
    prefix = str(tmp_path / "trunc")
    with pytest.raises(FrameReadError, match="processed"):
        run_metrics(orig, proc, 16, 16, 3, 0, prefix, ["PSNR"], verbose=False)
    lines = read_lines(prefix + "_psnr.csv")
    assert lines[0] == "frame,value"
    assert [l.split(",")[0] for l in lines[1:]] == ["0", "1"]


def test_progress_output(tmp_path, capsys):
    frames = gen_frames(2, 16, 16)
    orig = write_yuv(tmp_path / "orig.yuv", frames)
    proc = write_yuv(tmp_path / "proc.yuv", frames)
    run_metrics(orig, proc, 16, 16, 2, 0, str(tmp_path / "p"), ["PSNR"])
    out = capsys.readouterr().out
    assert "Computing metrics for frame 0." in out
    assert "Computing metrics for frame 1." in out


# ---------------------------------------------------------------------------
# Command line
# ---------------------------------------------------------------------------

def test_main_success(tmp_path, capsys):
    frames = gen_frames(1, 32, 64)
    orig = write_yuv(tmp_path / "orig.yuv", frames)
    proc = write_yuv(tmp_path / "proc.yuv", frames)
    prefix = str(tmp_path / "cli")
    main([orig, proc, "32", "64", "1", "0", prefix, "WSPSNR", "--quiet"])
    out = capsys.readouterr().out
    assert "Time:" in out
    assert read_lines(prefix + "_wspsnr.csv")[-1] == "average,inf"


def test_main_size_violation_exits(tmp_path, capsys):
    frames = gen_frames(1, 20, 20)
    orig = write_yuv(tmp_path / "orig.yuv", frames)
    proc = write_yuv(tmp_path / "proc.yuv", frames)
    with pytest.raises(SystemExit) as exc:
        main([orig, proc, "20", "20", "1", "0", str(tmp_path / "x"), "VIFP"])
    assert exc.value.code == 1
    assert "ERROR: VIFp: 'height' and 'width' have to be multiple of 8." in capsys.readouterr().out


def test_main_missing_frames_exits(tmp_path, capsys):
    orig = write_yuv(tmp_path / "orig.yuv", gen_frames(1, 16, 16))
    proc = write_yuv(tmp_path / "proc.yuv", gen_frames(1, 16, 16))
    with pytest.raises(SystemExit) as exc:
        main([orig, proc, "16", "16", "2", "0", str(tmp_path / "y"), "PSNR", "--quiet"])
    assert exc.value.code == 1
    assert "ERROR: Could not read frame 1 of 2 from original" in capsys.readouterr().out


def test_main_missing_file_exits(tmp_path, capsys):
    with pytest.raises(SystemExit) as exc:
        main([str(tmp_path / "nope.yuv"), str(tmp_path / "nope2.yuv"),
              "16", "16", "1", "0", str(tmp_path / "z"), "PSNR", "--quiet"])
    assert exc.value.code == 1
    assert "ERROR:" in capsys.readouterr().out


if __name__ == "__main__":
    sys.exit(pytest.main([__file__, "-v"]))
