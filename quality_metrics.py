#!/usr/bin/env python3
"""Compute full-reference quality metrics between an original and a processed raw YUV video.

Reads both videos frame by frame, computes the requested metrics on the luma
plane, and writes one CSV file per metric with a per-frame value and the
average over all frames.

Usage:
    python quality_metrics.py <original> <processed> <height> <width> <nbframes> <chroma> <results> <metric> [<metric> ...]

    original            Original video, raw 8-bit planar YUV, progressive
    processed           Processed video, same format as original
    height, width       Frame size in pixels
    nbframes            Number of frames to process
    chroma              Chroma subsampling: 0=YUV400, 1=YUV420, 2=YUV422, 3=YUV444
    results             Output prefix; writes <results>_<metric>.csv
    metric              PSNR, SSIM, MSSSIM, VIFP, PSNRHVS, PSNRHVSM, WSPSNR, WSSSIM

Options:
    --quiet             Do not print per-frame progress

Examples:
    python quality_metrics.py original.yuv processed.yuv 1088 1920 250 1 results PSNR SSIM MSSSIM VIFP
    # writes results_psnr.csv, results_ssim.csv, results_msssim.csv, results_vifp.csv

    python quality_metrics.py erp.yuv erp_qp32.yuv 1920 3840 60 1 erp WSPSNR WSSSIM

Notes:
    SSIM comes for free when MSSSIM is computed (SSIM still has to be listed to get its output).
    PSNRHVS and PSNRHVSM are always computed together.
    MSSSIM needs height and width multiple of 16, VIFP multiple of 8.
    Identical frames give inf for the PSNR family; an inf frame makes the average inf.
    A run that fails part-way leaves the CSV files as written so far.
"""

import argparse
import sys
from contextlib import ExitStack

import cv2

from common import (ALL_KEYS, METRIC_INFO, CHROMA_FORMATS, CSV_HEADER,
                    FrameReadError, VideoYUV, format_record, read_frame,
                    result_filename)
from metrics import PSNR, SSIM, MSSSIM, VIFP, PSNRHVS, MetricSizeError
from spherical import WSPSNR, WSSSIM


# =====================================================================
# METRIC SELECTION
# =====================================================================

class MetricSlot:
    """Selection state for one metric key: output destination and running total."""

    def __init__(self, key, enabled=False):
        self.key = key
        self.enabled = enabled
        self.path = None
        self.destination = None
        self.total = 0.0

    def open(self, prefix, stack):
        self.path = result_filename(prefix, self.key)
        self.destination = stack.enter_context(open(self.path, "w"))
        self.destination.write(CSV_HEADER)

    def record(self, frame, value):
        self.total += value
        if self.destination is not None:
            self.destination.write(format_record(frame, value))

    def finalize(self, nbframes):
        """Write and return the average over nbframes."""
        average = self.total / nbframes if nbframes > 0 else float("nan")
        if self.destination is not None:
            self.destination.write(format_record("average", average))
        return average


def build_selection(metric_names):
    """Map requested names onto the known keys; unknown names are warned about and ignored."""
    selection = {key: MetricSlot(key) for key in ALL_KEYS}
    for name in metric_names:
        if name in selection:
            selection[name].enabled = True
        else:
            print(f"WARNING: Metric {name} not recognized and will be ignored.")
    return selection


def enabled_keys(selection):
    return [k for k in ALL_KEYS if selection[k].enabled]


def build_metrics(selection, height, width):
    """Construct one metric instance per kind actually needed.

    Construction enforces each metric's size requirement, so a bad frame size
    fails here, before any video or output file is opened.
    """
    on = {k for k in ALL_KEYS if selection[k].enabled}
    instances = {}
    if "PSNR" in on:
        instances["PSNR"] = PSNR(height, width)
    if "MSSSIM" in on:
        instances["MSSSIM"] = MSSSIM(height, width)
    elif "SSIM" in on:
        instances["SSIM"] = SSIM(height, width)
    if "VIFP" in on:
        instances["VIFP"] = VIFP(height, width)
    if "PSNRHVS" in on or "PSNRHVSM" in on:
        instances["PSNRHVS"] = PSNRHVS(height, width)
    if "WSPSNR" in on:
        instances["WSPSNR"] = WSPSNR(height, width)
    if "WSSSIM" in on:
        instances["WSSSIM"] = WSSSIM(height, width)
    return instances


def compute_frame(selection, instances, original, processed):
    """Scores for one frame pair, in the fixed evaluation order. Disabled keys stay 0."""
    result = {key: 0.0 for key in ALL_KEYS}
    on = {key: slot.enabled for key, slot in selection.items()}

    if on["PSNR"]:
        result["PSNR"] = instances["PSNR"].compute(original, processed)

    if on["MSSSIM"]:
        msssim = instances["MSSSIM"]
        result["MSSSIM"] = msssim.compute(original, processed)
        if on["SSIM"]:
            result["SSIM"] = msssim.get_ssim()
    elif on["SSIM"]:
        result["SSIM"] = instances["SSIM"].compute(original, processed)

    if on["VIFP"]:
        result["VIFP"] = instances["VIFP"].compute(original, processed)

    if on["PSNRHVS"] or on["PSNRHVSM"]:
        phvs = instances["PSNRHVS"]
        phvs.compute(original, processed)
        if on["PSNRHVS"]:
            result["PSNRHVS"] = phvs.get_psnrhvs()
        if on["PSNRHVSM"]:
            result["PSNRHVSM"] = phvs.get_psnrhvsm()

    if on["WSPSNR"]:
        result["WSPSNR"] = instances["WSPSNR"].compute(original, processed)

    if on["WSSSIM"]:
        result["WSSSIM"] = instances["WSSSIM"].compute(original, processed)

    return result


# =====================================================================
# RUN
# =====================================================================

def run_metrics(original_path, processed_path, height, width, nbframes, chroma,
                results_prefix, metric_names, verbose=True):
    """Run the full measurement loop and return {metric key: average}.

    Raises MetricSizeError before any I/O if the frame size does not suit an
    enabled metric, and FrameReadError if either video runs out of frames
    before nbframes.  Every opened file is closed on both paths.
    """
    if chroma not in CHROMA_FORMATS:
        raise ValueError(f"Unknown chroma format {chroma!r}; "
                         f"expected one of {sorted(CHROMA_FORMATS)}")
    if nbframes <= 0:
        raise ValueError(f"Number of frames must be positive, got {nbframes}")

    selection = build_selection(metric_names)
    keys = enabled_keys(selection)
    instances = build_metrics(selection, height, width)
    if not keys:
        print("WARNING: No recognized metrics requested; nothing to compute.")

    if verbose:
        labels = ", ".join(METRIC_INFO[k][0] for k in keys)
        print(f"Computing {len(keys)} metric(s) over {nbframes} frame(s) "
              f"({width}x{height}, {CHROMA_FORMATS[chroma][0]}): {labels}")

    with ExitStack() as stack:
        original = stack.enter_context(
            VideoYUV(original_path, height, width, nbframes, chroma))
        processed = stack.enter_context(
            VideoYUV(processed_path, height, width, nbframes, chroma))
        for key in keys:
            selection[key].open(results_prefix, stack)

        for frame in range(nbframes):
            if verbose:
                print(f"Computing metrics for frame {frame}.")
            original_frame = read_frame(original, "original")
            processed_frame = read_frame(processed, "processed")

            result = compute_frame(selection, instances, original_frame, processed_frame)
            for key in keys:
                selection[key].record(frame, result[key])

        return {key: selection[key].finalize(nbframes) for key in keys}


def main(argv=None):
    parser = argparse.ArgumentParser(
        description="Compute full-reference quality metrics between two raw YUV videos.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__
    )
    parser.add_argument("original", help="Original video (raw YUV)")
    parser.add_argument("processed", help="Processed video (raw YUV)")
    parser.add_argument("height", type=int, help="Frame height")
    parser.add_argument("width", type=int, help="Frame width")
    parser.add_argument("nbframes", type=int, help="Number of frames to process")
    parser.add_argument("chroma", type=int, choices=sorted(CHROMA_FORMATS),
                        help="Chroma format: 0=YUV400, 1=YUV420, 2=YUV422, 3=YUV444")
    parser.add_argument("results", help="Output prefix for <results>_<metric>.csv")
    parser.add_argument("metrics", nargs="+", help=f"Metrics to compute ({', '.join(ALL_KEYS)})")
    parser.add_argument("--quiet", action="store_true", help="Do not print per-frame progress")
    args = parser.parse_args(argv)

    if args.height <= 0 or args.width <= 0:
        print(f"ERROR: height and width must be positive, got {args.height}x{args.width}")
        sys.exit(1)
    if args.nbframes <= 0:
        print(f"ERROR: number of frames must be positive, got {args.nbframes}")
        sys.exit(1)

    duration = cv2.getTickCount()
    try:
        averages = run_metrics(args.original, args.processed, args.height, args.width,
                               args.nbframes, args.chroma, args.results, args.metrics,
                               verbose=not args.quiet)
    except (MetricSizeError, FrameReadError, OSError) as e:
        print(f"ERROR: {e}")
        sys.exit(1)

    for key, value in averages.items():
        print(f"  {METRIC_INFO[key][0]:<11} average: {value:.6f}")

    duration = (cv2.getTickCount() - duration) / cv2.getTickFrequency()
    print(f"Time: {duration:0.3f}s")


if __name__ == "__main__":
    main()
