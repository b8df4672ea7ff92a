"""Shared constants, metric metadata, and raw YUV frame I/O for video quality measurement.

Used by metrics.py, spherical.py, and quality_metrics.py.
"""

import numpy as np

# =====================================================================
# METRIC METADATA
# =====================================================================

# Fixed evaluation order for the per-frame loop.
ALL_KEYS = [
    "PSNR", "SSIM", "MSSSIM", "VIFP", "PSNRHVS", "PSNRHVSM",
    "WSPSNR", "WSSSIM",
]

# key -> (label, description)
METRIC_INFO = {
    "PSNR":     ("PSNR",       "Peak Signal-to-Noise Ratio"),
    "SSIM":     ("SSIM",       "Structural Similarity"),
    "MSSSIM":   ("MS-SSIM",    "Multi-Scale Structural Similarity"),
    "VIFP":     ("VIFp",       "Visual Information Fidelity, pixel domain"),
    "PSNRHVS":  ("PSNR-HVS",   "PSNR with Contrast Sensitivity Function"),
    "PSNRHVSM": ("PSNR-HVS-M", "PSNR-HVS with DCT contrast masking"),
    "WSPSNR":   ("WS-PSNR",    "Weighted-to-Spherically-uniform PSNR"),
    "WSSSIM":   ("WS-SSIM",    "Weighted-to-Spherically-uniform SSIM"),
}

MAX_VALUE = 255.0

# =====================================================================
# CHROMA FORMATS
# =====================================================================

CHROMA_400 = 0
CHROMA_420 = 1
CHROMA_422 = 2
CHROMA_444 = 3

# chroma format -> (name, horizontal subsampling, vertical subsampling); None = no chroma
CHROMA_FORMATS = {
    CHROMA_400: ("YUV400", None, None),
    CHROMA_420: ("YUV420", 2, 2),
    CHROMA_422: ("YUV422", 2, 1),
    CHROMA_444: ("YUV444", 1, 1),
}


def chroma_plane_shape(height, width, chroma):
    """Return (h, w) of one chroma plane, or None for 4:0:0."""
    if chroma not in CHROMA_FORMATS:
        raise ValueError(f"Unknown chroma format {chroma!r}; "
                         f"expected one of {sorted(CHROMA_FORMATS)}")
    _, sx, sy = CHROMA_FORMATS[chroma]
    if sx is None:
        return None
    return (height + sy - 1) // sy, (width + sx - 1) // sx


def frame_size(height, width, chroma):
    """Size in bytes of one 8-bit planar YUV frame."""
    shape = chroma_plane_shape(height, width, chroma)
    if shape is None:
        return height * width
    return height * width + 2 * shape[0] * shape[1]


# =====================================================================
# CSV RECORDS
# =====================================================================

CSV_HEADER = "frame,value\n"


def result_filename(prefix, key):
    """Output CSV path for one metric: <prefix>_<metric lowercase>.csv."""
    return f"{prefix}_{key.lower()}.csv"


def format_record(label, value):
    """One CSV row; infinity is written as 'inf'."""
    return f"{label},{float(value):.6f}\n"


# =====================================================================
# FRAME I/O
# =====================================================================

class FrameReadError(IOError):
    """A source could not deliver a frame before the configured count was reached."""


class VideoYUV:
    """Sequential reader over a raw, progressive, 8-bit planar YUV file.

    Usage:
        with VideoYUV(path, height, width, nbframes, chroma) as video:
            while video.read_one_frame():
                y = video.get_luma()
    """

    def __init__(self, path, height, width, nbframes, chroma):
        if height <= 0 or width <= 0:
            raise ValueError(f"Frame size must be positive, got {height}x{width}")
        self.path = path
        self.height = height
        self.width = width
        self.nbframes = nbframes
        self.chroma = chroma
        self.chroma_shape = chroma_plane_shape(height, width, chroma)
        self.frame_bytes = frame_size(height, width, chroma)
        self.frames_read = 0
        self._y = None
        self._u = None
        self._v = None
        self._file = open(path, "rb")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False

    def close(self):
        if self._file is not None:
            self._file.close()
            self._file = None

    def read_one_frame(self):
        """Advance to the next frame. Returns False at EOF or on a short read."""
        if self._file is None:
            return False
        data = self._file.read(self.frame_bytes)
        if len(data) < self.frame_bytes:
            return False
        raw = np.frombuffer(data, dtype=np.uint8)
        y_size = self.height * self.width
        self._y = raw[:y_size].reshape(self.height, self.width)
        if self.chroma_shape is None:
            self._u = self._v = None
        else:
            ch, cw = self.chroma_shape
            c_size = ch * cw
            self._u = raw[y_size:y_size + c_size].reshape(ch, cw)
            self._v = raw[y_size + c_size:].reshape(ch, cw)
        self.frames_read += 1
        return True

    def get_luma(self, dtype=np.float64):
        """Luma plane of the current frame as a floating-point array in [0, 255]."""
        if self._y is None:
            raise FrameReadError(f"No frame has been read from {self.path}")
        return self._y.astype(dtype)

    def get_chroma(self, dtype=np.float64):
        """(U, V) planes of the current frame, or None for 4:0:0."""
        if self._y is None:
            raise FrameReadError(f"No frame has been read from {self.path}")
        if self._u is None:
            return None
        return self._u.astype(dtype), self._v.astype(dtype)


def read_frame(video, label="video"):
    """Read one frame and return its luma plane; raises FrameReadError on a short read."""
    if not video.read_one_frame():
        raise FrameReadError(
            f"Could not read frame {video.frames_read} of {video.nbframes} "
            f"from {label} '{video.path}'")
    return video.get_luma()
