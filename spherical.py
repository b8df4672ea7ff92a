"""Spherical (360-degree) quality metrics for equirectangular frames.

In an equirectangular projection every row is a line of constant latitude, so
a fixed-size pixel covers less of the sphere the closer it sits to a pole.
WS-PSNR and WS-SSIM reweight their planar counterparts by the cosine of the
latitude at the centre of each row:

    w[r] = cos((r + 0.5 - height / 2) * pi / height)

The weight depends on the row only and is computed once per metric instance.
"""

import numpy as np

from common import MAX_VALUE
from metrics import Metric, SSIM, psnr_from_mse


# =====================================================================
# WEIGHT MODEL
# =====================================================================

def latitude_weights(height):
    """Per-row weights, shape (height,), exactly symmetric north/south."""
    rows = np.arange(height, dtype=np.float64)
    weights = np.cos((rows + 0.5 - height / 2.0) * np.pi / height)
    # Mirror the southern half onto the northern half so w[r] == w[h-1-r] bit for bit.
    half = height // 2
    weights[height - half:] = weights[:half][::-1]
    return weights


def weight_grid(height, width):
    """Row weights replicated across all columns, shape (height, width)."""
    return np.repeat(latitude_weights(height)[:, None], width, axis=1)


# =====================================================================
# WS-PSNR
# =====================================================================

class WSPSNR(Metric):
    """Weighted-to-spherically-uniform PSNR.

    The pixel difference is scaled by the weight grid once, squared, and
    averaged over the frame.  Identical frames give inf.  The mean of the
    squared weights is 1/2 at every height, so a constant error scores
    10*log10(2) dB above plain PSNR rather than matching it.
    """

    name = "WS-PSNR"

    def __init__(self, height, width):
        super().__init__(height, width)
        self.weights = weight_grid(height, width)

    def compute(self, original, processed):
        self.check_frames(original, processed)
        weighted = (original - processed) * self.weights
        return psnr_from_mse(float(np.mean(weighted * weighted)), MAX_VALUE)


# =====================================================================
# WS-SSIM
# =====================================================================

class WSSSIM(Metric):
    """Weighted-to-spherically-uniform SSIM.

    Windowed statistics and the per-pixel SSIM map come from a planar SSIM
    helper; only the final spatial average is weighted:

        WS-SSIM = sum(ssim_map * W) / sum(W)

    Polar rows are computed at full precision and merely contribute less.
    get_contrast() returns the unweighted mean of the contrast-structure
    term, which matches planar SSIM for the same frames.
    """

    name = "WS-SSIM"

    def __init__(self, height, width):
        super().__init__(height, width)
        self.ssim = SSIM(height, width)
        self.weights = weight_grid(height, width)
        self.weight_sum = float(np.sum(self.weights))
        self._contrast = float("nan")

    def compute(self, original, processed):
        ssim_map, cs_map = self.ssim.compute_maps(original, processed)
        self._contrast = float(np.mean(cs_map))
        return float(np.sum(ssim_map * self.weights) / self.weight_sum)

    def get_contrast(self):
        return self._contrast
