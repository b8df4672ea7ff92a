"""Full-reference quality metrics on luma planes.

Every metric follows the same contract so the driver can treat them uniformly:

    metric = SSIM(height, width)       # validates size, allocates scratch
    score = metric.compute(original, processed)

Frames are 2-D float arrays with samples in [0, 255].  Metrics that produce
several related scores in one pass (MS-SSIM also yields SSIM, PSNR-HVS also
yields PSNR-HVS-M) expose the secondary score through a getter that reflects
the most recent compute() call.

PSNR-family scores are IEEE infinity when the error is exactly zero.
"""

from abc import ABC, abstractmethod

import numpy as np
import cv2
from scipy.fft import dctn

from common import MAX_VALUE


class MetricSizeError(ValueError):
    """Frame dimensions violate a metric's structural size requirement."""


def psnr_from_mse(mse, peak=MAX_VALUE):
    """Convert a mean squared error to decibels; zero error gives inf."""
    if mse == 0:
        return float("inf")
    return float(10.0 * np.log10(peak * peak / mse))


def downsample2(img):
    """Halve both dimensions by 2x2 block averaging."""
    h, w = img.shape
    return img[:h - h % 2, :w - w % 2].reshape(h // 2, 2, w // 2, 2).mean(axis=(1, 3))


# =====================================================================
# CONTRACT
# =====================================================================

class Metric(ABC):
    """Base contract: fixed frame size, validated once at construction."""

    name = "metric"
    size_multiple = None

    def __init__(self, height, width):
        if height <= 0 or width <= 0:
            raise ValueError(f"{self.name}: frame size must be positive, got {height}x{width}")
        m = self.size_multiple
        if m is not None and (height % m != 0 or width % m != 0):
            raise MetricSizeError(f"{self.name}: 'height' and 'width' have to be multiple of {m}.")
        self.height = height
        self.width = width

    def check_frames(self, original, processed):
        shape = (self.height, self.width)
        if original.shape != shape or processed.shape != shape:
            raise ValueError(f"{self.name}: expected frames of shape {shape}, "
                             f"got {original.shape} and {processed.shape}")

    @abstractmethod
    def compute(self, original, processed):
        """Return the quality score of `processed` against `original`."""
        raise NotImplementedError


# =====================================================================
# PSNR
# =====================================================================

class PSNR(Metric):
    name = "PSNR"

    def compute(self, original, processed):
        self.check_frames(original, processed)
        diff = original - processed
        return psnr_from_mse(float(np.mean(diff * diff)))


# =====================================================================
# SSIM
# =====================================================================

class SSIM(Metric):
    """Structural similarity (Wang et al. 2004) with an 11x11 Gaussian window, sigma 1.5.

    Filtering keeps the full frame size (reflect-101 borders) so every row,
    including the first and last, has a value in the SSIM map.
    """

    name = "SSIM"
    C1 = (0.01 * 255) ** 2
    C2 = (0.03 * 255) ** 2
    WINDOW = (11, 11)
    SIGMA = 1.5

    def __init__(self, height, width):
        super().__init__(height, width)
        self.ssim_map = None
        self.cs_map = None

    @classmethod
    def maps(cls, img1, img2):
        """Return (ssim_map, cs_map) for two equally sized frames of any size."""
        win, sigma = cls.WINDOW, cls.SIGMA
        mu1 = cv2.GaussianBlur(img1, win, sigma)
        mu2 = cv2.GaussianBlur(img2, win, sigma)

        mu1_sq = mu1 * mu1
        mu2_sq = mu2 * mu2
        mu1_mu2 = mu1 * mu2

        sigma1_sq = cv2.GaussianBlur(img1 * img1, win, sigma) - mu1_sq
        sigma2_sq = cv2.GaussianBlur(img2 * img2, win, sigma) - mu2_sq
        sigma12 = cv2.GaussianBlur(img1 * img2, win, sigma) - mu1_mu2

        cs_map = (2 * sigma12 + cls.C2) / (sigma1_sq + sigma2_sq + cls.C2)
        ssim_map = ((2 * mu1_mu2 + cls.C1) / (mu1_sq + mu2_sq + cls.C1)) * cs_map
        return ssim_map, cs_map

    def compute_maps(self, original, processed):
        self.check_frames(original, processed)
        self.ssim_map, self.cs_map = self.maps(original, processed)
        return self.ssim_map, self.cs_map

    def compute(self, original, processed):
        ssim_map, _ = self.compute_maps(original, processed)
        return float(np.mean(ssim_map))

    def get_contrast(self):
        """Mean of the contrast-structure term from the last compute()."""
        return float(np.mean(self.cs_map))


# =====================================================================
# MS-SSIM
# =====================================================================

class MSSSIM(Metric):
    """Multi-scale SSIM (Wang, Simoncelli & Bovik 2003), 5 scales."""

    name = "MS-SSIM"
    size_multiple = 16
    WEIGHTS = (0.0448, 0.2856, 0.3001, 0.2363, 0.1333)

    def __init__(self, height, width):
        super().__init__(height, width)
        self._ssim = float("nan")
        self._msssim = float("nan")

    def compute(self, original, processed):
        self.check_frames(original, processed)
        img1, img2 = original, processed
        nlevs = len(self.WEIGHTS)
        mssim = np.empty(nlevs)
        mcs = np.empty(nlevs)
        for level in range(nlevs):
            ssim_map, cs_map = SSIM.maps(img1, img2)
            mssim[level] = np.mean(ssim_map)
            mcs[level] = np.mean(cs_map)
            if level < nlevs - 1:
                img1 = downsample2(img1)
                img2 = downsample2(img2)

        weights = np.asarray(self.WEIGHTS)
        self._ssim = float(mssim[0])
        # Negative terms (anti-correlated content) clamp to 0 before the fractional powers.
        mcs = np.maximum(mcs, 0.0)
        mssim = np.maximum(mssim, 0.0)
        self._msssim = float(np.prod(mcs[:-1] ** weights[:-1]) * mssim[-1] ** weights[-1])
        return self._msssim

    def get_ssim(self):
        """Full-resolution SSIM from the last compute()."""
        return self._ssim

    def get_msssim(self):
        return self._msssim


# =====================================================================
# VIFp
# =====================================================================

class VIFP(Metric):
    """Pixel-domain visual information fidelity (Sheikh & Bovik 2006), 4 scales."""

    name = "VIFp"
    size_multiple = 8
    SIGMA_NSQ = 2.0
    EPS = 1e-10

    def compute(self, original, processed):
        self.check_frames(original, processed)
        ref, dist = original, processed
        num = 0.0
        den = 0.0
        for scale in range(1, 5):
            n = 2 ** (4 - scale + 1) + 1
            win, sigma = (n, n), n / 5.0
            if scale > 1:
                ref = np.ascontiguousarray(cv2.GaussianBlur(ref, win, sigma)[::2, ::2])
                dist = np.ascontiguousarray(cv2.GaussianBlur(dist, win, sigma)[::2, ::2])

            mu1 = cv2.GaussianBlur(ref, win, sigma)
            mu2 = cv2.GaussianBlur(dist, win, sigma)
            mu1_sq = mu1 * mu1
            mu2_sq = mu2 * mu2
            mu1_mu2 = mu1 * mu2
            sigma1_sq = np.maximum(cv2.GaussianBlur(ref * ref, win, sigma) - mu1_sq, 0.0)
            sigma2_sq = np.maximum(cv2.GaussianBlur(dist * dist, win, sigma) - mu2_sq, 0.0)
            sigma12 = cv2.GaussianBlur(ref * dist, win, sigma) - mu1_mu2

            g = sigma12 / (sigma1_sq + self.EPS)
            sv_sq = sigma2_sq - g * sigma12

            flat_ref = sigma1_sq < self.EPS
            g[flat_ref] = 0.0
            sv_sq[flat_ref] = sigma2_sq[flat_ref]
            sigma1_sq[flat_ref] = 0.0

            flat_dist = sigma2_sq < self.EPS
            g[flat_dist] = 0.0
            sv_sq[flat_dist] = 0.0

            neg = g < 0
            sv_sq[neg] = sigma2_sq[neg]
            g[neg] = 0.0
            sv_sq = np.maximum(sv_sq, self.EPS)

            num += float(np.sum(np.log10(1.0 + g * g * sigma1_sq / (sv_sq + self.SIGMA_NSQ))))
            den += float(np.sum(np.log10(1.0 + sigma1_sq / self.SIGMA_NSQ)))

        # A reference flat at every scale carries no information: only an
        # exact copy of it keeps full fidelity.
        if den == 0.0:
            return 1.0 if np.array_equal(original, processed) else 0.0
        return num / den


# =====================================================================
# PSNR-HVS / PSNR-HVS-M
# =====================================================================

# Contrast sensitivity weights for the 8x8 DCT (Ponomarenko et al. 2006/2007).
CSF_COEF = np.array([
    [1.608443, 2.339554, 2.573509, 1.608443, 1.072295, 0.643377, 0.504610, 0.421887],
    [2.144591, 2.144591, 1.838221, 1.354478, 0.989811, 0.443708, 0.428918, 0.467911],
    [1.838221, 1.979622, 1.608443, 1.072295, 0.643377, 0.451493, 0.372972, 0.459555],
    [1.838221, 1.513829, 1.169777, 0.887417, 0.504610, 0.295806, 0.321689, 0.415082],
    [1.429727, 1.169777, 0.695543, 0.459555, 0.378457, 0.236102, 0.249855, 0.334222],
    [1.072295, 0.735288, 0.467911, 0.402111, 0.317717, 0.247453, 0.227744, 0.279729],
    [0.525206, 0.402111, 0.329937, 0.295806, 0.249855, 0.212687, 0.214459, 0.254803],
    [0.357432, 0.279729, 0.270896, 0.262603, 0.229778, 0.257351, 0.249855, 0.259950],
])

MASK_COEF = np.array([
    [0.390625, 0.826446, 1.000000, 0.390625, 0.173611, 0.062500, 0.038447, 0.026874],
    [0.694444, 0.694444, 0.510204, 0.277008, 0.147929, 0.029727, 0.027778, 0.033058],
    [0.510204, 0.591716, 0.390625, 0.173611, 0.062500, 0.030779, 0.021004, 0.031888],
    [0.510204, 0.346021, 0.206612, 0.118906, 0.038447, 0.013212, 0.015625, 0.026015],
    [0.308642, 0.206612, 0.073046, 0.031888, 0.021626, 0.008417, 0.009426, 0.016866],
    [0.173611, 0.081633, 0.033058, 0.024691, 0.015242, 0.009246, 0.007831, 0.011891],
    [0.041649, 0.024691, 0.016437, 0.013212, 0.009426, 0.006830, 0.006944, 0.009803],
    [0.019290, 0.011891, 0.010866, 0.010207, 0.007972, 0.010030, 0.009426, 0.010250],
])


def _blocks8(img):
    """Split into non-overlapping 8x8 blocks, dropping partial blocks at the edges."""
    h, w = img.shape
    nh, nw = h // 8, w // 8
    cropped = img[:nh * 8, :nw * 8]
    return cropped.reshape(nh, 8, nw, 8).transpose(0, 2, 1, 3).reshape(-1, 8, 8)


def _scaled_var(blocks):
    """Sample variance times sample count, per block (axes 1 and 2)."""
    n = blocks.shape[1] * blocks.shape[2]
    return blocks.reshape(len(blocks), -1).var(axis=1, ddof=1) * n


def _masking(blocks, dct_blocks):
    """Per-block masking strength from AC energy and local variance split."""
    ac = dct_blocks * dct_blocks * MASK_COEF
    energy = ac.sum(axis=(1, 2)) - ac[:, 0, 0]
    pop = _scaled_var(blocks)
    quads = (_scaled_var(blocks[:, :4, :4]) + _scaled_var(blocks[:, :4, 4:])
             + _scaled_var(blocks[:, 4:, 4:]) + _scaled_var(blocks[:, 4:, :4]))
    ratio = np.divide(quads, pop, out=np.zeros_like(pop), where=pop != 0)
    return np.sqrt(energy * ratio) / 32.0


class PSNRHVS(Metric):
    """PSNR-HVS and PSNR-HVS-M computed together over 8x8 DCT blocks."""

    name = "PSNR-HVS"

    def __init__(self, height, width):
        super().__init__(height, width)
        if height < 8 or width < 8:
            raise MetricSizeError(f"{self.name}: 'height' and 'width' have to be at least 8.")
        self._psnrhvs = float("nan")
        self._psnrhvsm = float("nan")

    def compute(self, original, processed):
        self.check_frames(original, processed)
        blocks1 = _blocks8(original)
        blocks2 = _blocks8(processed)
        dct1 = dctn(blocks1, type=2, norm="ortho", axes=(1, 2))
        dct2 = dctn(blocks2, type=2, norm="ortho", axes=(1, 2))

        mask = np.maximum(_masking(blocks1, dct1), _masking(blocks2, dct2))

        u = np.abs(dct1 - dct2)
        s_hvs = np.mean((u * CSF_COEF) ** 2)

        # Contrast masking never applies to the DC coefficient.
        thresh = mask[:, None, None] / MASK_COEF
        masked = np.where(u < thresh, 0.0, u - thresh)
        masked[:, 0, 0] = u[:, 0, 0]
        s_hvsm = np.mean((masked * CSF_COEF) ** 2)

        self._psnrhvs = psnr_from_mse(float(s_hvs))
        self._psnrhvsm = psnr_from_mse(float(s_hvsm))
        return self._psnrhvs

    def get_psnrhvs(self):
        return self._psnrhvs

    def get_psnrhvsm(self):
        return self._psnrhvsm
