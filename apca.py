"""
APCA perceptual contrast between a background and a foreground colour.

Implements APCA 0.0.98G (https://github.com/Myndex/apca-w3) on 8-bit sRGB
input. The signed Lc value is folded into a single unsigned magnitude so that
the practical range of both polarities maps onto [0, 100].
"""

import numpy as np


# Exponents
NORM_BG = 0.56
NORM_TXT = 0.57
REV_TXT = 0.62
REV_BG = 0.65

# Clamps
BLACK_THRESHOLD = 0.022
BLACK_CLAMP = 1.414
LOW_CLIP = 0.1
DELTA_Y_MIN = 0.0005

# Scalers
SCALE_BOW = 1.14
SCALE_WOB = 1.14
LOW_OFFSET = 0.027

# Extremes of Lc over the full RGB range, for each polarity
MAX_DARK_ON_LIGHT = 106.0
MAX_LIGHT_ON_DARK = 108.0

# Screen luminance weights (sRGB / Lindbloom)
LUMINANCE_WEIGHTS = np.array([0.2126729, 0.7151522, 0.0721750])


def screen_luminance(rgb: np.ndarray) -> np.ndarray:
    """Estimate screen luminance Y from 8-bit RGB with the simple 2.4 gamma EOTF.

    Args:
        rgb: Array of shape (..., 3) with channel values in 0-255

    Returns:
        Array of shape (...) of luminance values in [0, 1]
    """
    linear = (np.asarray(rgb, dtype=np.float64) / 255.0) ** 2.4
    return linear @ LUMINANCE_WEIGHTS


def soft_clamp_black(y: np.ndarray) -> np.ndarray:
    """Toe clamp for very dark values, accounting for flare."""
    y = np.asarray(y, dtype=np.float64)
    return np.where(y >= BLACK_THRESHOLD, y, y + np.abs(BLACK_THRESHOLD - y) ** BLACK_CLAMP)


def apca_lc(background: np.ndarray, foreground: np.ndarray) -> np.ndarray:
    """Signed APCA lightness contrast (Lc) in roughly [-108, 106].

    Positive values are dark text on a light background, negative values are
    light text on a dark background.
    """
    y_bg = soft_clamp_black(screen_luminance(background))
    y_txt = soft_clamp_black(screen_luminance(foreground))

    dark_on_light = y_bg > y_txt
    normal = (y_bg ** NORM_BG - y_txt ** NORM_TXT) * SCALE_BOW
    reverse = (y_bg ** REV_BG - y_txt ** REV_TXT) * SCALE_WOB
    c = np.where(dark_on_light, normal, reverse)
    # Noise gate
    c = np.where(np.abs(y_bg - y_txt) < DELTA_Y_MIN, 0.0, c)

    sapc = np.where(
        np.abs(c) < LOW_CLIP,
        0.0,
        np.where(c > 0, c - LOW_OFFSET, c + LOW_OFFSET),
    )
    return sapc * 100


def apca_contrast(background: np.ndarray, foreground: np.ndarray) -> np.ndarray:
    """Unsigned APCA contrast in [0, 100].

    Args:
        background: RGB array of shape (..., 3), 0-255
        foreground: RGB array of shape (..., 3), 0-255

    Returns:
        Contrast magnitude, rescaled per polarity so both extremes reach 100.
    """
    lc = apca_lc(background, foreground)
    scaled = np.where(lc < 0, -lc / MAX_LIGHT_ON_DARK * 100, lc / MAX_DARK_ON_LIGHT * 100)
    return np.minimum(scaled, 100.0)
