"""
Perceptual colour spaces used for clustering and palette decisions.

Every colour is carried as a single packed integer: bits 16-23, 8-15 and 0-7
hold channel 0, 1 and 2. What those channels mean is defined by the space
that produced the integer, so colours from different spaces must never be
compared directly.

Three spaces are available, looked up by their serialization key:

    rgb    plain 8-bit sRGB, Euclidean distance
    oklab  OKLab, Euclidean distance on decoded L/a/b (percent units)
    lab    CIELAB (D50), CIE deltaE 2000 distance

All functions accept either scalars or numpy arrays of packed colours and
broadcast like numpy ufuncs.
"""

from typing import Optional, Union

import numpy as np

from apca import apca_contrast


# =============================================================================
# Constants
# =============================================================================

# Signed axes are offset so that the neutral axis (0) is an exact byte value
SIGNED_OFFSET = 128

# OKLab: L, a and b are scaled to percent and stored at 2.55 steps per percent
OKLAB_SCALE = 100.0
OKLAB_STEP = 2.55
OKLAB_CHROMA_MAX = 40.0  # 0.4 OKLab chroma = 100% (CSS Color 4 convention)
OKLAB_ACHROMATIC = 0.02  # |a|, |b| below 0.0002 OKLab units has no hue

# CIELAB: L stored at 2.55 steps per unit, a and b at 255/250 steps per unit
LAB_L_STEP = 2.55
LAB_AB_STEP = 255 / 250
LAB_CHROMA_MAX = 150.0  # CSS lch() 100% chroma
LAB_ACHROMATIC = 0.000075
LAB_EPSILON = 216 / 24389
LAB_KAPPA = 24389 / 27
WHITE_D50 = np.array([0.96422, 1.0, 0.82521])

DELTA_E2000_G = 25 ** 7

INCREASE_CONTRAST_STEPS = 20
# Bisection steps when solving an RGB colour for a target L*
RGB_LIGHTNESS_SEARCH_STEPS = 24

# sRGB linear <-> XYZ (D65)
LINEAR_SRGB_TO_XYZ65 = np.array([
    [0.41239079926595934, 0.357584339383878, 0.1804807884018343],
    [0.21263900587151027, 0.715168678767756, 0.07219231536073371],
    [0.01933081871559182, 0.11919477979462598, 0.9505321522496607],
])
XYZ65_TO_LINEAR_SRGB = np.array([
    [3.2409699419045226, -1.537383177570094, -0.4986107602930034],
    [-0.9692436362808796, 1.8759675015077202, 0.04155505740717559],
    [0.05563007969699366, -0.20397695888897652, 1.0569715142428786],
])

# sRGB linear <-> XYZ (D50, Bradford adapted)
LINEAR_SRGB_TO_XYZ50 = np.array([
    [0.4360747, 0.3850649, 0.1430804],
    [0.2225045, 0.7168786, 0.0606169],
    [0.0139322, 0.0971045, 0.7141733],
])
XYZ50_TO_LINEAR_SRGB = np.array([
    [3.1338561, -1.6168667, -0.4906146],
    [-0.9787684, 1.9161415, 0.0334540],
    [0.0719453, -0.2289914, 1.4052427],
])

# OKLab
XYZ_TO_LMS = np.array([
    [0.8190224379967030, 0.3619062600528904, -0.1288737815209879],
    [0.0329836539323885, 0.9292868615863434, 0.0361446663506424],
    [0.0481771893596242, 0.2642395317527308, 0.6335478284694309],
])
LMS_TO_OKLAB = np.array([
    [0.2104542683093140, 0.7936177747023054, -0.0040720430116193],
    [1.9779985324311684, -2.4285922420485799, 0.4505937096174110],
    [0.0259040424655478, 0.7827717124575296, -0.8086757549230774],
])
OKLAB_TO_LMS = np.array([
    [1.0, 0.3963377773761749, 0.2158037573099136],
    [1.0, -0.1055613458156586, -0.0638541728258133],
    [1.0, -0.0894841775298119, -1.2914855480194092],
])
LMS_TO_XYZ = np.array([
    [1.2268798758459243, -0.5578149944602171, 0.2813910456659647],
    [-0.0405757452148008, 1.1122868032803170, -0.0717110580655164],
    [-0.0763729366746601, -0.4214933324022432, 1.5869240198367816],
])


Colors = Union[int, np.ndarray]


# =============================================================================
# Packing & Transfer Functions
# =============================================================================

def pack(channels: np.ndarray) -> np.ndarray:
    """Pack an (..., 3) array of 0-255 channel values into 24-bit integers."""
    c = np.clip(np.asarray(channels), 0, 255).astype(np.int64)
    return (c[..., 0] << 16) | (c[..., 1] << 8) | c[..., 2]


def unpack(colors: Colors) -> np.ndarray:
    """Split packed 24-bit integers into an (..., 3) int64 array."""
    c = np.asarray(colors, dtype=np.int64)
    return np.stack([(c >> 16) & 0xFF, (c >> 8) & 0xFF, c & 0xFF], axis=-1)


def format_hex(rgb24: int) -> str:
    """Format a packed RGB colour as '#rrggbb'."""
    return f"#{int(rgb24):06x}"


def round_half_up(values: np.ndarray) -> np.ndarray:
    """Round to the nearest integer, halves away from -inf."""
    return np.floor(np.asarray(values, dtype=np.float64) + 0.5)


def srgb_to_linear(rgb: np.ndarray) -> np.ndarray:
    """Gamma-decode 0-255 sRGB values to linear light in [0, 1]."""
    c = np.asarray(rgb, dtype=np.float64) / 255.0
    return np.where(c <= 0.04045, c / 12.92, ((c + 0.055) / 1.055) ** 2.4)


def linear_to_srgb(linear: np.ndarray) -> np.ndarray:
    """Gamma-encode linear light to 8-bit sRGB, clamped to [0, 255]."""
    c = np.clip(linear, 0.0, 1.0)
    encoded = np.where(c <= 0.0031308, 12.92 * c, 1.055 * c ** (1 / 2.4) - 0.055)
    return np.clip(round_half_up(encoded * 255), 0, 255).astype(np.uint8)


def _scalar(value):
    """Unwrap 0-d numpy results into plain Python numbers."""
    if isinstance(value, np.ndarray) and value.ndim == 0:
        return value.item()
    if isinstance(value, np.generic):
        return value.item()
    return value


# =============================================================================
# Colour Space Base
# =============================================================================

class ColorSpace:
    """A colour space with its packed encoding, metric and derived measures.

    Subclasses implement `encode`, `decode`, `distance`, `lightness`, `chroma`,
    `hue` and its inverse `from_lch`. Contrast is always measured with APCA on
    the sRGB values.
    """

    key: str = ""
    # Distance below which two colours are considered the same
    epsilon: float = 0.0

    def encode(self, rgb: np.ndarray) -> np.ndarray:
        """Map an (..., 3) array of 8-bit RGB into packed native colours."""
        raise NotImplementedError

    def decode(self, colors: Colors) -> np.ndarray:
        """Map packed native colours back to an (..., 3) uint8 RGB array."""
        raise NotImplementedError

    def distance(self, a: Colors, b: Colors):
        raise NotImplementedError

    def lightness(self, color: Colors):
        raise NotImplementedError

    def chroma(self, color: Colors):
        raise NotImplementedError

    def hue(self, color: int) -> Optional[float]:
        raise NotImplementedError

    def from_lch(self, lightness: float, chroma: float, hue: float) -> int:
        """Native colour with the given lightness, chroma (0-100) and hue (degrees)."""
        raise NotImplementedError

    def to_native(self, pixels, offset: int = 0) -> int:
        """Convert the RGB triple at `offset` in a pixel buffer to a native colour."""
        rgb = np.array(list(pixels[offset:offset + 3]), dtype=np.int64)
        return int(self.encode(rgb))

    def to_rgb(self, color: Colors):
        """Convert native colours to packed 8-bit RGB."""
        return _scalar(pack(self.decode(color)))

    def contrast(self, background: Colors, foreground: Colors):
        """APCA contrast magnitude in [0, 100], background first."""
        return _scalar(apca_contrast(self.decode(background), self.decode(foreground)))

    def increase_contrast(self, color: int, against: int, towards: int,
                          desired: float, as_foreground: bool = True) -> int:
        """Move `color` towards `towards` until it contrasts enough with `against`.

        Lightness and chroma step linearly towards those of `towards` while the
        hue of `color` is held (achromatic colours count as hue 0). The walk
        stops at the first step reaching `desired` or after the last step, so
        the result may fall short of `desired`.

        Args:
            color: Colour to adjust
            against: Fixed colour that contrast is measured against
            towards: Reference colour giving the direction of the adjustment
            desired: Target APCA contrast (0-100)
            as_foreground: Measure `color` as text on `against` (True) or as
                the background behind `against` (False)
        """
        def measure(candidate):
            if as_foreground:
                return self.contrast(against, candidate)
            return self.contrast(candidate, against)

        if measure(color) >= desired:
            return int(color)

        start_l, start_c = self.lightness(color), self.chroma(color)
        end_l, end_c = self.lightness(towards), self.chroma(towards)
        hue = self.hue(color)
        if hue is None:
            hue = 0.0

        candidate = int(color)
        for step in range(1, INCREASE_CONTRAST_STEPS + 1):
            t = step / INCREASE_CONTRAST_STEPS
            candidate = self.from_lch(start_l + (end_l - start_l) * t,
                                      start_c + (end_c - start_c) * t, hue)
            if measure(candidate) >= desired:
                break
        return candidate

    def __repr__(self):
        return f"{type(self).__name__}(key={self.key!r})"

    def __reduce__(self):
        return get_space, (self.key,)


# =============================================================================
# RGB
# =============================================================================

class RGBSpace(ColorSpace):
    """Identity packing of sRGB, Euclidean distance on the 0-255 channels."""

    key = "rgb"
    epsilon = 1.0

    def encode(self, rgb):
        return pack(rgb)

    def decode(self, colors):
        return unpack(colors).astype(np.uint8)

    def to_rgb(self, color):
        return _scalar(np.asarray(color, dtype=np.int64))

    def distance(self, a, b):
        diff = unpack(a) - unpack(b)
        return _scalar(np.sqrt(np.sum(diff * diff, axis=-1)))

    def lightness(self, color):
        """CIE L* of the colour's relative luminance."""
        y = srgb_to_linear(unpack(color)) @ LINEAR_SRGB_TO_XYZ65[1]
        l = np.where(y > LAB_EPSILON, 116 * np.cbrt(y) - 16, LAB_KAPPA * y)
        return _scalar(np.clip(l, 0, 100))

    def chroma(self, color):
        """HSV-style chroma: spread between the largest and smallest channel."""
        c = unpack(color)
        return _scalar((c.max(axis=-1) - c.min(axis=-1)) / 255 * 100)

    def hue(self, color):
        r, g, b = (int(v) for v in unpack(color))
        high, low = max(r, g, b), min(r, g, b)
        if high == low:
            return None
        spread = high - low
        if high == r:
            h = ((g - b) / spread) % 6
        elif high == g:
            h = (b - r) / spread + 2
        else:
            h = (r - g) / spread + 4
        return (h * 60) % 360

    def from_lch(self, lightness, chroma, hue):
        """HSV-shaped colour for `hue` and `chroma` at the darkest offset reaching `lightness`."""
        spread = min(max(chroma, 0.0), 100.0) / 100 * 255
        sector = (hue / 60) % 6
        x = 1 - abs(sector % 2 - 1)
        profiles = [(1, x, 0), (x, 1, 0), (0, 1, x), (0, x, 1), (x, 0, 1), (1, 0, x)]
        shape = np.array(profiles[min(int(sector), 5)]) * spread

        low, high = 0.0, 255.0 - spread
        for _ in range(RGB_LIGHTNESS_SEARCH_STEPS):
            mid = (low + high) / 2
            if self.lightness(pack(round_half_up(shape + mid))) < lightness:
                low = mid
            else:
                high = mid
        return int(pack(round_half_up(shape + high)))


# =============================================================================
# OKLab
# =============================================================================

class OKLabSpace(ColorSpace):
    """OKLab with L, a, b in percent units.

    Encoding: L% * 2.55, and a% * 2.55 + 128 / b% * 2.55 + 128 for the signed
    axes (a% in [-50.2, 49.8]).
    """

    key = "oklab"
    epsilon = 7.0

    def encode(self, rgb):
        xyz = srgb_to_linear(rgb) @ LINEAR_SRGB_TO_XYZ65.T
        lms = np.cbrt(xyz @ XYZ_TO_LMS.T)
        lab = lms @ LMS_TO_OKLAB.T * OKLAB_SCALE
        channels = round_half_up(lab * OKLAB_STEP)
        channels[..., 1:] += SIGNED_OFFSET
        return pack(channels)

    def components(self, colors):
        """Decode packed colours to (..., 3) float L%, a%, b%."""
        c = unpack(colors).astype(np.float64)
        c[..., 1:] -= SIGNED_OFFSET
        return c / OKLAB_STEP

    def decode(self, colors):
        lab = self.components(colors) / OKLAB_SCALE
        lms = (lab @ OKLAB_TO_LMS.T) ** 3
        linear = (lms @ LMS_TO_XYZ.T) @ XYZ65_TO_LINEAR_SRGB.T
        return linear_to_srgb(linear)

    def distance(self, a, b):
        diff = self.components(a) - self.components(b)
        return _scalar(np.sqrt(np.sum(diff * diff, axis=-1)))

    def lightness(self, color):
        return _scalar(self.components(color)[..., 0])

    def chroma(self, color):
        lab = self.components(color)
        c = np.hypot(lab[..., 1], lab[..., 2]) / OKLAB_CHROMA_MAX * 100
        return _scalar(np.minimum(c, 100.0))

    def hue(self, color):
        _, a, b = self.components(color)
        if abs(a) < OKLAB_ACHROMATIC and abs(b) < OKLAB_ACHROMATIC:
            return None
        return float(np.degrees(np.arctan2(b, a)) % 360)

    def from_lch(self, lightness, chroma, hue):
        c = chroma / 100 * OKLAB_CHROMA_MAX
        h = np.radians(hue)
        channels = round_half_up(np.array([lightness, c * np.cos(h), c * np.sin(h)]) * OKLAB_STEP)
        channels[1:] += SIGNED_OFFSET
        return int(pack(channels))


# =============================================================================
# CIELAB (D50)
# =============================================================================

def _lab_f(t: np.ndarray) -> np.ndarray:
    return np.where(t > LAB_EPSILON, np.cbrt(t), (LAB_KAPPA * t + 16) / 116)


def delta_e2000(lab1: np.ndarray, lab2: np.ndarray) -> np.ndarray:
    """CIE deltaE 2000 between (..., 3) CIELAB arrays.

    Follows color.js deltaE2000 with kL = kC = kH = 1.
    """
    L1, a1, b1 = lab1[..., 0], lab1[..., 1], lab1[..., 2]
    L2, a2, b2 = lab2[..., 0], lab2[..., 1], lab2[..., 2]

    achromatic1 = (np.abs(a1) < LAB_ACHROMATIC) & (np.abs(b1) < LAB_ACHROMATIC)
    achromatic2 = (np.abs(a2) < LAB_ACHROMATIC) & (np.abs(b2) < LAB_ACHROMATIC)
    C1 = np.where(achromatic1, 0.0, np.hypot(a1, b1))
    C2 = np.where(achromatic2, 0.0, np.hypot(a2, b2))

    # a-axis asymmetry factor from mean chroma
    C7 = ((C1 + C2) / 2) ** 7
    G = 0.5 * (1 - np.sqrt(C7 / (C7 + DELTA_E2000_G)))
    adash1 = (1 + G) * a1
    adash2 = (1 + G) * a2
    Cdash1 = np.hypot(adash1, b1)
    Cdash2 = np.hypot(adash2, b2)

    # Hues in degrees, zero for true neutrals
    h1 = np.where((adash1 == 0) & (b1 == 0), 0.0, np.arctan2(b1, adash1))
    h2 = np.where((adash2 == 0) & (b2 == 0), 0.0, np.arctan2(b2, adash2))
    h1 = np.degrees(np.where(h1 < 0, h1 + 2 * np.pi, h1))
    h2 = np.degrees(np.where(h2 < 0, h2 + 2 * np.pi, h2))

    dL = L2 - L1
    dC = Cdash2 - Cdash1

    hdiff = h2 - h1
    hsum = h1 + h2
    habs = np.abs(hdiff)
    neutral = Cdash1 * Cdash2 == 0

    dh = np.where(habs <= 180, hdiff, np.where(hdiff > 180, hdiff - 360, hdiff + 360))
    dh = np.where(neutral, 0.0, dh)
    dH = 2 * np.sqrt(Cdash2 * Cdash1) * np.sin(np.radians(dh) / 2)

    Ldash = (L1 + L2) / 2
    Cdash = (Cdash1 + Cdash2) / 2
    Cdash7 = Cdash ** 7

    hdash = np.where(habs <= 180, hsum / 2,
                     np.where(hsum < 360, (hsum + 360) / 2, (hsum - 360) / 2))
    hdash = np.where(neutral, hsum, hdash)

    # Lightness crispening, assuming an L=50 background
    lsq = (Ldash - 50) ** 2
    SL = 1 + (0.015 * lsq) / np.sqrt(20 + lsq)
    SC = 1 + 0.045 * Cdash

    # Blue non-linearity
    T = (1
         - 0.17 * np.cos(np.radians(hdash - 30))
         + 0.24 * np.cos(np.radians(2 * hdash))
         + 0.32 * np.cos(np.radians(3 * hdash + 6))
         - 0.20 * np.cos(np.radians(4 * hdash - 63)))
    SH = 1 + 0.015 * Cdash * T

    # Hue rotation in the blue region (hue 225 to 315)
    dtheta = 30 * np.exp(-(((hdash - 275) / 25) ** 2))
    RC = 2 * np.sqrt(Cdash7 / (Cdash7 + DELTA_E2000_G))
    RT = -np.sin(np.radians(2 * dtheta)) * RC

    dE = (dL / SL) ** 2 + (dC / SC) ** 2 + (dH / SH) ** 2 + RT * (dC / SC) * (dH / SH)
    return np.sqrt(np.maximum(dE, 0.0))


class CIELabSpace(ColorSpace):
    """CIELAB relative to a D50 white, deltaE 2000 distance.

    Encoding: L * 2.55, and a * 255/250 + 128 / b * 255/250 + 128.
    """

    key = "lab"
    epsilon = 7.0

    def encode(self, rgb):
        xyz = srgb_to_linear(rgb) @ LINEAR_SRGB_TO_XYZ50.T
        f = _lab_f(xyz / WHITE_D50)
        L = 116 * f[..., 1] - 16
        a = 500 * (f[..., 0] - f[..., 1])
        b = 200 * (f[..., 1] - f[..., 2])
        channels = np.stack([
            round_half_up(L * LAB_L_STEP),
            round_half_up(a * LAB_AB_STEP) + SIGNED_OFFSET,
            round_half_up(b * LAB_AB_STEP) + SIGNED_OFFSET,
        ], axis=-1)
        return pack(channels)

    def components(self, colors):
        """Decode packed colours to (..., 3) float L*, a*, b*."""
        c = unpack(colors).astype(np.float64)
        return np.stack([
            c[..., 0] / LAB_L_STEP,
            (c[..., 1] - SIGNED_OFFSET) / LAB_AB_STEP,
            (c[..., 2] - SIGNED_OFFSET) / LAB_AB_STEP,
        ], axis=-1)

    def decode(self, colors):
        lab = self.components(colors)
        L, a, b = lab[..., 0], lab[..., 1], lab[..., 2]
        fy = (L + 16) / 116
        fx = a / 500 + fy
        fz = fy - b / 200
        x = np.where(fx ** 3 > LAB_EPSILON, fx ** 3, (116 * fx - 16) / LAB_KAPPA)
        y = np.where(L > LAB_KAPPA * LAB_EPSILON, fy ** 3, L / LAB_KAPPA)
        z = np.where(fz ** 3 > LAB_EPSILON, fz ** 3, (116 * fz - 16) / LAB_KAPPA)
        xyz = np.stack([x, y, z], axis=-1) * WHITE_D50
        return linear_to_srgb(xyz @ XYZ50_TO_LINEAR_SRGB.T)

    def distance(self, a, b):
        return _scalar(delta_e2000(self.components(a), self.components(b)))

    def lightness(self, color):
        return _scalar(self.components(color)[..., 0])

    def chroma(self, color):
        lab = self.components(color)
        c = np.hypot(lab[..., 1], lab[..., 2]) / LAB_CHROMA_MAX * 100
        return _scalar(np.minimum(c, 100.0))

    def hue(self, color):
        _, a, b = self.components(color)
        if abs(a) < LAB_ACHROMATIC and abs(b) < LAB_ACHROMATIC:
            return None
        return float(np.degrees(np.arctan2(b, a)) % 360)

    def from_lch(self, lightness, chroma, hue):
        c = chroma / 100 * LAB_CHROMA_MAX
        h = np.radians(hue)
        channels = np.array([
            round_half_up(lightness * LAB_L_STEP),
            round_half_up(c * np.cos(h) * LAB_AB_STEP) + SIGNED_OFFSET,
            round_half_up(c * np.sin(h) * LAB_AB_STEP) + SIGNED_OFFSET,
        ])
        return int(pack(channels))


# =============================================================================
# Lookup
# =============================================================================

RGB = RGBSpace()
OKLAB = OKLabSpace()
CIELAB = CIELabSpace()

SPACES = {space.key: space for space in (RGB, OKLAB, CIELAB)}


def get_space(key: str) -> ColorSpace:
    """Return the built-in colour space registered under `key`.

    Raises:
        ValueError: If `key` is not one of 'rgb', 'oklab' or 'lab'
    """
    try:
        return SPACES[key]
    except KeyError:
        raise ValueError(f"Unknown color space {key!r}, expected one of {sorted(SPACES)}") from None
