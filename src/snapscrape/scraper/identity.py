"""Synthetic browser identities: user-agent strings and fingerprint profiles.

An :class:`Identity` pairs a user-agent with a :class:`FingerprintProfile`,
the bundle of hardware/software signals a page can observe through
``navigator``, ``screen``, WebGL, canvas and audio APIs.  The Playwright
fetcher applies both before navigating.

:class:`IdentityPool` draws every value from an injectable
``random.Random`` so tests can pin the sequence.  User-agent OS family and
fingerprint platform are drawn independently and are not cross-checked.
"""

from __future__ import annotations

import hashlib
import json
import random
from dataclasses import asdict, dataclass
from typing import Any

# ---------------------------------------------------------------------------
# Value tables
# ---------------------------------------------------------------------------

_OS_TOKENS: tuple[str, ...] = (
    "Windows NT 10.0; Win64; x64",
    "Windows NT 10.0; WOW64",
    "Macintosh; Intel Mac OS X 10_15_7",
    "Macintosh; Intel Mac OS X 13_6_1",
    "X11; Linux x86_64",
    "X11; Ubuntu; Linux x86_64",
)

_CHROME_MAJORS: tuple[int, ...] = (124, 125, 126, 127, 128, 129, 130, 131)
_FIREFOX_MAJORS: tuple[int, ...] = (125, 126, 127, 128, 129, 130, 131, 132)
_SAFARI_VERSIONS: tuple[str, ...] = ("17.4", "17.5", "17.6", "18.0", "18.1", "18.2")

_PLATFORMS: tuple[str, ...] = ("Win32", "MacIntel", "Linux x86_64")

_SCREENS: tuple[tuple[int, int], ...] = (
    (1920, 1080),
    (1366, 768),
    (1440, 900),
    (1536, 864),
    (1600, 900),
    (1680, 1050),
    (2560, 1440),
)

_PIXEL_RATIOS: tuple[float, ...] = (1.0, 1.25, 1.5, 2.0)
_COLOR_DEPTHS: tuple[int, ...] = (24, 30, 32)
_CONCURRENCY: tuple[int, ...] = (2, 4, 6, 8, 12, 16)
_DEVICE_MEMORY: tuple[int, ...] = (2, 4, 8, 16)

_WEBGL: tuple[tuple[str, str], ...] = (
    ("Google Inc. (Intel)", "ANGLE (Intel, Intel(R) UHD Graphics 630 Direct3D11 vs_5_0 ps_5_0, D3D11)"),
    ("Google Inc. (NVIDIA)", "ANGLE (NVIDIA, NVIDIA GeForce GTX 1650 Direct3D11 vs_5_0 ps_5_0, D3D11)"),
    ("Google Inc. (NVIDIA)", "ANGLE (NVIDIA, NVIDIA GeForce RTX 3060 Direct3D11 vs_5_0 ps_5_0, D3D11)"),
    ("Google Inc. (AMD)", "ANGLE (AMD, AMD Radeon RX 580 Direct3D11 vs_5_0 ps_5_0, D3D11)"),
    ("Apple Inc.", "Apple M1"),
    ("Apple Inc.", "Apple M2"),
    ("Intel Inc.", "Intel Iris OpenGL Engine"),
    ("Mesa", "Mesa Intel(R) Xe Graphics (TGL GT2)"),
)

_LANGUAGES: tuple[tuple[str, ...], ...] = (
    ("en-US", "en"),
    ("en-GB", "en"),
    ("en-US", "en", "es"),
    ("de-DE", "de", "en-US", "en"),
    ("fr-FR", "fr", "en-US", "en"),
    ("nl-NL", "nl", "en"),
)

# (IANA zone, offset in minutes as returned by Date.getTimezoneOffset())
_TIMEZONES: tuple[tuple[str, int], ...] = (
    ("America/New_York", 300),
    ("America/Chicago", 360),
    ("America/Los_Angeles", 480),
    ("Europe/London", 0),
    ("Europe/Berlin", -60),
    ("Europe/Paris", -60),
    ("Asia/Tokyo", -540),
    ("Australia/Sydney", -600),
)


# ---------------------------------------------------------------------------
# Value objects
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class FingerprintProfile:
    """Immutable bag of synthetic browser signals.

    Attributes:
        platform: ``navigator.platform``.
        screen_width: ``screen.width`` in CSS pixels.
        screen_height: ``screen.height`` in CSS pixels.
        avail_width: ``screen.availWidth``.
        avail_height: ``screen.availHeight`` (screen minus task bar).
        color_depth: ``screen.colorDepth``.
        pixel_ratio: ``window.devicePixelRatio``.
        hardware_concurrency: ``navigator.hardwareConcurrency``.
        device_memory: ``navigator.deviceMemory`` in GiB.
        max_touch_points: ``navigator.maxTouchPoints``.
        webgl_vendor: Unmasked WebGL vendor string.
        webgl_renderer: Unmasked WebGL renderer string.
        canvas_noise: Hex token seeding canvas read-back noise.
        audio_noise: Hex token seeding audio buffer noise.
        languages: ``navigator.languages``; the first entry is the locale.
        timezone: IANA timezone identifier.
        timezone_offset: ``Date.prototype.getTimezoneOffset()`` in minutes.
        do_not_track: ``navigator.doNotTrack`` (``"1"`` or ``None``).
    """

    platform: str
    screen_width: int
    screen_height: int
    avail_width: int
    avail_height: int
    color_depth: int
    pixel_ratio: float
    hardware_concurrency: int
    device_memory: int
    max_touch_points: int
    webgl_vendor: str
    webgl_renderer: str
    canvas_noise: str
    audio_noise: str
    languages: tuple[str, ...]
    timezone: str
    timezone_offset: int
    do_not_track: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["languages"] = list(self.languages)
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> FingerprintProfile:
        values = dict(data)
        values["languages"] = tuple(values.get("languages") or ())
        return cls(**values)

    def fingerprint_hash(self) -> str:
        """Return a stable SHA-256 hex digest of the profile's canonical JSON."""
        canonical = json.dumps(self.to_dict(), sort_keys=True, separators=(",", ":"))
        return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class Identity:
    """A user-agent and fingerprint presented to target sites together."""

    user_agent: str
    fingerprint: FingerprintProfile

    @property
    def key(self) -> str:
        """Ledger key of this identity: its fingerprint hash."""
        return self.fingerprint.fingerprint_hash()


# ---------------------------------------------------------------------------
# Generator
# ---------------------------------------------------------------------------


class IdentityPool:
    """Randomized generator of plausible browser identities.

    Every call is independent; nothing is memoized.

    Args:
        rng: Source of randomness.  Defaults to a fresh ``random.Random``.
    """

    def __init__(self, rng: random.Random | None = None) -> None:
        self._rng = rng or random.Random()

    def generate_user_agent(self) -> str:
        """Return a random desktop Chrome, Firefox, Edge or Safari user-agent."""
        rng = self._rng
        os_token = rng.choice(_OS_TOKENS)
        family = rng.choice(("chrome", "chrome", "firefox", "edge", "safari"))

        if family == "safari" and os_token.startswith("Macintosh"):
            version = rng.choice(_SAFARI_VERSIONS)
            return (
                f"Mozilla/5.0 ({os_token}) AppleWebKit/605.1.15 "
                f"(KHTML, like Gecko) Version/{version} Safari/605.1.15"
            )
        if family == "firefox":
            major = rng.choice(_FIREFOX_MAJORS)
            return f"Mozilla/5.0 ({os_token}; rv:{major}.0) Gecko/20100101 Firefox/{major}.0"

        major = rng.choice(_CHROME_MAJORS)
        build = f"{major}.0.{rng.randint(6000, 6999)}.{rng.randint(0, 200)}"
        ua = (
            f"Mozilla/5.0 ({os_token}) AppleWebKit/537.36 "
            f"(KHTML, like Gecko) Chrome/{build} Safari/537.36"
        )
        if family == "edge":
            ua += f" Edg/{build}"
        return ua

    def generate_fingerprint(self) -> FingerprintProfile:
        """Return a random :class:`FingerprintProfile`."""
        rng = self._rng
        width, height = rng.choice(_SCREENS)
        vendor, renderer = rng.choice(_WEBGL)
        timezone, offset = rng.choice(_TIMEZONES)
        return FingerprintProfile(
            platform=rng.choice(_PLATFORMS),
            screen_width=width,
            screen_height=height,
            avail_width=width,
            avail_height=height - rng.choice((0, 30, 40, 48)),
            color_depth=rng.choice(_COLOR_DEPTHS),
            pixel_ratio=rng.choice(_PIXEL_RATIOS),
            hardware_concurrency=rng.choice(_CONCURRENCY),
            device_memory=rng.choice(_DEVICE_MEMORY),
            max_touch_points=rng.choice((0, 0, 0, 1, 5, 10)),
            webgl_vendor=vendor,
            webgl_renderer=renderer,
            canvas_noise=f"{rng.getrandbits(64):016x}",
            audio_noise=f"{rng.getrandbits(64):016x}",
            languages=rng.choice(_LANGUAGES),
            timezone=timezone,
            timezone_offset=offset,
            do_not_track=rng.choice(("1", None, None)),
        )

    def generate_identity(self) -> Identity:
        """Return a fresh identity with an independently drawn user-agent."""
        return Identity(
            user_agent=self.generate_user_agent(),
            fingerprint=self.generate_fingerprint(),
        )
