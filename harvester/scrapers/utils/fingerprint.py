"""Browser fingerprint generation for anti-detection.

A fingerprint bundles everything a browsing context exposes about itself
(user agent, viewport, navigator properties, headers) so that the values
agree with each other. Evasive fingerprints add canvas and WebGL noise.
"""

import json
import random
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from harvester.schemas.target import Target


# Desktop user agents, Chromium builds only to match the launched engine
USER_AGENTS: List[str] = [
    # Chrome on Windows
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/130.0.0.0 Safari/537.36",
    # Chrome on macOS
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/130.0.0.0 Safari/537.36",
    # Chrome on Linux
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36",
    # Edge on Windows
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36 Edg/131.0.0.0",
]

MOBILE_USER_AGENTS: List[str] = [
    "Mozilla/5.0 (Linux; Android 14; SM-S918B) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/131.0.0.0 Mobile Safari/537.36",
    "Mozilla/5.0 (Linux; Android 14; Pixel 8) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/131.0.0.0 Mobile Safari/537.36",
    "Mozilla/5.0 (Linux; Android 13; SM-A546B) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/130.0.0.0 Mobile Safari/537.36",
]

DESKTOP_VIEWPORTS: List[Tuple[int, int]] = [(1920, 1080), (1366, 768), (1440, 900), (1536, 864)]
MOBILE_VIEWPORTS: List[Tuple[int, int]] = [(375, 812), (390, 844), (412, 915)]

# Unmasked WebGL vendor/renderer pairs keyed by navigator.platform
WEBGL_PROFILES: Dict[str, List[Tuple[str, str]]] = {
    "Win32": [
        ("Google Inc. (Intel)", "ANGLE (Intel, Intel(R) UHD Graphics 630 Direct3D11 vs_5_0 ps_5_0, D3D11)"),
        ("Google Inc. (NVIDIA)", "ANGLE (NVIDIA, NVIDIA GeForce GTX 1650 Direct3D11 vs_5_0 ps_5_0, D3D11)"),
        ("Google Inc. (AMD)", "ANGLE (AMD, AMD Radeon RX 580 Direct3D11 vs_5_0 ps_5_0, D3D11)"),
    ],
    "MacIntel": [
        ("Google Inc. (Apple)", "ANGLE (Apple, ANGLE Metal Renderer: Apple M1, Unspecified Version)"),
        ("Google Inc. (Apple)", "ANGLE (Apple, ANGLE Metal Renderer: Apple M2, Unspecified Version)"),
        ("Google Inc. (Intel Inc.)", "ANGLE (Intel Inc., Intel(R) Iris(TM) Plus Graphics OpenGL Engine, OpenGL 4.1)"),
    ],
    "Linux x86_64": [
        ("Google Inc. (Intel)", "ANGLE (Intel, Mesa Intel(R) UHD Graphics 620 (KBL GT2), OpenGL 4.6)"),
        ("Google Inc. (AMD)", "ANGLE (AMD, AMD Radeon RX 6600 (radeonsi, navi23, LLVM 15.0.7), OpenGL 4.6)"),
    ],
    "Linux armv81": [
        ("Qualcomm", "Adreno (TM) 740"),
        ("Qualcomm", "Adreno (TM) 710"),
        ("ARM", "Mali-G715"),
    ],
}


def platform_for(user_agent: str) -> str:
    """Return the navigator.platform value matching a user agent's OS."""
    if "Android" in user_agent:
        return "Linux armv81"
    if "Windows" in user_agent:
        return "Win32"
    if "Macintosh" in user_agent:
        return "MacIntel"
    return "Linux x86_64"


def is_chromium(user_agent: str) -> bool:
    return "Chrome/" in user_agent


def vendor_for(user_agent: str) -> str:
    """Return the navigator.vendor value matching a user agent's engine."""
    if is_chromium(user_agent):
        return "Google Inc."
    if "Safari/" in user_agent and "Firefox/" not in user_agent:
        return "Apple Computer, Inc."
    return ""


def accept_language_for(locale: str) -> str:
    language = locale.split("-")[0]
    if language == locale:
        return f"{locale},en;q=0.8"
    return f"{locale},{language};q=0.9,en;q=0.8"


@dataclass(frozen=True)
class Fingerprint:
    """An internally consistent set of browser identity attributes."""

    user_agent: str
    viewport: Tuple[int, int]
    locale: str
    timezone_id: str
    accept_language: str
    platform: str
    vendor: str
    hardware_concurrency: int
    device_memory: int
    is_mobile: bool = False
    has_touch: bool = False
    canvas_noise: Optional[int] = None  # Seed for canvas perturbation, evasive only
    webgl_vendor: Optional[str] = None
    webgl_renderer: Optional[str] = None

    @property
    def evasive(self) -> bool:
        return self.canvas_noise is not None

    @property
    def languages(self) -> List[str]:
        language = self.locale.split("-")[0]
        ordered = [self.locale, language, "en-US", "en"]
        return list(dict.fromkeys(ordered))

    def context_options(self) -> Dict[str, Any]:
        """Keyword arguments for Playwright's ``browser.new_context``."""
        width, height = self.viewport
        return {
            "user_agent": self.user_agent,
            "viewport": {"width": width, "height": height},
            "locale": self.locale,
            "timezone_id": self.timezone_id,
            "extra_http_headers": {"Accept-Language": self.accept_language},
            "is_mobile": self.is_mobile,
            "has_touch": self.has_touch,
            "java_script_enabled": True,
            "bypass_csp": True,
        }

    def init_script(self) -> str:
        """Render the stealth script injected into every page of a context."""
        parts = [
            "Object.defineProperty(navigator, 'webdriver', { get: () => undefined });",
            f"Object.defineProperty(navigator, 'languages', {{ get: () => {json.dumps(self.languages)} }});",
            f"Object.defineProperty(navigator, 'platform', {{ get: () => {json.dumps(self.platform)} }});",
            f"Object.defineProperty(navigator, 'vendor', {{ get: () => {json.dumps(self.vendor)} }});",
            f"Object.defineProperty(navigator, 'hardwareConcurrency', {{ get: () => {self.hardware_concurrency} }});",
            f"Object.defineProperty(navigator, 'deviceMemory', {{ get: () => {self.device_memory} }});",
            "Object.defineProperty(navigator, 'plugins', { get: () => [1, 2, 3, 4, 5] });",
            _PERMISSIONS_JS,
        ]
        if is_chromium(self.user_agent):
            parts.append("window.chrome = { runtime: {} };")
        if self.evasive:
            parts.append(_CANVAS_NOISE_JS.replace("__SEED__", str(self.canvas_noise)))
            parts.append(
                _WEBGL_JS.replace("__VENDOR__", json.dumps(self.webgl_vendor))
                .replace("__RENDERER__", json.dumps(self.webgl_renderer))
            )
            parts.append(_AUTOMATION_MARKERS_JS)
        return "\n".join(parts)


class FingerprintProvider:
    """Generates fingerprints, optionally with extra entropy for evasion."""

    def __init__(self, rng: Optional[random.Random] = None):
        self._rng = rng or random.Random()

    def generate(
        self,
        *,
        evasive: bool = False,
        mobile: bool = False,
        locale: str = "es-CL",
        timezone_id: str = "America/Santiago",
    ) -> Fingerprint:
        """Build a fingerprint.

        Args:
            evasive: Add canvas noise, WebGL spoofing and marker removal
            mobile: Use a mobile user agent, viewport and touch support
            locale: BCP 47 locale for navigator and Accept-Language
            timezone_id: IANA timezone for the browsing context

        Returns:
            Fingerprint whose attributes agree with each other
        """
        rng = self._rng
        if mobile:
            user_agent = rng.choice(MOBILE_USER_AGENTS)
            width, height = rng.choice(MOBILE_VIEWPORTS)
            hardware_concurrency = rng.choice([4, 6, 8])
            device_memory = rng.choice([4, 6, 8])
        else:
            user_agent = rng.choice(USER_AGENTS)
            width, height = rng.choice(DESKTOP_VIEWPORTS)
            width += rng.randint(0, 200)
            height += rng.randint(0, 200)
            hardware_concurrency = rng.choice([4, 8, 12, 16])
            device_memory = rng.choice([8, 16])

        webgl_vendor = webgl_renderer = None
        canvas_noise = None
        if evasive:
            canvas_noise = rng.randint(1, 2 ** 16)
            webgl_vendor, webgl_renderer = rng.choice(WEBGL_PROFILES[platform_for(user_agent)])

        return Fingerprint(
            user_agent=user_agent,
            viewport=(width, height),
            locale=locale,
            timezone_id=timezone_id,
            accept_language=accept_language_for(locale),
            platform=platform_for(user_agent),
            vendor=vendor_for(user_agent),
            hardware_concurrency=hardware_concurrency,
            device_memory=device_memory,
            is_mobile=mobile,
            has_touch=mobile,
            canvas_noise=canvas_noise,
            webgl_vendor=webgl_vendor,
            webgl_renderer=webgl_renderer,
        )

    def for_target(self, target: Target, *, evasive: bool = False, mobile: bool = False) -> Fingerprint:
        """Generate a fingerprint using a target's locale and timezone."""
        return self.generate(
            evasive=evasive,
            mobile=mobile,
            locale=target.locale,
            timezone_id=target.timezone_id,
        )


_PERMISSIONS_JS = """
const originalQuery = window.navigator.permissions.query;
window.navigator.permissions.query = (parameters) =>
  parameters.name === 'notifications'
    ? Promise.resolve({ state: Notification.permission })
    : originalQuery(parameters);
"""

_CANVAS_NOISE_JS = """
(() => {
  const seed = __SEED__;
  const original = CanvasRenderingContext2D.prototype.getImageData;
  CanvasRenderingContext2D.prototype.getImageData = function (...args) {
    const data = original.apply(this, args);
    for (let i = 0; i < data.data.length; i += 4) {
      data.data[i] = data.data[i] ^ ((seed + i) & 1);
    }
    return data;
  };
})();
"""

_WEBGL_JS = """
(() => {
  const getParameter = WebGLRenderingContext.prototype.getParameter;
  WebGLRenderingContext.prototype.getParameter = function (parameter) {
    if (parameter === 37445) return __VENDOR__;
    if (parameter === 37446) return __RENDERER__;
    return getParameter.call(this, parameter);
  };
})();
"""

_AUTOMATION_MARKERS_JS = """
for (const key of Object.keys(window)) {
  if (key.startsWith('cdc_') || key.startsWith('$cdc_')) {
    delete window[key];
  }
}
"""
