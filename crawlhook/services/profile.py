"""Per-session browser identity.

Every acquisition gets a fresh ``AntiDetectionProfile``: a coherent user
agent and header set from BrowserForge, a viewport, timezone and hardware
values drawn at random, and an init script that removes the signals
headless Chromium leaks to detection scripts. Profiles are never reused.
"""

from __future__ import annotations

import random
from dataclasses import dataclass, field

from browserforge.headers import HeaderGenerator

# ---------------------------------------------------------------------------
# Fingerprint pools
# ---------------------------------------------------------------------------

VIEWPORTS = [
    {"width": 1920, "height": 1080},
    {"width": 1366, "height": 768},
    {"width": 1440, "height": 900},
    {"width": 1536, "height": 864},
    {"width": 1680, "height": 1050},
    {"width": 1280, "height": 720},
]

TIMEZONES = [
    "America/New_York",
    "America/Chicago",
    "America/Los_Angeles",
    "America/Denver",
    "Europe/London",
    "Europe/Paris",
]

WEBGL_RENDERERS = [
    (
        "Google Inc. (NVIDIA)",
        "ANGLE (NVIDIA, NVIDIA GeForce RTX 3060 Direct3D11 vs_5_0 ps_5_0, D3D11)",
    ),
    (
        "Google Inc. (Intel)",
        "ANGLE (Intel, Intel(R) UHD Graphics 630 Direct3D11 vs_5_0 ps_5_0, D3D11)",
    ),
    (
        "Google Inc. (Intel)",
        "ANGLE (Intel, Intel(R) Iris(R) Xe Graphics Direct3D11 vs_5_0 ps_5_0, D3D11)",
    ),
    (
        "Google Inc. (AMD)",
        "ANGLE (AMD, AMD Radeon RX 580 Direct3D11 vs_5_0 ps_5_0, D3D11)",
    ),
    ("Google Inc. (Apple)", "ANGLE (Apple, Apple M1, OpenGL 4.1)"),
]

# Headers Playwright manages itself or that break when forced on every request
_DROPPED_HEADERS = frozenset(
    {"user-agent", "host", "connection", "content-length", "accept-encoding"}
)

_header_gen: HeaderGenerator | None = None


def _get_header_generator() -> HeaderGenerator:
    global _header_gen
    if _header_gen is None:
        _header_gen = HeaderGenerator(browser="chrome", os=("windows", "macos", "linux"), device="desktop")
    return _header_gen


def _build_stealth_script(
    webgl_vendor: str,
    webgl_renderer: str,
    hw_concurrency: int,
    device_mem: int,
) -> str:
    """Init script hiding automation traces, parameterised per session."""
    return f"""
// navigator.webdriver, the first thing every detector checks
Object.defineProperty(navigator, 'webdriver', {{ get: () => false }});
delete navigator.__proto__.webdriver;

Object.defineProperty(navigator, 'languages', {{ get: () => ['en-US', 'en'] }});

const ua = navigator.userAgent;
if (ua.includes('Win')) {{
    Object.defineProperty(navigator, 'platform', {{ get: () => 'Win32' }});
}} else if (ua.includes('Mac')) {{
    Object.defineProperty(navigator, 'platform', {{ get: () => 'MacIntel' }});
}} else if (ua.includes('Linux')) {{
    Object.defineProperty(navigator, 'platform', {{ get: () => 'Linux x86_64' }});
}}

Object.defineProperty(navigator, 'hardwareConcurrency', {{ get: () => {hw_concurrency} }});
Object.defineProperty(navigator, 'deviceMemory', {{ get: () => {device_mem} }});

// Headless Chromium ships without window.chrome
if (!window.chrome) {{
    window.chrome = {{ runtime: {{ connect: function() {{}}, sendMessage: function() {{}} }} }};
}}

// Headless reports zero plugins
const fakePlugins = [
    {{ name: 'Chrome PDF Plugin', filename: 'internal-pdf-viewer', description: 'Portable Document Format' }},
    {{ name: 'Chrome PDF Viewer', filename: 'mhjfbmdgcfjbbpaeojofohoefgiehjai', description: '' }},
];
Object.defineProperty(navigator, 'plugins', {{ get: () => fakePlugins }});

const patchWebGL = (proto) => {{
    if (!proto) return;
    const orig = proto.getParameter;
    proto.getParameter = function(param) {{
        if (param === 37445) return '{webgl_vendor}';
        if (param === 37446) return '{webgl_renderer}';
        return orig.call(this, param);
    }};
}};
patchWebGL(window.WebGLRenderingContext && WebGLRenderingContext.prototype);
patchWebGL(window.WebGL2RenderingContext && WebGL2RenderingContext.prototype);

(function() {{
    const origQuery = window.Permissions?.prototype?.query;
    if (origQuery) {{
        window.Permissions.prototype.query = function(params) {{
            if (params?.name === 'notifications') {{
                return Promise.resolve({{ state: 'default' }});
            }}
            return origQuery.call(this, params);
        }};
    }}
}})();

['domAutomation', 'domAutomationController', '_selenium', '__webdriver_script_fn',
 '__driver_evaluate', '__webdriver_evaluate', '_phantom', '__nightmare'
].forEach(p => {{ try {{ delete window[p]; }} catch(e) {{}} }});

Object.defineProperty(document, 'hidden', {{ get: () => false }});
Object.defineProperty(document, 'visibilityState', {{ get: () => 'visible' }});
"""


@dataclass(frozen=True)
class AntiDetectionProfile:
    user_agent: str
    viewport: dict[str, int]
    headers: dict[str, str] = field(default_factory=dict)
    timezone_id: str = "America/New_York"
    locale: str = "en-US"
    hardware_concurrency: int = 8
    device_memory: int = 8
    webgl_vendor: str = WEBGL_RENDERERS[0][0]
    webgl_renderer: str = WEBGL_RENDERERS[0][1]

    def context_options(self) -> dict:
        """Keyword arguments for ``Browser.new_context``."""
        return {
            "user_agent": self.user_agent,
            "viewport": dict(self.viewport),
            "locale": self.locale,
            "timezone_id": self.timezone_id,
            "ignore_https_errors": True,
            "java_script_enabled": True,
            "has_touch": False,
            "is_mobile": False,
            "color_scheme": "light",
            "extra_http_headers": dict(self.headers),
        }

    def init_script(self) -> str:
        return _build_stealth_script(
            self.webgl_vendor,
            self.webgl_renderer,
            self.hardware_concurrency,
            self.device_memory,
        )


def generate_profile(
    viewport: dict[str, int] | None = None,
    rng: random.Random | None = None,
    header_generator: HeaderGenerator | None = None,
) -> AntiDetectionProfile:
    """Draw a new randomised profile.

    Args:
        viewport: Fixed viewport requested by the task; random when omitted.
        rng: Random source, injectable for reproducible tests.
        header_generator: BrowserForge generator; a shared desktop-Chrome one by default.
    """
    rng = rng or random.Random()
    generator = header_generator or _get_header_generator()

    generated = generator.generate()
    lowered = {k.lower(): v for k, v in generated.items()}
    user_agent = lowered.get("user-agent", "")
    headers = {k: v for k, v in generated.items() if k.lower() not in _DROPPED_HEADERS}

    webgl_vendor, webgl_renderer = rng.choice(WEBGL_RENDERERS)
    return AntiDetectionProfile(
        user_agent=user_agent,
        viewport=dict(viewport) if viewport else dict(rng.choice(VIEWPORTS)),
        headers=headers,
        timezone_id=rng.choice(TIMEZONES),
        hardware_concurrency=rng.choice([4, 8, 12, 16]),
        device_memory=rng.choice([4, 8, 16]),
        webgl_vendor=webgl_vendor,
        webgl_renderer=webgl_renderer,
    )
