"""Configuration for the PCM to MP3 relay."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from urllib.parse import urlsplit, urlunsplit

from mashumaro.config import BaseConfig
from mashumaro.mixins.orjson import DataClassORJSONMixin

DEFAULT_ALLOWED_ORIGINS = [
    "http://localhost:57061",
    "http://localhost:3002",
    "https://app.audracs.com.br",
]
DEFAULT_HOST_REWRITES = {"audracs.com.br": "vapi.ai"}

_PROBE_SCHEMES = {"ws": "http", "wss": "https"}


@dataclass(frozen=True)
class RelayConfig(DataClassORJSONMixin):
    """Settings shared by every stream session of one relay process."""

    sample_rate: int = 32_000
    """Sample rate of the upstream PCM in Hz."""
    channels: int = 1
    """Channel count of the upstream PCM, only mono is supported."""
    bit_rate: int = 128
    """Target MP3 bitrate in kbps."""
    flush_interval: float = 5.0
    """Seconds between two flush cycles."""
    low_pass_cutoff: float = 1_000.0
    """Cutoff frequency of the low-pass filter in Hz."""
    max_retries: int = 30
    """Retry ceiling for transient upstream failures."""
    retry_delay: float = 0.5
    """Fixed delay in seconds between two connection attempts."""
    connect_timeout: float = 10.0
    """Deadline in seconds for the upstream WebSocket handshake."""
    allowed_origins: list[str] = field(default_factory=lambda: list(DEFAULT_ALLOWED_ORIGINS))
    """Origins allowed to subscribe from a browser."""
    host_rewrites: dict[str, str] = field(default_factory=lambda: dict(DEFAULT_HOST_REWRITES))
    """Substring replacements applied to the host of every upstream URL."""
    retryable_statuses: list[int] = field(default_factory=lambda: [400])
    """Probe and handshake statuses treated as transient."""
    max_buffered_samples: int | None = None
    """Ceiling for samples held between flushes, None keeps the buffer unbounded."""
    host: str = "0.0.0.0"  # noqa: S104
    port: int = 3004
    stream_path: str = "/stream"

    class Config(BaseConfig):
        """Config for parsing json settings."""

        omit_none = True

    def __post_init__(self) -> None:
        """Validate the provided settings."""
        if self.sample_rate <= 0:
            raise ValueError("sample_rate must be positive")
        if self.channels != 1:
            raise ValueError("only mono upstream audio is supported")
        if self.bit_rate <= 0:
            raise ValueError("bit_rate must be positive")
        if not 0 < self.low_pass_cutoff < self.sample_rate / 2:
            raise ValueError("low_pass_cutoff must be between 0 and the Nyquist frequency")
        if self.flush_interval <= 0:
            raise ValueError("flush_interval must be positive")
        if self.max_retries < 0:
            raise ValueError("max_retries must not be negative")
        if self.retry_delay < 0:
            raise ValueError("retry_delay must not be negative")
        if self.connect_timeout <= 0:
            raise ValueError("connect_timeout must be positive")
        if self.max_buffered_samples is not None and self.max_buffered_samples <= 0:
            raise ValueError("max_buffered_samples must be positive when set")

    @classmethod
    def load(cls, path: str | Path) -> RelayConfig:
        """Read settings from a JSON file, missing keys keep their defaults."""
        return cls.from_json(Path(path).read_bytes())

    def rewrite_host(self, url: str) -> str:
        """Apply the configured host rewrites to the host component of ``url``."""
        parts = urlsplit(url)
        netloc = parts.netloc
        for old, new in self.host_rewrites.items():
            netloc = netloc.replace(old, new)
        if netloc == parts.netloc:
            return url
        return urlunsplit(parts._replace(netloc=netloc))


def probe_url(url: str) -> str:
    """Translate a WebSocket URL into the plain HTTP URL used for the existence probe."""
    parts = urlsplit(url)
    scheme = _PROBE_SCHEMES.get(parts.scheme.lower())
    if scheme is None:
        return url
    return urlunsplit(parts._replace(scheme=scheme))
