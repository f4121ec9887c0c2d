"""
Audio boundary for the cycle orchestrator.

The orchestrator owns no audio hardware. It is handed:

- an ``AudioChannel``: one reusable output with an explicit
  ``create()`` / ``dispose()`` lifecycle, reporting completion and errors
  through callbacks;
- an ``AudioResolver``: an async callable turning an ``AudioRef`` into a
  playable ``AudioSource`` (cache lookup, URL construction, download...).
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Protocol

from fluency.core.errors import AudioResolutionError
from fluency.core.models import AudioRef


@dataclass(frozen=True)
class AudioSource:
    """Something an AudioChannel can play."""

    audio_id: str
    url: str
    duration_ms: Optional[int] = None


class AudioChannel(Protocol):
    """A single reusable audio output."""

    def create(self) -> None:
        ...

    def dispose(self) -> None:
        ...

    def play(
        self,
        source: AudioSource,
        on_ended: Callable[[], None],
        on_error: Callable[[Exception], None],
    ) -> None:
        """Start playback; exactly one of the callbacks should fire later."""
        ...

    def stop(self) -> None:
        ...

    def position_ms(self) -> float:
        """Current playback position, used by the stall watchdog."""
        ...


AudioResolver = Callable[[AudioRef], Awaitable[AudioSource]]


class UrlAudioResolver:
    """
    Resolves audio ids to URLs.

    A local cache map (audio id -> URL/path) takes precedence over the
    template, so pre-downloaded audio plays offline.

    Args:
        url_template: Format string with an ``{audio_id}`` placeholder
        cache: Optional id -> local URL map
    """

    def __init__(self, url_template: str = "/api/audio/{audio_id}", cache: Optional[dict[str, str]] = None):
        self.url_template = url_template
        self.cache = dict(cache or {})

    async def __call__(self, ref: AudioRef) -> AudioSource:
        if ref.is_missing:
            raise AudioResolutionError(ref.id, "empty audio id")
        url = self.cache.get(ref.id) or ref.url or self.url_template.format(audio_id=ref.id)
        return AudioSource(audio_id=ref.id, url=url, duration_ms=ref.duration_ms)
