"""
Voice-message playback with at most one player audible per client session.

The coordinator is an ordinary object owned by the session and handed to
each player, so two sessions in one process never stop each other.
"""
import logging
from typing import Callable, Optional

logger = logging.getLogger(__name__)

STOPPED = "stopped"
PLAYING = "playing"
PAUSED = "paused"


class PlaybackCoordinator:
    def __init__(self):
        self._active: Optional["VoicePlayer"] = None

    @property
    def active(self) -> Optional["VoicePlayer"]:
        return self._active

    def claim(self, player: "VoicePlayer"):
        """Makes `player` the audible one, pausing whichever player held the slot."""
        previous = self._active
        self._active = player
        if previous is not None and previous is not player:
            previous.pause()

    def release(self, player: "VoicePlayer"):
        if self._active is player:
            self._active = None


class VoicePlayer:
    """
    Playback state of one voice message. `backend` is whatever actually
    produces sound; it needs play(url) and pause() methods and may be omitted
    when only the state matters.
    """

    def __init__(self, url: str, coordinator: PlaybackCoordinator, backend=None,
                 on_change: Optional[Callable[["VoicePlayer"], None]] = None):
        self.url = url
        self.coordinator = coordinator
        self.backend = backend
        self.on_change = on_change
        self.state = STOPPED

    @property
    def is_playing(self) -> bool:
        return self.state == PLAYING

    def _set_state(self, state: str):
        if state != self.state:
            self.state = state
            if self.on_change is not None:
                self.on_change(self)

    def play(self):
        self.coordinator.claim(self)
        if self.backend is not None:
            try:
                self.backend.play(self.url)
            except Exception:
                # Same as a browser refusing to play: give the slot back
                logger.exception("[Playback] cannot play %s", self.url)
                self.coordinator.release(self)
                self._set_state(STOPPED)
                return
        self._set_state(PLAYING)

    def pause(self):
        if self.state != PLAYING:
            return
        if self.backend is not None:
            self.backend.pause()
        self.coordinator.release(self)
        self._set_state(PAUSED)

    def toggle(self):
        if self.is_playing:
            self.pause()
        else:
            self.play()

    def finished(self):
        """Called when the audio reaches its end."""
        self.coordinator.release(self)
        self._set_state(STOPPED)

    def dispose(self):
        """The message left the screen: stop and free the slot."""
        self.pause()
        self.coordinator.release(self)
        self._set_state(STOPPED)
