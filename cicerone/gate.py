"""One-shot audio unlock, triggered by the user's first interaction."""

from typing import Optional

from .config import CONFIG
from .errors import AudioUnlockFailure, GuideError
from .logger import Logger


class AudioGate:
    """Locked until the first pointer press or touch, unlocked for good after.

    The unlocking interaction plays the tone and speaks a short confirmation
    right away, so the user hears that audio works before any narration.
    """

    QUALIFYING_INTERACTIONS = {"pointer", "touch"}

    def __init__(self, speech=None, tone=None, logger: Optional[Logger] = None):
        self.speech = speech
        self.tone = tone
        self.logger = logger
        self.unlocked = False
        self.failures = 0

    def _log(self, message: str, data: Optional[dict] = None):
        if self.logger:
            self.logger.log(message, data)

    def interact(self, kind: str = "pointer", confirm: bool = True) -> bool:
        """Handle a user interaction; returns whether audio is unlocked.

        confirm=False unlocks without the confirmation, for interactions that
        start speech of their own right away (a manual listen, stop).
        """
        if self.unlocked or kind not in self.QUALIFYING_INTERACTIONS:
            return self.unlocked

        if self.speech is None or not self.speech.available:
            if self.logger:
                self.logger.warning("Audio unlocked without speech support, narration disabled")
            self.unlocked = True
            return True

        if not confirm:
            self.unlocked = True
            self._log("Audio unlocked", {"interaction": kind, "confirmation": False})
            return True

        try:
            if self.tone is not None:
                self.tone.play()
            self.speech.speak(CONFIG["unlock_confirmation"])
        except (OSError, GuideError) as e:
            self.failures += 1
            failure = AudioUnlockFailure("Audio unlock failed", {"reason": str(e), "attempt": self.failures})
            if self.logger:
                self.logger.error("Audio unlock failed, will retry on next interaction", failure)
            return False

        self.unlocked = True
        self._log("Audio unlocked", {"interaction": kind})
        return True
