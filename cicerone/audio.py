"""Speech synthesis, alert tone and narration output for Cicerone."""

import array
import io
import math
import os
import shutil
import subprocess
import tempfile
import wave
from typing import Callable, Optional

from .config import CONFIG
from .errors import SpeechUnsupported
from .logger import Logger


class Speech:
    """Text-to-speech via espeak, falling back to pyttsx3.

    speak() returns as soon as the utterance has started; on_done is called on
    the event loop when it finishes, unless it was cancelled first.
    """

    POLL_INTERVAL = 0.1  # seconds between espeak completion checks

    def __init__(self, loop, language: Optional[str] = None, rate: Optional[float] = None,
                 logger: Optional[Logger] = None):
        self.loop = loop
        self.logger = logger
        self.language = language or CONFIG["speech_language"]
        self.rate = rate if rate is not None else CONFIG["speech_rate"]
        self.backend: Optional[str] = None
        self._engine = None
        self._process: Optional[subprocess.Popen] = None
        self._watch_timer = None
        self._future = None

        if shutil.which("espeak"):
            self.backend = "espeak"
        else:
            try:
                import pyttsx3
                self._engine = pyttsx3.init()
                self._engine.setProperty("rate", int(self._engine.getProperty("rate") * self.rate))
                self.backend = "pyttsx3"
            except (ImportError, RuntimeError, OSError):
                self.backend = None

    @property
    def available(self) -> bool:
        return self.backend is not None

    def speak(self, text: str, on_done: Optional[Callable[[], None]] = None):
        if not self.available:
            raise SpeechUnsupported("No speech synthesis available")
        self.cancel()
        if self.backend == "espeak":
            self._speak_espeak(text, on_done)
        else:
            self._speak_pyttsx3(text, on_done)

    def _speak_espeak(self, text: str, on_done: Optional[Callable[[], None]]):
        voice = self.language.split("-")[0]
        wpm = int(CONFIG["espeak_words_per_minute"] * self.rate)
        self._process = subprocess.Popen(
            ["espeak", "-v", voice, "-s", str(wpm), text],
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
        )
        self._watch_process(self._process, on_done)

    def _watch_process(self, process: subprocess.Popen, on_done: Optional[Callable[[], None]]):
        if process is not self._process:
            return  # superseded or cancelled
        if process.poll() is None:
            self._watch_timer = self.loop.call_later(self.POLL_INTERVAL, self._watch_process, process, on_done)
            return
        self._process = None
        self._watch_timer = None
        if on_done:
            on_done()

    def _speak_pyttsx3(self, text: str, on_done: Optional[Callable[[], None]]):
        def say():
            self._engine.say(text)
            self._engine.runAndWait()

        future = self.loop.run_in_executor(None, say)
        self._future = future

        def finished(fut):
            if fut.cancelled():
                return
            error = fut.exception()
            if error is not None and self.logger:
                self.logger.warning("Speech failed", {"text": text, "reason": repr(error)})
            if fut is self._future:
                self._future = None
                if on_done:
                    on_done()

        future.add_done_callback(finished)

    def cancel(self):
        """Cancel the current utterance without calling its on_done"""
        if self._watch_timer is not None:
            self._watch_timer.cancel()
            self._watch_timer = None
        if self._process is not None:
            if self._process.poll() is None:
                self._process.terminate()
            self._process = None
        if self._future is not None:
            self._future = None
            self._engine.stop()


class Tone:
    """Short sine alert tone, rendered to WAV and played by an external player"""

    def __init__(self, frequency: Optional[float] = None, duration: Optional[float] = None,
                 gain: Optional[float] = None, players: Optional[list[list[str]]] = None):
        self.frequency = frequency or CONFIG["tone_frequency"]
        self.duration = duration or CONFIG["tone_duration"]
        self.gain = gain if gain is not None else CONFIG["tone_gain"]
        self.sample_rate = CONFIG["tone_sample_rate"]
        self.player = next(
            (cmd for cmd in (players or CONFIG["tone_players"]) if shutil.which(cmd[0])),
            None,
        )
        self._wav_path: Optional[str] = None

    @property
    def available(self) -> bool:
        return self.player is not None

    def render(self) -> bytes:
        """16-bit mono WAV of the tone"""
        count = int(self.sample_rate * self.duration)
        amplitude = 32767 * self.gain
        samples = array.array("h", (
            int(amplitude * math.sin(2 * math.pi * self.frequency * i / self.sample_rate))
            for i in range(count)
        ))
        buffer = io.BytesIO()
        with wave.open(buffer, "wb") as wav:
            wav.setnchannels(1)
            wav.setsampwidth(2)
            wav.setframerate(self.sample_rate)
            wav.writeframes(samples.tobytes())
        return buffer.getvalue()

    def play(self):
        """Start playing the tone; returns without waiting for it to end"""
        if not self.available:
            return
        if self._wav_path is None or not os.path.exists(self._wav_path):
            with tempfile.NamedTemporaryFile(prefix="cicerone_tone_", suffix=".wav", delete=False) as f:
                f.write(self.render())
                self._wav_path = f.name
        subprocess.Popen(
            [*self.player, self._wav_path],
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
        )

    def close(self):
        if self._wav_path and os.path.exists(self._wav_path):
            os.unlink(self._wav_path)
        self._wav_path = None


class NarrationOutput:
    """One utterance at a time: cancel, tone, short pause, then the voice.

    While an utterance is pending or speaking, `narrating` holds the indicator
    text; it clears when speech ends or on stop().
    """

    def __init__(self, speech: Optional[Speech], tone: Optional[Tone], loop,
                 logger: Optional[Logger] = None,
                 on_indicator: Optional[Callable[[Optional[str]], None]] = None,
                 on_text: Optional[Callable[[str], None]] = None,
                 delay: Optional[float] = None):
        self.speech = speech
        self.tone = tone
        self.loop = loop
        self.logger = logger
        self.on_indicator = on_indicator
        self.on_text = on_text
        self.delay = CONFIG["narration_delay"] if delay is None else delay
        self.narrating: Optional[str] = None
        self._pending = None
        self._utterance = 0

    @property
    def available(self) -> bool:
        return self.speech is not None and self.speech.available

    def _set_indicator(self, text: Optional[str]):
        if text == self.narrating:
            return
        self.narrating = text
        if self.on_indicator:
            self.on_indicator(text)

    def _cancel(self):
        if self._pending is not None:
            self._pending.cancel()
            self._pending = None
        if self.available:
            self.speech.cancel()
        self._utterance += 1

    def narrate(self, text: str) -> bool:
        """Start narrating text; returns False when there is no speech capability"""
        self._cancel()
        if self.on_text:
            self.on_text(text)
        if not self.available:
            if self.logger:
                self.logger.log("Narration skipped, speech unsupported")
            self._set_indicator(None)
            return False

        if self.tone is not None:
            try:
                self.tone.play()
            except OSError as e:
                if self.logger:
                    self.logger.log("Tone playback failed", {"reason": str(e)})

        self._set_indicator(CONFIG["narrating_indicator"])
        self._pending = self.loop.call_later(self.delay, self._start_speech, text, self._utterance)
        return True

    def _start_speech(self, text: str, utterance: int):
        self._pending = None
        if utterance != self._utterance:
            return
        try:
            self.speech.speak(text, on_done=lambda: self._finished(utterance))
        except (SpeechUnsupported, OSError) as e:
            if self.logger:
                self.logger.log("Speech failed", {"reason": str(e)})
            self._set_indicator(None)

    def _finished(self, utterance: int):
        if utterance == self._utterance:
            self._set_indicator(None)

    def stop(self):
        """Cancel pending or in-flight speech and clear the indicator now"""
        self._cancel()
        self._set_indicator(None)
