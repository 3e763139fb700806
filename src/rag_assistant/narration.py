"""
Narration of streamed answers.

NarrationContext holds the per-answer state (inside-code-block flag, current
sentence buffer, accumulated answer). SpeechNarrator speaks finished
sentences by running a text-to-speech executable such as espeak.
"""

import logging
import re
import shlex
import shutil
import subprocess
import threading
from typing import Callable, List, Optional

from .exceptions import NarrationError

logger = logging.getLogger(__name__)

FENCE = "```"
SENTENCE_END = re.compile(r"[.!?]\s*$")
FENCED_BLOCK = re.compile(r"```[\s\S]*?```")
INLINE_CODE = re.compile(r"`[^`]*`")
WHITESPACE = re.compile(r"\s+")


def clean_text_for_speech(text: str) -> str:
    """Drop fenced blocks, inline code spans and stray backticks, then collapse whitespace."""
    text = FENCED_BLOCK.sub("", text)
    text = INLINE_CODE.sub("", text)
    text = text.replace("`", "")
    return WHITESPACE.sub(" ", text).strip()


class NarrationContext:
    """
    State of one streamed answer.

    Created fresh for every answer so concurrent answers never share the
    code-block flag or the sentence buffer.
    """

    def __init__(self, narrate: Optional[Callable[[str], None]] = None, enabled: bool = False):
        self.narrate = narrate
        self.enabled = enabled and narrate is not None
        self.in_code_block = False
        self._answer: List[str] = []
        self._sentence: List[str] = []

    @property
    def answer(self) -> str:
        return "".join(self._answer)

    @property
    def pending_sentence(self) -> str:
        return "".join(self._sentence)

    def feed(self, token: str) -> Optional[str]:
        """
        Process one streamed token.

        Returns:
            The cleaned sentence handed to the narrator, if one was completed
        """
        if FENCE in token:
            self.in_code_block = not self.in_code_block

        self._answer.append(token)

        if not self.enabled or self.in_code_block:
            return None

        self._sentence.append(token)
        if not SENTENCE_END.search(token):
            return None

        sentence = clean_text_for_speech("".join(self._sentence))
        self._sentence = []
        if not sentence:
            return None
        try:
            self.narrate(sentence)
        except Exception as e:
            logger.error(f"Narration failed, muting the rest of this answer: {e}")
            self.enabled = False
            return None
        return sentence


class SpeechNarrator:
    """
    Speaks text through an external TTS command.

    The command line is split with shlex and the text appended as the last
    argument, e.g. ``espeak -s 150 -v en``.
    """

    def __init__(self, command: str = "espeak -s 150 -v en", timeout: float = 60.0):
        self.command = shlex.split(command)
        self.timeout = timeout
        self.disabled = False
        if not self.command:
            raise NarrationError("TTS command is empty")

    def is_available(self) -> bool:
        return not self.disabled and shutil.which(self.command[0]) is not None

    def speak(self, text: str, blocking: bool = True) -> None:
        """
        Speak ``text``.

        Args:
            text: Text to speak
            blocking: If True, wait for speech to complete
        """
        if self.disabled or not text.strip():
            return
        if blocking:
            self._speak_blocking(text)
        else:
            thread = threading.Thread(target=self._speak_blocking, args=(text,), daemon=True)
            thread.start()

    __call__ = speak

    def _speak_blocking(self, text: str) -> None:
        try:
            subprocess.run(
                self.command + [text],
                check=True,
                timeout=self.timeout,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL
            )
        except FileNotFoundError:
            logger.error(f"TTS executable not found: {self.command[0]}; narration disabled")
            self.disabled = True
        except OSError as e:
            logger.error(f"Cannot run TTS executable {self.command[0]}: {e}; narration disabled")
            self.disabled = True
        except (subprocess.CalledProcessError, subprocess.TimeoutExpired) as e:
            logger.warning(f"Speech synthesis failed: {e}")
