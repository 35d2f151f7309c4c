"""
Voice instructions and their TwiML rendering.

The call flow composes responses from the small instruction types below;
``render`` is the only place that turns them into markup. Escaping of
caller-influenced text such as contact names is left to the Twilio helper
library, which builds the document as XML rather than by concatenation.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Union

from twilio.twiml.voice_response import Gather as TwimlGather, VoiceResponse

logger = logging.getLogger(__name__)

# Comma makes text-to-speech pause between digits
DIGIT_SEPARATOR = ", "


def spoken_digits(number: str) -> str:
    """Digits of a number, space separated, e.g. ``"5 5 5 1 2 3 4"``."""
    return " ".join(re.sub(r"\D", "", number or ""))


# ===========================================
# Instruction Types
# ===========================================

@dataclass(frozen=True)
class Say:
    text: str


@dataclass(frozen=True)
class SayDigits:
    """Read a number one digit at a time."""
    number: str

    @property
    def text(self) -> str:
        return DIGIT_SEPARATOR.join(spoken_digits(self.number).split())


@dataclass(frozen=True)
class Pause:
    seconds: int = 1


Prompt = Union[Say, SayDigits, Pause]


@dataclass(frozen=True)
class Gather:
    """Speak ``prompts`` while collecting touch-tone and/or speech input."""
    action: str
    prompts: Sequence[Prompt] = ()
    input: str = "dtmf speech"
    num_digits: Optional[int] = None
    timeout: int = 5
    hints: Sequence[str] = ()


@dataclass(frozen=True)
class Record:
    action: str
    max_length: int = 120
    play_beep: bool = True
    finish_on_key: str = "#"


@dataclass(frozen=True)
class Redirect:
    url: str


@dataclass(frozen=True)
class Hangup:
    pass


Instruction = Union[Say, SayDigits, Pause, Gather, Record, Redirect, Hangup]


@dataclass
class VoiceReply:
    """Ordered instructions for one webhook turn."""
    instructions: List[Instruction] = field(default_factory=list)

    def add(self, *instructions: Instruction) -> "VoiceReply":
        self.instructions.extend(instructions)
        return self

    @property
    def ends_call(self) -> bool:
        return any(isinstance(item, Hangup) for item in self.instructions)

    def spoken_text(self) -> str:
        """Everything the caller would hear, for logs and tests."""
        parts: List[str] = []
        for item in self.instructions:
            if isinstance(item, (Say, SayDigits)):
                parts.append(item.text)
            elif isinstance(item, Gather):
                parts.extend(p.text for p in item.prompts if isinstance(p, (Say, SayDigits)))
        return " ".join(parts)


# ===========================================
# Rendering
# ===========================================

def _add_prompt(target, prompt: Prompt, voice: str, language: str) -> None:
    if isinstance(prompt, Pause):
        target.pause(length=prompt.seconds)
    else:
        target.say(prompt.text, voice=voice, language=language)


def render(reply: VoiceReply, voice: str = "Polly.Joanna", language: str = "en-US") -> str:
    """
    Serialize a reply to a TwiML document.

    Args:
        reply: Instructions in the order the carrier should execute them
        voice: Text-to-speech voice for every ``<Say>``
        language: Language for speech and recognition

    Returns:
        XML string
    """
    response = VoiceResponse()

    for item in reply.instructions:
        if isinstance(item, (Say, SayDigits, Pause)):
            _add_prompt(response, item, voice, language)

        elif isinstance(item, Gather):
            options = {
                "input": item.input,
                "action": item.action,
                "method": "POST",
                "timeout": item.timeout,
                "language": language,
            }
            if item.num_digits:
                options["num_digits"] = item.num_digits
            if "speech" in item.input:
                options["speech_timeout"] = "auto"
            if item.hints:
                options["hints"] = ", ".join(item.hints)

            gather = TwimlGather(**options)
            for prompt in item.prompts:
                _add_prompt(gather, prompt, voice, language)
            response.append(gather)

        elif isinstance(item, Record):
            response.record(
                action=item.action,
                method="POST",
                max_length=item.max_length,
                play_beep=item.play_beep,
                finish_on_key=item.finish_on_key,
            )

        elif isinstance(item, Redirect):
            response.redirect(item.url, method="POST")

        elif isinstance(item, Hangup):
            response.hangup()

        else:
            raise TypeError(f"Unknown voice instruction: {item!r}")

    return str(response)
