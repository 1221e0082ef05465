"""
Obscuring patterns.

A pattern is literal text with ``[class]{range}`` directives, for example
``[a-z]{5,10}@test.com`` or ``[Title]{6} [Title]{8}``. Classes:

- ``a-z``, ``A-Z``, ``Title``: a pronounceable fake word in that case
- ``0-9``: a run of digits without zeros
- ``0``: an optional gate, emits nothing
- anything else: literal text, repeated ``end`` times when a range end is given

``range`` is ``start`` or ``start,end``. A start of 0 (and every ``[0]`` gate)
flips a coin; on tails the value stops there, or becomes NULL when nothing
has been produced yet.
"""

from __future__ import annotations

import random
import re
import time
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional, Tuple

DIRECTIVE_RE = re.compile(r"\[([^{}\[\]]*)\]\{([^{}]*)\}")

VOWELS = "aeiou"
CONSONANTS = "bcdfghjklmnprstvwz"
DIGITS = tuple(range(10))

DIGIT_DELAY_SECONDS = 1e-6


@dataclass(frozen=True)
class Directive:
    token: str
    start: int
    end: Optional[int] = None

    @property
    def optional(self) -> bool:
        return self.start == 0 or self.token == "0"


@dataclass(frozen=True)
class CompiledPattern:
    # (literal text before the directive, directive)
    segments: Tuple[Tuple[str, Directive], ...]
    suffix: str


def _parse_range(text: str) -> Optional[Tuple[int, Optional[int]]]:
    parts = [p.strip() for p in text.split(",")]
    if len(parts) > 2:
        return None
    try:
        start = int(parts[0])
        end = int(parts[1]) if len(parts) == 2 else None
    except ValueError:
        return None
    if start < 0 or (end is not None and end < 0):
        return None
    return start, end


@lru_cache(maxsize=256)
def compile_pattern(pattern: str) -> CompiledPattern:
    segments = []
    literal = ""
    pos = 0
    for m in DIRECTIVE_RE.finditer(pattern):
        literal += pattern[pos:m.start()]
        pos = m.end()
        parsed = _parse_range(m.group(2))
        if parsed is None:
            # not a directive, keep the text as written
            literal += m.group(0)
            continue
        segments.append((literal, Directive(m.group(1), parsed[0], parsed[1])))
        literal = ""
    return CompiledPattern(tuple(segments), literal + pattern[pos:])


def fake_word(length: int, rng: random.Random) -> str:
    """Alternating consonant/vowel word, starting on either."""
    if length <= 0:
        return ""
    use_vowel = rng.randrange(2) == 0
    letters = []
    for _ in range(length):
        letters.append(rng.choice(VOWELS if use_vowel else CONSONANTS))
        use_vowel = not use_vowel
    return "".join(letters)


def digit_run(length: int, rng: random.Random) -> str:
    digits = []
    pool = []
    while len(digits) < length:
        if not pool:
            pool = rng.sample(DIGITS, len(DIGITS))
        d = pool.pop()
        if d == 0:
            d = rng.randrange(8) + 1
        digits.append(str(d))
    return "".join(digits)


class PatternEngine:
    """Evaluates obscuring patterns against one random source."""

    def __init__(self, rng: Optional[random.Random] = None, digit_delay: float = DIGIT_DELAY_SECONDS) -> None:
        self.rng = rng or random.Random()
        self.digit_delay = digit_delay

    def _length(self, d: Directive) -> int:
        if d.end is None or d.end <= d.start:
            return d.start
        return self.rng.randrange(d.start, d.end)

    def _piece(self, d: Directive) -> str:
        token = d.token
        if token == "0":
            return ""
        if token == "0-9":
            out = digit_run(self._length(d), self.rng)
            if self.digit_delay:
                time.sleep(self.digit_delay)
            return out
        if token == "Title" or token.lower() == "a-z":
            word = fake_word(self._length(d), self.rng)
            if token == "a-z":
                return word.lower()
            if token == "A-Z":
                return word.upper()
            return word.title()
        return token * max(d.end or 1, 1)

    def generate(self, pattern: str) -> Optional[str]:
        compiled = compile_pattern(pattern)
        out = ""
        for literal, directive in compiled.segments:
            if directive.optional and self.rng.randrange(2) == 0:
                if out == "":
                    return None
                return out
            out += literal + self._piece(directive)
        out += compiled.suffix
        return out.strip()


def generate_value(pattern: str, rng: Optional[random.Random] = None) -> Optional[str]:
    return PatternEngine(rng).generate(pattern)
