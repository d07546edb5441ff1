"""Pattern matching utilities for OTP extraction.

Extraction is best-effort and heuristic. It is not a security control: it
only surfaces the most likely passcode in a message so the user does not
have to open it.

Rules are tried in order and the first acceptable capture wins:

1. context-qualified rules ("code: 123", "OTP is 123", "123 is your ...")
2. bare digit runs, by length 6 -> 4 -> 5 -> 7 -> 8

A capture is rejected (and matching continues) when its length falls
outside 4-8 digits or it looks like a placeholder: one repeated digit
("0000") or a straight ascending/descending run ("1234", "987654").
"""

import html
import re
from dataclasses import dataclass
from html.parser import HTMLParser
from typing import List, Optional, Pattern, Sequence

from loguru import logger

from ...constants import OTP


class HTMLTextExtractor(HTMLParser):
    """Extract plain text from HTML content."""

    def __init__(self):
        super().__init__(convert_charrefs=True)
        self.text: List[str] = []
        self.in_script = False
        self.in_style = False

    def handle_starttag(self, tag, attrs):
        if tag.lower() == "script":
            self.in_script = True
        elif tag.lower() == "style":
            self.in_style = True

    def handle_endtag(self, tag):
        if tag.lower() == "script":
            self.in_script = False
        elif tag.lower() == "style":
            self.in_style = False

    def handle_data(self, data):
        if not self.in_script and not self.in_style:
            self.text.append(data)

    def get_text(self) -> str:
        return " ".join(self.text)


_WHITESPACE = re.compile(r"\s+")
_TAG = re.compile(r"<[^>]*>")


def html_to_text(content: str) -> str:
    """
    Convert markup to collapsed plain text.

    Script and style bodies are dropped, tags removed (so attribute values
    never leak into the text) and entities unescaped.
    """
    if not content:
        return ""
    if "<" not in content:
        return _WHITESPACE.sub(" ", html.unescape(content)).strip()

    extractor = HTMLTextExtractor()
    try:
        extractor.feed(content)
        extractor.close()
        text = extractor.get_text()
    except Exception as e:
        logger.debug(f"HTML parser failed, falling back to tag stripping: {e}")
        text = html.unescape(_TAG.sub(" ", content))
    return _WHITESPACE.sub(" ", text).strip()


@dataclass(frozen=True)
class OTPRule:
    """One named extraction rule. Group 1 of ``pattern`` is the candidate code."""

    name: str
    pattern: Pattern[str]

    @classmethod
    def compile(cls, name: str, regex: str) -> "OTPRule":
        return cls(name=name, pattern=re.compile(regex, re.IGNORECASE))


_SEP = r"[\s:#=\-]*(?:is|was|=)?[\s:#\-]*"

CONTEXT_RULES: List[OTPRule] = [
    OTPRule.compile("verification_code", rf"verification\s+code{_SEP}(\d+)\b"),
    OTPRule.compile("one_time_code", rf"one[\s-]?time\s+(?:pass(?:word|code)?|code|pin){_SEP}(\d+)\b"),
    OTPRule.compile("otp", rf"\bOTP(?:\s+code)?{_SEP}(\d+)\b"),
    OTPRule.compile("passcode", rf"\bpass\s?code{_SEP}(\d+)\b"),
    OTPRule.compile("security_code", rf"\b(?:security|login|auth(?:entication)?|access)\s+code{_SEP}(\d+)\b"),
    OTPRule.compile("code", rf"\bcode{_SEP}(\d+)\b"),
    OTPRule.compile("pin", rf"\bPIN{_SEP}(\d+)\b"),
    OTPRule.compile("token", rf"\btoken{_SEP}(\d+)\b"),
    OTPRule.compile("verification", rf"\bverification{_SEP}(\d+)\b"),
    OTPRule.compile("confirm", rf"\bconfirm(?:ation)?{_SEP}(\d+)\b"),
    OTPRule.compile("is_your", r"\b(\d+)\s+is\s+your\b"),
    OTPRule.compile("to_verify", r"\b(\d+)\s+to\s+verify\b"),
]

# 6 digits is the most common OTP length and must win over e.g. a 4 digit order number
BARE_DIGIT_RULES: List[OTPRule] = [
    OTPRule.compile(f"digits_{n}", rf"(?<![\d.,])\b(\d{{{n}}})\b(?![.,]\d)")
    for n in (6, 4, 5, 7, 8)
]

DEFAULT_RULES: List[OTPRule] = CONTEXT_RULES + BARE_DIGIT_RULES


def is_synthetic_code(code: str) -> bool:
    """True for placeholder-looking codes: 0000, 111111, 1234, 987654."""
    if len(set(code)) == 1:
        return True
    steps = {int(b) - int(a) for a, b in zip(code, code[1:])}
    return steps == {1} or steps == {-1}


class OTPPatternMatcher:
    """Ordered, rule based OTP code extractor."""

    def __init__(
        self,
        rules: Optional[Sequence[OTPRule]] = None,
        min_length: int = OTP.MIN_LENGTH,
        max_length: int = OTP.MAX_LENGTH,
    ):
        """
        Initialize OTP pattern matcher.

        Args:
            rules: Ordered rules to apply (default: context rules then bare digits)
            min_length: Shortest acceptable code
            max_length: Longest acceptable code
        """
        self._rules: List[OTPRule] = list(rules) if rules is not None else list(DEFAULT_RULES)
        self._min_length = min_length
        self._max_length = max_length

    @property
    def rules(self) -> List[OTPRule]:
        return list(self._rules)

    def _accept(self, code: str) -> bool:
        if not self._min_length <= len(code) <= self._max_length:
            return False
        return not is_synthetic_code(code)

    def extract_otp(self, text: str) -> Optional[str]:
        """
        Extract OTP code from text.

        Args:
            text: Plain text or HTML to search

        Returns:
            Extracted OTP code or None
        """
        if not text:
            return None

        clean = html_to_text(text)
        for rule in self._rules:
            for match in rule.pattern.finditer(clean):
                code = match.group(1)
                if self._accept(code):
                    logger.debug(f"OTP code extracted by rule '{rule.name}'")
                    return code
        return None


_default_matcher = OTPPatternMatcher()


def extract_otp(text: str) -> Optional[str]:
    """Extract an OTP with the default rule set."""
    return _default_matcher.extract_otp(text)
