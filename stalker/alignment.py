"""Fuzzy alignment of OCR lines to roster nicks and score extraction.

Each recognized line is matched against every roster display name with a
three tier similarity (substring, fixed mismatch window, ordered
subsequence), the best match above a length dependent threshold wins, and
the text after the nick is classified as a zero, a number or unknown.
"""

import logging
import re
from typing import List, Optional, Sequence

from .config import SIMILARITY_LOG_THRESHOLD
from .models import LineAnalysis, PlayerScore, RecognizedLine, RosterEntry


logger = logging.getLogger(__name__)

ZERO = "zero"
NEGATIVE = "negative"
UNKNOWN = "unknown"

POLISH_LETTERS = "ąćęłńóśźż"
_NON_NICK_CHARS = re.compile(f"[^a-z0-9{POLISH_LETTERS}]")
_ALNUM = f"a-zA-Z0-9{POLISH_LETTERS}{POLISH_LETTERS.upper()}"
_TWO_ALNUM = re.compile(f"[{_ALNUM}]{{2,}}")
_SPACED_TWO_ALNUM = re.compile(f"[oe]\\s[{_ALNUM}]{{2,}}")
_NUMBER_RUN = re.compile(r"[0-9]{2,}")
_ANY_NUMBER = re.compile(r"[0-9]+")
_LEADING_SEPARATOR = re.compile(r"^[,.\-_|]")

# Tokens OCR produces when it misreads a zero score.
ZERO_PATTERNS = frozenset([
    # bare
    "0", "1", "9", "o", "e",
    # round brackets
    "(0)", "(1)", "(9)", "(o)", "(e)",
    # square brackets
    "[0]", "[1]", "[9]", "[o]", "[e]",
    # closing round bracket only
    "0)", "1)", "9)", "o)", "e)",
    # opening round bracket only
    "(0", "(1", "(9", "(o", "(e",
    # opening square bracket only
    "[0", "[1", "[9", "[o", "[e",
    # closing square bracket only
    "0]", "1]", "9]", "o]", "e]",
    # two letter misreads
    "zo", "ze",
])

# Toggled at runtime by /ocr-debug.
detailed_logging = False


def set_detailed_logging(enabled: bool):
    global detailed_logging
    detailed_logging = enabled
    logger.info(f"🔍 Detailed OCR logging {'enabled' if enabled else 'disabled'}")


def normalize(text: str) -> str:
    """Lowercase and keep only latin letters, digits and Polish diacritics."""
    return _NON_NICK_CHARS.sub("", text.lower())


def line_similarity(line: str, nick: str) -> float:
    """Similarity in [0, 1] between an OCR line and a roster nick."""
    line_norm = normalize(line)
    nick_norm = normalize(nick)

    # Short nicks like "21" would match inside almost any score line.
    if len(nick_norm) >= 3 and nick_norm in line_norm:
        return 1.0

    if len(nick_norm) >= 5:
        similarity = fuzzy_window_match(line_norm, nick_norm)
        if similarity >= 0.9:
            return similarity

    return ordered_similarity(line_norm, nick_norm)


def fuzzy_window_match(line_norm: str, nick_norm: str) -> float:
    """Slide a nick-sized window over the line and tolerate 1-2 wrong characters."""
    max_differences = 2 if len(nick_norm) >= 8 else 1

    for start in range(len(line_norm) - len(nick_norm) + 1):
        window = line_norm[start:start + len(nick_norm)]
        differences = sum(1 for a, b in zip(window, nick_norm) if a != b)
        if differences <= max_differences:
            return max(0.9, 1 - differences / len(nick_norm))

    return 0.0


def ordered_similarity(line_norm: str, nick_norm: str) -> float:
    """Ordered subsequence similarity, strict for nicks of one or two characters."""
    if not nick_norm or not line_norm:
        return 0.0

    if len(nick_norm) <= 2:
        if line_norm == nick_norm:
            return 1.0
        return basic_ordered_similarity(line_norm, nick_norm) * 0.3

    return basic_ordered_similarity(line_norm, nick_norm)


def basic_ordered_similarity(line_norm: str, nick_norm: str) -> float:
    """Share of nick characters found in order in the line, penalized by length gap."""
    matched = 0
    position = 0

    for char in nick_norm:
        found = line_norm.find(char, position)
        if found != -1:
            matched += 1
            position = found + 1

    base = matched / len(nick_norm)
    longest = max(len(line_norm), len(nick_norm))
    gap = abs(len(line_norm) - len(nick_norm)) / longest if longest else 0
    return max(0.0, base / (1 + gap))


def required_similarity(display_name: str) -> float:
    """Minimum similarity a nick of this length needs to be accepted."""
    if len(display_name) <= 5:
        return 0.75
    if len(display_name) <= 8:
        return 0.7
    return 0.6


def is_fragment_of_word(line: str, display_name: str) -> bool:
    """True when the nick only shows up glued inside a longer word of the line."""
    line_lower = line.lower().strip()
    nick_lower = display_name.lower()

    if re.search(rf"\b{re.escape(nick_lower)}\b", line_lower):
        return False

    return any(
        nick_lower in word and word != nick_lower and len(word) > len(nick_lower)
        for word in line_lower.split()
    )


def is_zero_pattern(word: str) -> bool:
    """Whether a token is one of the known OCR misreadings of a zero score."""
    word_lower = word.lower()

    # "o"/"e" followed by two more letters is a word, not a zero.
    if word_lower[:1] in ("o", "e") and len(word_lower) >= 3:
        if _TWO_ALNUM.match(word_lower[1:]):
            return False

    if _SPACED_TWO_ALNUM.search(word_lower):
        return False

    return word_lower in ZERO_PATTERNS


def analyze_line_end(line: str, nick: Optional[str] = None) -> LineAnalysis:
    """Classify what follows the nick on a line.

    Without a nick the whole line is examined, which is how the line after a
    long nick is read.
    """
    trimmed = line.strip()
    search_text = trimmed

    if nick:
        index = trimmed.lower().find(nick.lower())
        if index != -1:
            search_text = trimmed[index + len(nick):].strip()
            if not search_text:
                return LineAnalysis(UNKNOWN, "")

            # "boisz" read as nick "Boqus" plus tail "z": the tail is part of the nick.
            tail_lower = search_text.lower()
            if (len(tail_lower) <= 3
                    and not search_text[0].isspace()
                    and not _LEADING_SEPARATOR.match(search_text)
                    and trimmed.lower() == nick.lower() + tail_lower):
                return LineAnalysis(UNKNOWN, search_text)

    words = search_text.split()
    if not words:
        return LineAnalysis(UNKNOWN, "")
    last_word = words[-1]

    if is_zero_pattern(last_word):
        return LineAnalysis(ZERO, last_word)

    numbers = _NUMBER_RUN.findall(search_text)
    if numbers:
        return LineAnalysis(NEGATIVE, numbers[-1])

    for word in words:
        if is_zero_pattern(word):
            return LineAnalysis(ZERO, word)

    return LineAnalysis(UNKNOWN, last_word)


def score_from_analysis(analysis: LineAnalysis) -> Optional[int]:
    """Map a line classification to a score, or None when nothing was read."""
    if analysis.kind == ZERO:
        return 0
    if analysis.kind == NEGATIVE:
        return _to_int(analysis.value)
    match = _ANY_NUMBER.search(analysis.value)
    if match:
        return _to_int(match.group(0))
    return None


def _to_int(value: str) -> int:
    try:
        return int(value)
    except ValueError:
        return 0


def split_lines(text: str) -> List[RecognizedLine]:
    """Non-empty lines of recognized text, numbered from 1."""
    lines = [line for line in text.split("\n") if line.strip()]
    return [RecognizedLine(line_number=i + 1, text=line) for i, line in enumerate(lines)]


def best_roster_match(line: str, roster: Sequence[RosterEntry]):
    """Best roster entry for a line and its similarity, or (None, 0.0)."""
    best: Optional[RosterEntry] = None
    best_similarity = 0.0

    for entry in roster:
        similarity = line_similarity(line, entry.display_name)

        if detailed_logging and similarity >= SIMILARITY_LOG_THRESHOLD:
            logger.info(f"      🔍 \"{entry.display_name}\" vs \"{line.strip()}\" → {similarity * 100:.1f}%")

        if similarity < required_similarity(entry.display_name):
            continue
        longer = best is not None and len(entry.display_name) > len(best.display_name)
        if similarity > best_similarity or (similarity == best_similarity and (best is None or longer)):
            best = entry
            best_similarity = similarity

    return best, best_similarity


def extract_players_with_scores(text: str, roster: Sequence[RosterEntry]) -> List[PlayerScore]:
    """Read every roster player and their score from one image's OCR text."""
    if not roster:
        logger.info("❌ Empty roster - nothing to match against")
        return []

    all_lines = split_lines(text)
    valid_lines = [line for line in all_lines if len(line.text.strip()) >= 5]
    logger.info(f"📋 Analyzing {len(valid_lines)}/{len(all_lines)} lines")

    players: List[PlayerScore] = []
    processed_nicks = set()

    for line in valid_lines:
        match, similarity = best_roster_match(line.text, roster)
        if match is None or match.display_name in processed_nicks:
            continue

        if detailed_logging:
            logger.info(f"      ✅ Best match: \"{match.display_name}\" ({similarity * 100:.1f}%)")

        fragment_limit = 0.85 if len(match.display_name) <= 5 else 0.8
        if similarity < fragment_limit and is_fragment_of_word(line.text, match.display_name):
            logger.info(f"      ⚠️ Nick \"{match.display_name}\" is only a fragment of a word, skipping")
            continue

        analysis = analyze_line_end(line.text, match.display_name)
        if detailed_logging:
            logger.info(f"      🔚 Line end: kind=\"{analysis.kind}\", value=\"{analysis.value}\"")

        # Long nicks push the score onto the following line.
        if len(match.display_name) >= 10 and analysis.kind == UNKNOWN:
            next_line = _next_line(all_lines, line.text)
            if next_line is not None:
                next_analysis = analyze_line_end(next_line, None)
                if next_analysis.kind != UNKNOWN:
                    analysis = next_analysis

        score = score_from_analysis(analysis)
        if score is None:
            continue

        processed_nicks.add(match.display_name)
        players.append(PlayerScore(nick=match.display_name, score=score))
        logger.info(f"✅ \"{match.display_name}\" → {score} points")

    logger.info(f"📊 Found {len(players)} players with scores")
    return players


def _next_line(all_lines: List[RecognizedLine], text: str) -> Optional[str]:
    current = text.strip()
    for index, line in enumerate(all_lines):
        if line.text.strip() == current:
            if index + 1 < len(all_lines):
                return all_lines[index + 1].text
            return None
    return None
