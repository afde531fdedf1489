from __future__ import annotations

import copy
import re
from collections import Counter

from bs4 import BeautifulSoup

from .models import ContentResults, KeywordDensity, Readability
from .scoring import round_half_up

_EXCLUDED_SELECTORS = (
    "script, style, noscript, nav, header, footer, aside, "
    "[role=navigation], [role=banner], [role=contentinfo]"
)

_STOP_WORDS = frozenset({
    # Norwegian
    "og", "i", "er", "det", "som", "en", "et", "til", "på", "av", "for", "med",
    "har", "de", "ikke", "om", "fra", "vi", "var", "kan", "den", "så", "men",
    "jeg", "han", "hun", "seg", "eller", "være", "bli", "skal", "vil", "ved",
    "også", "etter", "alle", "nå", "denne", "dette", "sin", "sitt", "sine",
    # English
    "the", "a", "an", "is", "are", "was", "were", "be", "been", "being",
    "have", "has", "had", "do", "does", "did", "will", "would", "could",
    "should", "may", "might", "must", "shall", "can", "need", "dare",
    "and", "or", "but", "if", "then", "else", "when", "at", "from", "by",
    "with", "about", "against", "between", "into", "through",
    "during", "before", "after", "above", "below", "to", "of", "in", "on",
})

_CTA_SELECTORS = (
    'a[href*="kontakt"]',
    'a[href*="contact"]',
    'a[href*="bestill"]',
    'a[href*="order"]',
    'a[href*="kjøp"]',
    'a[href*="buy"]',
    "button",
    '[class*="cta"]',
    '[class*="btn"]',
    'a[class*="button"]',
)

_CTA_KEYWORDS = (
    "kontakt", "contact", "bestill", "order", "kjøp", "buy", "prøv", "try",
    "registrer", "register", "start", "få", "get", "les mer", "read more",
    "last ned", "download", "gratis", "free", "tilbud", "offer",
)

_NON_LETTER_RE = re.compile(r"[^a-zæøå]")
_SENTENCE_SPLIT_RE = re.compile(r"[.!?]+")


def _main_text(soup: BeautifulSoup) -> str:
    body = soup.body or soup
    content = copy.copy(body)
    for el in content.select(_EXCLUDED_SELECTORS):
        el.decompose()
    return re.sub(r"\s+", " ", content.get_text(" ")).strip()


def lix_level(lix: int) -> str:
    if lix < 25:
        return "Very easy"
    if lix < 35:
        return "Easy"
    if lix < 45:
        return "Medium"
    if lix < 55:
        return "Difficult"
    return "Very difficult"


def calculate_lix(words: list[str], sentences: list[str]) -> Readability:
    """LIX = words per sentence + percentage of words longer than six characters."""
    if not words or not sentences:
        return Readability(lix_score=0, lix_level="Not enough text", avg_words_per_sentence=0, avg_word_length=0)

    long_words = sum(1 for w in words if len(w) > 6)
    avg_words_per_sentence = len(words) / len(sentences)
    lix = round_half_up(avg_words_per_sentence + long_words * 100 / len(words))
    avg_word_length = sum(len(w) for w in words) / len(words)

    return Readability(
        lix_score=lix,
        lix_level=lix_level(lix),
        avg_words_per_sentence=round(avg_words_per_sentence, 1),
        avg_word_length=round(avg_word_length, 1),
    )


def extract_keywords(words: list[str], limit: int = 15) -> list[KeywordDensity]:
    counts: Counter[str] = Counter()
    for word in words:
        normalized = _NON_LETTER_RE.sub("", word.lower())
        if len(normalized) > 2 and normalized not in _STOP_WORDS:
            counts[normalized] += 1

    total = len(words)
    return [
        KeywordDensity(word=w, count=c, density=round(c / total * 100, 1))
        for w, c in counts.most_common(limit)
    ]


def detect_ctas(soup: BeautifulSoup) -> list[str]:
    found: list[str] = []
    for selector in _CTA_SELECTORS:
        for el in soup.select(selector):
            text = el.get_text(" ", strip=True).lower()
            if text and len(text) < 50 and len(found) < 10:
                found.append(text)

    for a in soup.find_all("a"):
        text = a.get_text(" ", strip=True).lower()
        if len(found) >= 10:
            break
        if text and any(kw in text for kw in _CTA_KEYWORDS) and text not in found:
            found.append(text)

    return list(dict.fromkeys(found))[:5]


def content_score(word_count: int, lix: int, has_cta: bool, keyword_count: int) -> int:
    score = 0

    if word_count >= 300:
        score += 30
    elif word_count >= 200:
        score += 20
    elif word_count >= 100:
        score += 10

    # Newspaper-level readability is the target.
    if 30 <= lix <= 50:
        score += 25
    elif 25 <= lix <= 55:
        score += 15
    else:
        score += 5

    if has_cta:
        score += 20

    if keyword_count >= 10:
        score += 25
    elif keyword_count >= 5:
        score += 15
    else:
        score += 5

    return min(100, score)


def analyze_content(soup: BeautifulSoup) -> ContentResults:
    text = _main_text(soup)
    words = text.split()
    sentences = [s for s in _SENTENCE_SPLIT_RE.split(text) if len(s.strip()) > 10]

    readability = calculate_lix(words, sentences)
    keywords = extract_keywords(words)
    ctas = detect_ctas(soup)

    return ContentResults(
        word_count=len(words),
        character_count=len(text),
        paragraph_count=len(soup.find_all("p")),
        sentence_count=len(sentences),
        readability=readability,
        keywords=keywords,
        has_cta=bool(ctas),
        cta_elements=ctas,
        score=content_score(len(words), readability.lix_score, bool(ctas), len(keywords)),
    )
