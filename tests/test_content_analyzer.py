import pytest

from sitepulse_agent.content_analyzer import (
    analyze_content,
    calculate_lix,
    content_score,
    detect_ctas,
    extract_keywords,
    lix_level,
)
from sitepulse_agent.seo_analyzer import parse_html


def test_lix_for_a_single_sentence():
    words = "Bilvasken vår gir bilen din en skinnende finish".split()
    readability = calculate_lix(words, ["Bilvasken vår gir bilen din en skinnende finish"])
    # 8 words per sentence + 2 long words out of 8 (25%)
    assert readability.lix_score == 33
    assert readability.lix_level == "Easy"
    assert readability.avg_words_per_sentence == 8.0
    assert readability.avg_word_length == 5.0


def test_lix_without_text():
    readability = calculate_lix([], [])
    assert readability.lix_score == 0
    assert readability.lix_level == "Not enough text"


@pytest.mark.parametrize(
    "lix,level",
    [(24, "Very easy"), (25, "Easy"), (44, "Medium"), (45, "Difficult"), (55, "Very difficult")],
)
def test_lix_levels(lix, level):
    assert lix_level(lix) == level


def test_keywords_skip_stop_words():
    keywords = extract_keywords(["Bilvask", "bilvask", "og", "the", "Oslo", "oslo", "oslo", "på"])
    assert [(k.word, k.count, k.density) for k in keywords] == [("oslo", 3, 37.5), ("bilvask", 2, 25.0)]


def test_detect_ctas():
    soup = parse_html('<a href="/kontakt">Kontakt oss</a><button>Bestill time</button><a href="/om">Om oss</a>')
    assert detect_ctas(soup) == ["kontakt oss", "bestill time"]


def test_content_score():
    assert content_score(350, 40, True, 12) == 100
    assert content_score(150, 60, False, 3) == 20
    assert content_score(250, 27, True, 6) == 70


def test_analyze_content_ignores_navigation_and_scripts():
    html = """
    <html><body>
      <nav>Meny Hjem Om oss</nav>
      <main><p>Vi vasker biler i Oslo hver dag.</p></main>
      <script>var tracking = true;</script>
      <footer>Kontaktinfo og adresse</footer>
    </body></html>
    """
    soup = parse_html(html)
    results = analyze_content(soup)
    assert results.word_count == 7
    assert results.paragraph_count == 1
    assert results.sentence_count == 1
    assert not results.has_cta
    # the page itself is left intact
    assert soup.find("nav") is not None


def test_has_cta_uses_wire_alias():
    results = analyze_content(parse_html('<body><p>Tekst</p><a href="/kontakt">Kontakt</a></body>'))
    dumped = results.model_dump(by_alias=True)
    assert dumped["hasCTA"] is True
    assert dumped["ctaElements"] == ["kontakt"]
