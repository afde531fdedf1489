from sitepulse_agent.seo_analyzer import (
    analyze_headings,
    analyze_mobile,
    build_seo_results,
    parse_html,
)

TITLE = "Bilvask i Oslo | Skinnende rene biler hver dag"

HTML = f"""<!DOCTYPE html>
<html lang="no">
<head>
  <title>{TITLE}</title>
  <meta name="description" content="Short description">
  <meta name="viewport" content="width=device-width, initial-scale=1">
  <meta property="og:title" content="Bilvask">
  <meta property="og:image" content="https://example.no/og.png">
  <link rel="canonical" href="https://example.no/">
  <link rel="alternate" hreflang="en" href="https://example.no/en/">
</head>
<body>
  <h1>Bilvask</h1>
  <h1>Second</h1>
  <h3>Orphan</h3>
  <img src="/a.jpg" alt="Car">
  <img src="/b.jpg">
  <img src="data:image/png;base64,xx" alt="">
  <a href="/tjenester">Tjenester</a>
  <a href="https://example.no/kontakt">Kontakt</a>
  <a href="#top">Top</a>
  <a href="mailto:post@example.no">Mail</a>
  <a href="https://partner.com/x" rel="nofollow">Partner</a>
</body>
</html>
"""


def _results():
    return build_seo_results(parse_html(HTML), "https://example.no/", has_robots_txt=True, sitemap_url=None)


def test_meta_tags():
    meta = _results().meta
    assert meta.title.content == TITLE
    assert meta.title.length == len(TITLE)
    assert meta.title.is_optimal
    assert meta.description.content == "Short description"
    assert not meta.description.is_optimal
    assert meta.og_tags.title == "Bilvask"
    assert meta.og_tags.description is None
    assert meta.canonical == "https://example.no/"


def test_headings_issues():
    headings = _results().headings
    assert headings.h1.count == 2
    assert headings.h1.contents == ["Bilvask", "Second"]
    assert not headings.has_proper_hierarchy
    assert any("Too many H1" in i for i in headings.issues)
    assert any("H3 used without H2" in i for i in headings.issues)


def test_images_and_links():
    results = _results()
    assert results.images.total == 3
    assert results.images.with_alt == 1
    assert results.images.without_alt == 2
    assert results.images.missing_alt_images == ["https://example.no/b.jpg"]

    assert results.links.internal.count == 2
    assert set(results.links.internal.urls) == {"/tjenester", "/kontakt"}
    assert results.links.external.urls == ["https://partner.com/x"]
    assert results.links.nofollow.count == 1


def test_technical_and_mobile():
    results = _results()
    assert results.mobile.is_responsive
    assert results.mobile.issues == []
    assert results.technical.has_https
    assert results.technical.has_robots_txt
    assert not results.technical.has_sitemap
    assert results.technical.hreflang_tags[0].lang == "en"


def test_score_is_mean_of_sub_scores():
    # meta 82, headings 55, images 53, links 90, mobile 100, technical 65
    assert _results().score == 74


def test_single_h1_is_proper_hierarchy():
    headings = analyze_headings(parse_html("<h1>A</h1><h2>B</h2><h3>C</h3>"))
    assert headings.has_proper_hierarchy
    assert headings.issues == []


def test_missing_viewport():
    mobile = analyze_mobile(parse_html("<html><head></head><body></body></html>"))
    assert not mobile.has_viewport_meta
    assert not mobile.is_responsive
    assert mobile.issues == ["Missing viewport meta tag"]


def test_score_mean_rounds_half_up(monkeypatch):
    from sitepulse_agent import seo_analyzer

    for name, value in [
        ("meta_score", 50),
        ("headings_score", 50),
        ("links_score", 50),
        ("mobile_score", 50),
        ("technical_score", 39),
    ]:
        monkeypatch.setattr(seo_analyzer, name, lambda _, v=value: v)

    # no images scores 100, so the mean is 339 / 6 = 56.5
    results = build_seo_results(parse_html("<html></html>"), "https://example.no", has_robots_txt=False, sitemap_url=None)
    assert results.images.score == 100
    assert results.score == 57
