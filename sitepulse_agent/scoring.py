from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal

SEO_WEIGHT = Decimal("0.35")
CONTENT_WEIGHT = Decimal("0.25")
SECURITY_WEIGHT = Decimal("0.25")
PERFORMANCE_WEIGHT = Decimal("0.15")

SSL_WEIGHT = Decimal("0.55")
HEADERS_WEIGHT = Decimal("0.45")


def round_half_up(value: Decimal | float | int) -> int:
    return int(Decimal(str(value)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def clamp_score(score: int) -> int:
    return max(0, min(100, int(score)))


def overall_score(
    seo: int | float,
    content: int | float,
    security: int | float,
    performance: int | float | None = None,
) -> int:
    """Weighted composite of the facet scores.

    When ``performance`` is None its 15% term is dropped and the remaining
    weights are left as they are (they sum to 0.85), so an unmeasured
    performance facet lowers the composite.
    """
    total = (
        Decimal(str(seo)) * SEO_WEIGHT
        + Decimal(str(content)) * CONTENT_WEIGHT
        + Decimal(str(security)) * SECURITY_WEIGHT
    )
    if performance is not None:
        total += Decimal(str(performance)) * PERFORMANCE_WEIGHT
    return round_half_up(total)


def security_score(ssl_score: int, headers_score: int) -> int:
    return round_half_up(Decimal(ssl_score) * SSL_WEIGHT + Decimal(headers_score) * HEADERS_WEIGHT)


def ssl_grade_score(grade: str) -> int:
    g = (grade or "").strip()
    if g.startswith("A+"):
        return 100
    if g.startswith("A-"):
        return 90
    if g.startswith("A"):
        return 95
    if g.startswith("B+"):
        return 85
    if g.startswith("B-"):
        return 75
    if g.startswith("B"):
        return 80
    if g.startswith("C+"):
        return 70
    if g.startswith("C-"):
        return 60
    if g.startswith("C"):
        return 65
    if g.startswith("D"):
        return 50
    if g.startswith("E"):
        return 40
    if g.startswith("F"):
        return 20
    if g.startswith("T"):
        return 10
    # Unknown or error grades get the benefit of the doubt.
    return 50
