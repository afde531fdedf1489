from __future__ import annotations

import asyncio
import logging
import math
import socket
import ssl
from datetime import datetime, timezone
from urllib.parse import urlparse

from .models import CertificateInfo, SecurityHeaders, SecurityResults, SSLAnalysis
from .scoring import round_half_up, security_score, ssl_grade_score

logger = logging.getLogger(__name__)

TLS_TIMEOUT_S = 10.0
QUICK_HTTPS_SSL_SCORE = 70

# X509_V_ERR_CERT_HAS_EXPIRED
_CERT_EXPIRED = 10


def _cert_time(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        return datetime.strptime(value, "%b %d %H:%M:%S %Y %Z").replace(tzinfo=timezone.utc)
    except ValueError:
        return None


def _rdn_value(rdns, *keys: str) -> str | None:
    flat = {k: v for rdn in rdns or () for k, v in rdn}
    for key in keys:
        if flat.get(key):
            return flat[key]
    return None


def grade_certificate(days_until_expiry: int | None, authorized: bool) -> str:
    if days_until_expiry is None:
        return "B" if not authorized else "A"
    if days_until_expiry < 0:
        return "F"
    if days_until_expiry < 7:
        return "C"
    if days_until_expiry < 30:
        return "B-"
    if authorized:
        return "A"
    return "B"


def default_ssl(reason: str) -> SSLAnalysis:
    return SSLAnalysis(grade=f"Unknown ({reason})")


def check_ssl_direct(hostname: str, timeout_s: float = TLS_TIMEOUT_S) -> SSLAnalysis:
    """Handshake on port 443 and grade the certificate from validity and expiry."""
    try:
        ctx = ssl.create_default_context()
        with socket.create_connection((hostname, 443), timeout=timeout_s) as sock:
            with ctx.wrap_socket(sock, server_hostname=hostname) as ssock:
                cert = ssock.getpeercert() or {}
                protocol = ssock.version() or "TLS"
    except ssl.SSLCertVerificationError as e:
        if getattr(e, "verify_code", None) == _CERT_EXPIRED:
            return SSLAnalysis(grade="F", vulnerabilities=["Expired certificate"])
        return SSLAnalysis(grade="C", vulnerabilities=["Untrusted certificate"])
    except socket.timeout:
        return default_ssl("Timeout")
    except (OSError, ssl.SSLError) as e:
        logger.warning("Direct TLS check for %s failed: %s", hostname, e)
        return default_ssl("Connection failed")

    if not cert:
        return default_ssl("No certificate")

    valid_from = _cert_time(cert.get("notBefore"))
    valid_to = _cert_time(cert.get("notAfter"))
    days = None
    if valid_to is not None:
        days = math.ceil((valid_to - datetime.now(timezone.utc)).total_seconds() / 86400)

    analysis = SSLAnalysis(
        grade=grade_certificate(days, authorized=True),
        certificate=CertificateInfo(
            issuer=_rdn_value(cert.get("issuer"), "organizationName", "commonName"),
            valid_from=valid_from.isoformat() if valid_from else None,
            valid_to=valid_to.isoformat() if valid_to else None,
            days_until_expiry=days,
        ),
        protocols=[protocol],
    )
    logger.info("TLS %s -> grade %s, expires in %s days", hostname, analysis.grade, days)
    return analysis


def analyze_security_headers(headers: dict[str, str]) -> SecurityHeaders:
    h = {k.lower(): v for k, v in (headers or {}).items()}
    checks = {
        "content_security_policy": bool(h.get("content-security-policy")),
        "strict_transport_security": bool(h.get("strict-transport-security")),
        "x_frame_options": bool(h.get("x-frame-options")),
        "x_content_type_options": bool(h.get("x-content-type-options")),
        "referrer_policy": bool(h.get("referrer-policy")),
        "permissions_policy": bool(h.get("permissions-policy") or h.get("feature-policy")),
    }
    passed = sum(checks.values())
    return SecurityHeaders(**checks, score=round_half_up(passed / len(checks) * 100))


async def analyze_security(url: str, headers: dict[str, str]) -> SecurityResults:
    hostname = urlparse(url).hostname or ""
    ssl_analysis = await asyncio.to_thread(check_ssl_direct, hostname)
    headers_analysis = analyze_security_headers(headers)
    return SecurityResults(
        ssl=ssl_analysis,
        headers=headers_analysis,
        score=security_score(ssl_grade_score(ssl_analysis.grade), headers_analysis.score),
    )


async def analyze_security_quick(url: str, headers: dict[str, str]) -> SecurityResults:
    """Header-only scan; an https URL is assumed to have a sound certificate."""
    is_https = url.startswith("https://")
    headers_analysis = analyze_security_headers(headers)
    return SecurityResults(
        ssl=SSLAnalysis(grade="A (assumed)" if is_https else "F"),
        headers=headers_analysis,
        score=security_score(QUICK_HTTPS_SSL_SCORE if is_https else 0, headers_analysis.score),
    )


def security_recommendations(results: SecurityResults) -> list[str]:
    recs: list[str] = []
    if not results.ssl.grade.startswith("A"):
        recs.append("Improve the SSL/TLS configuration")
    days = results.ssl.certificate.days_until_expiry
    if days is not None and days < 30:
        recs.append(f"The SSL certificate expires in {days} days; renew it soon")
    if results.ssl.vulnerabilities:
        recs.append("Fix TLS issues: " + ", ".join(results.ssl.vulnerabilities))
    if not results.headers.content_security_policy:
        recs.append("Add a Content-Security-Policy header to mitigate XSS")
    if not results.headers.strict_transport_security:
        recs.append("Enable HSTS (Strict-Transport-Security) to enforce HTTPS")
    if not results.headers.x_frame_options:
        recs.append("Add an X-Frame-Options header to prevent clickjacking")
    if not results.headers.x_content_type_options:
        recs.append("Add X-Content-Type-Options: nosniff")
    if not results.headers.referrer_policy:
        recs.append("Define a Referrer-Policy")
    return recs
