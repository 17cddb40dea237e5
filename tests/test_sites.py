"""Tests for the nginx site model and shipped-template binding."""
from __future__ import annotations

from pathlib import Path

import pytest
from fakes import SHIPPED_NGINX

from peertubectl.sites import (
    Listener,
    SiteTemplateError,
    TLSDirectives,
    bind_shipped_template,
    challenge_site,
    production_site,
    references_certificate,
    render_site,
)
from peertubectl.templates import TemplateEngine

DOMAIN = "video.example.org"
LIVE = Path("/etc/letsencrypt/live") / DOMAIN
TLS = TLSDirectives(
    certificate=LIVE / "fullchain.pem",
    certificate_key=LIVE / "privkey.pem",
    options_include=Path("/etc/letsencrypt/options-ssl-nginx.conf"),
    dhparam=Path("/etc/letsencrypt/ssl-dhparams.pem"),
)


@pytest.fixture()
def engine() -> TemplateEngine:
    """Return an engine using only the packaged templates."""
    return TemplateEngine.with_overrides(None)


def test_listener_directives() -> None:
    """Listeners render their address and flags."""
    assert Listener(port=80).directive() == "listen 80"
    assert Listener(port=443, ssl=True, http2=True, ipv6=True).directive() == (
        "listen [::]:443 ssl http2"
    )


def test_challenge_site_is_plaintext(engine: TemplateEngine) -> None:
    """The challenge site serves the ACME path and answers 404 elsewhere."""
    site = challenge_site(DOMAIN, Path("/var/www/certbot"))

    content = render_site(engine, site)

    assert site.serves_tls is False
    assert f"server_name {DOMAIN};" in content
    assert "location ^~ /.well-known/acme-challenge/ {" in content
    assert "root /var/www/certbot;" in content
    assert "return 404;" in content
    assert "ssl_certificate" not in content


def test_production_site_proxies_backend(engine: TemplateEngine) -> None:
    """The production site terminates TLS and proxies to the backend upstream."""
    site = production_site(
        DOMAIN,
        backend="127.0.0.1:9000",
        tls=TLS,
        webroot=Path("/var/www/certbot"),
        app_root=Path("/var/www/peertube"),
    )

    content = render_site(engine, site)

    assert site.serves_tls is True
    assert "upstream backend {" in content
    assert "server 127.0.0.1:9000;" in content
    assert "listen 443 ssl http2;" in content
    assert "return 301 https://$host$request_uri;" in content
    assert "limit_except POST HEAD { deny all; }" in content
    assert "client_max_body_size 12G;" in content
    assert "alias /var/www/peertube/peertube-latest/client/dist/$1;" in content
    assert "root /var/www/peertube/storage;" in content
    assert references_certificate(content, TLS)


def test_bind_shipped_template_substitutes_placeholders() -> None:
    """Both placeholders are replaced and certificate directives rebound."""
    bound = bind_shipped_template(
        SHIPPED_NGINX, domain=DOMAIN, backend="127.0.0.1:9000", tls=TLS
    )

    assert "${" not in bound
    assert f"server_name {DOMAIN};" in bound
    assert "server 127.0.0.1:9000;" in bound
    assert f"ssl_certificate {TLS.certificate};" in bound
    assert f"ssl_certificate_key {TLS.certificate_key};" in bound
    assert f"include {TLS.options_include};" in bound
    assert bound.count("ssl_dhparam") == 1
    assert "ssl_ciphers" not in bound
    assert references_certificate(bound, TLS)


def test_bind_shipped_template_requires_certificate_directives() -> None:
    """A template without ssl_certificate lines cannot be bound."""
    with pytest.raises(SiteTemplateError):
        bind_shipped_template(
            "server { listen 80; }\n", domain=DOMAIN, backend="127.0.0.1:9000", tls=TLS
        )


def test_references_certificate_rejects_foreign_paths() -> None:
    """Any certificate directive pointing elsewhere fails the check."""
    text = (
        f"ssl_certificate {TLS.certificate};\n"
        f"ssl_certificate_key {TLS.certificate_key};\n"
        "ssl_certificate /etc/ssl/other.pem;\n"
    )

    assert references_certificate(text, TLS) is False
    assert references_certificate("server { listen 80; }", TLS) is False
