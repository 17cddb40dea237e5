"""Typed nginx site model rendered per proxy phase.

Each phase of the TLS rollout builds a complete :class:`SiteDefinition` and
renders it through ``nginx/site.conf.j2``; nothing is patched in place.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from pathlib import Path

from .templates import TemplateEngine

SITE_TEMPLATE = "nginx/site.conf.j2"
ACME_CHALLENGE_PATH = "/.well-known/acme-challenge/"
UPSTREAM_NAME = "backend"

# Directives owned by the Let's Encrypt options bundle; duplicates fail nginx -t.
OPTIONS_BUNDLE_DIRECTIVES = (
    "ssl_protocols",
    "ssl_ciphers",
    "ssl_prefer_server_ciphers",
    "ssl_session_cache",
    "ssl_session_timeout",
    "ssl_session_tickets",
    "ssl_dhparam",
)


class SiteTemplateError(ValueError):
    """Raised when a shipped site template cannot be bound to a certificate."""


@dataclass(frozen=True, slots=True)
class Listener:
    """One ``listen`` directive."""

    port: int
    ssl: bool = False
    http2: bool = False
    ipv6: bool = False

    def directive(self) -> str:
        """Return the directive without its trailing semicolon."""
        parts = [f"[::]:{self.port}" if self.ipv6 else str(self.port)]
        if self.ssl:
            parts.append("ssl")
        if self.http2:
            parts.append("http2")
        return "listen " + " ".join(parts)


@dataclass(frozen=True, slots=True)
class TLSDirectives:
    """Certificate paths and the CA-recommended parameter bundle."""

    certificate: Path
    certificate_key: Path
    options_include: Path | None = None
    dhparam: Path | None = None

    def directives(self) -> list[str]:
        """Return the TLS directives in render order."""
        lines = [
            f"ssl_certificate {self.certificate}",
            f"ssl_certificate_key {self.certificate_key}",
        ]
        if self.options_include is not None:
            lines.append(f"include {self.options_include}")
        if self.dhparam is not None:
            lines.append(f"ssl_dhparam {self.dhparam}")
        return lines


@dataclass(frozen=True, slots=True)
class Location:
    """A ``location`` block; directives ending in ``}`` are emitted verbatim."""

    path: str
    directives: tuple[str, ...]
    modifier: str = ""

    def header(self) -> str:
        """Return the ``location`` line without the opening brace."""
        if self.modifier:
            return f"location {self.modifier} {self.path}"
        return f"location {self.path}"


@dataclass(frozen=True, slots=True)
class ServerBlock:
    """A ``server`` block."""

    server_names: tuple[str, ...]
    listeners: tuple[Listener, ...]
    locations: tuple[Location, ...] = ()
    tls: TLSDirectives | None = None
    directives: tuple[str, ...] = ()

    @property
    def serves_tls(self) -> bool:
        """Return True when any listener terminates TLS."""
        return any(listener.ssl for listener in self.listeners)


@dataclass(frozen=True, slots=True)
class Upstream:
    """An ``upstream`` block."""

    name: str
    servers: tuple[str, ...]


@dataclass(frozen=True, slots=True)
class SiteDefinition:
    """A complete nginx site file for one domain."""

    domain: str
    servers: tuple[ServerBlock, ...]
    upstreams: tuple[Upstream, ...] = ()
    description: str = field(default="", compare=False)

    @property
    def serves_tls(self) -> bool:
        """Return True when any server block terminates TLS."""
        return any(server.serves_tls for server in self.servers)


def _line(directive: str) -> str:
    return directive if directive.endswith("}") else f"{directive};"


def render_site(engine: TemplateEngine, site: SiteDefinition) -> str:
    """Render *site* to nginx configuration text."""
    return engine.render_to_string(SITE_TEMPLATE, {"site": site, "line": _line})


def _acme_location(webroot: Path) -> Location:
    return Location(
        path=ACME_CHALLENGE_PATH,
        modifier="^~",
        directives=(f"root {webroot}", 'default_type "text/plain"', "try_files $uri =404"),
    )


def _http_listeners() -> tuple[Listener, ...]:
    return (Listener(port=80), Listener(port=80, ipv6=True))


def challenge_site(domain: str, webroot: Path) -> SiteDefinition:
    """Return the plaintext site serving only the ACME HTTP-01 challenge."""
    return SiteDefinition(
        domain=domain,
        description="ACME HTTP-01 challenge only",
        servers=(
            ServerBlock(
                server_names=(domain,),
                listeners=_http_listeners(),
                locations=(
                    _acme_location(webroot),
                    Location(path="/", directives=("return 404",)),
                ),
            ),
        ),
    )


_PROXY_HEADERS = (
    "proxy_set_header Host $host",
    "proxy_set_header X-Real-IP $remote_addr",
    "proxy_set_header X-Forwarded-For $proxy_add_x_forwarded_for",
    "proxy_set_header X-Forwarded-Proto $scheme",
)


def production_site(
    domain: str,
    *,
    backend: str,
    tls: TLSDirectives,
    webroot: Path,
    app_root: Path,
    client_max_body_size: str = "12G",
) -> SiteDefinition:
    """Return the finalized TLS site proxying to *backend*."""
    upstream = f"http://{UPSTREAM_NAME}"
    client_dist = app_root / "peertube-latest" / "client" / "dist"
    storage = app_root / "storage"
    redirect = ServerBlock(
        server_names=(domain,),
        listeners=_http_listeners(),
        locations=(
            _acme_location(webroot),
            Location(path="/", directives=("return 301 https://$host$request_uri",)),
        ),
    )
    secure = ServerBlock(
        server_names=(domain,),
        listeners=(
            Listener(port=443, ssl=True, http2=True),
            Listener(port=443, ssl=True, http2=True, ipv6=True),
        ),
        tls=tls,
        directives=(
            "access_log /var/log/nginx/peertube.access.log",
            "error_log /var/log/nginx/peertube.error.log",
            "client_body_timeout 30s",
            "client_header_timeout 10s",
            "send_timeout 10s",
        ),
        locations=(
            Location(
                path="@api",
                directives=(
                    f"proxy_pass {upstream}",
                    *_PROXY_HEADERS,
                    "client_max_body_size 100k",
                    "proxy_connect_timeout 10m",
                    "proxy_send_timeout 10m",
                    "proxy_read_timeout 10m",
                    "send_timeout 10m",
                ),
            ),
            Location(path="/", directives=("try_files /dev/null @api",)),
            Location(
                path="/api/v1/videos/upload-resumable",
                modifier="=",
                directives=(
                    "client_max_body_size 0",
                    "proxy_request_buffering off",
                    "try_files /dev/null @api",
                ),
            ),
            Location(
                path=r"^/api/v1/videos/(upload|([^/]+/studio/edit))$",
                modifier="~",
                directives=(
                    "limit_except POST HEAD { deny all; }",
                    f"client_max_body_size {client_max_body_size}",
                    "add_header X-File-Maximum-Size 8G always",
                    "try_files /dev/null @api",
                ),
            ),
            Location(
                path=r"^/api/v1/(videos|video-playlists|video-channels|users/me)",
                modifier="~",
                directives=(
                    "client_max_body_size 6M",
                    "add_header X-File-Maximum-Size 4M always",
                    "try_files /dev/null @api",
                ),
            ),
            Location(
                path=r"^/(socket\.io|tracker/socket|plugins/[^/]+/[^/]+/ws)/",
                modifier="~",
                directives=(
                    f"proxy_pass {upstream}",
                    "proxy_http_version 1.1",
                    "proxy_set_header Upgrade $http_upgrade",
                    'proxy_set_header Connection "upgrade"',
                    *_PROXY_HEADERS,
                    "proxy_read_timeout 15m",
                ),
            ),
            Location(
                path=r"^/client/(assets/images/.+|.+\.(js|css|woff2|otf|ttf|woff|eot))$",
                modifier="~",
                directives=(
                    'add_header Cache-Control "public, max-age=31536000, immutable"',
                    f"alias {client_dist}/$1",
                ),
            ),
            Location(
                path=r"^/static/(web-videos|webseed|streaming-playlists)/private/",
                modifier="~",
                directives=("try_files /dev/null @api",),
            ),
            Location(
                path=r"^/static/(web-videos|webseed|streaming-playlists|redundancy)/",
                modifier="~",
                directives=(
                    "limit_rate_after 5M",
                    "add_header Access-Control-Allow-Origin * always",
                    'add_header Cache-Control "public, max-age=86400"',
                    f"root {storage}",
                    r"rewrite ^/static/webseed/(.*)$ /web-videos/$1 break",
                    r"rewrite ^/static/(.*)$ /$1 break",
                    "try_files $uri @api",
                ),
            ),
        ),
    )
    return SiteDefinition(
        domain=domain,
        description="PeerTube with TLS",
        upstreams=(Upstream(name=UPSTREAM_NAME, servers=(backend,)),),
        servers=(redirect, secure),
    )


_CERTIFICATE_RE = re.compile(r"^(\s*)ssl_certificate\s+[^;]+;", re.MULTILINE)
_CERTIFICATE_KEY_RE = re.compile(r"^(\s*)ssl_certificate_key\s+[^;]+;", re.MULTILINE)


def bind_shipped_template(
    text: str,
    *,
    domain: str,
    backend: str,
    tls: TLSDirectives,
) -> str:
    """Bind the application's shipped nginx template to *domain* and *tls*.

    Host and backend placeholders are substituted, both certificate
    directives are pointed at the issued lineage, and the TLS parameters
    are replaced by the CA-recommended bundle.
    """
    bound = text.replace("${WEBSERVER_HOST}", domain).replace("${PEERTUBE_HOST}", backend)
    bound = re.sub(r'server\s+"' + re.escape(backend) + '"', f"server {backend}", bound)

    if not _CERTIFICATE_RE.search(bound) or not _CERTIFICATE_KEY_RE.search(bound):
        raise SiteTemplateError("Shipped template has no ssl_certificate directives to bind.")

    for directive in OPTIONS_BUNDLE_DIRECTIVES:
        bound = re.sub(
            rf"^[ \t]*#?[ \t]*{directive}\s[^;\n]*;[^\n]*\n", "", bound, flags=re.MULTILINE
        )

    bound = _CERTIFICATE_RE.sub(lambda m: f"{m.group(1)}ssl_certificate {tls.certificate};", bound)
    extras = [
        f"include {tls.options_include};" if tls.options_include is not None else "",
        f"ssl_dhparam {tls.dhparam};" if tls.dhparam is not None else "",
    ]

    def _key_with_bundle(match: re.Match[str]) -> str:
        indent = match.group(1).lstrip("\n")
        lines = [f"{match.group(1)}ssl_certificate_key {tls.certificate_key};"]
        lines.extend(f"\n{indent}{extra}" for extra in extras if extra)
        return "".join(lines)

    return _CERTIFICATE_KEY_RE.sub(_key_with_bundle, bound)


def references_certificate(text: str, tls: TLSDirectives) -> bool:
    """Return True when every certificate directive in *text* uses *tls* paths."""
    certificates = re.findall(r"^\s*ssl_certificate\s+([^;]+);", text, flags=re.MULTILINE)
    keys = re.findall(r"^\s*ssl_certificate_key\s+([^;]+);", text, flags=re.MULTILINE)
    if not certificates or not keys:
        return False
    return all(value.strip() == str(tls.certificate) for value in certificates) and all(
        value.strip() == str(tls.certificate_key) for value in keys
    )


__all__ = [
    "ACME_CHALLENGE_PATH",
    "Listener",
    "Location",
    "ServerBlock",
    "SiteDefinition",
    "SiteTemplateError",
    "TLSDirectives",
    "Upstream",
    "bind_shipped_template",
    "challenge_site",
    "production_site",
    "references_certificate",
    "render_site",
]
