"""Connection strategies tried in order when establishing a pool."""

from __future__ import annotations

import re
import ssl
from dataclasses import dataclass
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from .models import Dialect


@dataclass(frozen=True, slots=True)
class ConnectStrategy:
    """One rung of the connection ladder."""

    name: str
    permissive_tls: bool = False
    strip_query: bool = False


AS_GIVEN = ConnectStrategy("as-given")
PERMISSIVE_TLS = ConnectStrategy("permissive-tls", permissive_tls=True)
STRIPPED_PERMISSIVE_TLS = ConnectStrategy("stripped-permissive-tls", permissive_tls=True, strip_query=True)

DEFAULT_STRATEGIES: tuple[ConnectStrategy, ...] = (AS_GIVEN, PERMISSIVE_TLS, STRIPPED_PERMISSIVE_TLS)

# Query parameters that already express a TLS preference, per dialect.
_TLS_KEYS: dict[Dialect, frozenset[str]] = {
    Dialect.POSTGRES: frozenset({"sslmode", "ssl"}),
    Dialect.MYSQL: frozenset({"ssl-mode", "ssl_mode", "ssl"}),
    Dialect.MONGODB: frozenset({"tls", "ssl", "tlsallowinvalidcertificates", "tlsinsecure"}),
}

_PERMISSIVE_PARAMS: dict[Dialect, tuple[tuple[str, str], ...]] = {
    Dialect.POSTGRES: (("sslmode", "require"),),
    Dialect.MYSQL: (("ssl-mode", "REQUIRED"),),
    Dialect.MONGODB: (("tls", "true"), ("tlsAllowInvalidCertificates", "true")),
}

_CREDENTIALS = re.compile(r"//[^/@\s:]+:[^/@\s]*@")


def prepare_uri(uri: str, dialect: Dialect, strategy: ConnectStrategy) -> str:
    """Rewrite a connection URI for the given strategy."""

    if not strategy.permissive_tls and not strategy.strip_query:
        return uri
    parts = urlsplit(uri)
    params = [] if strategy.strip_query else parse_qsl(parts.query, keep_blank_values=True)
    if strategy.permissive_tls:
        keys = {key.lower() for key, _ in params}
        if not keys & _TLS_KEYS[dialect]:
            params.extend(_PERMISSIVE_PARAMS[dialect])
    return urlunsplit((parts.scheme, parts.netloc, parts.path, urlencode(params), parts.fragment))


def permissive_ssl_context() -> ssl.SSLContext:
    """TLS context that encrypts without verifying the server certificate.

    A fresh context is built for every attempt so relaxed verification never
    leaks into other connections.
    """

    context = ssl.create_default_context()
    context.check_hostname = False
    context.verify_mode = ssl.CERT_NONE
    return context


def redact_uri(text: str) -> str:
    """Mask user:password pairs embedded in URIs."""

    return _CREDENTIALS.sub("//****:****@", text)


__all__ = [
    "AS_GIVEN",
    "ConnectStrategy",
    "DEFAULT_STRATEGIES",
    "PERMISSIVE_TLS",
    "STRIPPED_PERMISSIVE_TLS",
    "permissive_ssl_context",
    "prepare_uri",
    "redact_uri",
]
