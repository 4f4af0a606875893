"""
Credentials for probe targets: user, password and libpq SSL settings that
are merged into a caller-supplied DSN.
"""
from __future__ import annotations

import os
import re
from dataclasses import dataclass, field, fields
from typing import Any
from urllib.parse import parse_qsl, quote, urlencode, urlsplit, urlunsplit

from utils import ordinal

KEY_RE = re.compile(r"^[a-zA-Z0-9_-]+$")

SSL_MODES = ("disable", "allow", "prefer", "require", "verify-ca", "verify-full")
SSL_CERT_MODES = ("disable", "allow", "require")
SSL_NEGOTIATIONS = ("postgres", "direct")

# SSLCredentials attribute -> libpq query parameter
SSL_PARAMS = {
    "mode": "sslmode",
    "cert": "sslcert",
    "key": "sslkey",
    "password": "sslpassword",
    "compression": "sslcompression",
    "negotiation": "sslnegotiation",
    "cert_mode": "sslcertmode",
    "root_cert": "sslrootcert",
}


class CredentialsError(Exception):
    """A credential entry failed validation. index is the 1-based position in the config, 0 if unknown."""

    def __init__(self, field_name: str, message: str, index: int = 0, cause: Exception | None = None) -> None:
        self.field = field_name
        self.message = message
        self.index = index
        self.cause = cause
        super().__init__(str(self))

    def __str__(self) -> str:
        message = self.message
        if self.cause is not None:
            message += f": {self.cause}"
        message = f"validation failed for field {self.field}: {message}"
        if self.index > 0:
            return f"{message} ({ordinal(self.index)} credential)"
        return message


@dataclass
class SSLCredentials:
    mode: str = ""
    cert: str = ""
    key: str = ""
    password: str = ""
    compression: str = ""
    negotiation: str = ""
    cert_mode: str = ""
    root_cert: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> SSLCredentials:
        data = data or {}
        known = {f.name for f in fields(cls)}
        return cls(**{k: str(v) for k, v in data.items() if k in known and v is not None})

    def _check_enum(self, name: str, value: str, allowed: tuple[str, ...]) -> None:
        if value not in allowed:
            raise CredentialsError(
                f"ssl.{name}",
                f"unsupported value for {name}: '{value}', must be one of '" + "', '".join(allowed) + "'",
            )

    def _check_file(self, name: str, path: str) -> None:
        try:
            os.stat(path)
        except OSError as e:
            raise CredentialsError(f"ssl.{name}", "file error", cause=e) from e

    def validate(self) -> None:
        if self.mode:
            self._check_enum("mode", self.mode, SSL_MODES)
        if self.cert_mode:
            self._check_enum("cert_mode", self.cert_mode, SSL_CERT_MODES)
        if self.negotiation:
            self._check_enum("negotiation", self.negotiation, SSL_NEGOTIATIONS)
        if self.cert:
            self._check_file("cert", self.cert)
        if self.key:
            self._check_file("key", self.key)
        if self.root_cert and self.root_cert != "system":
            self._check_file("root_cert", self.root_cert)

    def query_params(self) -> dict[str, str]:
        return {param: getattr(self, attr) for attr, param in SSL_PARAMS.items() if getattr(self, attr)}


@dataclass
class Credentials:
    key: str = ""
    username: str = ""
    password: str = ""
    ssl: SSLCredentials = field(default_factory=SSLCredentials)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Credentials:
        return cls(
            key=str(data.get("key") or ""),
            username=str(data.get("username") or ""),
            password=str(data.get("password") or ""),
            ssl=SSLCredentials.from_dict(data.get("ssl")),
        )

    def get_key(self) -> str:
        """The lookup key; falls back to the username."""
        return self.key or self.username

    def validate(self) -> None:
        if not KEY_RE.match(self.get_key()):
            raise CredentialsError(
                "key", f"key '{self.get_key()}' has invalid characters, should match /^[a-zA-Z0-9_-]+$/"
            )
        if not self.username.strip():
            raise CredentialsError("username", "username is required")
        self.ssl.validate()

    def update_dsn(self, dsn: str) -> str:
        """Return dsn with these credentials' user, password and ssl parameters applied."""
        parts = urlsplit(dsn)
        userinfo = quote(self.username, safe="")
        if self.password:
            userinfo += ":" + quote(self.password, safe="")
        host = parts.netloc.rsplit("@", 1)[-1]
        query = dict(parse_qsl(parts.query, keep_blank_values=True))
        query.update(self.ssl.query_params())
        encoded = urlencode(sorted(query.items()), quote_via=quote)
        return urlunsplit((parts.scheme, f"{userinfo}@{host}", parts.path, encoded, parts.fragment))
