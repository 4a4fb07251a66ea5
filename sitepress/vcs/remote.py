"""Remote URL helpers: credential injection and redaction."""

from __future__ import annotations

import re

_SCHEME = re.compile(r"^[A-Za-z][A-Za-z0-9+.-]*://")
_HOST_PORT = re.compile(r"^([^/:]+):\d+/")
_URL_USERINFO = re.compile(r"(https?://)[^@/\s]+@")

REDACTED = "***"


def is_local_remote(url: str) -> bool:
    """Return True for ``file://`` URLs and plain filesystem paths."""
    if url.startswith("file://"):
        return True
    if _SCHEME.match(url):
        return False
    # scp-style user@host:path
    head = url.split("/", 1)[0]
    return ":" not in head or (len(head) == 2 and head[1] == ":")


def build_authenticated_url(url: str, credential: str) -> str:
    """Return an HTTPS URL carrying *credential*, ready for clone, fetch or push.

    ``https://host/owner/repo``, ``git@host:owner/repo`` and
    ``ssh://git@host/owner/repo`` all become
    ``https://<credential>@host/owner/repo.git``.  Local remotes are returned
    unchanged.
    """
    if not credential or is_local_remote(url):
        return url

    rest = _SCHEME.sub("", url.strip())
    head, sep, tail = rest.partition("/")
    if "@" in head:
        head = head.rsplit("@", 1)[1]
    rest = head + sep + tail

    port_match = _HOST_PORT.match(rest)
    if port_match:
        rest = port_match.group(1) + rest[port_match.end() - 1:]
    elif ":" in head:
        rest = rest.replace(":", "/", 1)

    rest = rest.rstrip("/")
    if not rest.endswith(".git"):
        rest += ".git"
    return f"https://{credential}@{rest}"


def redact(text: str, credential: str | None = None) -> str:
    """Remove *credential* and any URL userinfo from *text*."""
    if not text:
        return text
    if credential:
        text = text.replace(credential, REDACTED)
    return _URL_USERINFO.sub(r"\1" + REDACTED + "@", text)
