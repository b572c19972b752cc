"""
Cached HTTP Digest (RFC 2617) credentials.

The TV's embedded server only speaks Digest. Re-doing the 401 challenge on
every call doubles the request count, so the challenge parameters and HA1 are
kept until the nonce expires (the server answers 401 again).
"""
from __future__ import annotations

import hashlib
import re
import secrets
from dataclasses import dataclass
from typing import Callable, Dict, Optional

# key=value pairs; quoted values may contain '=' and ','
_PARAM_RE = re.compile(r'(\w+)=(?:"([^"]*)"|([^,\s]*))')


def md5_hex(text: str) -> str:
    return hashlib.md5(text.encode("utf-8")).hexdigest()


def parse_www_authenticate(header: str) -> Dict[str, str]:
    params: Dict[str, str] = {}
    for m in _PARAM_RE.finditer(header):
        key, quoted, bare = m.group(1), m.group(2), m.group(3)
        params[key.lower()] = quoted if quoted is not None else bare
    return params


def _pick_qop(raw: str) -> str:
    # Servers may offer "auth,auth-int"; we never hash bodies, so prefer auth.
    options = [o.strip() for o in raw.split(",") if o.strip()]
    if not options:
        return ""
    return "auth" if "auth" in options else options[0]


@dataclass
class CachedDigestState:
    realm: str
    nonce: str
    qop: str
    ha1: str
    opaque: Optional[str] = None
    nc: int = 0


class AuthCache:
    def __init__(
        self,
        username: str,
        password: str,
        *,
        cnonce_factory: Optional[Callable[[], str]] = None,
    ) -> None:
        self._username = username
        self._password = password
        self._cnonce = cnonce_factory or (lambda: secrets.token_hex(16))
        self._state: Optional[CachedDigestState] = None

    @property
    def has_cached_state(self) -> bool:
        return self._state is not None

    @property
    def state(self) -> Optional[CachedDigestState]:
        return self._state

    def invalidate(self) -> None:
        self._state = None

    def cache_from_challenge(self, header: Optional[str]) -> bool:
        """Cache a WWW-Authenticate Digest challenge. Non-Digest headers are ignored."""
        if not header or not header.strip().lower().startswith("digest"):
            return False

        params = parse_www_authenticate(header.strip()[len("digest"):])
        realm = params.get("realm", "")
        self._state = CachedDigestState(
            realm=realm,
            nonce=params.get("nonce", ""),
            qop=_pick_qop(params.get("qop", "")),
            opaque=params.get("opaque") or None,
            ha1=md5_hex(f"{self._username}:{realm}:{self._password}"),
        )
        return True

    def build_header(self, method: str, uri: str) -> Optional[str]:
        """Authorization header value for the next request, or None if nothing is cached."""
        st = self._state
        if st is None:
            return None

        st.nc += 1
        nc = f"{st.nc:08x}"
        cnonce = self._cnonce()
        ha2 = md5_hex(f"{method}:{uri}")
        if st.qop:
            response = md5_hex(f"{st.ha1}:{st.nonce}:{nc}:{cnonce}:{st.qop}:{ha2}")
        else:
            response = md5_hex(f"{st.ha1}:{st.nonce}:{ha2}")

        header = (
            f'Digest username="{self._username}", realm="{st.realm}", '
            f'nonce="{st.nonce}", uri="{uri}", response="{response}"'
        )
        if st.qop:
            header += f', qop={st.qop}, nc={nc}, cnonce="{cnonce}"'
        if st.opaque:
            header += f', opaque="{st.opaque}"'
        return header
