# registry.py
# Resolves container image references to manifest digests through the
# registry HTTP API (v2). Only reads manifests; never pulls layers.

from __future__ import annotations

import http.client
import json
import logging
import re
import urllib.error
import urllib.parse
import urllib.request
from dataclasses import dataclass
from typing import Dict, Optional, Protocol

from .errors import RegistryError

log = logging.getLogger(__name__)

DOCKER_HUB = "docker.io"
DOCKER_HUB_API = "registry-1.docker.io"

MANIFEST_ACCEPT = ", ".join(
    [
        "application/vnd.oci.image.index.v1+json",
        "application/vnd.oci.image.manifest.v1+json",
        "application/vnd.docker.distribution.manifest.list.v2+json",
        "application/vnd.docker.distribution.manifest.v2+json",
    ]
)

_CHALLENGE_PARAM = re.compile(r'(\w+)="([^"]*)"')


class DigestResolver(Protocol):
    def digest(self, image: str) -> str: ...


@dataclass(frozen=True)
class ImageReference:
    registry: str
    repository: str
    tag: str = "latest"
    digest: Optional[str] = None

    @classmethod
    def parse(cls, ref: str) -> ImageReference:
        """
        Parse "name[:tag][@sha256:...]" the way docker does.

        "alpine"            -> docker.io/library/alpine:latest
        "ghcr.io/o/app:1.2" -> ghcr.io/o/app:1.2
        "localhost:5000/x"  -> localhost:5000/x:latest
        """
        ref = ref.strip()
        if not ref:
            raise RegistryError("empty image reference")

        digest = None
        if "@" in ref:
            ref, digest = ref.split("@", 1)

        tag = "latest"
        last = ref.rsplit("/", 1)[-1]
        if ":" in last:
            ref, tag = ref.rsplit(":", 1)

        parts = ref.split("/", 1)
        if len(parts) == 2 and ("." in parts[0] or ":" in parts[0] or parts[0] == "localhost"):
            registry, repository = parts
        else:
            registry, repository = DOCKER_HUB, ref

        if registry == DOCKER_HUB and "/" not in repository:
            repository = f"library/{repository}"

        return cls(registry=registry, repository=repository, tag=tag, digest=digest)

    @property
    def api_host(self) -> str:
        return DOCKER_HUB_API if self.registry == DOCKER_HUB else self.registry

    @property
    def scheme(self) -> str:
        host = self.registry.split(":", 1)[0]
        return "http" if host in ("localhost", "127.0.0.1") else "https"

    def manifest_url(self) -> str:
        return f"{self.scheme}://{self.api_host}/v2/{self.repository}/manifests/{self.tag}"


def strip_algorithm(digest: str) -> str:
    """'sha256:abc' -> 'abc'."""
    return digest.split(":", 1)[1] if ":" in digest else digest


class RegistryClient:
    """Anonymous read-only client for the registry v2 manifest endpoint."""

    def __init__(self, timeout: float = 10.0):
        self.timeout = timeout
        self._tokens: Dict[str, str] = {}

    def _request(self, url: str, method: str = "GET", headers: Optional[dict] = None):
        req = urllib.request.Request(url, headers=headers or {}, method=method)
        return urllib.request.urlopen(req, timeout=self.timeout)

    def _token(self, challenge: str) -> str:
        """Fetch an anonymous bearer token for a WWW-Authenticate challenge."""
        if not challenge.lower().startswith("bearer "):
            raise RegistryError(f"unsupported auth challenge: {challenge}")
        params = dict(_CHALLENGE_PARAM.findall(challenge))
        realm = params.pop("realm", None)
        if not realm:
            raise RegistryError(f"auth challenge without realm: {challenge}")
        url = f"{realm}?{urllib.parse.urlencode(params)}"
        if url in self._tokens:
            return self._tokens[url]
        try:
            with self._request(url) as response:
                body = json.loads(response.read().decode("utf-8"))
        except (urllib.error.URLError, json.JSONDecodeError) as e:
            raise RegistryError(f"token request to {realm} failed: {e}") from e
        token = body.get("token") or body.get("access_token")
        if not token:
            raise RegistryError(f"no token in response from {realm}")
        self._tokens[url] = token
        return token

    def _head_manifest(self, url: str, token: Optional[str]) -> str:
        headers = {"Accept": MANIFEST_ACCEPT}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        with self._request(url, method="HEAD", headers=headers) as response:
            digest = response.headers.get("Docker-Content-Digest")
        if not digest:
            raise RegistryError(f"registry returned no digest for {url}")
        return digest

    def digest(self, image: str) -> str:
        """
        Return the sha256 manifest digest of `image` as hex.

        Raises:
            RegistryError: on any lookup failure
        """
        ref = ImageReference.parse(image)
        if ref.digest:
            return strip_algorithm(ref.digest)

        url = ref.manifest_url()
        try:
            try:
                return strip_algorithm(self._head_manifest(url, None))
            except urllib.error.HTTPError as e:
                if e.code != 401:
                    raise
                challenge = e.headers.get("WWW-Authenticate", "")
            return strip_algorithm(self._head_manifest(url, self._token(challenge)))
        except urllib.error.HTTPError as e:
            raise RegistryError(f"{image}: HTTP {e.code} {e.reason}") from e
        except urllib.error.URLError as e:
            raise RegistryError(f"{image}: network error: {e.reason}") from e
        except (OSError, ValueError, http.client.HTTPException) as e:
            raise RegistryError(f"{image}: lookup failed: {e}") from e


class StaticResolver:
    """Resolves digests from a fixed mapping; unknown images fail."""

    def __init__(self, digests: Dict[str, str]):
        self.digests = dict(digests)

    def digest(self, image: str) -> str:
        try:
            return strip_algorithm(self.digests[image])
        except KeyError:
            raise RegistryError(f"{image}: no digest known") from None
