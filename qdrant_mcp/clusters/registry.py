"""Named Qdrant cluster profiles and their cached clients.

The registry maps a profile name to a connection profile (URL, API key and
advisory metadata) and keeps at most one backend client per name for the
process lifetime, so connection pools are reused across tool calls.

Profiles come from three places:

- the static configuration list given at construction;
- the ``default`` fallback profile derived from ``QDRANT_URL`` and
  ``QDRANT_API_KEY``, added whenever the configuration does not declare one;
- dynamic registration of a URL supplied at call time. Dynamic profiles are
  keyed by :func:`derive_stable_name` of the normalized URL. Registration is
  idempotent and the first API key registered for a URL is kept for the
  process lifetime: identity and client reuse are preferred over picking up
  a newer key.

All state lives in memory behind one ``threading.Lock``. Critical sections
are dictionary lookups and inserts only; no lock is held while talking to a
backend.
"""

from __future__ import annotations

import hashlib
import logging
import threading
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple
from urllib.parse import urlsplit, urlunsplit

from pydantic import BaseModel, ConfigDict

from ..adapters import VectorBackend
from ..config.models import ClusterProfileConfig
from ..errors import InvalidUrlError, UnknownClusterError
from ..utils.redact import redact_url

logger = logging.getLogger(__name__)

DEFAULT_PROFILE_NAME = "default"
DYNAMIC_PREFIX = "dynamic-"
DYNAMIC_LABEL = "dynamic"
_HASH_PREFIX_LEN = 12
_DEFAULT_PORTS = {"http": 80, "https": 443}


class ClusterProfile(BaseModel):
    """Immutable connection profile for one Qdrant cluster."""

    model_config = ConfigDict(frozen=True)

    name: str
    url: str
    api_key: str = ""
    description: str = ""
    read_only: bool = False
    labels: Tuple[str, ...] = ()

    @property
    def is_dynamic(self) -> bool:
        return DYNAMIC_LABEL in self.labels and self.name.startswith(DYNAMIC_PREFIX)

    def public_dict(self) -> Dict[str, Any]:
        """Profile metadata safe to show to callers.

        The API key is reduced to ``has_api_key`` and URL userinfo is masked.
        """
        return {
            "name": self.name,
            "url": redact_url(self.url),
            "description": self.description,
            "read_only": self.read_only,
            "labels": list(self.labels),
            "has_api_key": bool(self.api_key),
        }


ClientFactory = Callable[[ClusterProfile], VectorBackend]


def validate_url(url: Optional[str]) -> str:
    """Return the stripped URL or raise :class:`InvalidUrlError`.

    Only absolute ``http``/``https`` URLs with a host and, if given, a
    numeric port in range are accepted.
    """
    candidate = (url or "").strip()
    if not candidate:
        raise InvalidUrlError("cluster_url must be a non-empty URL")
    shown = redact_url(candidate)
    try:
        parts = urlsplit(candidate)
        host = parts.hostname
        parts.port  # raises for a non-numeric or out of range port
    except ValueError as exc:
        raise InvalidUrlError(f"Invalid cluster URL '{shown}': {exc}") from exc
    if parts.scheme.lower() not in _DEFAULT_PORTS or not host:
        raise InvalidUrlError(
            f"Invalid cluster URL '{shown}': expected an absolute http(s) URL"
        )
    return candidate


def normalize_url(url: str) -> str:
    """Canonical form of a URL used for dynamic cluster identity.

    Lower-cases scheme and host, drops the scheme's default port, strips one
    trailing slash from the path and keeps the query string. If the URL
    cannot be parsed the verbatim string is returned.
    """
    try:
        parts = urlsplit(url.strip())
        scheme = parts.scheme.lower()
        host = (parts.hostname or "").lower()
        port = parts.port
    except ValueError:
        return url

    if ":" in host:
        host = f"[{host}]"
    netloc = host
    if parts.username is not None:
        userinfo = parts.username
        if parts.password is not None:
            userinfo = f"{userinfo}:{parts.password}"
        netloc = f"{userinfo}@{netloc}"
    if port is not None and port != _DEFAULT_PORTS.get(scheme):
        netloc = f"{netloc}:{port}"

    path = parts.path
    if path.endswith("/"):
        path = path[:-1]
    return urlunsplit((scheme, netloc, path, parts.query, parts.fragment))


def derive_stable_name(normalized_url: str) -> str:
    """Synthetic profile name for a normalized URL.

    >>> derive_stable_name("http://localhost:6333")[:8]
    'dynamic-'
    """
    digest = hashlib.sha256(normalized_url.encode("utf-8")).hexdigest()
    return f"{DYNAMIC_PREFIX}{digest[:_HASH_PREFIX_LEN]}"


def dynamic_name_for_url(url: str) -> str:
    """Name :meth:`ClusterRegistry.register_dynamic` would assign to ``url``."""
    return derive_stable_name(normalize_url(validate_url(url)))


def normalize_profiles(
    candidates: Iterable[ClusterProfileConfig],
) -> List[ClusterProfile]:
    """Turn operator-supplied candidates into registry profiles.

    Candidates without a name or URL, or with an unusable URL, are dropped.
    The first candidate for a given name wins.
    """
    profiles: List[ClusterProfile] = []
    seen: set = set()
    for candidate in candidates:
        name = (candidate.name or "").strip()
        if not name or not (candidate.url or "").strip():
            logger.warning(
                "registry.profile.dropped",
                extra={"cluster_name": name or None, "reason": "missing name or url"},
            )
            continue
        if name in seen:
            logger.warning(
                "registry.profile.duplicate", extra={"cluster_name": name}
            )
            continue
        try:
            url = validate_url(candidate.url)
        except InvalidUrlError as exc:
            logger.warning(
                "registry.profile.dropped",
                extra={"cluster_name": name, "reason": exc.message},
            )
            continue
        seen.add(name)
        profiles.append(
            ClusterProfile(
                name=name,
                url=url,
                api_key=candidate.api_key or "",
                description=candidate.description or "",
                read_only=bool(candidate.read_only),
                labels=tuple(candidate.labels or ()),
            )
        )
    return profiles


class ClusterRegistry:
    """Profiles by name, one cached client per profile, and the active name.

    Parameters
    ----------
    fallback_url: str
        URL of the ``default`` profile added when the configuration lacks one.
    fallback_api_key: str
        API key of that fallback profile.
    profiles: Iterable[ClusterProfileConfig]
        Static profile candidates, see :func:`normalize_profiles`.
    default_cluster: Optional[str]
        Requested active profile. Ignored if it names no known profile.
    client_factory: ClientFactory
        Builds a backend client for a profile. Called at most once per name.
    """

    def __init__(
        self,
        fallback_url: str,
        fallback_api_key: str = "",
        profiles: Iterable[ClusterProfileConfig] = (),
        default_cluster: Optional[str] = None,
        *,
        client_factory: ClientFactory,
    ) -> None:
        self._lock = threading.Lock()
        self._client_factory = client_factory
        self._clients: Dict[str, VectorBackend] = {}

        normalized = normalize_profiles(profiles)
        self._profiles: Dict[str, ClusterProfile] = {p.name: p for p in normalized}
        if DEFAULT_PROFILE_NAME not in self._profiles:
            self._profiles[DEFAULT_PROFILE_NAME] = ClusterProfile(
                name=DEFAULT_PROFILE_NAME,
                url=fallback_url,
                api_key=fallback_api_key or "",
                description="Fallback cluster derived from QDRANT_URL",
            )

        if default_cluster and default_cluster in self._profiles:
            self._active_name = default_cluster
        elif DEFAULT_PROFILE_NAME in self._profiles:
            self._active_name = DEFAULT_PROFILE_NAME
        else:
            self._active_name = next(iter(self._profiles))
        if default_cluster and default_cluster != self._active_name:
            logger.warning(
                "registry.default_cluster.unknown",
                extra={"requested": default_cluster, "active": self._active_name},
            )

        logger.info(
            "registry.init",
            extra={
                "clusters": sorted(self._profiles),
                "active_cluster": self._active_name,
            },
        )

    def names(self) -> List[str]:
        with self._lock:
            return sorted(self._profiles)

    def list_profiles(self) -> List[ClusterProfile]:
        with self._lock:
            return [self._profiles[name] for name in sorted(self._profiles)]

    def resolve(self, name: Optional[str] = None) -> ClusterProfile:
        """Profile for ``name``, or the active profile when ``name`` is empty.

        Raises
        ------
        UnknownClusterError
            ``name`` is not registered. The message lists every known name.
        """
        with self._lock:
            key = name or self._active_name
            profile = self._profiles.get(key)
            if profile is None:
                raise UnknownClusterError(key, list(self._profiles))
            return profile

    def get_client(self, name: Optional[str] = None) -> VectorBackend:
        """Cached client for the profile, created on first use."""
        profile = self.resolve(name)
        client = self._clients.get(profile.name)
        if client is not None:
            return client
        with self._lock:
            client = self._clients.get(profile.name)
            if client is None:
                client = self._client_factory(profile)
                self._clients[profile.name] = client
                logger.info(
                    "cluster.client.created",
                    extra={
                        "cluster_name": profile.name,
                        "url": redact_url(profile.url),
                    },
                )
            return client

    def get_active(self) -> str:
        with self._lock:
            return self._active_name

    def set_active(self, name: str) -> ClusterProfile:
        """Make ``name`` the active profile and return it."""
        with self._lock:
            profile = self._profiles.get(name)
            if profile is None:
                raise UnknownClusterError(name, list(self._profiles))
            previous, self._active_name = self._active_name, name
        logger.info(
            "cluster.active.changed",
            extra={"previous": previous, "active_cluster": name},
        )
        return profile

    def register_dynamic(self, url: str, api_key: Optional[str] = None) -> str:
        """Register an ad-hoc cluster URL and return its profile name.

        Registering a URL that normalizes to an already registered one is a
        no-op returning the existing name; the original API key is kept.

        Raises
        ------
        InvalidUrlError
            ``url`` is empty or not an absolute http(s) URL.
        """
        url = validate_url(url)
        name = dynamic_name_for_url(url)
        with self._lock:
            if name in self._profiles:
                created = False
            else:
                self._profiles[name] = ClusterProfile(
                    name=name,
                    url=url,
                    api_key=api_key or "",
                    description=f"Dynamic cluster: {redact_url(url)}",
                    labels=(DYNAMIC_LABEL,),
                )
                created = True
        if created:
            logger.info(
                "cluster.dynamic.registered",
                extra={"cluster_name": name, "url": redact_url(url)},
            )
        else:
            logger.debug("cluster.dynamic.reused", extra={"cluster_name": name})
        return name

    async def aclose(self) -> None:
        """Close every cached client. Used on process shutdown.

        A client that fails to close is logged and the rest are still closed.
        """
        with self._lock:
            clients = list(self._clients.items())
        for name, client in clients:
            try:
                await client.aclose()
            except Exception as exc:
                logger.warning(
                    "cluster.client.close_failed",
                    extra={"cluster_name": name, "error": str(exc)},
                )
