"""Clients for the image trust (signing) service."""

import base64
import binascii
import json
import logging
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Iterable, Iterator, List, Mapping, Optional, Type
from urllib.parse import urlparse

import httpx
import yaml

from ..errors import (
    ConfigError,
    MalformedTrustData,
    TrustServiceCancelled,
    TrustServiceError,
    TrustServiceTimeout,
    TrustServiceUnavailable,
    UnsignedRepository,
)
from ..models.image import ImageReference
from ..utils.cancel import CancelToken


logger = logging.getLogger(__name__)

MAX_TARGETS_BYTES = 4 * 1024 * 1024


@dataclass(frozen=True)
class TrustServiceConfig:
    """Location of the trust service and the deadline for each round trip."""
    url: str
    timeout: float = 10.0

    def __post_init__(self):
        parsed = urlparse(self.url or "")
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ConfigError(f"Trust service URL must be an http(s) URL, got '{self.url}'")
        if self.timeout <= 0:
            raise ConfigError(f"Trust service timeout must be positive, got {self.timeout}")


@dataclass(frozen=True)
class TrustData:
    """Signed metadata for one repository."""
    repository: str
    digests: FrozenSet[str]
    tags: Mapping[str, str] = field(default_factory=dict, hash=False, compare=False)

    def is_signed(self, digest: str) -> bool:
        return digest.lower() in self.digests


class TrustClient:
    """Fetches signed digests for an image repository.

    ``fetch`` returns ``TrustData`` or raises ``UnsignedRepository`` when the
    service explicitly has no signed data. Every other failure is raised as a
    ``TrustServiceError`` subclass.
    """

    def fetch(self, ref: ImageReference) -> TrustData:
        raise NotImplementedError


def parse_targets(repository: str, payload: bytes) -> TrustData:
    """Parse a TUF ``targets.json`` document into ``TrustData``."""
    try:
        document = json.loads(payload)
        targets = document["signed"]["targets"]
    except (ValueError, KeyError, TypeError) as e:
        raise MalformedTrustData(f"Unreadable targets for {repository}: {e}") from e

    if not isinstance(targets, dict):
        raise MalformedTrustData(f"Targets for {repository} are not a mapping")
    if not targets:
        raise UnsignedRepository(f"No signed targets for {repository}")

    tags = {}
    for tag, meta in targets.items():
        try:
            encoded = meta["hashes"]["sha256"]
            raw = base64.b64decode(encoded, validate=True)
        except (KeyError, TypeError, binascii.Error) as e:
            raise MalformedTrustData(f"Target '{tag}' of {repository} has no usable sha256 hash") from e
        if len(raw) != 32:
            raise MalformedTrustData(f"Target '{tag}' of {repository} has a truncated sha256 hash")
        tags[tag] = f"sha256:{raw.hex()}"

    return TrustData(repository=repository, digests=frozenset(tags.values()), tags=tags)


class NotaryTrustClient(TrustClient):
    """Trust client speaking the Notary v1 (TUF) HTTP API."""

    def __init__(self, http: httpx.Client, deadline: float, cancel: Optional[CancelToken] = None):
        self._http = http
        self._deadline = deadline
        self._cancel = cancel

    def _remaining(self) -> float:
        if self._cancel is not None and self._cancel.cancelled:
            raise TrustServiceCancelled("Trust service request cancelled")
        remaining = self._deadline - time.monotonic()
        if remaining <= 0:
            raise TrustServiceTimeout("Trust service request exceeded its deadline")
        return remaining

    def fetch(self, ref: ImageReference) -> TrustData:
        """Run the round trip on a helper thread and wait for it, the deadline or cancellation.

        A read blocked on a silent server does not notice the client being
        closed, so the caller stops waiting instead and leaves the helper to
        finish against the closed client.
        """
        self._remaining()
        finished = threading.Event()
        outcome = {}

        def run():
            try:
                outcome["data"] = self._round_trip(ref)
            except Exception as e:
                outcome["error"] = e
            finally:
                finished.set()

        unregister = self._cancel.register(finished.set) if self._cancel is not None else (lambda: None)
        worker = threading.Thread(target=run, name=f"trust-{ref.name}", daemon=True)
        worker.start()
        try:
            finished.wait(max(self._deadline - time.monotonic(), 0))
        finally:
            unregister()

        if self._cancel is not None and self._cancel.cancelled:
            raise TrustServiceCancelled("Trust service request cancelled")
        if "error" in outcome:
            raise outcome["error"]
        if "data" in outcome:
            return outcome["data"]
        self._remaining()
        raise TrustServiceTimeout(f"Trust service request for {ref.name} exceeded its deadline")

    def _round_trip(self, ref: ImageReference) -> TrustData:
        path = f"/v2/{ref.name}/_trust/tuf/targets.json"
        try:
            with self._http.stream("GET", path, timeout=httpx.Timeout(self._remaining())) as response:
                if response.status_code == 404:
                    raise UnsignedRepository(f"No trust data for {ref.name}")
                if response.status_code != 200:
                    raise TrustServiceUnavailable(
                        f"Trust service returned HTTP {response.status_code} for {ref.name}"
                    )
                body = bytearray()
                for chunk in response.iter_bytes():
                    self._remaining()
                    body.extend(chunk)
                    if len(body) > MAX_TARGETS_BYTES:
                        raise MalformedTrustData(f"Targets for {ref.name} exceed {MAX_TARGETS_BYTES} bytes")
        except httpx.TimeoutException as e:
            raise TrustServiceTimeout(f"Trust service timed out for {ref.name}") from e
        except (httpx.HTTPError, RuntimeError) as e:
            # a client closed by cancellation surfaces as a transport error
            if self._cancel is not None and self._cancel.cancelled:
                raise TrustServiceCancelled("Trust service request cancelled") from e
            raise TrustServiceUnavailable(f"Trust service unreachable for {ref.name}: {e}") from e

        self._remaining()
        return parse_targets(ref.name, bytes(body))


class TrustClientFactory:
    """Opens one short-lived trust client per validation call.

    The factory itself holds only configuration and can be shared between
    threads. Each ``open`` creates its own HTTP client and closes it on exit,
    whether the call succeeded, failed, timed out or was cancelled.
    """

    def __init__(self, config: TrustServiceConfig, transport: Optional[httpx.BaseTransport] = None):
        self.config = config
        self._transport = transport

    @contextmanager
    def open(self, ref: ImageReference, cancel: Optional[CancelToken] = None) -> Iterator[TrustClient]:
        deadline = time.monotonic() + self.config.timeout
        http = httpx.Client(
            base_url=self.config.url.rstrip("/"),
            timeout=httpx.Timeout(self.config.timeout),
            transport=self._transport,
            headers={"Accept": "application/json"},
        )
        unregister = cancel.register(http.close) if cancel is not None else (lambda: None)
        try:
            logger.debug(f"Opened trust client for {ref.name}")
            yield NotaryTrustClient(http, deadline, cancel)
        finally:
            unregister()
            http.close()


class _StaticTrustClient(TrustClient):

    def __init__(self, signed: Mapping[str, FrozenSet[str]]):
        self._signed = signed

    def fetch(self, ref: ImageReference) -> TrustData:
        digests = self._signed.get(ref.name.lower())
        if not digests:
            raise UnsignedRepository(f"No trust data for {ref.name}")
        return TrustData(repository=ref.name, digests=digests)


class StaticTrustClientFactory:
    """Deterministic in-memory trust service.

    ``signed`` maps repository names (``registry/repository``) to their signed
    digests. ``failures`` maps repository names to the ``TrustServiceError``
    type that opening a client for them raises. Every ``open`` is recorded in
    ``calls``.
    """

    def __init__(self, signed: Optional[Mapping[str, Iterable[str]]] = None,
                 failures: Optional[Mapping[str, Type[TrustServiceError]]] = None):
        self._signed: Dict[str, FrozenSet[str]] = {
            name.lower(): frozenset(d.lower() for d in digests)
            for name, digests in (signed or {}).items()
        }
        self._failures = {name.lower(): error for name, error in (failures or {}).items()}
        self._lock = threading.Lock()
        self.calls: List[str] = []

    @classmethod
    def from_file(cls, path: str) -> 'StaticTrustClientFactory':
        """Load ``{repository: [digest, ...]}`` from a YAML file."""
        try:
            with open(path, 'r') as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ConfigError(f"Unable to read trust data from {path}: {e}") from e
        if not isinstance(data, dict):
            raise ConfigError(f"Trust data in {path} must be a mapping of repository to digests")
        return cls(signed={name: list(digests or []) for name, digests in data.items()})

    @property
    def call_count(self) -> int:
        with self._lock:
            return len(self.calls)

    @contextmanager
    def open(self, ref: ImageReference, cancel: Optional[CancelToken] = None) -> Iterator[TrustClient]:
        with self._lock:
            self.calls.append(ref.name)
        if cancel is not None and cancel.cancelled:
            raise TrustServiceCancelled("Trust service request cancelled")
        failure = self._failures.get(ref.name.lower())
        if failure is not None:
            raise failure(f"Simulated {failure.__name__} for {ref.name}")
        yield _StaticTrustClient(self._signed)
