"""Registry allow-list matching."""

from typing import Iterable, Tuple

from ..models.image import ImageReference


class RegistryAllowList:
    """Ordered set of registry patterns that are subject to signature enforcement.

    A pattern is either a bare host (``registry.example.com``) or a host with a
    path prefix (``registry.example.com/prod``). Patterns match on whole path
    segments, so ``registry.example.com/prod`` covers ``.../prod/app`` but not
    ``.../production``.
    """

    def __init__(self, patterns: Iterable[str] = ()):
        normalized = []
        for pattern in patterns:
            value = pattern.strip().lower().rstrip("/")
            if value and value not in normalized:
                normalized.append(value)
        self._patterns: Tuple[str, ...] = tuple(normalized)

    @property
    def patterns(self) -> Tuple[str, ...]:
        return self._patterns

    def __len__(self) -> int:
        return len(self._patterns)

    def __repr__(self) -> str:
        return f"RegistryAllowList({list(self._patterns)!r})"

    def matches(self, ref: ImageReference) -> bool:
        """Return True if the reference falls under any configured pattern."""
        name = ref.name.lower()
        for pattern in self._patterns:
            if name == pattern or name.startswith(pattern + "/"):
                return True
        return False


def parse_allowed_registries(value: str) -> RegistryAllowList:
    """Build an allow-list from a comma separated string."""
    if not value:
        return RegistryAllowList()
    return RegistryAllowList(value.split(","))
