from __future__ import annotations

from typing import AbstractSet, FrozenSet, Iterable, List, Set

from .manifest import DependencyManifest, normalize_name


class DependencyResolver:
    """Transitive dependency closure over a DependencyManifest.

    Walks depth first with an explicit stack; the visited set is what makes
    manifest cycles terminate.
    """

    def __init__(self, manifest: DependencyManifest):
        self.manifest = manifest

    def resolve(self, name: str, visited: AbstractSet[str] = frozenset()) -> FrozenSet[str]:
        """All names reachable from ``name`` (itself included) not in ``visited``."""
        seen: Set[str] = {normalize_name(v) for v in visited}
        start = normalize_name(name)
        if not start or start in seen:
            return frozenset()

        found: Set[str] = set()
        stack: List[str] = [start]
        while stack:
            current = stack.pop()
            if current in seen:
                continue
            seen.add(current)
            found.add(current)
            for dep in self.manifest.dependencies(current):
                dep = normalize_name(dep)
                if dep and dep not in seen:
                    stack.append(dep)
        return frozenset(found)

    def closure(self, names: Iterable[str]) -> FrozenSet[str]:
        out: Set[str] = set()
        for name in names:
            out |= self.resolve(name, out)
        return frozenset(out)

    def missing_dependencies(self, names: AbstractSet[str]) -> FrozenSet[str]:
        """Direct dependencies of ``names`` that are not themselves in ``names``."""
        normalized = {normalize_name(n) for n in names}
        missing: Set[str] = set()
        for name in normalized:
            for dep in self.manifest.dependencies(name):
                if normalize_name(dep) not in normalized:
                    missing.add(normalize_name(dep))
        return frozenset(missing)
