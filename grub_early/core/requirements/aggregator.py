"""
Requirement aggregation: every boot script of the image -> final module list.

Order of operations:

    1. per source: extract tokens -> map to modules (provenance kept)
    2. peer artifacts merged as already-resolved names
    3. closure over the manifest
    4. operator extras + current-host feature modules, closed again
    5. firmware fallback check (may add native drivers, or abort)
    6. name validation, sorted output, optional artifact
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, FrozenSet, Iterable, List, Optional, Sequence, Set, Tuple

from grub_early.core.dialect.extractor import extract_tokens
from grub_early.core.dialect.tokens import CommandToken
from grub_early.core.observability.metrics import inc_failure, inc_modules, inc_tokens

from .artifact import read_artifact, write_artifact
from .closure import DependencyResolver
from .constraints import UnsatisfiableConstraintError, check_firmware_fallback
from .manifest import CommandTable, DependencyManifest, normalize_name, validate_module_name
from .mapper import ModuleMapper
from .rules import RuleTable, builtin_rules
from .sources import ScriptSource

_log = logging.getLogger("grub_early.aggregator")

EXTRA_LABEL = "extra"
HOST_FEATURES_LABEL = "host-features"
CONSTRAINT_LABEL = "constraint"


@dataclass(frozen=True)
class RequirementSet:
    label: str
    role: str
    tokens: FrozenSet[CommandToken]
    modules: FrozenSet[str]


@dataclass(frozen=True)
class Resolution:
    modules: Tuple[str, ...]
    provenance: Dict[str, Tuple[str, ...]] = field(default_factory=dict)
    per_source: Tuple[RequirementSet, ...] = ()
    added_drivers: Tuple[str, ...] = ()
    artifact: Optional[Path] = None

    def as_dict(self) -> Dict:
        return {
            "modules": list(self.modules),
            "provenance": {k: list(v) for k, v in sorted(self.provenance.items())},
            "sources": [
                {
                    "label": rs.label,
                    "role": rs.role,
                    "tokens": sorted(str(t) for t in rs.tokens),
                    "modules": sorted(rs.modules),
                }
                for rs in self.per_source
            ],
            "added_drivers": list(self.added_drivers),
        }


def parse_module_list(text: Optional[str]) -> List[str]:
    """Operator module list: flat, whitespace separated."""
    out: List[str] = []
    for raw in (text or "").split():
        name = validate_module_name(normalize_name(raw))
        if name not in out:
            out.append(name)
    return out


class RequirementAggregator:
    def __init__(
        self,
        manifest: DependencyManifest,
        commands: Optional[CommandTable] = None,
        rules: Optional[RuleTable] = None,
    ):
        self.rules = rules or builtin_rules()
        self.mapper = ModuleMapper(commands, self.rules)
        self.resolver = DependencyResolver(manifest)

    def requirements_for(self, source: ScriptSource) -> RequirementSet:
        tokens = extract_tokens(source.read())
        modules: Set[str] = set()
        for tok in tokens:
            modules |= self.mapper.map(tok)
        inc_tokens(source.role, len(tokens))
        _log.debug(
            "source label=%s role=%s tokens=%d modules=%s",
            source.label,
            source.role,
            len(tokens),
            " ".join(sorted(modules)),
        )
        return RequirementSet(
            label=source.label,
            role=source.role,
            tokens=tokens,
            modules=frozenset(modules),
        )

    def aggregate(
        self,
        sources: Sequence[ScriptSource],
        *,
        extra_modules: Iterable[str] = (),
        host_features: Iterable[str] = (),
        boot_buses: Iterable[str] = (),
        peer_artifacts: Iterable[Path] = (),
        artifact_path: Optional[Path] = None,
    ) -> Resolution:
        provenance: Dict[str, Set[str]] = {}

        def note(names: Iterable[str], labels: Iterable[str]) -> None:
            labels = list(labels)
            for n in names:
                provenance.setdefault(n, set()).update(labels)

        per_source: List[RequirementSet] = []
        for src in sources:
            rs = self.requirements_for(src)
            per_source.append(rs)
            note(rs.modules, [rs.label])

        for path in peer_artifacts:
            names = read_artifact(Path(path), required=False)
            note(names, [f"peer-artifact:{path}"])

        first_pass = set(provenance)
        inc_modules("first_pass", len(first_pass))

        # closure: dependencies inherit the labels of whatever pulled them in
        self._close(provenance)

        note((normalize_name(m) for m in extra_modules), [EXTRA_LABEL])
        note((normalize_name(m) for m in host_features), [HOST_FEATURES_LABEL])
        self._close(provenance)

        try:
            drivers = check_firmware_fallback(set(provenance), boot_buses, self.rules)
        except UnsatisfiableConstraintError:
            inc_failure("unsatisfiable_constraint")
            raise
        if drivers:
            note(drivers, [CONSTRAINT_LABEL])
            self._close(provenance)

        modules = tuple(sorted(validate_module_name(m) for m in provenance))
        inc_modules("final", len(modules))
        _log.info(
            "Resolved %d modules (%d from scripts, %d sources)",
            len(modules),
            len(first_pass),
            len(per_source),
        )

        written = write_artifact(artifact_path, modules) if artifact_path is not None else None
        return Resolution(
            modules=modules,
            provenance={k: tuple(sorted(v)) for k, v in provenance.items()},
            per_source=tuple(per_source),
            added_drivers=tuple(sorted(drivers)),
            artifact=written,
        )

    def _close(self, provenance: Dict[str, Set[str]]) -> None:
        for name in sorted(provenance):
            labels = provenance[name]
            for dep in self.resolver.resolve(name):
                provenance.setdefault(dep, set()).update(labels)
