from .aggregator import RequirementAggregator, RequirementSet, Resolution, parse_module_list
from .artifact import artifact_path, read_artifact, write_artifact
from .closure import DependencyResolver
from .constraints import UnsatisfiableConstraintError, check_firmware_fallback
from .manifest import (
    CommandTable,
    DependencyManifest,
    ModuleNameError,
    load_module_metadata,
    normalize_name,
)
from .mapper import ModuleMapper, classify_device
from .rules import RuleTable, builtin_rules, load_rules
from .sources import ScriptSource

__all__ = [
    "CommandTable",
    "DependencyManifest",
    "DependencyResolver",
    "ModuleMapper",
    "ModuleNameError",
    "RequirementAggregator",
    "RequirementSet",
    "Resolution",
    "RuleTable",
    "ScriptSource",
    "UnsatisfiableConstraintError",
    "artifact_path",
    "builtin_rules",
    "check_firmware_fallback",
    "classify_device",
    "load_module_metadata",
    "load_rules",
    "normalize_name",
    "parse_module_list",
    "read_artifact",
    "write_artifact",
]
