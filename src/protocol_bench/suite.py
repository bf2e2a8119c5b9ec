"""
YAML benchmark suite loader.

Example suite::

    run:
      iterations: 1000
      warmup_iterations: 100
    compare:
      tolerance: 0.0
      baseline: native/query
    profiles:
      native:
        driver: mysql
        host: ${MYSQL_HOST:-localhost}
        port: 3306
        username: root
        password_env: MYSQL_PASSWORD
        database: protocols
        pool: {max_open: 10, max_idle: 5}
      native-compressed:
        extends: native
        compression: true
      emulated:
        extends: native
        port: 3307
    operations:
      query: {kind: scalar, sql: "select 123 as id"}
      bind: {kind: prepared, sql: "select title from products where id = %s", args: [1]}
    cases:
      - {label: native/query, profile: native, operation: query}
      - {label: emulated/query, profile: emulated, operation: query}

When ``cases`` is omitted every profile is paired with every operation.
"""

import dataclasses
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml

from protocol_bench.config import BenchmarkCase, RunConfig
from protocol_bench.drivers import get_driver
from protocol_bench.errors import InvalidProfile, SuiteError
from protocol_bench.operations import OPERATION_KINDS, OperationSpec
from protocol_bench.profile import DEFAULT_PORTS, ConnectionProfile, PoolLimits

_ENV_PATTERN = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)(?::-([^}]*))?\}")

_PROFILE_KEYS = {
    "driver", "host", "port", "username", "password", "password_env", "database",
    "compression", "options", "pool", "connect_timeout", "dsn", "extends",
}

_DSN_FIELDS = ("driver", "host", "port", "username", "password", "password_env", "database")

_TRUE_VALUES = {"1", "true", "yes", "on"}

_POOL_INTS = ("max_open", "max_idle")


def _coerce(key: str, value: Any) -> Any:
    # Values produced by ${VAR} expansion arrive as strings
    if not isinstance(value, str):
        return value
    if key == "port" and value.strip().isdigit():
        return int(value)
    if key == "compression":
        return value.strip().lower() in _TRUE_VALUES
    if key == "connect_timeout":
        try:
            return float(value)
        except ValueError:
            raise SuiteError(f"connect_timeout must be a number, got {value!r}") from None
    return value


def _coerce_pool(name: str, key: str, value: Any) -> Any:
    if not isinstance(value, str):
        return value
    convert = int if key in _POOL_INTS else float
    try:
        return convert(value.strip())
    except ValueError:
        raise SuiteError(f"Profile {name!r}: pool.{key} must be a number, got {value!r}") from None


def check_tolerance(value: Any) -> float:
    """Tolerance as a float in [0, 1]; anything else is a SuiteError."""
    try:
        tolerance = float(value)
    except (TypeError, ValueError):
        raise SuiteError(f"tolerance must be a number, got {value!r}") from None
    if not 0.0 <= tolerance <= 1.0:
        raise SuiteError(f"tolerance must be between 0 and 1, got {tolerance}")
    return tolerance


def check_driver(profile: ConnectionProfile) -> None:
    """Raise InvalidProfile if no driver serves the profile or it asks for unsupported options."""
    errors = get_driver(profile.driver).unsupported_options(profile)
    if errors:
        raise InvalidProfile(errors, name=profile.name)


@dataclass
class Suite:
    run_config: RunConfig
    cases: List[BenchmarkCase]
    tolerance: float = 0.0
    baseline: Optional[str] = None
    profiles: Dict[str, ConnectionProfile] = field(default_factory=dict)

    def select(self, labels: List[str]) -> "Suite":
        """Copy restricted to the given case labels."""
        known = {case.label for case in self.cases}
        unknown = [label for label in labels if label not in known]
        if unknown:
            raise SuiteError(f"Unknown case labels: {', '.join(unknown)}")
        cases = [case for case in self.cases if case.label in labels]
        baseline = self.baseline if self.baseline in labels else None
        return dataclasses.replace(self, cases=cases, baseline=baseline)


def expand_env(value: Any, environ: Optional[Dict[str, str]] = None) -> Any:
    """Expand ``${VAR}`` and ``${VAR:-default}`` in every string of ``value``."""
    env = os.environ if environ is None else environ

    if isinstance(value, str):
        def replace(match):
            name, default = match.group(1), match.group(2)
            if name in env:
                return env[name]
            if default is not None:
                return default
            raise SuiteError(f"Environment variable {name} is not set")
        return _ENV_PATTERN.sub(replace, value)
    if isinstance(value, dict):
        return {k: expand_env(v, env) for k, v in value.items()}
    if isinstance(value, list):
        return [expand_env(v, env) for v in value]
    return value


def _resolve_profile_spec(name: str, specs: Dict[str, Dict], seen: List[str]) -> Dict:
    if name in seen:
        raise SuiteError(f"Circular 'extends' chain: {' -> '.join(seen + [name])}")
    if name not in specs:
        raise SuiteError(f"Unknown profile {name!r}")

    if not isinstance(specs[name], dict):
        raise SuiteError(f"Profile {name!r} must be a mapping")
    spec = dict(specs[name])
    parent = spec.pop("extends", None)
    if parent is None:
        return spec

    merged = _resolve_profile_spec(parent, specs, seen + [name])
    if "dsn" in spec:
        # A child DSN replaces the parent's target and credentials
        for key in _DSN_FIELDS:
            merged.pop(key, None)
    pool = dict(merged.get("pool") or {})
    pool.update(spec.get("pool") or {})
    options = dict(merged.get("options") or {})
    options.update(spec.get("options") or {})
    merged.update(spec)
    merged["pool"] = pool
    merged["options"] = options
    return merged


def build_profile(name: str, spec: Dict[str, Any],
                  environ: Optional[Dict[str, str]] = None) -> ConnectionProfile:
    env = os.environ if environ is None else environ
    unknown = set(spec) - _PROFILE_KEYS
    if unknown:
        raise SuiteError(f"Profile {name!r}: unknown keys {sorted(unknown)}")

    pool_spec = spec.get("pool") or {}
    if not isinstance(pool_spec, dict):
        raise SuiteError(f"Profile {name!r}: pool must be a mapping")
    try:
        pool = PoolLimits(**{
            key: _coerce_pool(name, key, value) for key, value in pool_spec.items()
        })
    except TypeError as e:
        raise SuiteError(f"Profile {name!r}: invalid pool settings: {e}") from e

    password = spec.get("password", "")
    password_env = spec.get("password_env")
    if password_env:
        if password_env not in env:
            raise SuiteError(f"Profile {name!r}: environment variable {password_env} is not set")
        password = env[password_env]

    overrides = {}
    for key in ("compression", "connect_timeout", "database", "username", "host", "port"):
        if key in spec:
            overrides[key] = _coerce(key, spec[key])
    if password:
        overrides["password"] = password
    if spec.get("options"):
        overrides["options"] = {str(k): str(v) for k, v in spec["options"].items()}

    if "dsn" in spec:
        return ConnectionProfile.from_dsn(
            name, spec["dsn"], driver=spec.get("driver"), pool=pool, **overrides
        )

    driver = spec.get("driver", "")
    overrides.setdefault("port", DEFAULT_PORTS.get(driver, 0))
    overrides.setdefault("host", "")
    overrides.setdefault("username", "")
    return ConnectionProfile(name=name, driver=driver, pool=pool, **overrides)


def build_operation(name: str, spec: Union[Dict[str, Any], str]) -> OperationSpec:
    if isinstance(spec, str):
        spec = {"kind": "scalar", "sql": spec}

    kind = spec.get("kind", "scalar")
    if kind not in OPERATION_KINDS:
        raise SuiteError(
            f"Operation {name!r}: unknown kind {kind!r} "
            f"(expected one of {', '.join(sorted(OPERATION_KINDS))})"
        )
    if kind == "liveness":
        return OPERATION_KINDS[kind]()
    if not spec.get("sql"):
        raise SuiteError(f"Operation {name!r}: sql is required")
    if kind == "prepared":
        return OPERATION_KINDS[kind](spec["sql"], tuple(spec.get("args") or ()))
    return OPERATION_KINDS[kind](spec["sql"])


def build_run_config(spec: Dict[str, Any]) -> RunConfig:
    try:
        config = RunConfig(**spec)
    except TypeError as e:
        raise SuiteError(f"Invalid run settings: {e}") from e
    errors = config.validate()
    if errors:
        raise SuiteError("Invalid run settings:\n" + "\n".join(errors))
    return config


def parse_suite(data: Dict[str, Any], environ: Optional[Dict[str, str]] = None) -> Suite:
    if not isinstance(data, dict):
        raise SuiteError("Suite must be a mapping")

    data = expand_env(data, environ)

    profile_specs = data.get("profiles") or {}
    operation_specs = data.get("operations") or {}
    if not profile_specs:
        raise SuiteError("Suite defines no profiles")
    if not operation_specs:
        raise SuiteError("Suite defines no operations")

    profiles = {}
    for name in profile_specs:
        spec = _resolve_profile_spec(name, profile_specs, [])
        try:
            profiles[name] = build_profile(name, spec, environ)
            check_driver(profiles[name])
        except InvalidProfile as e:
            raise SuiteError(str(e)) from e

    operations = {name: build_operation(name, spec) for name, spec in operation_specs.items()}

    case_specs = data.get("cases")
    if case_specs is None:
        case_specs = [
            {"label": f"{p}/{o}", "profile": p, "operation": o}
            for p in profiles
            for o in operations
        ]

    cases = []
    labels = set()
    if not isinstance(case_specs, list):
        raise SuiteError("cases must be a list")
    for spec in case_specs:
        if not isinstance(spec, dict):
            raise SuiteError(f"Case entries must be mappings, got {spec!r}")
        profile_name = spec.get("profile")
        operation_name = spec.get("operation")
        if profile_name not in profiles:
            raise SuiteError(f"Case references unknown profile {profile_name!r}")
        if operation_name not in operations:
            raise SuiteError(f"Case references unknown operation {operation_name!r}")
        label = spec.get("label") or f"{profile_name}/{operation_name}"
        if label in labels:
            raise SuiteError(f"Duplicate case label {label!r}")
        labels.add(label)
        cases.append(BenchmarkCase(label, profiles[profile_name], operations[operation_name]))

    compare = data.get("compare") or {}
    baseline = compare.get("baseline")
    if baseline is not None and baseline not in labels:
        raise SuiteError(f"Baseline {baseline!r} is not a case label")

    return Suite(
        run_config=build_run_config(data.get("run") or {}),
        cases=cases,
        tolerance=check_tolerance(compare.get("tolerance", 0.0)),
        baseline=baseline,
        profiles=profiles,
    )


def load_suite(path: Union[str, Path], environ: Optional[Dict[str, str]] = None) -> Suite:
    """
    Load a suite file.

    Raises:
        SuiteError: unreadable file, invalid YAML or invalid contents
    """
    try:
        with open(path) as f:
            data = yaml.safe_load(f)
    except OSError as e:
        raise SuiteError(f"Cannot read suite {path}: {e}") from e
    except yaml.YAMLError as e:
        raise SuiteError(f"Invalid YAML in {path}: {e}") from e

    return parse_suite(data, environ)
