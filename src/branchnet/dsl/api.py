from __future__ import annotations

import json
from pathlib import Path

import yaml
from jsonschema import Draft202012Validator
from pydantic import ValidationError

from branchnet.errors import DSLValidationError

from .models import DSLConfig
from .schema import DSL_JSON_SCHEMA
from .validators import run_additional_checks


def dump_schema(path: Path) -> None:
    path.write_text(json.dumps(DSL_JSON_SCHEMA, indent=2))


def _validate_schema(cfg_dict: dict) -> None:
    validator = Draft202012Validator(DSL_JSON_SCHEMA)
    errors = sorted(validator.iter_errors(cfg_dict), key=lambda e: list(e.path))
    if errors:
        msg = "\n".join(
            [
                f"{list(e.path)}: {e.message}" if e.path else e.message
                for e in errors
            ]
        )
        raise DSLValidationError(msg)


def load_validate_dict(cfg_dict: dict) -> DSLConfig:
    if not isinstance(cfg_dict, dict):
        raise DSLValidationError("config must be a mapping")
    _validate_schema(cfg_dict)
    try:
        cfg = DSLConfig.model_validate(cfg_dict)
    except ValidationError as exc:
        raise DSLValidationError(str(exc)) from exc
    run_additional_checks(cfg)
    return cfg


def load_validate_yaml(path: Path) -> DSLConfig:
    try:
        cfg_dict = yaml.safe_load(Path(path).read_text())
    except yaml.YAMLError as exc:
        raise DSLValidationError(f"{path}: invalid YAML: {exc}") from exc
    return load_validate_dict(cfg_dict)


__all__ = ["DSLValidationError", "dump_schema", "load_validate_dict", "load_validate_yaml"]
