#!/usr/bin/env python3
from __future__ import annotations

import argparse
from pathlib import Path

from branchnet.builders import build_model
from branchnet.dsl.api import DSLValidationError, load_validate_yaml
from branchnet.errors import CompileError


def main() -> int:
    ap = argparse.ArgumentParser(description="Validate a model YAML config")
    ap.add_argument("--cfg", type=str, required=True, help="Path to YAML config")
    ap.add_argument("--compile", action="store_true", help="Also compile the layers and print the summary")
    args = ap.parse_args()
    path = Path(args.cfg)
    try:
        cfg = load_validate_yaml(path)
        model = build_model(cfg, restore=False)[0] if args.compile else None
    except (DSLValidationError, CompileError) as e:
        print("INVALID\n---")
        print(e)
        return 1
    print("VALID\n---")
    print(cfg.model_dump_json(indent=2, exclude_none=True))
    if model is not None:
        print("---")
        print(model.summary())
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
