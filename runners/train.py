#!/usr/bin/env python3
from __future__ import annotations

import argparse
from pathlib import Path

from branchnet.builders import build_model
from branchnet.data import create_synthetic_dataset
from branchnet.dsl.api import load_validate_yaml


def main() -> int:
    parser = argparse.ArgumentParser(description="Fit a model config on a synthetic dataset")
    parser.add_argument("--cfg", required=True, type=Path, help="Path to model YAML config")
    parser.add_argument("--epochs", type=int, default=None, help="Override train.epochs")
    parser.add_argument("--samples", type=int, default=128)
    parser.add_argument("--seed", type=int, default=0)
    parser.add_argument("--restore", action="store_true", help="Restore from the configured checkpoint")
    args = parser.parse_args()

    cfg = load_validate_yaml(args.cfg)
    model, meta = build_model(cfg, restore=args.restore or None)
    task = "classification" if cfg.train.loss == "cross_entropy" else "regression"
    inputs, targets = create_synthetic_dataset(
        model.input_shape, model.output_shape, args.samples, task=task, seed=args.seed
    )
    print(model.summary())
    result = model.fit(
        inputs,
        targets,
        args.epochs or cfg.train.epochs,
        batch_size=cfg.train.batch_size,
        shuffle=cfg.train.shuffle,
        verbose=True,
    )
    print("Training complete")
    print(f"Epochs: {result.epochs} ({result.batches} batches)")
    print(f"Loss history: {result.loss_history}")
    print(f"Eval loss: {model.eval(inputs, targets):.6f}")
    print(f"Parameters: {meta.n_params}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
