from __future__ import annotations

import threading
from pathlib import Path

import pytest
import torch

from branchnet.builders import build_model
from branchnet.data import create_synthetic_dataset
from branchnet.dsl.api import load_validate_dict
from branchnet.errors import CheckpointError
from branchnet.layers import Activation, BranchClose, BranchOpen, Concat, Dense, Dropout, Scope
from branchnet.train import Model, build_optimizer, compile_model
from branchnet.train.engine import iter_batches


def _layers():
    return [
        Dense(8),
        Activation("tanh"),
        BranchOpen(),
        Dense(4),
        BranchClose(),
        BranchOpen(),
        Dense(2),
        BranchClose(),
        Concat(),
        Dense(3),
    ]


def _model(tmp_path: Path, optim="sgd", **kwargs) -> Model:
    return compile_model(
        _layers(),
        "mse",
        optim,
        (None, 5),
        path=tmp_path / "model.ckpt",
        scope=Scope(seed=0),
        **kwargs,
    )


def test_fit_lowers_loss(tmp_path: Path) -> None:
    x, y = create_synthetic_dataset((None, 5), (None, 3), samples=32)
    model = _model(tmp_path, optim=lambda params: build_optimizer(params, "sgd", lr=0.1))
    result = model.fit(x, y, epochs=20, batch_size=8)
    assert len(result.loss_history) == 20
    assert result.batches == 20 * 4
    assert result.loss_history[-1] < result.loss_history[0]
    assert model.epoch == 20
    assert result.metadata["n_params"] == model.compiled.n_params


def test_eval_does_not_change_parameters(tmp_path: Path) -> None:
    x, y = create_synthetic_dataset((None, 5), (None, 3), samples=16)
    model = _model(tmp_path)
    before = [p.detach().clone() for p in model.parameters]
    loss = model.eval(x, y, batch_size=5)
    for old, new in zip(before, model.parameters):
        assert torch.equal(old, new)
    expected = torch.nn.functional.mse_loss(model.predict(x), y).item()
    assert loss == pytest.approx(expected, rel=1e-5)


def test_eval_disables_dropout(tmp_path: Path) -> None:
    layers = [Dense(4), Dropout(0.5)]
    model = compile_model(layers, "mse", "adam", (None, 3), path=tmp_path / "m.ckpt")
    x = torch.randn(6, 3)
    assert torch.equal(model.predict(x), model.predict(x))


def test_optimizer_tracks_collected_parameters_in_order(tmp_path: Path) -> None:
    model = _model(tmp_path, optim="adam")
    group = model.optimizer.param_groups[0]["params"]
    assert [id(p) for p in group] == [id(p) for p in model.parameters]
    assert [id(p) for p in model.parameters] == [id(p) for p in model.compiled.parameters]


def test_checkpoint_round_trip(tmp_path: Path) -> None:
    x, y = create_synthetic_dataset((None, 5), (None, 3), samples=16)
    model = _model(tmp_path, optim="adam")
    model.fit(x, y, epochs=2)
    path = model.save()
    assert path.exists()

    restored = _model(tmp_path, optim="adam", restore=True)
    assert restored.epoch == 2
    for saved, loaded in zip(model.parameters, restored.parameters):
        assert torch.equal(saved, loaded)
    assert torch.allclose(model.predict(x), restored.predict(x))


def test_restore_missing_checkpoint(tmp_path: Path) -> None:
    with pytest.raises(CheckpointError) as info:
        _model(tmp_path, restore=True)
    assert "does not exist" in str(info.value)


def test_restore_incompatible_checkpoint(tmp_path: Path) -> None:
    small = compile_model([Dense(3)], "mse", "sgd", (None, 5), path=tmp_path / "model.ckpt")
    small.save()
    with pytest.raises(CheckpointError):
        _model(tmp_path, restore=True)


def test_restore_garbage_checkpoint(tmp_path: Path) -> None:
    (tmp_path / "model.ckpt").write_bytes(b"not a checkpoint")
    with pytest.raises(CheckpointError):
        _model(tmp_path, restore=True)


def test_checkpoint_every_writes_file(tmp_path: Path) -> None:
    x, y = create_synthetic_dataset((None, 5), (None, 3), samples=8)
    model = _model(tmp_path, checkpoint_every=2)
    model.fit(x, y, epochs=1)
    assert not (tmp_path / "model.ckpt").exists()
    model.fit(x, y, epochs=1)
    assert (tmp_path / "model.ckpt").exists()


def test_fit_without_parameters_raises(tmp_path: Path) -> None:
    model = compile_model([Activation("relu")], "mse", "sgd", (None, 4), path=tmp_path / "m.ckpt")
    assert model.optimizer is None
    x = torch.randn(4, 4)
    with pytest.raises(RuntimeError):
        model.fit(x, x)
    assert torch.equal(model.predict(x), torch.relu(x))


def test_summary_lists_every_layer(tmp_path: Path) -> None:
    model = _model(tmp_path)
    lines = model.summary().splitlines()
    assert len(lines) == len(_layers()) + 1
    assert lines[-1] == f"trainable parameters: {model.compiled.n_params}"


def test_restore_keeps_optimizer_state_per_parameter(tmp_path: Path) -> None:
    x, y = create_synthetic_dataset((None, 5), (None, 3), samples=16)
    model = _model(tmp_path, optim="adam")
    model.fit(x, y, epochs=2, batch_size=8)
    model.save()
    restored = _model(tmp_path, optim="adam", restore=True)

    saved = model.optimizer.state_dict()["state"]
    loaded = restored.optimizer.state_dict()["state"]
    assert sorted(loaded) == sorted(saved) == list(range(len(model.parameters)))
    for index, param in enumerate(restored.parameters):
        assert loaded[index]["exp_avg"].shape == param.shape
        assert torch.equal(loaded[index]["exp_avg"], saved[index]["exp_avg"])
        assert torch.equal(loaded[index]["exp_avg_sq"], saved[index]["exp_avg_sq"])


def test_predict_waits_for_training_step(tmp_path: Path) -> None:
    x, y = create_synthetic_dataset((None, 5), (None, 3), samples=4)
    model = _model(tmp_path)
    blocked = []
    threads = []

    def loss(predictions, targets):
        if not threads:
            worker = threading.Thread(target=model.predict, args=(x,))
            threads.append(worker)
            worker.start()
            # the step holds the model lock, so predict cannot finish yet
            worker.join(timeout=0.2)
            blocked.append(worker.is_alive())
        return torch.nn.functional.mse_loss(predictions, targets)

    model.loss = loss
    model.fit(x, y, epochs=1)
    threads[0].join(timeout=5)
    assert blocked == [True]
    assert not threads[0].is_alive()


def test_fit_trains_under_no_grad(tmp_path: Path) -> None:
    x, y = create_synthetic_dataset((None, 5), (None, 3), samples=8)
    model = _model(tmp_path)
    before = [p.detach().clone() for p in model.parameters]
    with torch.no_grad():
        model.fit(x, y, epochs=1)
    assert any(not torch.equal(old, new) for old, new in zip(before, model.parameters))


def test_float64_config_accepts_float32_data(tmp_path: Path) -> None:
    cfg = load_validate_dict(
        {
            "model": {
                "input_shape": [None, 4],
                "dtype": "float64",
                "layers": [{"kind": "dense", "units": 2}],
            },
            "train": {"checkpoint": {"path": str(tmp_path / "m.ckpt")}},
        }
    )
    model, _ = build_model(cfg)
    x, y = create_synthetic_dataset(model.input_shape, model.output_shape, samples=8)
    assert x.dtype == torch.float32
    result = model.fit(x, y, epochs=1)
    assert result.batches == 1
    assert model.predict(x).dtype == torch.float64
    assert model.eval(x, y) >= 0.0


def test_integer_targets_keep_their_dtype(tmp_path: Path) -> None:
    model = compile_model(
        [Dense(3)],
        "cross_entropy",
        "sgd",
        (None, 4),
        path=tmp_path / "m.ckpt",
        scope=Scope(dtype=torch.float64),
    )
    x, y = create_synthetic_dataset((None, 4), (None, 3), samples=6, task="classification")
    model.fit(x, y, epochs=1)
    assert model.eval(x, y) >= 0.0


def test_empty_input(tmp_path: Path) -> None:
    model = compile_model([Dense(2)], "mse", "sgd", (None, 3), path=tmp_path / "m.ckpt")
    x, y = torch.zeros(0, 3), torch.zeros(0, 2)
    assert model.predict(x).shape == (0, 2)
    assert model.predict(x, batch_size=4).shape == (0, 2)
    assert torch.isnan(torch.tensor(model.eval(x, y)))
    with pytest.raises(ValueError):
        model.fit(x, y)


def test_shuffled_batches_cover_every_sample_once() -> None:
    x = torch.arange(10).float().unsqueeze(1)
    first = [b for b, _ in iter_batches(x, None, 3, shuffle=True, generator=torch.Generator().manual_seed(4))]
    second = [b for b, _ in iter_batches(x, None, 3, shuffle=True, generator=torch.Generator().manual_seed(4))]
    assert [b.size(0) for b in first] == [3, 3, 3, 1]
    assert sorted(torch.cat(first).squeeze(1).tolist()) == list(range(10))
    assert all(torch.equal(a, b) for a, b in zip(first, second))


def test_fit_with_shuffle_uses_generator(tmp_path: Path) -> None:
    x, y = create_synthetic_dataset((None, 5), (None, 3), samples=12)
    first = _model(tmp_path)
    second = _model(tmp_path)
    a = first.fit(x, y, epochs=2, batch_size=5, shuffle=True, generator=torch.Generator().manual_seed(1))
    b = second.fit(x, y, epochs=2, batch_size=5, shuffle=True, generator=torch.Generator().manual_seed(1))
    assert a.batches == b.batches == 6
    assert a.loss_history == b.loss_history
