from __future__ import annotations

# JSON Schema for the YAML model description; kind-specific requirements live in validators.py.

_INT_OR_PAIR: dict = {
    "oneOf": [
        {"type": "integer", "minimum": 1},
        {
            "type": "array",
            "items": {"type": "integer", "minimum": 1},
            "minItems": 2,
            "maxItems": 2,
        },
    ]
}

DSL_JSON_SCHEMA: dict = {
    "$schema": "https://json-schema.org/draft/2020-12/schema",
    "title": "branchnet model DSL v0.1",
    "type": "object",
    "required": ["model"],
    "properties": {
        "model": {
            "type": "object",
            "properties": {
                "input_shape": {
                    "type": "array",
                    "items": {"type": ["integer", "null"]},
                    "minItems": 1,
                },
                "layers": {"type": "array", "items": {"$ref": "#/definitions/layer"}},
                "seed": {"type": "integer"},
                "dtype": {"enum": ["float32", "float64"]},
                "device": {"type": "string"},
            },
            "required": ["input_shape", "layers"],
            "additionalProperties": False,
        },
        "train": {
            "type": "object",
            "properties": {
                "loss": {"enum": ["mse", "mae", "cross_entropy", "bce", "bce_logits", "huber"]},
                "optimizer": {
                    "type": "object",
                    "properties": {
                        "kind": {"enum": ["sgd", "adam", "adamw", "rmsprop"]},
                        "lr": {"type": "number", "exclusiveMinimum": 0},
                        "weight_decay": {"type": "number", "minimum": 0},
                        "momentum": {"type": "number", "minimum": 0},
                        "betas": {
                            "type": "array",
                            "items": {"type": "number"},
                            "minItems": 2,
                            "maxItems": 2,
                        },
                    },
                },
                "epochs": {"type": "integer", "minimum": 1},
                "batch_size": {"type": "integer", "minimum": 1},
                "shuffle": {"type": "boolean"},
                "checkpoint": {
                    "type": "object",
                    "properties": {
                        "path": {"type": "string"},
                        "restore": {"type": "boolean"},
                        "every": {"type": "integer", "minimum": 1},
                    },
                },
            },
        },
    },
    "definitions": {
        "layer": {
            "type": "object",
            "properties": {
                "kind": {
                    "enum": [
                        "dense",
                        "conv2d",
                        "transpose_conv2d",
                        "upsampling2d",
                        "resize2d",
                        "dropout",
                        "activation",
                        "reshape",
                        "flatten",
                        "branch_open",
                        "branch_close",
                        "concat",
                        "add",
                        "parallel",
                    ]
                },
                "units": {"type": "integer", "minimum": 1},
                "bias": {"type": "boolean"},
                "out_channels": {"type": "integer", "minimum": 1},
                "kernel": _INT_OR_PAIR,
                "strides": _INT_OR_PAIR,
                "dilations": _INT_OR_PAIR,
                "padding": {"enum": ["same", "valid"]},
                "size": {
                    "oneOf": [
                        {"type": "number", "exclusiveMinimum": 0},
                        {
                            "type": "array",
                            "items": {"type": "number", "exclusiveMinimum": 0},
                            "minItems": 2,
                            "maxItems": 2,
                        },
                    ]
                },
                "interpolation": {"enum": ["area", "bicubic", "bilinear", "nearest"]},
                "rate": {"type": "number", "minimum": 0, "exclusiveMaximum": 1},
                "activation": {
                    "enum": ["relu", "sigmoid", "tanh", "softmax", "gelu", "silu", "elu", "leaky_relu"]
                },
                "shape": {"type": "array", "items": {"type": "integer"}, "minItems": 1},
                "axis": {"type": "integer"},
                "arity": {"type": "integer", "minimum": 1},
                "branches": {
                    "type": "array",
                    "items": {"type": "array", "items": {"$ref": "#/definitions/layer"}},
                    "minItems": 1,
                },
                "join": {"$ref": "#/definitions/layer"},
            },
            "required": ["kind"],
            "additionalProperties": False,
        },
    },
}
