import asyncio
import json

import numpy as np
import onnx
import pytest
from fastapi.testclient import TestClient
from onnx import TensorProto, helper, numpy_helper

from host.app import create_app
from model.inference import Label, OnnxCellClassifier, predict
from model.lifecycle import ArtifactFetcher, ModelLifecycle, ModelLoadError, ModelState
from preprocessing.transforms import INPUT_SHAPE, to_input_tensor

CHANNEL_WEIGHTS = np.array([0.2, 0.3, 0.5], dtype=np.float32).reshape(1, 1, 1, 3)


def _write_weighted_mean_model(model_dir):
    """score = mean(input * w); w is stored in an external-data shard."""
    weights = numpy_helper.from_array(CHANNEL_WEIGHTS, name="channel_weights")
    graph = helper.make_graph(
        [
            helper.make_node("Mul", ["input", "channel_weights"], ["weighted"]),
            helper.make_node("ReduceMean", ["weighted"], ["score"], keepdims=1),
        ],
        "weighted_mean",
        [helper.make_tensor_value_info("input", TensorProto.FLOAT, list(INPUT_SHAPE))],
        [helper.make_tensor_value_info("score", TensorProto.FLOAT, [1, 1, 1, 1])],
        initializer=[weights],
    )
    model = helper.make_model(graph, opset_imports=[helper.make_opsetid("", 13)])
    model.ir_version = 8

    model_dir.mkdir(parents=True, exist_ok=True)
    onnx.save_model(
        model,
        str(model_dir / "model.onnx"),
        save_as_external_data=True,
        all_tensors_to_one_file=True,
        location="model.onnx.data",
        size_threshold=0,
    )
    descriptor = {
        "format": "onnx",
        "modelTopology": "model.onnx",
        "weightsManifest": [{"paths": ["model.onnx.data"]}],
        "inputShape": list(INPUT_SHAPE),
    }
    (model_dir / "model.json").write_text(json.dumps(descriptor), encoding="utf-8")


@pytest.fixture
def onnx_root(tmp_path):
    _write_weighted_mean_model(tmp_path / "model")
    return tmp_path


def test_onnx_model_with_external_weights_served_through_host(onnx_root):
    assert (onnx_root / "model" / "model.onnx.data").exists()
    client = TestClient(create_app(str(onnx_root)))
    lifecycle = ModelLifecycle("http://testserver/model/model.json", fetcher=ArtifactFetcher(session=client))

    classifier = asyncio.run(lifecycle.load())
    try:
        assert lifecycle.state is ModelState.LOADED
        assert isinstance(classifier, OnnxCellClassifier)

        white = np.full((30, 40, 3), 255, dtype=np.uint8)
        verdict = predict(classifier, to_input_tensor(white))
        # mean over channels of (1.0 * w) == (0.2 + 0.3 + 0.5) / 3
        assert verdict.score == pytest.approx(1.0 / 3.0, rel=1e-4)
        assert verdict.label is Label.NORMAL
        assert verdict.confidence == pytest.approx(2.0 / 3.0, rel=1e-4)
    finally:
        lifecycle.close()


def test_onnx_load_fails_when_weight_shard_missing(onnx_root):
    (onnx_root / "model" / "model.onnx.data").unlink()
    client = TestClient(create_app(str(onnx_root)))
    lifecycle = ModelLifecycle("http://testserver/model/model.json", fetcher=ArtifactFetcher(session=client))

    with pytest.raises(ModelLoadError):
        asyncio.run(lifecycle.load())
    assert lifecycle.state is ModelState.FAILED
