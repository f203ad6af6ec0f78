import hashlib
import json

import pytest

from webcam_overlay.exceptions import ConfigurationError, ModelLoadFailure
from webcam_overlay.inference.base import InferenceEngine
from webcam_overlay.session import (
    ModelConfig,
    OutputLayout,
    list_models,
    load_model_session,
    resolve_input_size,
)
from webcam_overlay.utils.config import InferenceConfig, ModelsConfig


class FakeEngine(InferenceEngine):
    def __init__(self, path, declared=None, fail=False):
        self.path = path
        self.declared = declared
        self.fail = fail
        self.loaded = False
        self.closed = False

    def load(self):
        if self.fail:
            raise RuntimeError("corrupt graph")
        self.loaded = True

    def run(self, tensor):
        raise NotImplementedError

    def declared_input_size(self):
        return self.declared

    def close(self):
        self.closed = True


def _write_model(root, name, labels, metadata=None, graph=b"graph-bytes"):
    model_dir = root / name
    model_dir.mkdir(parents=True)
    (model_dir / "best.onnx").write_bytes(graph)
    if labels is not None:
        (model_dir / "labels.json").write_text(json.dumps(labels), encoding="utf-8")
    if metadata is not None:
        (model_dir / "model.json").write_text(json.dumps(metadata), encoding="utf-8")
    return model_dir


def _load(root, name, declared=None, fail=False, **models_kwargs):
    engines = []

    def factory(path, inference):
        engine = FakeEngine(path, declared=declared, fail=fail)
        engines.append(engine)
        return engine

    models = ModelsConfig(models_dir=str(root), **models_kwargs)
    session = load_model_session(name, models, InferenceConfig(), engine_factory=factory)
    return session, engines


def test_list_models_only_returns_dirs_with_graph(tmp_path):
    _write_model(tmp_path, "yolo", ["person"])
    _write_model(tmp_path, "coco", ["person", "car"])
    (tmp_path / "empty").mkdir()

    assert list_models(str(tmp_path)) == ["coco", "yolo"]
    assert list_models(str(tmp_path / "missing")) == []


def test_load_session_with_defaults(tmp_path):
    _write_model(tmp_path, "pets", ["cat", "dog"])

    session, engines = _load(tmp_path, "pets")

    assert session.name == "pets"
    assert session.config.labels == ("cat", "dog")
    assert session.config.input_size == (640, 640)
    assert session.config.output_layout is OutputLayout.INTERLEAVED
    assert engines[0].loaded


def test_declared_input_size_wins_over_metadata(tmp_path):
    _write_model(tmp_path, "pets", ["cat"], metadata={"input_size": [320, 320], "output_layout": "planar"})

    session, _ = _load(tmp_path, "pets", declared=(416, 416))

    assert session.config.input_size == (416, 416)
    assert session.config.output_layout is OutputLayout.PLANAR


def test_metadata_input_size_used_for_dynamic_graph(tmp_path):
    _write_model(tmp_path, "pets", ["cat"], metadata={"input_size": 320})

    session, _ = _load(tmp_path, "pets")

    assert session.config.input_size == (320, 320)


def test_missing_labels_fail(tmp_path):
    _write_model(tmp_path, "pets", None)

    with pytest.raises(ModelLoadFailure) as exc_info:
        _load(tmp_path, "pets")
    assert exc_info.value.model_name == "pets"


@pytest.mark.parametrize("labels", [[], {"0": "cat"}, ["cat", 3]])
def test_invalid_labels_fail(tmp_path, labels):
    _write_model(tmp_path, "pets", labels)

    with pytest.raises(ModelLoadFailure):
        _load(tmp_path, "pets")


def test_missing_graph_fails(tmp_path):
    with pytest.raises(ModelLoadFailure):
        _load(tmp_path, "nothing")


def test_engine_load_error_is_chained(tmp_path):
    _write_model(tmp_path, "pets", ["cat"])

    with pytest.raises(ModelLoadFailure) as exc_info:
        _load(tmp_path, "pets", fail=True)
    assert isinstance(exc_info.value.__cause__, RuntimeError)
    assert "corrupt graph" in exc_info.value.details


def test_checksum_mismatch_fails(tmp_path):
    _write_model(tmp_path, "pets", ["cat"], metadata={"sha256": "0" * 64})

    with pytest.raises(ModelLoadFailure, match="SHA256"):
        _load(tmp_path, "pets")


def test_checksum_match_loads(tmp_path):
    digest = hashlib.sha256(b"graph-bytes").hexdigest()
    _write_model(tmp_path, "pets", ["cat"], metadata={"sha256": f"sha256:{digest.upper()}"})

    session, _ = _load(tmp_path, "pets")

    assert session.name == "pets"


def test_unknown_layout_fails(tmp_path):
    _write_model(tmp_path, "pets", ["cat"], metadata={"output_layout": "sideways"})

    with pytest.raises(ModelLoadFailure):
        _load(tmp_path, "pets")


@pytest.mark.parametrize("name", ["../etc", "a/b", "..", ""])
def test_path_like_names_rejected(tmp_path, name):
    with pytest.raises(ModelLoadFailure):
        _load(tmp_path, name)


@pytest.mark.parametrize(
    "value, expected",
    [("interleaved", OutputLayout.INTERLEAVED), ("ROWS", OutputLayout.INTERLEAVED), ("chw", OutputLayout.PLANAR)],
)
def test_layout_parse(value, expected):
    assert OutputLayout.parse(value) is expected


def test_resolve_input_size_default():
    assert resolve_input_size(None, {}, (640, 640)) == (640, 640)


def test_model_config_requires_labels():
    with pytest.raises(ConfigurationError):
        ModelConfig(input_width=640, input_height=640, labels=())


def test_unsupported_engine_is_load_failure(tmp_path):
    _write_model(tmp_path, "pets", ["cat"])
    models = ModelsConfig(models_dir=str(tmp_path))

    with pytest.raises(ModelLoadFailure) as exc_info:
        load_model_session("pets", models, InferenceConfig(engine="tensorrt"))
    assert isinstance(exc_info.value.__cause__, ValueError)


@pytest.mark.parametrize("input_size", [{"w": 640}, "640", True, [640, "480"], [0, 640], [640, 480, 3]])
def test_malformed_input_size_is_load_failure(tmp_path, input_size):
    _write_model(tmp_path, "pets", ["cat"], metadata={"input_size": input_size})

    with pytest.raises(ModelLoadFailure) as exc_info:
        _load(tmp_path, "pets")
    assert "input_size" in exc_info.value.details


def test_malformed_input_size_closes_engine(tmp_path):
    _write_model(tmp_path, "pets", ["cat"], metadata={"input_size": "640"})
    engines = []

    def factory(path, inference):
        engine = FakeEngine(path)
        engines.append(engine)
        return engine

    with pytest.raises(ModelLoadFailure):
        load_model_session("pets", ModelsConfig(models_dir=str(tmp_path)), InferenceConfig(), engine_factory=factory)
    assert engines[0].closed


def test_non_string_checksum_is_load_failure(tmp_path):
    _write_model(tmp_path, "pets", ["cat"], metadata={"sha256": 1234})

    with pytest.raises(ModelLoadFailure):
        _load(tmp_path, "pets")
