"""
Model sessions: the loaded inference engine together with its label list and
input/output configuration.

A model lives in its own directory under the models directory::

    models/<name>/best.onnx     inference graph
    models/<name>/labels.json   JSON array of class names, indexed by class id
    models/<name>/model.json    optional: output_layout, input_size, sha256

Sessions are immutable; selecting another model builds a new one.
"""
import hashlib
import json
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

from .exceptions import ConfigurationError, ModelLoadFailure
from .utils.config import InferenceConfig, ModelsConfig
from .utils.logging import get_logger

GRAPH_FILE = "best.onnx"
LABELS_FILE = "labels.json"
METADATA_FILE = "model.json"


class OutputLayout(Enum):
    INTERLEAVED = "interleaved"
    PLANAR = "planar"

    @classmethod
    def parse(cls, value) -> "OutputLayout":
        if isinstance(value, cls):
            return value
        normalized = str(value or "").strip().lower()
        if normalized in {"interleaved", "rows", "records"}:
            return cls.INTERLEAVED
        if normalized in {"planar", "channel_first", "channels_first", "chw"}:
            return cls.PLANAR
        raise ConfigurationError(f"Unknown output layout: {value!r}")


@dataclass(frozen=True)
class ModelConfig:
    input_width: int
    input_height: int
    labels: Tuple[str, ...]
    output_layout: OutputLayout = OutputLayout.INTERLEAVED

    def __post_init__(self):
        if self.input_width <= 0 or self.input_height <= 0:
            raise ConfigurationError(f"Invalid model input size {self.input_width}x{self.input_height}")
        if not self.labels:
            raise ConfigurationError("Model label list is empty")
        if not isinstance(self.labels, tuple):
            object.__setattr__(self, "labels", tuple(self.labels))

    @property
    def num_classes(self) -> int:
        return len(self.labels)

    @property
    def input_size(self) -> Tuple[int, int]:
        return self.input_width, self.input_height


@dataclass(frozen=True)
class ModelSession:
    name: str
    engine: Any
    config: ModelConfig


def list_models(models_dir: str) -> List[str]:
    root = Path(models_dir)
    if not root.is_dir():
        return []
    return sorted(entry.name for entry in root.iterdir() if (entry / GRAPH_FILE).is_file())


def _sha256_file(path: Path, chunk_size: int = 1024 * 1024) -> str:
    digest = hashlib.sha256()
    with path.open("rb") as handle:
        for chunk in iter(lambda: handle.read(chunk_size), b""):
            digest.update(chunk)
    return digest.hexdigest()


def _normalize_sha256(value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    if not isinstance(value, str):
        raise ValueError(f"sha256 must be a hex string, got {value!r}")
    normalized = value.strip().lower()
    if normalized.startswith("sha256:"):
        normalized = normalized.split("sha256:", 1)[1]
    return normalized or None


def read_labels(path: Path) -> List[str]:
    labels = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(labels, list) or not all(isinstance(label, str) for label in labels):
        raise ValueError(f"{path.name} must be a JSON array of strings")
    if not labels:
        raise ValueError(f"{path.name} is empty")
    return labels


def read_metadata(path: Path) -> Dict[str, Any]:
    if not path.exists():
        return {}
    metadata = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(metadata, dict):
        raise ValueError(f"{path.name} must be a JSON object")
    return metadata


def _parse_input_size(value) -> Tuple[int, int]:
    """``model.json`` ``input_size``: a positive int or a ``[width, height]`` pair."""
    if isinstance(value, int) and not isinstance(value, bool):
        pair = (value, value)
    elif isinstance(value, (list, tuple)) and len(value) == 2:
        pair = tuple(value)
    else:
        raise ValueError(f"input_size must be an int or a [width, height] pair, got {value!r}")
    if not all(isinstance(v, int) and not isinstance(v, bool) and v > 0 for v in pair):
        raise ValueError(f"input_size must hold positive integers, got {value!r}")
    return pair


def resolve_input_size(
    declared: Optional[Tuple[int, int]],
    metadata: Dict[str, Any],
    default: Tuple[int, int],
    model_name: str = "",
) -> Tuple[int, int]:
    """Pick the model input size: graph declaration, then ``model.json``, then the default."""
    configured = metadata.get("input_size")
    if configured is not None:
        configured = _parse_input_size(configured)
    if declared:
        if configured and tuple(configured) != tuple(declared):
            get_logger("session").warning(
                "Model %s declares input %s but model.json says %s; using the graph's",
                model_name,
                declared,
                configured,
            )
        return declared
    if configured:
        return configured
    return tuple(default)


def _model_dir(models_dir: str, model_name: str) -> Path:
    if not model_name or Path(model_name).name != model_name or model_name in {".", ".."}:
        raise ModelLoadFailure(model_name, "invalid model name")
    return Path(models_dir) / model_name


def load_model_session(
    model_name: str,
    models: ModelsConfig,
    inference: InferenceConfig,
    engine_factory: Optional[Callable[[str, InferenceConfig], Any]] = None,
) -> ModelSession:
    """Fetch graph and labels for ``model_name`` and return a ready session.

    Any failure is reported as ``ModelLoadFailure`` chained to its cause.
    """
    logger = get_logger("session")
    if engine_factory is None:
        from .inference.factory import create_engine

        engine_factory = create_engine

    model_dir = _model_dir(models.models_dir, model_name)
    graph_path = model_dir / GRAPH_FILE
    if not graph_path.is_file():
        raise ModelLoadFailure(model_name, f"inference graph not found: {graph_path}")

    try:
        labels = read_labels(model_dir / LABELS_FILE)
        metadata = read_metadata(model_dir / METADATA_FILE)
        expected_sha = _normalize_sha256(metadata.get("sha256"))
        actual_sha = _sha256_file(graph_path) if models.verify_checksums and expected_sha else None
    except (OSError, ValueError) as exc:
        raise ModelLoadFailure(model_name, str(exc)) from exc

    if actual_sha is not None:
        if actual_sha != expected_sha:
            raise ModelLoadFailure(model_name, f"SHA256 mismatch for {graph_path}")
        logger.info("Verified %s", graph_path)

    try:
        layout = OutputLayout.parse(metadata.get("output_layout") or models.default_output_layout)
    except ConfigurationError as exc:
        raise ModelLoadFailure(model_name, exc.message) from exc

    try:
        engine = engine_factory(str(graph_path), inference)
        engine.load()
    except Exception as exc:
        raise ModelLoadFailure(model_name, f"could not create inference session: {exc}") from exc

    try:
        width, height = resolve_input_size(
            engine.declared_input_size(),
            metadata,
            models.default_input_size,
            model_name=model_name,
        )
        config = ModelConfig(
            input_width=width,
            input_height=height,
            labels=tuple(labels),
            output_layout=layout,
        )
    except Exception as exc:
        engine.close()
        raise ModelLoadFailure(model_name, str(exc)) from exc

    logger.info(
        "Model %s ready: %d classes, input %dx%d, %s output",
        model_name,
        config.num_classes,
        config.input_width,
        config.input_height,
        config.output_layout.value,
    )
    return ModelSession(name=model_name, engine=engine, config=config)
