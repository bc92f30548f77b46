"""Model manager: resolve, load, and release the two ONNX sessions.

The registry owns exactly two session slots (presence detector and category
classifier). Loading is all-or-nothing: either both slots end up ready or
both stay unloaded.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

from huggingface_hub import hf_hub_download
from huggingface_hub.utils import HfHubHTTPError
from onnxruntime import InferenceSession, SessionOptions
from onnxruntime.capi.onnxruntime_pybind11_state import ExecutionMode

from sortify.errors import ModelLoadFailure, RuntimeBootstrapFailure, SessionNotReady
from sortify.ml.labels import CURRENT_SCHEMA, OutputSchema
from sortify.ml.runtime import runtime_available

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping

    import numpy as np
    from numpy.typing import NDArray

    from sortify.config import Settings

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Session protocol (kept for test stubs)
# ---------------------------------------------------------------------------


class ModelSession(Protocol):
    """A loaded model that maps named input tensors to named outputs."""

    @property
    def input_names(self) -> list[str]: ...

    @property
    def output_names(self) -> list[str]: ...

    def run(self, feeds: Mapping[str, NDArray[np.float32]]) -> dict[str, NDArray[np.float32]]: ...


class OnnxModelSession:
    """Adapter exposing an ``InferenceSession`` as a :class:`ModelSession`."""

    def __init__(self, session: InferenceSession) -> None:
        self._session = session
        self._input_names = [node.name for node in session.get_inputs()]
        self._output_names = [node.name for node in session.get_outputs()]

    @property
    def input_names(self) -> list[str]:
        return self._input_names

    @property
    def output_names(self) -> list[str]:
        return self._output_names

    @property
    def output_shapes(self) -> dict[str, list[object]]:
        return {node.name: list(node.shape) for node in self._session.get_outputs()}

    def run(self, feeds: Mapping[str, NDArray[np.float32]]) -> dict[str, NDArray[np.float32]]:
        outputs = self._session.run(self._output_names, dict(feeds))
        return dict(zip(self._output_names, outputs, strict=True))


# ---------------------------------------------------------------------------
# Model registry
# ---------------------------------------------------------------------------


class ModelRole(StrEnum):
    PRESENCE = "presence"
    CATEGORY = "category"


class SessionState(StrEnum):
    UNLOADED = "unloaded"
    LOADING = "loading"
    READY = "ready"


@dataclass(frozen=True)
class ModelSpec:
    """Static metadata for one model artifact."""

    name: str
    role: ModelRole
    description: str


MODEL_REGISTRY: dict[ModelRole, ModelSpec] = {
    ModelRole.PRESENCE: ModelSpec(
        name="model_sampah",
        role=ModelRole.PRESENCE,
        description="Waste presence detector (single probability output)",
    ),
    ModelRole.CATEGORY: ModelSpec(
        name="sortify_model-1",
        role=ModelRole.CATEGORY,
        description="Category (2-way) and subtype (17-way) classifier",
    ),
}


@dataclass(frozen=True)
class ModelPaths:
    """Filesystem locations of both model files."""

    presence: Path
    category: Path


# ---------------------------------------------------------------------------
# Concrete implementation
# ---------------------------------------------------------------------------


class SessionRegistry:
    """Owns the presence and category sessions and their lifecycle."""

    def __init__(
        self,
        settings: Settings,
        *,
        session_factory: Callable[[Path], ModelSession] | None = None,
        runtime_probe: Callable[[], bool] | None = None,
        schema: OutputSchema = CURRENT_SCHEMA,
    ) -> None:
        self._settings = settings
        self._models_dir = Path(settings.models_dir)
        self._schema = schema

        self._sessions: dict[ModelRole, ModelSession | None] = dict.fromkeys(ModelRole)
        self._states: dict[ModelRole, SessionState] = dict.fromkeys(ModelRole, SessionState.UNLOADED)
        self._load_lock = asyncio.Lock()

        self._providers = self._build_providers()
        self._session_options = self._build_session_options()
        self._session_factory = session_factory or self._create_onnx_session
        self._runtime_probe = runtime_probe or (lambda: runtime_available(settings.device))

    # -- Public API ---------------------------------------------------------

    @property
    def schema(self) -> OutputSchema:
        return self._schema

    @property
    def presence(self) -> ModelSession:
        return self._ready_session(ModelRole.PRESENCE)

    @property
    def category(self) -> ModelSession:
        return self._ready_session(ModelRole.CATEGORY)

    @property
    def is_ready(self) -> bool:
        return all(state is SessionState.READY for state in self._states.values())

    def state(self, role: ModelRole) -> SessionState:
        return self._states[role]

    def states(self) -> dict[str, str]:
        return {role.value: state.value for role, state in self._states.items()}

    def get_loaded_models(self) -> list[str]:
        """Return names of models with ready sessions."""
        return [MODEL_REGISTRY[role].name for role, state in self._states.items() if state is SessionState.READY]

    def resolve_paths(self) -> ModelPaths:
        """Locate both model files, downloading them if a repository is configured."""
        return ModelPaths(
            presence=self.ensure_downloaded(self._settings.presence_model),
            category=self.ensure_downloaded(self._settings.category_model),
        )

    def ensure_downloaded(self, filename: str) -> Path:
        """Return a local path for ``filename``, fetching it from HuggingFace if missing."""
        local = Path(filename)
        if not local.is_absolute():
            local = self._models_dir / filename
        if local.exists() or self._settings.models_repo_id is None:
            return local

        self._models_dir.mkdir(parents=True, exist_ok=True)
        try:
            downloaded = Path(
                hf_hub_download(
                    repo_id=self._settings.models_repo_id,
                    filename=filename,
                    local_dir=str(self._models_dir),
                )
            )
        except (HfHubHTTPError, OSError, ValueError) as exc:
            raise ModelLoadFailure(f"could not download {filename}: {exc}") from exc
        logger.info("Downloaded %s to %s", filename, downloaded)
        return downloaded

    async def load_sessions(self, paths: ModelPaths) -> bool:
        """Load both sessions concurrently.

        Returns:
            True if both sessions are ready, False if either failed (both are
            then left unloaded).

        Raises:
            RuntimeBootstrapFailure: If the inference runtime is not usable.
        """
        async with self._load_lock:
            if not self._runtime_probe():
                raise RuntimeBootstrapFailure()

            self.unload_sessions()
            for role in ModelRole:
                self._states[role] = SessionState.LOADING

            loop = asyncio.get_running_loop()
            results = await asyncio.gather(
                loop.run_in_executor(None, self._load_one, ModelRole.PRESENCE, paths.presence),
                loop.run_in_executor(None, self._load_one, ModelRole.CATEGORY, paths.category),
                return_exceptions=True,
            )

            failures = [result for result in results if isinstance(result, BaseException)]
            if failures:
                for failure in failures:
                    logger.error("Model load failed: %s", failure)
                self._clear()
                return False

            presence, category = results
            self._sessions[ModelRole.PRESENCE] = presence  # type: ignore[assignment]
            self._sessions[ModelRole.CATEGORY] = category  # type: ignore[assignment]
            for role in ModelRole:
                self._states[role] = SessionState.READY
            logger.info("Both model sessions loaded (schema v%s)", self._schema.version)
            return True

    def unload_sessions(self) -> None:
        """Release both sessions. Safe to call repeatedly."""
        if any(session is not None for session in self._sessions.values()):
            logger.info("Model sessions released")
        self._clear()

    # -- Internal -----------------------------------------------------------

    def _ready_session(self, role: ModelRole) -> ModelSession:
        session = self._sessions[role]
        if session is None or self._states[role] is not SessionState.READY:
            raise SessionNotReady(f"{role.value} session is {self._states[role].value}")
        return session

    def _clear(self) -> None:
        for role in ModelRole:
            self._sessions[role] = None
            self._states[role] = SessionState.UNLOADED

    def _load_one(self, role: ModelRole, path: Path) -> ModelSession:
        if not path.exists():
            raise ModelLoadFailure(f"{role.value} model not found at {path}")
        try:
            session = self._session_factory(path)
        except Exception as exc:
            raise ModelLoadFailure(f"{role.value} model at {path} could not be loaded: {exc}") from exc
        if role is ModelRole.CATEGORY:
            self._check_output_schema(session)
        logger.info("Loaded %s session from %s", role.value, path)
        return session

    def _check_output_schema(self, session: ModelSession) -> None:
        # Only models that declare static output lengths can be checked up front.
        shapes = getattr(session, "output_shapes", None)
        if not shapes:
            return
        lengths = []
        for shape in shapes.values():
            if not shape or not isinstance(shape[-1], int):
                return
            lengths.append(shape[-1])
        if sorted(lengths) != sorted([self._schema.category_length, self._schema.subtype_length]):
            raise ModelLoadFailure(
                f"category model declares output lengths {sorted(lengths)}, "
                f"schema v{self._schema.version} expects "
                f"{sorted([self._schema.category_length, self._schema.subtype_length])}"
            )

    def _create_onnx_session(self, path: Path) -> ModelSession:
        session = InferenceSession(
            str(path),
            sess_options=self._session_options,
            providers=self._providers,
        )
        return OnnxModelSession(session)

    def _build_providers(self) -> list[str | tuple[str, dict[str, object]]]:
        device = self._settings.device
        if device == "cuda":
            return [
                (
                    "CUDAExecutionProvider",
                    {
                        "device_id": 0,
                        "gpu_mem_limit": self._settings.gpu_mem_limit,
                        "arena_extend_strategy": "kSameAsRequested",
                    },
                ),
                "CPUExecutionProvider",
            ]
        if device == "openvino":
            return [
                ("OpenVINOExecutionProvider", {"device_type": "CPU"}),
                "CPUExecutionProvider",
            ]
        return ["CPUExecutionProvider"]

    def _build_session_options(self) -> SessionOptions:
        opts = SessionOptions()
        opts.intra_op_num_threads = self._settings.intra_op_threads
        opts.inter_op_num_threads = self._settings.inter_op_threads
        opts.execution_mode = ExecutionMode.ORT_SEQUENTIAL
        opts.enable_mem_pattern = True
        opts.enable_mem_reuse = True

        if self._settings.device == "openvino":
            # OpenVINO does its own graph optimization
            from onnxruntime import GraphOptimizationLevel

            opts.graph_optimization_level = GraphOptimizationLevel.ORT_DISABLE_ALL
        return opts
