"""Shared fixtures: settings, model files, inference pool, and stub-backed registries."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest
from stubs import StubSession, stub_factory

from sortify.config import Settings
from sortify.ml.inference import InferencePool
from sortify.ml.model_manager import ModelPaths, SessionRegistry

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Iterator
    from pathlib import Path


@pytest.fixture()
def settings(tmp_path: Path) -> Settings:
    return Settings(
        device="cpu",
        models_dir=str(tmp_path),
        models_repo_id=None,
        max_concurrent=2,
        bootstrap_max_attempts=3,
        bootstrap_interval=0.0,
    )


@pytest.fixture()
def model_paths(tmp_path: Path) -> ModelPaths:
    presence = tmp_path / "model_sampah.onnx"
    category = tmp_path / "sortify_model-1.onnx"
    presence.touch()
    category.touch()
    return ModelPaths(presence=presence, category=category)


@pytest.fixture()
def pool(settings: Settings) -> Iterator[InferencePool]:
    inference_pool = InferencePool(settings)
    yield inference_pool
    inference_pool.shutdown()


@pytest.fixture()
def make_registry(settings: Settings) -> Callable[[StubSession, StubSession], SessionRegistry]:
    def build(presence: StubSession, category: StubSession) -> SessionRegistry:
        return SessionRegistry(
            settings,
            session_factory=stub_factory(presence, category),
            runtime_probe=lambda: True,
        )

    return build


@pytest.fixture()
def load_registry(
    make_registry: Callable[[StubSession, StubSession], SessionRegistry],
    model_paths: ModelPaths,
) -> Callable[[StubSession, StubSession], Awaitable[SessionRegistry]]:
    async def load(presence: StubSession, category: StubSession) -> SessionRegistry:
        registry = make_registry(presence, category)
        assert await registry.load_sessions(model_paths)
        return registry

    return load
