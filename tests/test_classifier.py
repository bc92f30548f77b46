"""Tests for the two-stage waste classifier and its label schema."""

from __future__ import annotations

from typing import TYPE_CHECKING

import numpy as np
import pytest
from stubs import StubSession, category_session, presence_session, subtype_logits

from sortify.errors import IncompleteModelOutput, SessionNotReady
from sortify.ml.classifier import ClassificationResult, WasteClassifier, split_category_outputs
from sortify.ml.labels import OUTPUT_SCHEMA_V1, argmax
from sortify.ml.preprocessing import preprocess

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from sortify.ml.inference import InferencePool
    from sortify.ml.model_manager import SessionRegistry

    LoadRegistry = Callable[[StubSession, StubSession], Awaitable[SessionRegistry]]


@pytest.fixture()
def tensor() -> np.ndarray:
    rng = np.random.default_rng(1)
    return preprocess(rng.integers(0, 256, size=(240, 320, 3), dtype=np.uint8))


# ---------------------------------------------------------------------------
# Label schema
# ---------------------------------------------------------------------------


class TestOutputSchema:
    def test_expected_lengths(self) -> None:
        assert OUTPUT_SCHEMA_V1.category_length == 2
        assert OUTPUT_SCHEMA_V1.subtype_length == 17
        assert OUTPUT_SCHEMA_V1.expected_lengths == frozenset({2, 17})

    def test_label_order(self) -> None:
        assert OUTPUT_SCHEMA_V1.category_label(0) == "Anorganik"
        assert OUTPUT_SCHEMA_V1.category_label(1) == "Organik"
        assert OUTPUT_SCHEMA_V1.subtype_label(0) == "Cangkang Telur"
        assert OUTPUT_SCHEMA_V1.subtype_label(10) == "Plastik"
        assert OUTPUT_SCHEMA_V1.subtype_label(16) == "Tumbuhan"

    def test_argmax_first_maximum_wins(self) -> None:
        assert argmax([0.4, 0.4]) == 0
        assert argmax([0.1, 0.7, 0.7, 0.2]) == 1

    def test_argmax_flattens(self) -> None:
        assert argmax(np.array([[0.1, 0.9]])) == 1

    def test_argmax_empty_raises(self) -> None:
        with pytest.raises(ValueError, match="empty"):
            argmax([])


# ---------------------------------------------------------------------------
# Output disambiguation
# ---------------------------------------------------------------------------


class TestSplitCategoryOutputs:
    def test_assigns_by_length(self) -> None:
        logits = split_category_outputs(
            {"a": np.array([[0.1, 0.9]]), "b": np.array([subtype_logits(3, 0.5)])},
            OUTPUT_SCHEMA_V1,
        )
        assert logits.category.size == 2
        assert logits.subtype.size == 17

    def test_name_order_does_not_matter(self) -> None:
        logits = split_category_outputs(
            {"a": np.array([subtype_logits(3, 0.5)]), "b": np.array([[0.1, 0.9]])},
            OUTPUT_SCHEMA_V1,
        )
        assert logits.category.tolist() == [0.1, 0.9]
        assert argmax(logits.subtype) == 3

    @pytest.mark.parametrize(
        "outputs",
        [
            {"a": [0.1, 0.9], "b": [0.6, 0.4]},
            {"a": subtype_logits(1, 0.9), "b": subtype_logits(2, 0.9)},
            {"a": [0.1, 0.9]},
            {"a": subtype_logits(1, 0.9)},
            {"a": [0.1, 0.9], "b": subtype_logits(1, 0.9), "c": [0.5, 0.5, 0.5]},
            {"a": [0.1, 0.2, 0.7], "b": subtype_logits(1, 0.9)},
            {},
        ],
        ids=["2+2", "17+17", "only-2", "only-17", "extra-output", "3+17", "empty"],
    )
    def test_mismatched_lengths_raise(self, outputs: dict[str, list[float]]) -> None:
        arrays = {name: np.asarray([values]) for name, values in outputs.items()}
        with pytest.raises(IncompleteModelOutput):
            split_category_outputs(arrays, OUTPUT_SCHEMA_V1)


# ---------------------------------------------------------------------------
# WasteClassifier
# ---------------------------------------------------------------------------


class TestWasteClassifier:
    async def test_waste_end_to_end(self, load_registry: LoadRegistry, pool: InferencePool, tensor: np.ndarray) -> None:
        presence = presence_session(0.92)
        category = category_session([0.1, 0.9], subtype_logits(10, 0.87))
        classifier = WasteClassifier(await load_registry(presence, category), pool)

        result = await classifier.classify(tensor)

        assert result == ClassificationResult(is_waste=True, category="Organik", subtype="Plastik", confidence=0.87)
        assert presence.calls == 1
        assert category.calls == 1

    async def test_not_waste_skips_category_model(
        self, load_registry: LoadRegistry, pool: InferencePool, tensor: np.ndarray
    ) -> None:
        presence = presence_session(0.2)
        category = category_session()
        classifier = WasteClassifier(await load_registry(presence, category), pool)

        result = await classifier.classify(tensor)

        assert result == ClassificationResult(is_waste=False, category="Not Waste", subtype="-", confidence=0.2)
        assert presence.calls == 1
        assert category.calls == 0

    async def test_gate_is_inclusive(self, load_registry: LoadRegistry, pool: InferencePool, tensor: np.ndarray) -> None:
        category = category_session()
        classifier = WasteClassifier(await load_registry(presence_session(0.5), category), pool)

        result = await classifier.classify(tensor)

        assert result.is_waste is True
        assert category.calls == 1

    async def test_just_below_gate_is_not_waste(
        self, load_registry: LoadRegistry, pool: InferencePool, tensor: np.ndarray
    ) -> None:
        category = category_session()
        classifier = WasteClassifier(await load_registry(presence_session(0.4999), category), pool)

        result = await classifier.classify(tensor)

        assert result.is_waste is False
        assert category.calls == 0

    async def test_custom_gate_threshold(
        self, load_registry: LoadRegistry, pool: InferencePool, tensor: np.ndarray
    ) -> None:
        category = category_session()
        classifier = WasteClassifier(await load_registry(presence_session(0.6), category), pool, gate_threshold=0.7)

        result = await classifier.classify(tensor)

        assert result.is_waste is False
        assert result.confidence == 0.6
        assert category.calls == 0

    async def test_output_order_does_not_matter(
        self, load_registry: LoadRegistry, pool: InferencePool, tensor: np.ndarray
    ) -> None:
        category = StubSession(
            {"output_0": subtype_logits(4, 0.66), "output_1": [0.8, 0.2]},
            label="category",
        )
        classifier = WasteClassifier(await load_registry(presence_session(0.9), category), pool)

        result = await classifier.classify(tensor)

        assert result.category == "Anorganik"
        assert result.subtype == "Kardus"
        assert result.confidence == 0.66

    async def test_category_tie_resolves_to_first_label(
        self, load_registry: LoadRegistry, pool: InferencePool, tensor: np.ndarray
    ) -> None:
        category = category_session([0.4, 0.4], subtype_logits(2, 0.7))
        classifier = WasteClassifier(await load_registry(presence_session(0.9), category), pool)

        result = await classifier.classify(tensor)

        assert result.category == "Anorganik"

    async def test_confidence_is_subtype_probability(
        self, load_registry: LoadRegistry, pool: InferencePool, tensor: np.ndarray
    ) -> None:
        category = category_session([0.05, 0.95], subtype_logits(12, 0.41))
        classifier = WasteClassifier(await load_registry(presence_session(0.99), category), pool)

        result = await classifier.classify(tensor)

        assert result.subtype == "Sisa Buah"
        assert result.confidence == 0.41

    @pytest.mark.parametrize(
        "outputs",
        [
            {"a": [0.1, 0.9], "b": [0.3, 0.7]},
            {"a": subtype_logits(0, 0.9), "b": subtype_logits(1, 0.9)},
            {"a": [0.1, 0.9]},
        ],
        ids=["2+2", "17+17", "single"],
    )
    async def test_incomplete_output_raises(
        self,
        load_registry: LoadRegistry,
        pool: InferencePool,
        tensor: np.ndarray,
        outputs: dict[str, list[float]],
    ) -> None:
        category = StubSession(outputs, label="category")
        classifier = WasteClassifier(await load_registry(presence_session(0.9), category), pool)

        with pytest.raises(IncompleteModelOutput):
            await classifier.classify(tensor)

    @pytest.mark.parametrize(
        "subtype",
        [subtype_logits(10, 2.5), [-1.5] * 17, subtype_logits(10, float("nan"))],
        ids=["logit", "negative", "nan"],
    )
    async def test_subtype_score_outside_unit_interval_raises(
        self, load_registry: LoadRegistry, pool: InferencePool, tensor: np.ndarray, subtype: list[float]
    ) -> None:
        category = category_session([0.1, 0.9], subtype)
        classifier = WasteClassifier(await load_registry(presence_session(0.9), category), pool)

        with pytest.raises(IncompleteModelOutput, match="subtype score"):
            await classifier.classify(tensor)

    async def test_presence_score_outside_unit_interval_raises(
        self, load_registry: LoadRegistry, pool: InferencePool, tensor: np.ndarray
    ) -> None:
        presence = presence_session(1.7)
        category = category_session()
        classifier = WasteClassifier(await load_registry(presence, category), pool)

        with pytest.raises(IncompleteModelOutput, match="presence score"):
            await classifier.classify(tensor)
        assert category.calls == 0

    async def test_stage_one_runs_before_stage_two(
        self, load_registry: LoadRegistry, pool: InferencePool, tensor: np.ndarray
    ) -> None:
        call_log: list[str] = []
        presence = presence_session(0.8, call_log=call_log)
        category = category_session(call_log=call_log)
        classifier = WasteClassifier(await load_registry(presence, category), pool)

        await classifier.classify(tensor)

        assert call_log == ["presence", "category"]

    async def test_both_stages_receive_same_batch(
        self, load_registry: LoadRegistry, pool: InferencePool, tensor: np.ndarray
    ) -> None:
        presence = presence_session(0.8)
        category = category_session()
        classifier = WasteClassifier(await load_registry(presence, category), pool)

        await classifier.classify(tensor)

        presence_batch = presence.feeds[0]["input_1"]
        category_batch = category.feeds[0]["input_1"]
        assert presence_batch.shape == (1, 224, 224, 3)
        assert presence_batch.dtype == np.float32
        assert np.array_equal(presence_batch, category_batch)
        assert np.array_equal(presence_batch[0], tensor)

    async def test_rejects_when_sessions_not_loaded(
        self, make_registry: Callable[[StubSession, StubSession], SessionRegistry], pool: InferencePool, tensor: np.ndarray
    ) -> None:
        presence = presence_session(0.9)
        classifier = WasteClassifier(make_registry(presence, category_session()), pool)

        with pytest.raises(SessionNotReady):
            await classifier.classify(tensor)
        assert presence.calls == 0

    async def test_runtime_error_propagates(
        self, load_registry: LoadRegistry, pool: InferencePool, tensor: np.ndarray
    ) -> None:
        presence = presence_session(0.9, error=RuntimeError("onnx exploded"))
        classifier = WasteClassifier(await load_registry(presence, category_session()), pool)

        with pytest.raises(RuntimeError, match="onnx exploded"):
            await classifier.classify(tensor)
