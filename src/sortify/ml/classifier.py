"""Two-stage waste classifier.

Stage 1 runs the presence detector. Below the gate threshold the image is
reported as not waste and the category model never runs. Otherwise stage 2
runs the category model, whose two unnamed outputs are told apart by length
(2 = category, 17 = subtype) and mapped through the versioned label schema.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

import numpy as np

from sortify.errors import IncompleteModelOutput
from sortify.ml.labels import NOT_WASTE_CATEGORY, NOT_WASTE_SUBTYPE, argmax
from sortify.ml.preprocessing import to_batch

if TYPE_CHECKING:
    from collections.abc import Mapping

    from numpy.typing import NDArray

    from sortify.ml.inference import InferencePool
    from sortify.ml.labels import OutputSchema
    from sortify.ml.model_manager import SessionRegistry

logger = logging.getLogger(__name__)

DEFAULT_GATE_THRESHOLD: float = 0.5


@dataclass(frozen=True)
class ClassificationResult:
    """Outcome of one classification call."""

    is_waste: bool
    category: str
    subtype: str
    confidence: float


@dataclass(frozen=True)
class CategoryLogits:
    category: NDArray[np.float32]
    subtype: NDArray[np.float32]


def split_category_outputs(outputs: Mapping[str, NDArray[np.float32]], schema: OutputSchema) -> CategoryLogits:
    """Assign stage-2 outputs to category and subtype by their length.

    Output names carry no role, so exactly one array must have the category
    length and exactly one the subtype length. Anything else means the model
    no longer matches ``schema``.

    Raises:
        IncompleteModelOutput: On any other combination of lengths.
    """
    by_length: dict[int, list[NDArray[np.float32]]] = {}
    for array in outputs.values():
        flat = np.asarray(array).ravel()
        by_length.setdefault(flat.size, []).append(flat)

    lengths = sorted(np.asarray(array).size for array in outputs.values())
    category = by_length.get(schema.category_length, [])
    subtype = by_length.get(schema.subtype_length, [])
    if len(outputs) != 2 or len(category) != 1 or len(subtype) != 1:
        raise IncompleteModelOutput(
            f"expected one output of length {schema.category_length} and one of length "
            f"{schema.subtype_length} (schema v{schema.version}), got lengths {lengths}"
        )
    return CategoryLogits(category=category[0], subtype=subtype[0])


def _checked_probability(value: float, stage: str) -> float:
    """Reject scores that cannot be reported as a probability (raw logits, NaN).

    Raises:
        IncompleteModelOutput: If ``value`` is non-finite or outside [0, 1].
    """
    if not np.isfinite(value) or not 0.0 <= value <= 1.0:
        raise IncompleteModelOutput(f"{stage} score {value!r} is not a probability in [0, 1]")
    return value


class WasteClassifier:
    """Runs the presence gate and the category model over one tensor."""

    def __init__(
        self,
        registry: SessionRegistry,
        pool: InferencePool,
        *,
        gate_threshold: float = DEFAULT_GATE_THRESHOLD,
    ) -> None:
        self._registry = registry
        self._pool = pool
        self._gate_threshold = gate_threshold

    @property
    def gate_threshold(self) -> float:
        return self._gate_threshold

    async def classify(self, tensor: NDArray[np.float32]) -> ClassificationResult:
        """Classify a preprocessed (224, 224, 3) tensor.

        Raises:
            SessionNotReady: If either session is not loaded.
            IncompleteModelOutput: If the category model output does not match the schema,
                or a stage reports a score outside [0, 1].
        """
        presence = self._registry.presence
        category = self._registry.category
        schema = self._registry.schema
        batch = to_batch(tensor)

        presence_out = await self._pool.run_session("presence", presence, batch)
        prob_waste = self._read_probability(presence_out, presence.output_names[0])

        if prob_waste < self._gate_threshold:
            logger.debug("Presence %.3f below gate %.2f, skipping category model", prob_waste, self._gate_threshold)
            return ClassificationResult(
                is_waste=False,
                category=NOT_WASTE_CATEGORY,
                subtype=NOT_WASTE_SUBTYPE,
                confidence=prob_waste,
            )

        category_out = await self._pool.run_session("category", category, batch)
        logits = split_category_outputs(category_out, schema)

        category_idx = argmax(logits.category)
        subtype_idx = argmax(logits.subtype)
        result = ClassificationResult(
            is_waste=True,
            category=schema.category_label(category_idx),
            subtype=schema.subtype_label(subtype_idx),
            confidence=_checked_probability(float(logits.subtype[subtype_idx]), "subtype"),
        )
        logger.debug("Classified as %s / %s (%.3f)", result.category, result.subtype, result.confidence)
        return result

    @staticmethod
    def _read_probability(outputs: Mapping[str, NDArray[np.float32]], name: str) -> float:
        values = outputs.get(name)
        if values is None:
            raise IncompleteModelOutput(f"presence model returned no '{name}' output")
        flat = np.asarray(values).ravel()
        if flat.size == 0:
            raise IncompleteModelOutput("presence model returned an empty output")
        return _checked_probability(float(flat[0]), "presence")
