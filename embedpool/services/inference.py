"""ONNX Runtime inference over encoded batches."""

from __future__ import annotations

import logging
from pathlib import Path

import numpy as np
import onnxruntime as ort

from embedpool.errors import InferenceError, InitializationError
from embedpool.services.encoder import EncodedBatch

logger = logging.getLogger(__name__)


class InferenceRunner:
    """Owns one ONNX Runtime session and runs forward passes on it.

    The session is created once and reused for every batch.  Only the
    inputs declared by the graph are fed, so models without a
    ``token_type_ids`` input work unchanged.
    """

    def __init__(self, session: ort.InferenceSession) -> None:
        self.session = session
        self.input_names: list[str] = [i.name for i in session.get_inputs()]
        self.output_name: str = session.get_outputs()[0].name

    @classmethod
    def from_path(cls, model_path: str | Path, intra_op_threads: int = 1) -> InferenceRunner:
        options = ort.SessionOptions()
        options.intra_op_num_threads = intra_op_threads
        options.inter_op_num_threads = 1
        try:
            session = ort.InferenceSession(
                str(model_path),
                sess_options=options,
                providers=["CPUExecutionProvider"],
            )
        except Exception as e:
            raise InitializationError(f"Failed to load ONNX model {model_path}: {e}") from e
        return cls(session)

    def _feeds(self, batch: EncodedBatch) -> dict[str, np.ndarray]:
        available = batch._asdict()
        missing = [name for name in self.input_names if name not in available]
        if missing:
            raise InferenceError(f"Model expects unsupported inputs: {', '.join(missing)}")
        return {name: available[name] for name in self.input_names}

    def run(self, batch: EncodedBatch) -> np.ndarray:
        """Return token-level output of shape ``(batch, seq, hidden)``."""
        shape = batch.input_ids.shape
        if len(shape) != 2:
            raise InferenceError(f"input_ids must be 2-D, got shape {shape}")
        if batch.attention_mask.shape != shape or batch.token_type_ids.shape != shape:
            raise InferenceError(
                f"Input tensors disagree on shape: ids={shape}, "
                f"mask={batch.attention_mask.shape}, types={batch.token_type_ids.shape}"
            )

        feeds = self._feeds(batch)
        try:
            (output,) = self.session.run([self.output_name], feeds)
        except Exception as e:
            raise InferenceError(f"Model forward pass failed: {e}") from e

        output = np.asarray(output)
        if output.ndim != 3 or output.shape[:2] != shape:
            raise InferenceError(
                f"Unexpected model output shape {output.shape} for input shape {shape}"
            )
        return output
