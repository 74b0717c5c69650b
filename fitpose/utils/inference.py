"""
Black-box inference wrappers.

The pipeline only needs "tensor in, named tensors out". Stages talk to an
InferenceModel; production uses OnnxModel and tests pass in-memory fakes.
"""
import logging
from pathlib import Path
from typing import Dict, List, Optional

import numpy as np

from fitpose.errors import ModelUnavailableError
from fitpose.utils.device_manager import get_execution_providers

logger = logging.getLogger(__name__)


class InferenceModel:
    """Interface every model wrapper implements."""

    name = "model"

    def run(self, input_tensor: np.ndarray) -> Dict[str, np.ndarray]:
        """Run one forward pass and return outputs keyed by tensor name."""
        raise NotImplementedError

    def close(self):
        """Release the underlying session. Safe to call twice."""


class OnnxModel(InferenceModel):
    """ONNX Runtime session with a single input tensor."""

    def __init__(self, model_path, providers: Optional[List[str]] = None, name: Optional[str] = None):
        self.model_path = Path(model_path)
        self.name = name or self.model_path.stem

        if not self.model_path.exists():
            raise ModelUnavailableError(f"Model file not found: {self.model_path}")

        import onnxruntime as ort

        providers = providers or get_execution_providers(ort.get_available_providers())
        try:
            self.session = ort.InferenceSession(str(self.model_path), providers=providers)
        except Exception as e:
            raise ModelUnavailableError(f"Failed to load {self.model_path}: {e}") from e

        self.input_name = self.session.get_inputs()[0].name
        self.output_names = [o.name for o in self.session.get_outputs()]
        logger.info(f"Loaded {self.name} from {self.model_path} (providers: {self.session.get_providers()})")

    def run(self, input_tensor: np.ndarray) -> Dict[str, np.ndarray]:
        if self.session is None:
            raise ModelUnavailableError(f"{self.name} session already released")
        outputs = self.session.run(self.output_names, {self.input_name: input_tensor})
        return dict(zip(self.output_names, outputs))

    def close(self):
        if self.session is not None:
            logger.debug(f"Releasing {self.name}")
        self.session = None
