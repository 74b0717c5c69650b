"""
Device manager for ONNX Runtime across NVIDIA, AMD, Apple and CPU.
"""
import os
import logging

logger = logging.getLogger(__name__)

_PROVIDERS_BY_DEVICE = {
    "cuda": ["CUDAExecutionProvider", "CPUExecutionProvider"],
    "rocm": ["ROCMExecutionProvider", "CPUExecutionProvider"],
    "mps": ["CoreMLExecutionProvider", "CPUExecutionProvider"],
    "cpu": ["CPUExecutionProvider"],
}


def get_execution_providers(available=None):
    """
    Get the ONNX Runtime execution providers to request.

    DEVICE_TYPE (set by the deployment profile) picks the preferred
    accelerator. Providers not compiled into the installed runtime are
    dropped, so CPU is always the last resort.

    Args:
        available: Providers reported by the runtime. Queried from
            onnxruntime when omitted.

    Returns:
        list: Provider names in priority order
    """
    if available is None:
        import onnxruntime as ort
        available = ort.get_available_providers()

    device_type = os.environ.get("DEVICE_TYPE", "").lower()

    if device_type in _PROVIDERS_BY_DEVICE:
        requested = _PROVIDERS_BY_DEVICE[device_type]
        providers = [p for p in requested if p in available]
        if providers and providers[0] != requested[0]:
            logger.warning(f"DEVICE_TYPE={device_type} but {requested[0]} not available, falling back to CPU")
        elif providers:
            logger.info(f"Using {providers[0]} (from DEVICE_TYPE env var)")
        return providers or ["CPUExecutionProvider"]

    # Auto-detect if DEVICE_TYPE not set
    for device in ("cuda", "rocm", "mps"):
        accelerator = _PROVIDERS_BY_DEVICE[device][0]
        if accelerator in available:
            logger.info(f"Auto-detected {accelerator}")
            return [accelerator, "CPUExecutionProvider"]

    logger.info("Using CPU (default)")
    return ["CPUExecutionProvider"]


def log_device_info():
    """Log detailed runtime information."""
    try:
        import onnxruntime as ort
    except ImportError:
        logger.warning("onnxruntime not installed")
        return

    logger.info(f"ONNX Runtime version: {ort.__version__}")
    logger.info(f"Available providers: {', '.join(ort.get_available_providers())}")
    logger.info(f"Selected providers: {', '.join(get_execution_providers())}")
