from __future__ import annotations

import logging
import time
from dataclasses import dataclass

from .types import Classification, Classifier, ERROR_CLASSIFICATION

logger = logging.getLogger(__name__)


@dataclass
class InferenceGateway:
    """Single boundary between the capture loop and the remote oracle.

    Each ``classify`` call issues exactly one request through ``classifier``.
    Nothing is retried, batched or cached, and no exception escapes: any
    failure (transport, HTTP status, malformed or out-of-range response) is
    logged and replaced by ``ERROR_CLASSIFICATION``.
    """

    classifier: Classifier

    def classify(self, image: bytes) -> Classification:
        started = time.monotonic()
        try:
            result = self.classifier.classify(image)
            if not isinstance(result, Classification):
                raise TypeError(
                    f"Classifier returned {type(result).__name__}, expected Classification"
                )
        except Exception as exc:
            logger.warning(
                "Oracle call failed after %.0fms classifier=%s error=%s",
                (time.monotonic() - started) * 1000,
                self.classifier.__class__.__name__,
                exc,
            )
            return ERROR_CLASSIFICATION
        logger.debug(
            "Oracle call complete in %.0fms label=%s confidence=%.2f image_bytes=%d",
            (time.monotonic() - started) * 1000,
            result.label,
            result.confidence,
            len(image),
        )
        return result


__all__ = ["InferenceGateway"]
