import hashlib
import json

from packages.contracts.payloads import PredictionInput


def fingerprint_input(prediction_input: PredictionInput, predicted_value: float) -> str:
    """
    Canonical, order-independent key for one explanation request.
    Everything that can change the explanation goes in; request metadata
    (timestamps, ids of the calling model run) stays out.
    """
    canonical = {
        "entity_id": prediction_input.entity_id,
        "entity_class": prediction_input.entity_class,
        "features": prediction_input.features,
        "context": prediction_input.context,
        "status": prediction_input.status,
        "history": prediction_input.history,
        "predicted_value": predicted_value,
    }
    payload = json.dumps(canonical, sort_keys=True, default=str)
    return hashlib.md5(payload.encode("utf-8")).hexdigest()
