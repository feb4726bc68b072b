"""Model resolution: client model names -> backend model identifiers."""
import logging
from typing import Dict, Mapping, Optional

logger = logging.getLogger(__name__)

# Fixed backend model identifiers (tiers)
AUTO_MODEL = "claude-code-auto"
OPUS_MODEL = "claude-code-opus"
SONNET_MODEL = "claude-code-sonnet"

BACKEND_MODEL_IDS = (AUTO_MODEL, OPUS_MODEL, SONNET_MODEL)

# Tiers that an operator override replaces; the balanced tier is never overridden
OVERRIDABLE_MODEL_IDS = (AUTO_MODEL, OPUS_MODEL)

# Backend SDK model argument per tier (None = backend default)
SDK_MODEL_NAMES: Dict[str, Optional[str]] = {
    AUTO_MODEL: None,
    OPUS_MODEL: "opus",
    SONNET_MODEL: "sonnet",
}

# Default client-model mapping.
# Can be extended via the MODEL_MAPPING setting (JSON object)
DEFAULT_MODEL_MAPPING: Dict[str, Optional[str]] = {
    # Claude models
    "claude-3-opus": OPUS_MODEL,
    "claude-3-sonnet": SONNET_MODEL,
    "claude-3-haiku": SONNET_MODEL,  # No dedicated cheap tier downstream
    # Common local model names: let the backend choose
    "qwen3-8b-dwq": None,
    "qwen3-14b-awq": None,
    "llama-3-8b": None,
    "mistral-7b": None,
    "text-embedding-nomic-embed-text-v1.5": None,
    "default": None,
}


def load_model_mapping(custom_mapping: Optional[Mapping[str, Optional[str]]] = None) -> Dict[str, Optional[str]]:
    """Merge a custom mapping over the defaults (custom takes precedence)."""
    merged = DEFAULT_MODEL_MAPPING.copy()
    if custom_mapping:
        merged.update(custom_mapping)
    return merged


class ModelResolver:
    """Resolves client-supplied model strings with layered fallback.

    Order (first match wins):
      1. a fixed backend id (auto/opus replaced by the override when one is set)
      2. the static mapping table
      3. substring heuristics, for names containing "claude"
      4. the operator override
      5. None, meaning "let the backend pick its default"

    Resolution never raises.
    """

    def __init__(
        self,
        override_model: Optional[str] = None,
        mapping: Optional[Mapping[str, Optional[str]]] = None,
    ):
        self.override_model = override_model or None
        self.mapping = load_model_mapping(mapping)

    def resolve(self, client_model: str) -> Optional[str]:
        """Resolve a client model name to a backend model id, or None."""
        if client_model in BACKEND_MODEL_IDS:
            if self.override_model and client_model in OVERRIDABLE_MODEL_IDS:
                logger.debug(
                    f"Overriding model {client_model} with configured model {self.override_model}"
                )
                return self.override_model
            return client_model

        if client_model in self.mapping:
            return self.mapping[client_model]

        model_lower = client_model.lower()
        if "claude" in model_lower:
            if "opus" in model_lower:
                return OPUS_MODEL
            if "sonnet" in model_lower:
                return SONNET_MODEL
            if "haiku" in model_lower:
                return SONNET_MODEL
            if "auto" in model_lower:
                return AUTO_MODEL

        if self.override_model:
            logger.debug(f"Using configured default model {self.override_model} for {client_model}")
            return self.override_model

        logger.debug(f"No model mapping found for {client_model}, using backend default")
        return None


def to_sdk_model(model: Optional[str]) -> Optional[str]:
    """Convert a resolved backend model id into the backend SDK model argument.

    Tier ids map to the SDK aliases; any other non-empty string (an operator
    override such as a full model name) is passed through unchanged.
    """
    if not model:
        return None
    if model in SDK_MODEL_NAMES:
        return SDK_MODEL_NAMES[model]
    return model
