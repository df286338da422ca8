"""
Multimodal answer orchestration.

One request in, one composed answer out: generated text, cited web search
results and illustrative images (stock photos or generated), with cost and
performance bookkeeping.
"""
from multimodal.core.config import Settings, load_settings
from multimodal.core.errors import ErrorCode, ProviderError
from multimodal.models.responses import MultimodalResult
from multimodal.services.ai.orchestration import MultimodalOrchestrator, create_orchestrator
from multimodal.services.ai.schema import Message, MultimodalRequest

__all__ = [
    "ErrorCode",
    "Message",
    "MultimodalOrchestrator",
    "MultimodalRequest",
    "MultimodalResult",
    "ProviderError",
    "Settings",
    "create_orchestrator",
    "load_settings",
]
