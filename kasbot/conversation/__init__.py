from .engine import OutboundMessage, SessionStateMachine, TransactionStore, build_engine
from .extraction import (
    ExtractionFailure,
    ExtractionFailureReason,
    ExtractionSuccess,
    ParsedTransaction,
    RuleBasedExtractor,
    TransactionFieldExtractor,
    TransactionFields,
)
from .phone import validate_phone
from .prompts import DeliveryRegister, PromptDirectives, ResponsePromptComposer
from .sessions import Session, SessionRegistry, SessionState
from .voice import VoiceDecision, VoiceIntentDetector

__all__ = [
    "OutboundMessage",
    "SessionStateMachine",
    "TransactionStore",
    "build_engine",
    "ExtractionFailure",
    "ExtractionFailureReason",
    "ExtractionSuccess",
    "ParsedTransaction",
    "RuleBasedExtractor",
    "TransactionFieldExtractor",
    "TransactionFields",
    "validate_phone",
    "DeliveryRegister",
    "PromptDirectives",
    "ResponsePromptComposer",
    "Session",
    "SessionRegistry",
    "SessionState",
    "VoiceDecision",
    "VoiceIntentDetector",
]
