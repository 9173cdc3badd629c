from listpilot.services.security.gateway import SecurityGateway
from listpilot.services.security.injection import InjectionVerdict, detect_injection
from listpilot.services.security.moderation import (
    DisabledModerationClassifier,
    ModerationClassifier,
    ModerationVerdict,
    OpenAIModerationClassifier,
    get_moderation_classifier,
)

__all__ = [
    "DisabledModerationClassifier",
    "InjectionVerdict",
    "ModerationClassifier",
    "ModerationVerdict",
    "OpenAIModerationClassifier",
    "SecurityGateway",
    "detect_injection",
    "get_moderation_classifier",
]
