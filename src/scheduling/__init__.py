"""Publishing subsystem: pre-publish gate, webhook publishing, auto-publish."""

from src.scheduling.auto_publish import AutoPublisher, AutoPublishScheduler
from src.scheduling.prepublish import (
    LinkValidator,
    assess_risk,
    calculate_risk_level,
    validate_for_publish,
)
from src.scheduling.publishing import (
    PublishService,
    build_webhook_payload,
    check_publish_eligibility,
)

__all__ = [
    "AutoPublisher",
    "AutoPublishScheduler",
    "LinkValidator",
    "assess_risk",
    "calculate_risk_level",
    "validate_for_publish",
    "PublishService",
    "build_webhook_payload",
    "check_publish_eligibility",
]
