# Package
from flask import Blueprint

from webhook_processor.logging_config import get_logger

logger = get_logger(__name__)

webhooks_bp = Blueprint("webhooks", __name__)

from webhook_processor.webhooks import routes  # noqa: E402,F401
