import hmac
import hashlib
import logging
from typing import Optional

from omnichan.exceptions import SignatureInvalid

logger = logging.getLogger(__name__)

SIGNATURE_PREFIX = "sha256="


def verify_signature(payload: bytes, signature: Optional[str], app_secret: str) -> bool:
    """Verify a Facebook webhook signature (X-Hub-Signature-256).

    Facebook signs every webhook body with the app secret. Returns False for
    a missing or malformed header, an empty body or secret, or a mismatch.
    Never raises.
    """
    if not signature or not signature.startswith(SIGNATURE_PREFIX):
        logger.warning("Webhook signature missing or malformed")
        return False
    if not payload or not app_secret:
        logger.warning("Webhook signature check skipped: empty body or app secret")
        return False

    expected_signature = hmac.new(
        app_secret.encode(),
        payload,
        hashlib.sha256,
    ).hexdigest()

    try:
        is_valid = hmac.compare_digest(f"{SIGNATURE_PREFIX}{expected_signature}", signature)
    except TypeError:
        # compare_digest refuses non-ASCII str arguments
        is_valid = False

    if not is_valid:
        logger.warning("Webhook signature mismatch")
    return is_valid


class SignatureVerifier:
    """Signature check bound to one app secret"""

    def __init__(self, app_secret: str):
        self.app_secret = app_secret

    def verify(self, payload: bytes, signature: Optional[str]) -> bool:
        return verify_signature(payload, signature, self.app_secret)

    def require(self, payload: bytes, signature: Optional[str]) -> None:
        if not self.verify(payload, signature):
            raise SignatureInvalid("Invalid signature")
