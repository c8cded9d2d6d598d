"""
Request Signing - HMAC for continuation task callbacks

Only our own task queue should be able to drive /tasks/batch-sync, so each
dispatched payload carries a signature over (timestamp, payload).
"""
import hmac
import hashlib
import json
import time
from typing import Dict, Any, Optional, Tuple

SIGNATURE_HEADER = 'X-Task-Signature'
TIMESTAMP_HEADER = 'X-Task-Timestamp'

CLOCK_SKEW_SECONDS = 60


def canonical_message(payload: Dict[str, Any], timestamp: int) -> bytes:
    """Sorted-key compact JSON so sender and receiver hash identical bytes"""
    body = {'timestamp': timestamp, 'payload': payload}
    return json.dumps(body, sort_keys=True, separators=(',', ':')).encode('utf-8')


class RequestSigner:
    """Signs outgoing task payloads and checks incoming ones"""

    def __init__(self, secret_key: str):
        if len(secret_key) < 32:
            raise ValueError("Task signing secret must be at least 32 characters")
        self._key = secret_key.encode('utf-8')

    def _digest(self, payload: Dict[str, Any], timestamp: int) -> str:
        return hmac.new(self._key, canonical_message(payload, timestamp), hashlib.sha256).hexdigest()

    def sign_request(self, payload: Dict[str, Any], timestamp: Optional[int] = None) -> Dict[str, str]:
        """
        Args:
            payload: task payload as it will be POSTed
            timestamp: unix seconds, defaults to now

        Returns:
            {'signature': hex digest, 'timestamp': str(timestamp)}
        """
        ts = int(time.time()) if timestamp is None else timestamp
        return {'signature': self._digest(payload, ts), 'timestamp': str(ts)}

    def signed_headers(self, payload: Dict[str, Any]) -> Dict[str, str]:
        signed = self.sign_request(payload)
        return {SIGNATURE_HEADER: signed['signature'], TIMESTAMP_HEADER: signed['timestamp']}

    def verify_request(
        self,
        payload: Dict[str, Any],
        signature: Optional[str],
        timestamp: Optional[str],
        max_age_seconds: int = 300
    ) -> Tuple[bool, Optional[str]]:
        """Returns (valid, reason); reason is None when valid"""
        if not signature or not timestamp:
            missing = SIGNATURE_HEADER if not signature else TIMESTAMP_HEADER
            return False, f"Missing {missing} header"

        try:
            ts = int(timestamp)
        except ValueError:
            return False, f"Malformed {TIMESTAMP_HEADER}: {timestamp!r}"

        age = int(time.time()) - ts
        if age > max_age_seconds:
            return False, f"Signature expired ({age}s old, limit {max_age_seconds}s)"
        if age < -CLOCK_SKEW_SECONDS:
            return False, "Signature timestamp is in the future"

        if not hmac.compare_digest(signature, self._digest(payload, ts)):
            return False, "Invalid signature"
        return True, None
