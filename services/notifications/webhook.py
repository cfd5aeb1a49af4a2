"""
WebhookNotifier service - Posts the run summary to a webhook.
"""

import logging

import requests

from orchestration.context import RunContext


class WebhookNotifier:
    """Sends a JSON summary of a finished run to a configured URL."""

    def __init__(self, url: str, run_name: str, timeout: int = 10, session=None):
        """
        Initialize webhook notifier.

        Args:
            url: Endpoint receiving the POST
            run_name: Name included in the payload
            timeout: Request timeout in seconds
            session: Optional ``requests.Session`` to send with
        """
        if not url:
            raise ValueError("webhook url cannot be empty")
        self.url = url
        self.run_name = run_name
        self.timeout = timeout
        self.session = session or requests.Session()
        self.logger = logging.getLogger(self.__class__.__name__)

    def build_payload(self, context: RunContext) -> dict:
        summary = context.get_summary()
        failed = [s["name"] for s in summary["stages"] if s["status"] in ("FAILED", "FAILED_NONFATAL")]
        return {
            "run_name": self.run_name,
            "outcome": summary["outcome"],
            "failed_stages": failed,
            "elapsed_time_sec": round(summary["elapsed_time_sec"], 1),
            "timed_out": summary["timed_out"],
            "stages": summary["stages"],
        }

    def notify(self, context: RunContext) -> bool:
        """
        Post the run summary.

        Returns:
            True if the endpoint accepted the notification
        """
        payload = self.build_payload(context)
        try:
            response = self.session.post(self.url, json=payload, timeout=self.timeout)
            response.raise_for_status()
        except requests.RequestException as e:
            self.logger.warning(f"Notification to {self.url} failed: {e}")
            return False

        self.logger.info(f"Sent {payload['outcome']} notification to {self.url}")
        return True
