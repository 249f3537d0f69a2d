"""
Logging for cluster-register.

A single named logger for progress messages plus a JSON audit logger for
state changes on the hub (token issued, CSR approved/denied, cluster accepted).
"""
import json
import logging
import os
from datetime import datetime, timezone

LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()

logger = logging.getLogger("cluster-register")
audit_logger = logging.getLogger("cluster-register-audit")

SEP = "⚡" * 30


def audit(event: str, cluster: str = "", **kwargs):
    """Emit a structured audit log line."""
    audit_logger.info(json.dumps({
        "audit": True,
        "event": event,
        "cluster": cluster,
        "ts": datetime.now(timezone.utc).isoformat(),
        **kwargs,
    }))


class _UrllibNoiseFilter(logging.Filter):
    def filter(self, record):
        return "Retrying (Retry(" not in record.getMessage()


def setup_logging(level: str = LOG_LEVEL) -> None:
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)-7s %(name)s: %(message)s",
    )
    logging.getLogger("urllib3.connectionpool").addFilter(_UrllibNoiseFilter())
