"""Run the audit retention scheduler as a standalone process."""

import logging
import time

from app.core.metrics import CLEANUP_SCHEDULER_UP
from app.services.audit_cleanup_service import audit_cleanup_service


def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(levelname)s - %(message)s")
    audit_cleanup_service.start()
    CLEANUP_SCHEDULER_UP.set(1 if audit_cleanup_service.is_running() else 0)
    try:
        while audit_cleanup_service.is_running():
            time.sleep(1)
    except KeyboardInterrupt:
        audit_cleanup_service.stop()
    CLEANUP_SCHEDULER_UP.set(0)


if __name__ == "__main__":
    main()
