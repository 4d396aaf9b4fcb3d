"""Explicit request context passed to the audit recorder."""

from dataclasses import dataclass
from typing import Optional

ANONYMOUS_ACTOR = "anonymous"
SYSTEM_ACTOR = "SYSTEM"


@dataclass(frozen=True)
class RequestContext:
    """Who triggered an operation and from where."""

    actor_id: str = ANONYMOUS_ACTOR
    source_address: Optional[str] = None


SYSTEM_CONTEXT = RequestContext(actor_id=SYSTEM_ACTOR, source_address=None)
