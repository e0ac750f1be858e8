"""
RETRY DELAY UTILITY
===================

Reads the server-suggested retry delay out of a Gemini error body. A 429
response usually carries a google.rpc.RetryInfo detail:

  {"error": {"details": [{"@type": "type.googleapis.com/google.rpc.RetryInfo",
                          "retryDelay": "30s"}]}}

The parse is typed: the result says whether a delay was FOUND, NOT_FOUND (the
body is a valid error envelope without RetryInfo) or MALFORMED (not JSON, wrong
shape, or an unreadable duration). Only FOUND schedules an automatic retry.

Example:
  delay = parse_retry_delay(result.text)
  if delay.found:
      retry_at = now + delay.as_timedelta()
"""

import logging
import re
from dataclasses import dataclass
from datetime import timedelta
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError


logger = logging.getLogger("GURUJI")

# "30s", "1.5s"
_DURATION_RE = re.compile(r"^\s*(\d+(?:\.\d+)?)s\s*$")

RETRY_INFO_TYPE = "RetryInfo"


class _ErrorBody(BaseModel):
    model_config = ConfigDict(extra="ignore")

    details: List[Dict[str, Any]] = Field(default_factory=list)


class _ErrorEnvelope(BaseModel):
    model_config = ConfigDict(extra="ignore")

    error: _ErrorBody


class RetryDelayStatus(str, Enum):
    FOUND = "found"
    NOT_FOUND = "not_found"
    MALFORMED = "malformed"


@dataclass(frozen=True)
class RetryDelay:
    status: RetryDelayStatus
    seconds: Optional[float] = None

    @property
    def found(self) -> bool:
        return self.status is RetryDelayStatus.FOUND

    def as_timedelta(self) -> timedelta:
        if not self.found:
            raise ValueError(f"No retry delay available ({self.status.value})")
        return timedelta(seconds=self.seconds)


def parse_duration_seconds(value: Any) -> Optional[float]:
    """Parse a protobuf Duration string like "30s". Returns None unless it is a positive duration."""
    if not isinstance(value, str):
        return None
    match = _DURATION_RE.match(value)
    if not match:
        return None
    seconds = float(match.group(1))
    return seconds if seconds > 0 else None


def parse_retry_delay(body: Optional[str]) -> RetryDelay:
    """Extract the RetryInfo delay from a raw error body."""
    if not body:
        return RetryDelay(RetryDelayStatus.MALFORMED)
    try:
        envelope = _ErrorEnvelope.model_validate_json(body)
    except ValidationError:
        logger.debug("Error body is not a Gemini error envelope")
        return RetryDelay(RetryDelayStatus.MALFORMED)

    for detail in envelope.error.details:
        if RETRY_INFO_TYPE not in str(detail.get("@type", "")):
            continue
        seconds = parse_duration_seconds(detail.get("retryDelay"))
        if seconds is None:
            return RetryDelay(RetryDelayStatus.MALFORMED)
        return RetryDelay(RetryDelayStatus.FOUND, seconds)

    return RetryDelay(RetryDelayStatus.NOT_FOUND)
