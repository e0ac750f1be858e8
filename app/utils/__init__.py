"""
UTILITIES PACKAGE
=================

Helpers used by the services (no HTTP, no business logic):

  time_info - ground_dates(): today/tomorrow/day-after in the reference timezone.
  retry     - parse_retry_delay(): the RetryInfo delay from a 429 error body.
  language  - ScriptRatioDetector: does a reply look like the wrong language?
"""
