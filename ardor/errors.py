"""
ardor.errors — Exception taxonomy
==================================

Four failure families flow through the pipeline:

* :class:`DataSourceError` — activity listing or threshold lookup failed
  (including timeouts).  Recovered locally; the last-known snapshot is
  kept and the next refresh retries.
* :class:`ThresholdConfigError` — a tenant's threshold table is not
  strictly increasing.  Fatal for that tenant's evaluations.
* :class:`IssuanceError` — badge or artifact service failure.  Recorded on
  the distribution record and never retried automatically.
* Idempotency-key collisions are not errors at all and have no class.
"""

from __future__ import annotations


class ArdorError(Exception):
    """Base class for all engine errors."""


class DataSourceError(ArdorError):
    """The activity source or configuration store could not be read."""


class ThresholdConfigError(ArdorError):
    """A rank threshold table violates the strictly-increasing invariant."""

    def __init__(self, message: str, *, tenant_id: str | None = None, axis: str | None = None) -> None:
        super().__init__(message)
        self.tenant_id = tenant_id
        self.axis = axis


class IssuanceError(ArdorError):
    """The badge or artifact issuance service rejected or failed a call."""


class IssuanceTimeoutError(IssuanceError):
    """The issuance call did not complete in time (retryable by an operator)."""


class DuplicateMintError(IssuanceError):
    """The badge service reports the badge was already minted."""
