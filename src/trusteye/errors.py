"""Error taxonomy.

Caller errors and unexpected failures are raised. Safety-gate and policy blocks are expected
outcomes: operations return them as structured results, and the matching exception types exist so
internal code can signal a block and the HTTP layer can map one to a status code.
"""

from __future__ import annotations

from typing import Any


class TrustEyeError(Exception):
    """Base class for all TrustEye errors."""

    code: str = "trusteye_error"
    http_status: int = 500

    def __init__(self, message: str, *, code: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.code, "message": self.message}


class ConfigError(TrustEyeError):
    """A required setting or external credential is missing or invalid."""

    code = "config_error"
    http_status = 400


class NotFoundError(TrustEyeError):
    """Unknown tenant, recommendation, product or campaign."""

    code = "not_found"
    http_status = 404


class NeedsVerificationError(TrustEyeError):
    """A draft still carries unresolved verification markers."""

    code = "needs_verification"
    http_status = 400

    def __init__(self, markers: list[str]) -> None:
        super().__init__(f"Draft has unresolved verification markers: {', '.join(markers)}")
        self.markers = list(markers)

    def to_dict(self) -> dict[str, Any]:
        out = super().to_dict()
        out["missing_claims"] = self.markers
        return out


class UpstreamError(TrustEyeError):
    """An external call failed or timed out."""

    code = "upstream_error"
    http_status = 502

    def __init__(self, message: str, *, service: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.service = service
        self.status_code = status_code


class PolicyBlockedError(TrustEyeError):
    """The tenant's trust zone does not allow the requested action."""

    code = "policy_blocked"
    http_status = 403

    def __init__(self, *, zone: str, action: str, total: int) -> None:
        super().__init__(f"Action '{action}' is blocked in trust zone {zone} (score {total}).")
        self.zone = zone
        self.action = action
        self.total = total


class LedgerError(TrustEyeError):
    """An attempt to mutate or delete an existing receipt."""

    code = "ledger_violation"
    http_status = 500


def require_settings(values: dict[str, Any]) -> None:
    """Raise ConfigError listing every missing setting.

    Args:
        values: Mapping of environment variable name to its configured value.
    """

    missing = [name for name, value in values.items() if not value]
    if missing:
        raise ConfigError(f"Missing required configuration: {', '.join(missing)}")
