"""Checks whether any app is configured to skip name resolution."""

import json
import logging
from pathlib import Path

logger = logging.getLogger("activitystats.policy")

BYPASS_DNS_FIREWALL = "bypass_dns_firewall"


class PolicyProbeError(Exception):
    """Raised when the app rules cannot be read."""
    pass


class AppRulesPolicy:
    """Per-app firewall statuses stored as a JSON object of app name -> status."""

    def __init__(self, rules_path: Path) -> None:
        self.rules_path = rules_path

    def load_rules(self) -> dict[str, str]:
        if not self.rules_path.exists():
            return {}
        try:
            data = json.loads(self.rules_path.read_text())
        except (json.JSONDecodeError, OSError) as e:
            raise PolicyProbeError(f"Cannot read app rules {self.rules_path}: {e}") from e
        if not isinstance(data, dict):
            raise PolicyProbeError(f"App rules {self.rules_path} must be a JSON object")
        return {str(app): str(status) for app, status in data.items()}

    def is_any_app_bypassing_resolution(self) -> bool:
        return any(status == BYPASS_DNS_FIREWALL for status in self.load_rules().values())


class BypassProbe:
    """Asks the policy for the bypass signal. Never raises; failures read as False."""

    def __init__(self, policy) -> None:
        self.policy = policy

    def run(self) -> bool:
        try:
            bypassed = bool(self.policy.is_any_app_bypassing_resolution())
        except PolicyProbeError as e:
            logger.warning("Bypass check failed, assuming no bypass: %s", e)
            return False
        except Exception as e:
            logger.warning("Bypass check raised unexpectedly, assuming no bypass: %s", e)
            return False
        logger.debug("Bypass check: %s", bypassed)
        return bypassed
