"""Tests for policy.py: bypass detection."""

import json
from unittest.mock import MagicMock

import pytest

from activitystats.policy import AppRulesPolicy, BypassProbe, PolicyProbeError


class TestAppRulesPolicy:
    def test_missing_file_means_no_bypass(self, tmp_path):
        policy = AppRulesPolicy(tmp_path / "app-rules.json")
        assert policy.load_rules() == {}
        assert policy.is_any_app_bypassing_resolution() is False

    def test_detects_bypass(self, tmp_path):
        path = tmp_path / "app-rules.json"
        path.write_text(json.dumps({"Browser": "allow", "Game": "bypass_dns_firewall"}))
        assert AppRulesPolicy(path).is_any_app_bypassing_resolution() is True

    def test_other_statuses_do_not_bypass(self, tmp_path):
        path = tmp_path / "app-rules.json"
        path.write_text(json.dumps({"Browser": "allow", "Tracker": "block", "VPN": "bypass_universal"}))
        assert AppRulesPolicy(path).is_any_app_bypassing_resolution() is False

    def test_corrupt_file_raises(self, tmp_path):
        path = tmp_path / "app-rules.json"
        path.write_text("{not json")
        with pytest.raises(PolicyProbeError):
            AppRulesPolicy(path).is_any_app_bypassing_resolution()

    def test_non_object_raises(self, tmp_path):
        path = tmp_path / "app-rules.json"
        path.write_text("[1, 2]")
        with pytest.raises(PolicyProbeError):
            AppRulesPolicy(path).load_rules()


class TestBypassProbe:
    def test_passes_through_result(self):
        policy = MagicMock()
        policy.is_any_app_bypassing_resolution.return_value = True
        assert BypassProbe(policy).run() is True

    def test_probe_error_defaults_false(self):
        policy = MagicMock()
        policy.is_any_app_bypassing_resolution.side_effect = PolicyProbeError("unreadable")
        assert BypassProbe(policy).run() is False

    def test_unexpected_error_defaults_false(self):
        policy = MagicMock()
        policy.is_any_app_bypassing_resolution.side_effect = RuntimeError("boom")
        assert BypassProbe(policy).run() is False

    def test_corrupt_rules_file_defaults_false(self, tmp_path):
        path = tmp_path / "app-rules.json"
        path.write_text("garbage")
        assert BypassProbe(AppRulesPolicy(path)).run() is False
