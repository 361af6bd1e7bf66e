"""Tests for routing.py and categories.py."""

import itertools

import pytest

from activitystats.categories import Dimension, StatisticsType
from activitystats.routing import Source, route

CONNECTION_ONLY = [
    StatisticsType.MOST_CONTACTED_APPS,
    StatisticsType.MOST_BLOCKED_APPS,
    StatisticsType.MOST_CONTACTED_IPS,
    StatisticsType.MOST_BLOCKED_IPS,
    StatisticsType.MOST_CONTACTED_COUNTRIES,
    StatisticsType.MOST_BLOCKED_COUNTRIES,
]


class TestCategories:
    def test_eight_categories(self):
        assert len(StatisticsType) == 8

    def test_blocked_flag(self):
        assert StatisticsType.MOST_BLOCKED_IPS.blocked
        assert not StatisticsType.MOST_CONTACTED_IPS.blocked

    def test_dimensions(self):
        assert StatisticsType.MOST_CONTACTED_APPS.dimension is Dimension.APPS
        assert StatisticsType.MOST_BLOCKED_DOMAINS.dimension is Dimension.DOMAINS
        assert StatisticsType.MOST_BLOCKED_IPS.dimension is Dimension.IPS
        assert StatisticsType.MOST_CONTACTED_COUNTRIES.dimension is Dimension.COUNTRIES


class TestRoute:
    @pytest.mark.parametrize(
        "category,dns_only,bypass",
        list(itertools.product(CONNECTION_ONLY, [True, False], [None, True, False])),
    )
    def test_connection_only_categories(self, category, dns_only, bypass):
        assert route(category, dns_only, bypass) is Source.CONNECTION_LOG

    @pytest.mark.parametrize("bypass", [None, True, False])
    def test_contacted_domains_ignore_bypass(self, bypass):
        assert route(StatisticsType.MOST_CONTACTED_DOMAINS, True, bypass) is Source.RESOLUTION_LOG
        assert route(StatisticsType.MOST_CONTACTED_DOMAINS, False, bypass) is Source.CONNECTION_LOG

    @pytest.mark.parametrize("bypass", [None, True, False])
    def test_blocked_domains_dns_only_mode(self, bypass):
        assert route(StatisticsType.MOST_BLOCKED_DOMAINS, True, bypass) is Source.RESOLUTION_LOG

    def test_blocked_domains_full_mode_follows_bypass(self):
        assert route(StatisticsType.MOST_BLOCKED_DOMAINS, False, True) is Source.CONNECTION_LOG
        assert route(StatisticsType.MOST_BLOCKED_DOMAINS, False, False) is Source.RESOLUTION_LOG

    def test_unknown_bypass_counts_as_none(self):
        assert route(StatisticsType.MOST_BLOCKED_DOMAINS, False, None) is Source.RESOLUTION_LOG
        assert route(StatisticsType.MOST_BLOCKED_DOMAINS, False) is Source.RESOLUTION_LOG

    def test_pure(self):
        results = {route(StatisticsType.MOST_BLOCKED_DOMAINS, False, True) for _ in range(10)}
        assert results == {Source.CONNECTION_LOG}
