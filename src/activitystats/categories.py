"""Statistic categories shown on the detailed statistics screen."""

from enum import Enum


class Dimension(Enum):
    APPS = "apps"
    DOMAINS = "domains"
    IPS = "ips"
    COUNTRIES = "countries"


class StatisticsType(Enum):
    MOST_CONTACTED_APPS = "most-contacted-apps"
    MOST_BLOCKED_APPS = "most-blocked-apps"
    MOST_CONTACTED_DOMAINS = "most-contacted-domains"
    MOST_BLOCKED_DOMAINS = "most-blocked-domains"
    MOST_CONTACTED_IPS = "most-contacted-ips"
    MOST_BLOCKED_IPS = "most-blocked-ips"
    MOST_CONTACTED_COUNTRIES = "most-contacted-countries"
    MOST_BLOCKED_COUNTRIES = "most-blocked-countries"

    @property
    def blocked(self) -> bool:
        return self.value.startswith("most-blocked-")

    @property
    def dimension(self) -> Dimension:
        return Dimension(self.value.rsplit("-", 1)[1])
