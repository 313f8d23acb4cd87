"""Tests for commission history and country breakdown."""

from datetime import datetime, timezone

from subib.analyzers.commissions import commission_history, country_breakdown
from subib.analyzers.eligibility import Registration


def _ms(*args) -> int:
    return int(datetime(*args, tzinfo=timezone.utc).timestamp() * 1000)


# Thursday; the week started Monday 2024-03-11
NOW = _ms(2024, 3, 14, 12)


class TestCommissionHistory:
    def _registrations(self):
        return [
            Registration(ce_user_id="a", commission=100, qualification_date=_ms(2024, 3, 13)),
            Registration(ce_user_id="b", commission=50, qualification_date=_ms(2024, 3, 2)),
            Registration(ce_user_id="c", commission=25, qualification_date=_ms(2024, 2, 20)),
            Registration(ce_user_id="d", commission=10, created_at=_ms(2024, 3, 12, 8)),
            Registration(ce_user_id="e", commission=0, qualification_date=_ms(2024, 3, 13)),
            Registration(ce_user_id="f", commission=75),
        ]

    def test_totals(self):
        history = commission_history(self._registrations(), now=NOW)
        assert history.total == 185
        assert history.this_month == 160
        assert history.last_7_days == 110
        assert history.this_week == 110
        assert [e.registration.ce_user_id for e in history.entries] == ["a", "b", "c", "d"]

    def test_chart_sorted_by_day(self):
        regs = self._registrations() + [
            Registration(ce_user_id="g", commission=5, qualification_date=_ms(2024, 3, 13, 20)),
        ]
        history = commission_history(regs, now=NOW)
        assert history.chart == [
            {"date": "2024-02-20", "commission": 25},
            {"date": "2024-03-02", "commission": 50},
            {"date": "2024-03-12", "commission": 10},
            {"date": "2024-03-13", "commission": 105},
        ]

    def test_qualification_date_preferred_over_created_at(self):
        reg = Registration(commission=10, qualification_date=_ms(2024, 1, 5), created_at=_ms(2024, 3, 13))
        history = commission_history([reg], now=NOW)
        assert history.entries[0].date == "2024-01-05"
        assert history.this_month == 0

    def test_sort_by_field(self):
        history = commission_history(self._registrations(), now=NOW, sort_by="commission", descending=True)
        assert [e.commission for e in history.entries] == [100, 50, 25, 10]

        history = commission_history(self._registrations(), now=NOW, sort_by="date")
        assert [e.date for e in history.entries][0] == "2024-02-20"

    def test_sort_by_mixed_values_keeps_order(self):
        regs = [
            Registration(ce_user_id="x", country="FR", commission=1, qualification_date=NOW),
            Registration(ce_user_id="y", country=None, commission=2, qualification_date=NOW),
        ]
        history = commission_history(regs, now=NOW, sort_by="country")
        assert [e.registration.ce_user_id for e in history.entries] == ["x", "y"]


class TestCountryBreakdown:
    def test_per_country_stats(self):
        regs = [
            Registration(country="GB", commission=100, net_deposits=300),
            Registration(country=" GB ", commission=50, net_deposits=100),
            Registration(country="FR", commission=200, net_deposits=1000),
            Registration(country=None, commission=0, net_deposits=0),
        ]
        breakdown = country_breakdown(regs)

        by_name = {c.country: c for c in breakdown.countries}
        assert set(by_name) == {"GB", "FR", "Unknown"}
        assert by_name["GB"].registrations == 2
        assert by_name["GB"].cpas == 1
        assert by_name["GB"].conversion_rate == 50
        assert breakdown.total_commission == 350
        assert [c.country for c in breakdown.countries][0] == "FR"

    def test_conversion_leaders(self):
        regs = []
        # DE: 3 of 3 convert, ES: 1 of 4, IT: 2 registrations only
        regs += [Registration(country="DE", net_deposits=500) for _ in range(3)]
        regs += [Registration(country="ES", net_deposits=500)]
        regs += [Registration(country="ES", net_deposits=0) for _ in range(3)]
        regs += [Registration(country="IT", net_deposits=500) for _ in range(2)]

        leaders = country_breakdown(regs).conversion_leaders
        assert [c.country for c in leaders] == ["DE", "ES"]

    def test_leaders_capped_at_five(self):
        regs = [
            Registration(country=code, net_deposits=500)
            for code in ("A1", "A2", "A3", "A4", "A5", "A6")
            for _ in range(3)
        ]
        assert len(country_breakdown(regs).conversion_leaders) == 5
