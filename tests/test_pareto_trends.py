"""Pareto ranking and time-bucketed trends."""

from __future__ import annotations

import unittest
from datetime import date, datetime, timedelta

from config.kpi_targets.loader import default_engine_config
from qms.engine.errors import InvalidQuantityError, MissingDefectCodeError
from qms.engine.pareto import UNCATEGORIZED, build_line_breakdown, build_pareto, vital_few
from qms.engine.trends import (
    CLAIM_COLUMNS,
    PRODUCTION_COLUMNS,
    build_claim_trend,
    build_production_trend,
)
from qms.schemas.claim import ClaimRecord
from qms.schemas.production import DefectRecord, ProductionRun


T0 = datetime(2026, 10, 5, 8, 0)


def _record(code, quantity, defect_type="rework", **extra) -> DefectRecord:
    return DefectRecord(defect_code=code, quantity=quantity, defect_type=defect_type, **extra)


class ParetoTests(unittest.TestCase):
    def test_scenario_two_codes(self):
        result = build_pareto([_record("A", 8), _record("B", 2)])

        self.assertEqual(result.total_qty, 10)
        self.assertEqual(
            [(i.defect_code, i.pct_of_total, i.cumulative_pct) for i in result.items],
            [("A", 80.0, 80.0), ("B", 20.0, 100.0)],
        )

    def test_empty_input(self):
        result = build_pareto([])
        self.assertEqual(result.total_qty, 0)
        self.assertEqual(result.items, [])
        self.assertEqual(result.categories, [])

    def test_non_positive_quantity_is_rejected(self):
        for quantity in (0, -2):
            with self.assertRaises(InvalidQuantityError) as ctx:
                build_pareto([_record("A", 5), _record("B", quantity)])
            self.assertEqual(ctx.exception.field, "records[1].quantity")

    def test_record_without_code_is_rejected(self):
        for code in (None, "  "):
            with self.assertRaises(MissingDefectCodeError) as ctx:
                build_pareto([_record("A", 5), _record(code, 7)])
            self.assertEqual(ctx.exception.item_index, 1)

    def test_cumulative_is_non_decreasing_and_ends_at_100(self):
        result = build_pareto([_record("C", 1), _record("A", 1), _record("B", 1)])

        self.assertEqual([i.defect_code for i in result.items], ["A", "B", "C"])
        cumulative = [i.cumulative_pct for i in result.items]
        self.assertEqual(cumulative, sorted(cumulative))
        self.assertEqual(cumulative, [33.33, 66.67, 100.0])

    def test_codes_are_merged_and_split_by_type(self):
        result = build_pareto(
            [_record("A", 3), _record("A", 2, "scrap"), _record("B", 1)]
        )
        top = result.items[0]
        self.assertEqual((top.qty, top.entry_count, top.rework_qty, top.scrap_qty), (5, 2, 3, 2))

    def test_code_table_fills_name_category_and_severity(self):
        result = build_pareto(
            [_record("DIM-001", 4), _record("SUR-001", 1), _record("ZZZ-999", 1)],
            code_table=default_engine_config(),
        )
        by_code = {i.defect_code: i for i in result.items}

        self.assertEqual(by_code["DIM-001"].name, "Lower Spec")
        self.assertEqual(by_code["DIM-001"].category, "dimensional")
        self.assertEqual(by_code["DIM-001"].severity, "critical")
        self.assertEqual(by_code["ZZZ-999"].category, UNCATEGORIZED)
        self.assertEqual(
            [(c.category, c.qty) for c in result.categories],
            [("dimensional", 4), ("surface", 1), (UNCATEGORIZED, 1)],
        )

    def test_category_filter(self):
        result = build_pareto(
            [_record("DIM-001", 4), _record("SUR-001", 1)],
            category="surface",
            code_table=default_engine_config(),
        )
        self.assertEqual([i.defect_code for i in result.items], ["SUR-001"])
        self.assertEqual(result.items[0].cumulative_pct, 100.0)

    def test_time_window(self):
        records = [
            _record("A", 5, recorded_at=T0),
            _record("B", 3, recorded_at=T0 + timedelta(days=2)),
            _record("C", 1),
        ]
        result = build_pareto(records, start=T0 + timedelta(days=1), end=T0 + timedelta(days=3))
        self.assertEqual([i.defect_code for i in result.items], ["B"])

    def test_vital_few(self):
        result = build_pareto([_record("A", 8), _record("B", 1), _record("C", 1)])
        self.assertEqual([i.defect_code for i in vital_few(result)], ["A"])
        self.assertEqual([i.defect_code for i in vital_few(result, threshold=95)], ["A", "B", "C"])

    def test_line_breakdown(self):
        rows = build_line_breakdown(
            [
                _record("A", 2, line_id="FG-02"),
                _record("B", 5, "scrap", line_id="CNC-01"),
                _record("C", 1, "scrap", line_id="FG-02"),
            ]
        )
        self.assertEqual([(r.line_id, r.rework_qty, r.scrap_qty) for r in rows],
                         [("CNC-01", 0, 5), ("FG-02", 2, 1)])


class TrendTests(unittest.TestCase):
    def _run(self, timestamp, total, good, rework, scrap) -> ProductionRun:
        return ProductionRun(
            line_id="FG-02",
            part_number="AX-7842-B",
            operator="S. Lee",
            timestamp=timestamp,
            total_produced=total,
            good_qty=good,
            rework_qty=rework,
            scrap_qty=scrap,
        )

    def test_monthly_production_trend(self):
        trend = build_production_trend(
            [
                self._run(datetime(2026, 9, 28, 8), 1000, 990, 6, 4),
                self._run(datetime(2026, 10, 2, 8), 500, 495, 4, 1),
                self._run(datetime(2026, 10, 3, 8), 500, 500, 0, 0),
            ],
            freq="M",
        )

        self.assertEqual(list(trend.columns), PRODUCTION_COLUMNS)
        self.assertEqual(list(trend["period"]), ["2026-09", "2026-10"])
        october = trend.iloc[1]
        self.assertEqual(int(october["total_produced"]), 1000)
        self.assertEqual(october["rework_pct"], 0.4)
        self.assertEqual(october["scrap_pct"], 0.1)
        self.assertEqual(october["first_pass_yield_pct"], 99.5)

    def test_daily_production_trend(self):
        trend = build_production_trend(
            [self._run(T0, 100, 100, 0, 0), self._run(T0 + timedelta(hours=5), 100, 98, 2, 0)],
            freq="D",
        )
        self.assertEqual(list(trend["period"]), ["2026-10-05"])
        self.assertEqual(trend.iloc[0]["rework_pct"], 1.0)

    def test_empty_trend_keeps_columns(self):
        trend = build_production_trend([])
        self.assertTrue(trend.empty)
        self.assertEqual(list(trend.columns), PRODUCTION_COLUMNS)

    def test_unsupported_frequency(self):
        with self.assertRaises(ValueError):
            build_production_trend([], freq="W")

    def test_claim_trend(self):
        claims = [
            ClaimRecord(
                claim_number=f"CLM-202610-00{i}",
                claim_date=date(2026, 10, i),
                claim_category=category,
                customer="Tier-1 Brake Systems",
                part_number="AX-7842-B",
                shipped_qty=shipped,
                defect_qty=defects,
            )
            for i, (category, shipped, defects) in enumerate(
                [("automotive", 250000, 3), ("automotive", 250000, 2), ("machining", 100000, 1)],
                start=1,
            )
        ]
        trend = build_claim_trend(claims)

        self.assertEqual(list(trend.columns), CLAIM_COLUMNS)
        rows = {r["claim_category"]: r for r in trend.to_dict("records")}
        self.assertEqual(rows["automotive"]["claim_count"], 2)
        self.assertEqual(rows["automotive"]["ppm"], 10)
        self.assertEqual(rows["machining"]["ppm"], 10)


if __name__ == "__main__":
    unittest.main()
