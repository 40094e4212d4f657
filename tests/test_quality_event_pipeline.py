"""End-to-end pipeline behavior against the in-memory record store."""

from __future__ import annotations

import tempfile
import unittest
from datetime import date, datetime, timedelta, timezone
from pathlib import Path

from config.kpi_targets.loader import default_engine_config
from qms.engine.disposition_ledger import reconcile
from qms.orchestrator.pipeline import QualityEventPipeline
from qms.schemas.escalation import EscalationStatus
from qms.tools.record_store import InMemoryRecordStore


T0 = datetime(2026, 10, 5, 8, 0)

SCENARIO_ITEMS = [
    {"defect_code": "DIM-001", "defect_type": "scrap", "quantity": 3},
    {"defect_code": "SUR-002", "defect_type": "rework", "quantity": 5, "rework_result": "good"},
]


def _submission(**overrides) -> dict:
    data = {
        "line_id": "FG-02",
        "part_number": "AX-7842-B",
        "shift": "A",
        "operator": "S. Lee",
        "timestamp": T0,
        "total_produced": 100,
        "good_qty": 92,
    }
    data.update(overrides)
    return data


class RecordStoreTests(unittest.TestCase):
    def test_transaction_rolls_back_on_error(self):
        store = InMemoryRecordStore()
        run = reconcile(_submission(), SCENARIO_ITEMS)

        with self.assertRaises(RuntimeError):
            with store.transaction():
                store.save_run(run)
                raise RuntimeError("disk full")

        self.assertEqual(store.list_runs(), [])

    def test_nested_transaction_joins_outer(self):
        store = InMemoryRecordStore()
        run = reconcile(_submission(), SCENARIO_ITEMS)

        with self.assertRaises(RuntimeError):
            with store.transaction():
                with store.transaction():
                    store.save_run(run)
                self.assertEqual(len(store.list_runs()), 1)
                raise RuntimeError("late failure")

        self.assertEqual(store.list_runs(), [])

    def test_save_run_assigns_ids(self):
        store = InMemoryRecordStore()
        stored = store.save_run(reconcile(_submission(), SCENARIO_ITEMS))

        self.assertTrue(stored.run_id.startswith("RUN-"))
        self.assertTrue(all(d.record_id for d in stored.defects))
        self.assertEqual(store.find_run_by_defect(stored.defects[0].record_id), stored)

    def test_json_file_round_trip(self):
        pipeline = QualityEventPipeline(config=default_engine_config())
        pipeline.submit_run(_submission(), SCENARIO_ITEMS, now=T0 + timedelta(minutes=1))
        pipeline.create_action_plan({"title": "Re-qualify gauge", "related_kpi": "productionScrap"}, at=T0)

        with tempfile.TemporaryDirectory() as tmp:
            path = pipeline.store.save_json(Path(tmp) / "store.json")
            restored = InMemoryRecordStore.load_json(path)

        self.assertEqual(restored.list_runs(), pipeline.store.list_runs())
        self.assertEqual(restored.list_alerts(), pipeline.store.list_alerts())
        self.assertEqual(restored.list_action_plans(), pipeline.store.list_action_plans())


class QualityEventPipelineTests(unittest.TestCase):
    def setUp(self):
        self.store = InMemoryRecordStore()
        self.pipeline = QualityEventPipeline(
            store=self.store,
            config=default_engine_config(),
            rework_window_minutes=60,
            consecutive_lookback=20,
        )

    def test_submit_run_persists_and_escalates(self):
        result = self.pipeline.submit_run(_submission(), SCENARIO_ITEMS, now=T0 + timedelta(minutes=1))

        self.assertTrue(result["success"])
        self.assertEqual(result["run"]["final_good_qty"], 97)
        self.assertEqual(result["disposition"]["reject_pct"], 3.0)
        self.assertEqual(result["decision"]["level"], 3)
        self.assertEqual(result["decision"]["triggered_by"], "rework_rate")
        self.assertEqual(result["decision"]["consecutive_defects"], 1)
        self.assertEqual(result["alert"]["status"], "active")
        self.assertEqual(len(self.store.list_runs()), 1)
        self.assertEqual(len(self.store.list_alerts()), 1)
        self.assertTrue(result["workflow_log"])

    def test_rejected_run_writes_nothing(self):
        result = self.pipeline.submit_run(_submission(good_qty=99), SCENARIO_ITEMS, now=T0)

        self.assertFalse(result["success"])
        self.assertEqual(result["error_type"], "BalanceError")
        self.assertEqual(result["details"]["delta"], 7)
        self.assertEqual(self.store.list_runs(), [])
        self.assertEqual(self.store.list_alerts(), [])

    def test_clean_run_does_not_escalate(self):
        result = self.pipeline.submit_run(_submission(good_qty=100), [], now=T0 + timedelta(minutes=1))
        self.assertTrue(result["success"])
        self.assertIsNone(result["decision"])
        self.assertIsNone(result["alert"])

    def test_open_alert_of_same_level_is_not_duplicated(self):
        self.pipeline.submit_run(_submission(), SCENARIO_ITEMS, now=T0 + timedelta(minutes=1))
        second = self.pipeline.submit_run(
            _submission(timestamp=T0 + timedelta(minutes=2)), SCENARIO_ITEMS,
            now=T0 + timedelta(minutes=3),
        )

        self.assertEqual(second["decision"]["level"], 3)
        self.assertIsNone(second["alert"])
        self.assertEqual(len(self.store.list_alerts()), 1)

    def test_higher_level_opens_new_alert(self):
        first = self.pipeline.submit_run(
            _submission(total_produced=10000, good_qty=9999),
            [{"defect_code": "APP-003", "quantity": 1}],
            now=T0 + timedelta(minutes=1),
        )
        self.assertEqual(first["alert"]["level"], 1)

        second = self.pipeline.submit_run(
            _submission(timestamp=T0 + timedelta(minutes=5), total_produced=10000, good_qty=9998),
            [{"defect_code": "APP-003", "quantity": 1}, {"defect_code": "APP-003", "quantity": 1}],
            now=T0 + timedelta(minutes=10),
        )
        self.assertEqual(second["decision"]["consecutive_defects"], 3)
        self.assertEqual(second["alert"]["level"], 2)
        self.assertEqual(len(self.store.list_alerts(open_only=True)), 2)

    def test_resolved_alert_allows_new_alert(self):
        first = self.pipeline.submit_run(_submission(), SCENARIO_ITEMS, now=T0 + timedelta(minutes=1))
        alert_number = first["alert"]["alert_number"]

        self.assertTrue(
            self.pipeline.acknowledge_alert(alert_number, "Line Lead A", at=T0 + timedelta(minutes=3))["success"]
        )
        resolved = self.pipeline.resolve_alert(
            alert_number, "QC Manager", "Replaced die insert", root_cause="Die wear",
            at=T0 + timedelta(minutes=40),
        )
        self.assertEqual(resolved["alert"]["status"], "resolved")
        self.assertEqual(self.store.get_alert(alert_number).status, EscalationStatus.RESOLVED)

        again = self.pipeline.submit_run(
            _submission(timestamp=T0 + timedelta(minutes=45)), SCENARIO_ITEMS,
            now=T0 + timedelta(minutes=46),
        )
        self.assertIsNotNone(again["alert"])
        self.assertEqual(len(self.store.list_alerts()), 2)

    def test_alert_errors_are_reported(self):
        result = self.pipeline.acknowledge_alert("AND-missing", "Line Lead A")
        self.assertFalse(result["success"])
        self.assertEqual(result["error_type"], "EscalationStateError")

        first = self.pipeline.submit_run(_submission(), SCENARIO_ITEMS, now=T0 + timedelta(minutes=1))
        result = self.pipeline.resolve_alert(first["alert"]["alert_number"], "QC Manager", "")
        self.assertFalse(result["success"])
        self.assertEqual(result["error_code"], "invalid_escalation_transition")

    def test_defect_quantity_counts_as_one_entry(self):
        result = self.pipeline.submit_run(
            _submission(total_produced=10000, good_qty=9995),
            [{"defect_code": "DIM-001", "defect_type": "scrap", "quantity": 5}],
            now=T0 + timedelta(minutes=1),
        )

        self.assertEqual(result["decision"]["consecutive_defects"], 1)
        self.assertEqual(result["decision"]["level"], 1)
        self.assertEqual(result["decision"]["triggered_by"], "consecutive_defect")

    def test_clean_run_breaks_defect_streak(self):
        item = [{"defect_code": "DIM-001", "defect_type": "scrap", "quantity": 1}]
        big = {"total_produced": 10000, "good_qty": 9999}
        self.pipeline.submit_run(_submission(**big), item, now=T0 + timedelta(minutes=1))
        self.pipeline.submit_run(
            _submission(timestamp=T0 + timedelta(minutes=2), total_produced=10000, good_qty=10000), [],
            now=T0 + timedelta(minutes=3),
        )
        result = self.pipeline.submit_run(
            _submission(timestamp=T0 + timedelta(minutes=4), **big), item,
            now=T0 + timedelta(minutes=5),
        )

        self.assertEqual(result["decision"]["consecutive_defects"], 1)

    def test_timezone_aware_timestamps_are_stored_as_utc(self):
        result = self.pipeline.submit_run(
            _submission(timestamp="2026-10-05T10:00:00+02:00"),
            SCENARIO_ITEMS,
            now=datetime(2026, 10, 5, 8, 1, tzinfo=timezone.utc),
        )

        self.assertTrue(result["success"])
        self.assertEqual(self.store.list_runs()[0].timestamp, T0)
        self.assertEqual(result["decision"]["level"], 3)

        later = self.pipeline.submit_run(
            _submission(timestamp=T0 + timedelta(minutes=2)), SCENARIO_ITEMS,
            now=T0 + timedelta(minutes=3),
        )
        self.assertTrue(later["success"])
        self.assertEqual(len(self.store.list_runs(line_id="FG-02")), 2)

    def test_line_stop_signal(self):
        result = self.pipeline.submit_run(
            _submission(good_qty=100), [],
            line_stop_started_at=T0 - timedelta(minutes=35),
            now=T0 + timedelta(minutes=1),
        )
        self.assertEqual(result["decision"]["level"], 3)
        self.assertEqual(result["decision"]["triggered_by"], "line_stop")

    def test_edit_and_delete_defect_reaggregate_run(self):
        result = self.pipeline.submit_run(_submission(), SCENARIO_ITEMS, now=T0 + timedelta(minutes=1))
        defects = {d["defect_code"]: d["record_id"] for d in result["run"]["defects"]}

        edited = self.pipeline.edit_defect(defects["SUR-002"], {"rework_result": "scrap"})
        self.assertTrue(edited["success"])
        self.assertEqual(edited["run"]["rework_scrap_qty"], 5)
        self.assertEqual(edited["run"]["final_reject_qty"], 8)

        deleted = self.pipeline.delete_defect(defects["DIM-001"])
        self.assertEqual(deleted["run"]["scrap_qty"], 0)
        self.assertEqual(deleted["run"]["unaccounted_qty"], 3)
        self.assertEqual(len(self.store.list_runs()), 1)

    def test_invalid_defect_edit_leaves_run_unchanged(self):
        result = self.pipeline.submit_run(_submission(), SCENARIO_ITEMS, now=T0 + timedelta(minutes=1))
        record_id = result["run"]["defects"][0]["record_id"]

        edited = self.pipeline.edit_defect(record_id, {"quantity": 0})
        self.assertEqual(edited["error_type"], "InvalidQuantityError")
        self.assertEqual(self.store.list_runs()[0].scrap_qty, 3)

        missing = self.pipeline.delete_defect("DEF-missing")
        self.assertEqual(missing["error_type"], "MalformedRecordError")

    def test_accumulate_daily_summary(self):
        self.pipeline.submit_run(_submission(), SCENARIO_ITEMS, now=T0 + timedelta(minutes=1), accumulate_daily=True)
        result = self.pipeline.submit_run(
            _submission(timestamp=T0 + timedelta(hours=2)), SCENARIO_ITEMS,
            now=T0 + timedelta(hours=2, minutes=1), accumulate_daily=True,
        )

        self.assertEqual(result["run"]["total_produced"], 200)
        self.assertEqual(len(self.store.list_runs()), 1)

    def test_claims_and_dashboard(self):
        self.pipeline.submit_run(_submission(), SCENARIO_ITEMS, now=T0 + timedelta(minutes=1))
        registered = self.pipeline.register_claim(
            {
                "claim_date": date(2026, 10, 2),
                "claim_category": "automotive",
                "customer": "Tier-1 Brake Systems",
                "part_number": "AX-7842-B",
                "shipped_qty": 250000,
                "defect_qty": 3,
            }
        )
        self.assertEqual(registered["claim"]["claim_number"], "CLM-202610-001")

        updated = self.pipeline.update_claim("CLM-202610-001", "investigating", root_cause="Gauge drift")
        self.assertEqual(updated["claim"]["status"], "investigating")

        summary = self.pipeline.dashboard("mtd", today=date(2026, 10, 20), now=T0 + timedelta(hours=1))
        metrics = {m["metric_name"]: m for m in summary["metrics"]}

        self.assertEqual(metrics["claim_ppm_automotive"]["value"], 12)
        self.assertEqual(metrics["claim_ppm_automotive"]["details"]["status"], "excellent")
        self.assertEqual(metrics["first_pass_yield_pct"]["value"], 92.0)
        self.assertEqual(metrics["final_yield_pct"]["value"], 97.0)
        self.assertEqual(metrics["open_andon_alerts"]["value"], 1)
        self.assertEqual(metrics["open_andon_alerts"]["details"]["overdue"], 1)
        self.assertEqual(summary["production"]["total_produced"], 100)
        self.assertEqual(summary["pareto"]["vital_few"], ["SUR-002", "DIM-001"])
        self.assertEqual(summary["pareto"]["items"][0]["cumulative_pct"], 62.5)

    def test_dashboard_with_no_data_is_zero_valued(self):
        summary = self.pipeline.dashboard("today", today=date(2026, 10, 20))
        metrics = {m["metric_name"]: m for m in summary["metrics"]}

        self.assertEqual(metrics["claim_ppm_automotive"]["value"], 0)
        self.assertEqual(metrics["productionRework_pct"]["value"], 0.0)
        self.assertEqual(metrics["first_pass_yield_pct"]["value"], 0.0)
        self.assertEqual(summary["pareto"]["items"], [])


if __name__ == "__main__":
    unittest.main()
