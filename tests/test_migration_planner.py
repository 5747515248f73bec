"""Tests for the bounded greedy relocation planner."""

import pytest

from customdrs.constraint_manager import ConstraintManager
from customdrs.load_evaluator import LoadEvaluator
from customdrs.migration_planner import MigrationManager
from customdrs.models import AffinityRule, Priority, RuleKind


def make_planner(rules=(), **kwargs):
    return MigrationManager(ConstraintManager(list(rules)), LoadEvaluator(), **kwargs)


class TestPlanning:
    def test_single_move_restores_balance(self, example_snapshot):
        """A at 90/50, B at 10/10: moving w1 leaves a 20% gap, which is not above the trigger."""
        plan = make_planner().plan_migrations(example_snapshot)

        assert len(plan.recommendations) == 1
        rec = plan.recommendations[0]
        assert (rec.workload_id, rec.source_host, rec.destination_host) == ('w1', 'A', 'B')
        assert rec.resource == 'cpu'
        assert rec.improvement == pytest.approx(40.0)
        assert rec.priority == Priority.HIGH
        assert plan.stop_reason == 'balanced'
        assert plan.iterations == 2

    def test_input_snapshot_is_not_mutated(self, example_snapshot):
        make_planner().plan_migrations(example_snapshot)

        assert example_snapshot.host_of_workload('w1').id == 'A'
        assert example_snapshot.get_host('A').cpu_pct == 90.0

    def test_score_never_increases(self, example_snapshot):
        plan = make_planner().plan_migrations(example_snapshot)

        assert plan.score_after.score <= plan.score_before.score
        assert plan.score_after.score == pytest.approx(10.0)

    def test_replanning_after_apply_is_empty(self, example_snapshot):
        planner = make_planner()
        plan = planner.plan_migrations(example_snapshot)
        applied = MigrationManager.apply_to_snapshot(example_snapshot, plan.recommendations)

        assert planner.plan_migrations(applied).is_empty

    def test_balanced_cluster_yields_nothing(self, make_host, make_snapshot):
        snapshot = make_snapshot(make_host('A', [('w1', 5000, 50)]), make_host('B', [('w2', 4000, 45)]))
        plan = make_planner().plan_migrations(snapshot)

        assert plan.is_empty
        assert plan.stop_reason == 'balanced'

    def test_single_active_host(self, make_host, make_snapshot):
        snapshot = make_snapshot(make_host('A', [('w1', 9000, 90)]), make_host('S', power_state='standBy'))
        plan = make_planner().plan_migrations(snapshot)

        assert plan.is_empty
        assert plan.stop_reason == 'insufficient_hosts'
        assert plan.score_before is None

    def test_move_that_only_flips_load_is_rejected(self, make_host, make_snapshot):
        snapshot = make_snapshot(make_host('A', [('w1', 5000, 10)]), make_host('B'))
        plan = make_planner().plan_migrations(snapshot)

        assert plan.is_empty
        assert plan.stop_reason == 'no_improvement'


class TestLimits:
    def test_destination_watermark(self, make_host, make_snapshot):
        snapshot = make_snapshot(make_host('A', [('w1', 9000, 50)]), make_host('B', [('w2', 5000, 10)]))
        plan = make_planner().plan_migrations(snapshot)

        assert plan.is_empty

    def test_iteration_bound(self, example_snapshot):
        plan = make_planner(max_iterations=1).plan_migrations(example_snapshot)

        assert plan.iterations == 1
        assert plan.stop_reason == 'max_iterations'
        assert len(plan.recommendations) <= plan.iterations

    def test_aggressiveness_controls_trigger(self, make_host, make_snapshot):
        snapshot = make_snapshot(
            make_host('A', [('w1', 1500, 10), ('w2', 4500, 30)]),
            make_host('B', [('w3', 3000, 20)]),
        )

        assert make_planner(aggressiveness=1).plan_migrations(snapshot).is_empty
        plan = make_planner(aggressiveness=3).plan_migrations(snapshot)
        assert [r.workload_id for r in plan.recommendations] == ['w1']
        assert plan.recommendations[0].improvement == pytest.approx(25.0)

    @pytest.mark.parametrize("improvement,expected", [
        (40.0, Priority.HIGH),
        (15.0, Priority.MEDIUM),
        (8.5, Priority.MEDIUM),
        (8.0, Priority.LOW),
        (5.1, Priority.LOW),
    ])
    def test_priority_bands(self, improvement, expected):
        assert make_planner()._priority_for(improvement) == expected


class TestRules:
    def test_apart_required_excludes_optimal_move(self, make_host, make_snapshot):
        snapshot = make_snapshot(
            make_host('HostX', [('VM1', 3000, 10), ('VM3', 6000, 40)]),
            make_host('HostY', [('VM2', 1000, 10)]),
        )
        rule = AffinityRule('keep-apart', RuleKind.APART_REQUIRED, ('VM1', 'VM2'))
        plan = make_planner([rule]).plan_migrations(snapshot)

        assert not any(r.workload_id == 'VM1' and r.destination_host == 'HostY' for r in plan.recommendations)
        assert [r.workload_id for r in plan.recommendations] == ['VM3']

    def test_splitting_together_group_earns_no_credit(self, make_host, make_snapshot):
        snapshot = make_snapshot(
            make_host('A', [('web', 3000, 10), ('db', 6000, 40)]),
            make_host('B', [('w3', 1000, 10)]),
        )
        rule = AffinityRule('web-db', RuleKind.TOGETHER_REQUIRED, ('web', 'db'))
        plan = make_planner([rule]).plan_migrations(snapshot)

        assert plan.is_empty
        assert plan.stop_reason == 'no_improvement'


class TestExecutionOrder:
    def test_sequence_follows_simulation_not_ranking(self, chained_snapshot):
        rule = AffinityRule('v1-v6-apart', RuleKind.APART_REQUIRED, ('v1', 'v6'))
        plan = make_planner([rule]).plan_migrations(chained_snapshot)

        ranked = [(r.workload_id, r.source_host, r.destination_host) for r in plan.recommendations]
        assert ranked == [('v1', 'h0', 'h2'), ('v6', 'h2', 'h1')]
        assert [r.improvement for r in plan.recommendations] == [pytest.approx(17.5), pytest.approx(16.5)]
        assert [r.workload_id for r in plan.execution_order()] == ['v6', 'v1']

    def test_each_step_in_execution_order_keeps_rules(self, chained_snapshot):
        rule = AffinityRule('v1-v6-apart', RuleKind.APART_REQUIRED, ('v1', 'v6'))
        manager = ConstraintManager([rule])
        plan = make_planner([rule]).plan_migrations(chained_snapshot)
        simulation = chained_snapshot.copy()

        for rec in plan.execution_order():
            simulation.move_workload(rec.workload_id, rec.destination_host)
            assert manager.calculate_violations(simulation) == []

    def test_apply_to_snapshot_uses_execution_order(self, chained_snapshot):
        rule = AffinityRule('v1-v6-apart', RuleKind.APART_REQUIRED, ('v1', 'v6'))
        plan = make_planner([rule]).plan_migrations(chained_snapshot)
        applied = MigrationManager.apply_to_snapshot(chained_snapshot, plan.recommendations)

        assert applied.host_of_workload('v1').id == 'h2'
        assert applied.host_of_workload('v6').id == 'h1'
        assert plan.cluster == chained_snapshot.cluster


class TestLogging:
    def test_iteration_log_reports_cluster_average(self, example_snapshot, caplog):
        with caplog.at_level('INFO', logger='customdrs'):
            make_planner().plan_migrations(example_snapshot)

        assert "(cluster avg 50.0%)" in caplog.text
