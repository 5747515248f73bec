"""End-to-end tests of DRSEngine against the in-memory client."""

import pytest

from customdrs.engine import DRSEngine
from customdrs.errors import CollaboratorUnavailable
from customdrs.models import AffinityRule, PowerAction, RuleKind
from customdrs.rule_store import RuleStore


class TestPlanAndApply:
    def test_plan_then_apply(self, fake_client):
        engine = DRSEngine(fake_client)
        plan = engine.plan('Prod')

        assert [(r.workload_id, r.destination_host) for r in plan.recommendations] == [('w1', 'B')]

        results = engine.apply(plan)
        assert all(r.success for r in results)
        assert [w.id for w in fake_client.workloads['B']] == ['w3', 'w1']
        assert engine.plan('Prod').is_empty

    def test_dry_run_leaves_cluster_alone(self, fake_client):
        engine = DRSEngine(fake_client, dry_run=True)
        engine.apply(engine.plan())

        assert [w.id for w in fake_client.workloads['A']] == ['w1', 'w2']

    def test_explicit_snapshot_skips_client(self, fake_client, example_snapshot):
        DRSEngine(fake_client).plan(snapshot=example_snapshot)

        assert fake_client.calls == []

    def test_rules_from_store(self, fake_client, tmp_path):
        path = tmp_path / "rules.yaml"
        path.write_text("rules:\n  - name: together\n    type: Affinity\n    vms: [w1, w2]\n")
        engine = DRSEngine(fake_client, rule_store=RuleStore(str(path)))

        assert engine.plan('Prod').is_empty

    def test_explicit_rules_override_store(self, fake_client, tmp_path):
        path = tmp_path / "rules.yaml"
        path.write_text("rules:\n  - name: together\n    type: Affinity\n    vms: [w1, w2]\n")
        engine = DRSEngine(fake_client, rule_store=RuleStore(str(path)))

        assert not engine.plan('Prod', rules=[]).is_empty

    def test_unreachable_client(self, fake_client):
        fake_client.list_hosts_error = ConnectionError("down")

        with pytest.raises(CollaboratorUnavailable):
            DRSEngine(fake_client).plan()


class TestOtherOperations:
    def test_place_new(self, fake_client):
        ranking = DRSEngine(fake_client).place_new('Prod', 1000, 10)

        assert [r.host_id for r in ranking] == ['B', 'A']

    def test_place_new_without_room(self, fake_client):
        assert DRSEngine(fake_client).place_new('Prod', 20000, 10) == []

    def test_power_recommendation_and_execution(self, fake_client):
        engine = DRSEngine(fake_client)
        rec = engine.recommend_power('Prod', target_utilization=25.0)

        assert rec.action == PowerAction.POWER_ON
        assert rec.host_id == 'C'

        result = engine.execute_power(rec)
        assert result.success
        assert ('set_host_power', 'C', True) in fake_client.calls

    def test_minimum_hosts_argument(self, fake_client):
        assert DRSEngine(fake_client).recommend_power(target_utilization=90.0) is None
        rec = DRSEngine(fake_client).recommend_power(target_utilization=90.0, minimum_hosts=1)
        assert rec.action == PowerAction.POWER_OFF
        assert rec.host_id == 'B'
        assert [(e.workload_id, e.destination_host) for e in rec.evacuations] == [('w3', 'A')]

    def test_detect_violations(self, fake_client):
        rule = AffinityRule('apart', RuleKind.APART_REQUIRED, ('w1', 'w2'))
        violations = DRSEngine(fake_client).detect_violations(rules=[rule])

        assert {v.workload_id for v in violations} == {'w1', 'w2'}


class TestApplyOrder:
    def test_failed_move_never_leaves_apart_pair_together(self, chained_client):
        rule = AffinityRule('v1-v6-apart', RuleKind.APART_REQUIRED, ('v1', 'v6'))
        engine = DRSEngine(chained_client)
        plan = engine.plan(aggressiveness=3, rules=[rule])
        chained_client.failures.add(('relocate', 'v6'))

        results = engine.apply(plan, rules=[rule])

        assert [(r.item_id, r.success) for r in results] == [('v6', False), ('v1', False)]
        for placement in chained_client.history + [chained_client.placement()]:
            assert not any({'v1', 'v6'} <= set(ids) for ids in placement.values())

    def test_apply_relocates_in_planning_order(self, chained_client):
        rule = AffinityRule('v1-v6-apart', RuleKind.APART_REQUIRED, ('v1', 'v6'))
        engine = DRSEngine(chained_client)
        engine.apply(engine.plan(aggressiveness=3, rules=[rule]), rules=[rule])

        relocations = [call[1:] for call in chained_client.calls if call[0] == 'relocate']
        assert relocations == [('v6', 'h1'), ('v1', 'h2')]
        assert chained_client.placement() == {'h0': ['v2', 'v3'], 'h1': ['v4', 'v6'], 'h2': ['v5', 'v1']}
