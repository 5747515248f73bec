import logging

from .models import ExecutionResult, PowerAction, PowerExecutionResult, WorkloadRef

logger = logging.getLogger('customdrs')

class Scheduler:
    """
    Submits planned actions to the control-plane client one at a time.
    Failures are reported per item; nothing is retried or rolled back.
    """

    def __init__(self, client, dry_run=False):
        self.client = client
        self.dry_run = dry_run

    def _run_step(self, item_id, action, operation, *args):
        if self.dry_run:
            logger.info(f"[Scheduler] DRY-RUN: skipping {action} {args}")
            return ExecutionResult(item_id, action, True, "dry-run", dry_run=True)
        try:
            operation(*args)
        except Exception as e:
            logger.error(f"[Scheduler] FAILED: {action} '{item_id}': {e}")
            return ExecutionResult(item_id, action, False, str(e))
        logger.info(f"[Scheduler] SUCCESS: {action} '{item_id}'.")
        return ExecutionResult(item_id, action, True, "ok")

    def execute_migrations(self, recommendations, snapshot=None, constraint_manager=None):
        """
        Relocate in planning order ('sequence'). With a snapshot and a
        constraint manager, each move is checked again against the state left
        by the moves that actually succeeded, and skipped if it now breaks an
        ApartRequired rule (e.g. because an earlier move failed).
        """
        if not recommendations:
            logger.info("[Scheduler] No migrations to execute.")
            return []

        simulation = None
        if snapshot is not None and constraint_manager is not None:
            simulation = snapshot.copy()

        logger.info(f"[Scheduler] Executing {len(recommendations)} migrations...")
        results = []
        for rec in sorted(recommendations, key=lambda r: r.sequence):
            if simulation is not None:
                workload = simulation.find_workload(rec.workload_id) or WorkloadRef(
                    rec.workload_id, rec.source_host, rec.cpu_demand_mhz, rec.memory_demand_gb)
                check = constraint_manager.check(workload, rec.destination_host, simulation)
                if not check:
                    message = f"skipped: moving to '{rec.destination_host}' would violate rule '{check.rule_name}'"
                    logger.warning(f"[Scheduler] SKIPPED: relocate '{rec.workload_id}': {message}")
                    results.append(ExecutionResult(rec.workload_id, 'relocate', False, message))
                    continue

            logger.info(f"[Scheduler] Attempting migration of VM '{rec.workload_id}' from '{rec.source_host}' to '{rec.destination_host}'...")
            result = self._run_step(rec.workload_id, 'relocate', self.client.relocate, rec.workload_id, rec.destination_host)
            if result.success and simulation is not None:
                simulation.move_workload(rec.workload_id, rec.destination_host)
            results.append(result)

        failed = [r for r in results if not r.success]
        if failed:
            logger.warning(f"[Scheduler] {len(failed)} of {len(results)} migrations failed: {[r.item_id for r in failed]}")
        else:
            logger.info(f"[Scheduler] All {len(results)} migrations completed.")
        return results

    def execute_power_recommendation(self, recommendation):
        """
        PowerOff: evacuate each workload, enter maintenance, power off.
        PowerOn: power on, then exit maintenance if the host was in it.
        The first failed step aborts the remaining ones for that host.
        """
        host_id = recommendation.host_id
        result = PowerExecutionResult(host_id, recommendation.action, True)

        if recommendation.action == PowerAction.POWER_OFF:
            steps = [(e.workload_id, 'relocate', self.client.relocate, (e.workload_id, e.destination_host))
                     for e in recommendation.evacuations]
            steps.append((host_id, 'enter-maintenance', self.client.set_host_maintenance, (host_id, True)))
            steps.append((host_id, 'power-off', self.client.set_host_power, (host_id, False)))
        else:
            steps = [(host_id, 'power-on', self.client.set_host_power, (host_id, True))]
            if recommendation.host_in_maintenance:
                steps.append((host_id, 'exit-maintenance', self.client.set_host_maintenance, (host_id, False)))

        logger.info(f"[Scheduler] Executing {recommendation.action.value} for host '{host_id}' ({len(steps)} step(s))...")
        for item_id, action, operation, args in steps:
            step_result = self._run_step(item_id, action, operation, *args)
            result.steps.append(step_result)
            if not step_result.success:
                result.success = False
                result.error = f"{action} '{item_id}' failed: {step_result.message}"
                logger.error(f"[Scheduler] Aborting {recommendation.action.value} of host '{host_id}': {result.error}")
                break

        if result.success:
            logger.info(f"[Scheduler] {recommendation.action.value} of host '{host_id}' completed.")
        return result
