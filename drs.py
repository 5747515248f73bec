#!/usr/bin/env python3

import argparse
import getpass
import logging
import signal
import sys
import threading

from customdrs.config_loader import ConfigLoader
from customdrs.engine import DRSEngine
from customdrs.errors import DRSError
from customdrs.rule_store import RuleStore
from customdrs.vsphere_client import ConnectionManager, VSphereClient

logger = logging.getLogger('customdrs')

def parse_args(argv=None):
    """
    Parse the command-line arguments.
    """
    parser = argparse.ArgumentParser(description="CustomDRS - Distributed Resource Scheduler with DPM")
    parser.add_argument("--vcenter", required=True, help="vCenter hostname or IP address")
    parser.add_argument("--username", required=True, help="vCenter username")
    parser.add_argument("--password", default='', help="vCenter password (will prompt if not provided)")
    parser.add_argument("--cluster", default='', help="Cluster name to balance (optional; all hosts if not provided)")
    parser.add_argument("--config", default='config/customdrs_config.yaml', help="Path to the YAML configuration file")
    parser.add_argument("--rules", default=None, help="Path to the YAML affinity rules file (overrides config)")
    parser.add_argument("--dry-run", action="store_true", help="Log actions instead of executing them")
    parser.add_argument("--aggressiveness", type=int, default=None, choices=range(1, 6), help="Aggressiveness level (1-5)")
    parser.add_argument("--apply", action="store_true", help="Execute the planned migrations")
    parser.add_argument("--power", action="store_true", help="Evaluate DPM power recommendations")
    parser.add_argument("--apply-power", action="store_true", help="Execute the DPM recommendation (implies --power)")
    parser.add_argument("--target-utilization", type=float, default=None, help="DPM target utilization percent")
    parser.add_argument("--min-hosts", type=int, default=None, help="DPM minimum number of powered-on hosts")
    parser.add_argument("--place-cpu", type=float, default=None, help="Rank hosts for a new VM with this CPU demand (MHz)")
    parser.add_argument("--place-mem", type=float, default=None, help="Memory demand (GB) of the VM to place")
    parser.add_argument("--loop", action="store_true", help="Repeat passes until interrupted")
    parser.add_argument("--interval", type=float, default=None, help="Minutes between passes (implies --loop; default from config)")

    args = parser.parse_args(argv)
    if args.apply_power:
        args.power = True
    if args.interval is not None:
        if args.interval <= 0:
            parser.error("--interval must be positive")
        args.loop = True
    if (args.place_cpu is None) != (args.place_mem is None):
        parser.error("--place-cpu and --place-mem must be given together")
    return args

def setup_logging(config):
    handlers = [logging.StreamHandler(sys.stdout)]
    log_file = config.get_log_file()
    if log_file:
        handlers.append(logging.FileHandler(log_file))
    logging.basicConfig(
        level=config.get_log_level(),
        format='%(asctime)s [%(levelname)s] [%(name)s] %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S',
        handlers=handlers
    )
    logging.getLogger('customdrs').setLevel(config.get_log_level())

def run_pass(engine, args):
    """One synchronous pass: plan (and apply), then optional DPM and placement."""
    cluster = args.cluster or None
    summary = {'plan': None, 'migrations': [], 'power': None, 'power_result': None, 'placement': None}

    plan = engine.plan(cluster, aggressiveness=args.aggressiveness)
    summary['plan'] = plan
    if plan.is_empty:
        logger.info("[Main] Migration planning complete. No actionable migrations found or needed at this time.")
    elif args.apply:
        summary['migrations'] = engine.apply(plan)
    else:
        logger.info(f"[Main] {len(plan.recommendations)} migration(s) recommended. Use --apply to execute them.")

    if args.power:
        recommendation = engine.recommend_power(cluster, target_utilization=args.target_utilization,
                                                minimum_hosts=args.min_hosts)
        summary['power'] = recommendation
        if recommendation is None:
            logger.info("[Main] DPM: no power action needed.")
        else:
            logger.info(f"[Main] DPM: {recommendation.action.value} '{recommendation.host_id}'. {recommendation.rationale}")
            if args.apply_power:
                summary['power_result'] = engine.execute_power(recommendation)

    if args.place_cpu is not None:
        ranking = engine.place_new(cluster, args.place_cpu, args.place_mem)
        summary['placement'] = ranking
        for i, rec in enumerate(ranking):
            logger.info(f"  {i + 1}. Host: {rec.host_id}, Score: {rec.score:.2f}, "
                        f"Projected CPU: {rec.projected_cpu_pct:.1f}%, Projected Mem: {rec.projected_memory_pct:.1f}%")
    return summary

def run_loop(engine, args, stop_event, interval_seconds):
    """
    Repeat passes with a cooldown until 'stop_event' is set. The event is
    only checked between passes; a running pass always completes.
    """
    passes = 0
    while not stop_event.is_set():
        passes += 1
        logger.info(f"[Main] Starting pass {passes}...")
        try:
            run_pass(engine, args)
        except DRSError as e:
            logger.error(f"[Main] Pass {passes} aborted: {e}")
        stop_event.wait(interval_seconds)
    logger.info(f"[Main] Stopped after {passes} pass(es).")
    return passes

def main(argv=None):
    args = parse_args(argv)

    if not args.password:
        args.password = getpass.getpass("vCenter Password: ")

    config = ConfigLoader(args.config)
    setup_logging(config)
    config.log_config()

    logger.info("[Main] Starting CustomDRS...")
    connection_manager = ConnectionManager(args.vcenter, args.username, args.password)
    service_instance = connection_manager.connect()
    try:
        client = VSphereClient(service_instance, standby_timeout=config.get_standby_timeout())
        rule_store = RuleStore(args.rules or config.get_rules_file())
        engine = DRSEngine(client, rule_store=rule_store, config=config, dry_run=args.dry_run)

        if args.cluster:
            logger.info(f"[Main] Targeting cluster: '{args.cluster}'")
        else:
            logger.info("[Main] Targeting all hosts in vCenter")

        if args.loop:
            interval_minutes = args.interval or config.get_interval_minutes()
            logger.info(f"[Main] Running every {interval_minutes} minute(s). Press Ctrl+C to stop.")
            stop_event = threading.Event()
            signal.signal(signal.SIGINT, lambda signum, frame: stop_event.set())
            signal.signal(signal.SIGTERM, lambda signum, frame: stop_event.set())
            run_loop(engine, args, stop_event, interval_minutes * 60)
        else:
            run_pass(engine, args)
    finally:
        connection_manager.disconnect()

if __name__ == "__main__":
    try:
        main()
    except Exception as e:
        logger.error("An error occurred: {}".format(e))
        sys.exit(1)
