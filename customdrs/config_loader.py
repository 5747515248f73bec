import copy
import yaml
import logging
import os

logger = logging.getLogger('customdrs')

class ConfigLoader:
    """
    Loads and manages CustomDRS configuration from YAML file.
    Provides default values if config file is missing or incomplete.
    """

    # Default configuration values
    DEFAULTS = {
        'balancing': {
            'default_aggressiveness': 3,
            'max_iterations': 10,
            # level: cpu trigger %, memory trigger %, minimum improvement
            'aggressiveness_levels': {
                1: {'cpu_trigger_percent': 40.0, 'memory_trigger_percent': 40.0, 'min_improvement': 10.0},
                2: {'cpu_trigger_percent': 30.0, 'memory_trigger_percent': 30.0, 'min_improvement': 8.0},
                3: {'cpu_trigger_percent': 20.0, 'memory_trigger_percent': 20.0, 'min_improvement': 5.0},
                4: {'cpu_trigger_percent': 15.0, 'memory_trigger_percent': 15.0, 'min_improvement': 3.0},
                5: {'cpu_trigger_percent': 10.0, 'memory_trigger_percent': 10.0, 'min_improvement': 2.0},
            },
            'priority_high_threshold': 15.0,
            'priority_medium_threshold': 8.0
        },
        'migration': {
            'host_cpu_high_watermark_percent': 90,
            'host_memory_high_watermark_percent': 90
        },
        'placement': {
            'balance_penalty_weight': 0.1
        },
        'power': {
            'target_utilization_percent': 60.0,
            'minimum_hosts': 2,
            'power_off_margin_percent': 15.0,
            'power_on_margin_percent': 10.0,
            'standby_timeout_seconds': 600
        },
        'rules': {
            'file': 'config/rules.yaml'
        },
        'scheduler': {
            'interval_minutes': 5
        },
        'logging': {
            'level': 'INFO',
            'file': ''
        }
    }

    def __init__(self, config_file='config/customdrs_config.yaml'):
        """
        Initialize config loader and load configuration.

        Args:
            config_file: Path to YAML config file (relative or absolute)
        """
        self.config_file = config_file
        self.config = self._load_config()

    def _load_config(self):
        """
        Load configuration from YAML file or return defaults if file doesn't exist.
        """
        if not self.config_file or not os.path.exists(self.config_file):
            logger.warning(f"[ConfigLoader] Config file not found at '{self.config_file}'. Using default values.")
            return copy.deepcopy(self.DEFAULTS)

        try:
            with open(self.config_file, 'r') as f:
                file_config = yaml.safe_load(f) or {}

            if not isinstance(file_config, dict):
                logger.error(f"[ConfigLoader] Config file '{self.config_file}' does not contain a mapping. Using default values.")
                return copy.deepcopy(self.DEFAULTS)

            # Merge loaded config with defaults (defaults are overridden by file values)
            merged_config = self._deep_merge(copy.deepcopy(self.DEFAULTS), file_config)

            logger.info(f"[ConfigLoader] Configuration loaded from '{self.config_file}'.")
            return merged_config

        except yaml.YAMLError as e:
            logger.error(f"[ConfigLoader] Error parsing YAML config file: {e}. Using default values.")
            return copy.deepcopy(self.DEFAULTS)
        except OSError as e:
            logger.error(f"[ConfigLoader] Error loading config file: {e}. Using default values.")
            return copy.deepcopy(self.DEFAULTS)

    @staticmethod
    def _deep_merge(defaults, overrides):
        """
        Deep merge overrides into defaults (overrides take precedence).
        """
        result = defaults.copy()

        for key, value in overrides.items():
            if isinstance(value, dict) and key in result and isinstance(result[key], dict):
                result[key] = ConfigLoader._deep_merge(result[key], value)
            else:
                result[key] = value

        return result

    def get(self, *keys, default=None):
        """
        Get a config value using dot notation.
        Example: config.get('power', 'minimum_hosts')

        Args:
            *keys: Nested keys to traverse
            default: Default value if key not found

        Returns:
            Config value or default if not found
        """
        value = self.config

        for key in keys:
            if isinstance(value, dict) and key in value:
                value = value[key]
            else:
                logger.warning(f"[ConfigLoader] Config key not found: {'.'.join(str(k) for k in keys)}. Using default: {default}")
                return default

        return value

    def get_default_aggressiveness(self):
        return int(self.get('balancing', 'default_aggressiveness', default=self.DEFAULTS['balancing']['default_aggressiveness']))

    def get_max_iterations(self):
        return int(self.get('balancing', 'max_iterations', default=self.DEFAULTS['balancing']['max_iterations']))

    def get_aggressiveness_levels(self):
        """Get the aggressiveness level table, keyed by int level."""
        levels = self.get('balancing', 'aggressiveness_levels', default=self.DEFAULTS['balancing']['aggressiveness_levels'])
        return {int(level): dict(values) for level, values in levels.items()}

    def get_priority_thresholds(self):
        """Get (high, medium) improvement thresholds for recommendation priority."""
        high = self.get('balancing', 'priority_high_threshold', default=self.DEFAULTS['balancing']['priority_high_threshold'])
        medium = self.get('balancing', 'priority_medium_threshold', default=self.DEFAULTS['balancing']['priority_medium_threshold'])
        return float(high), float(medium)

    def get_host_cpu_watermark(self):
        """Get CPU high watermark percentage."""
        return float(self.get('migration', 'host_cpu_high_watermark_percent', default=self.DEFAULTS['migration']['host_cpu_high_watermark_percent']))

    def get_host_memory_watermark(self):
        """Get memory high watermark percentage."""
        return float(self.get('migration', 'host_memory_high_watermark_percent', default=self.DEFAULTS['migration']['host_memory_high_watermark_percent']))

    def get_balance_penalty_weight(self):
        return float(self.get('placement', 'balance_penalty_weight', default=self.DEFAULTS['placement']['balance_penalty_weight']))

    def get_target_utilization(self):
        """Get DPM target utilization percentage."""
        return float(self.get('power', 'target_utilization_percent', default=self.DEFAULTS['power']['target_utilization_percent']))

    def get_minimum_hosts(self):
        return int(self.get('power', 'minimum_hosts', default=self.DEFAULTS['power']['minimum_hosts']))

    def get_power_margins(self):
        """Get (power-off, power-on) margins around the target utilization."""
        off_margin = self.get('power', 'power_off_margin_percent', default=self.DEFAULTS['power']['power_off_margin_percent'])
        on_margin = self.get('power', 'power_on_margin_percent', default=self.DEFAULTS['power']['power_on_margin_percent'])
        return float(off_margin), float(on_margin)

    def get_standby_timeout(self):
        return int(self.get('power', 'standby_timeout_seconds', default=self.DEFAULTS['power']['standby_timeout_seconds']))

    def get_rules_file(self):
        return self.get('rules', 'file', default=self.DEFAULTS['rules']['file'])

    def get_interval_minutes(self):
        return float(self.get('scheduler', 'interval_minutes', default=self.DEFAULTS['scheduler']['interval_minutes']))

    def get_log_level(self):
        return str(self.get('logging', 'level', default=self.DEFAULTS['logging']['level'])).upper()

    def get_log_file(self):
        return self.get('logging', 'file', default=self.DEFAULTS['logging']['file'])

    def log_config(self):
        """Log loaded configuration for debugging."""
        high, medium = self.get_priority_thresholds()
        off_margin, on_margin = self.get_power_margins()
        logger.info("[ConfigLoader] Current Configuration:")
        logger.info(f"  Default Aggressiveness: {self.get_default_aggressiveness()}")
        logger.info(f"  Max Planner Iterations: {self.get_max_iterations()}")
        logger.info(f"  Priority Thresholds: High > {high}, Medium > {medium}")
        logger.info(f"  CPU High Watermark: {self.get_host_cpu_watermark()}%")
        logger.info(f"  Memory High Watermark: {self.get_host_memory_watermark()}%")
        logger.info(f"  Placement Balance Penalty Weight: {self.get_balance_penalty_weight()}")
        logger.info(f"  DPM Target Utilization: {self.get_target_utilization()}% (-{off_margin}/+{on_margin})")
        logger.info(f"  DPM Minimum Hosts: {self.get_minimum_hosts()}")
        logger.info(f"  Rules File: {self.get_rules_file()}")
