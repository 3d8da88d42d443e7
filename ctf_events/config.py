"""
Configuration management for CTF events.
Supports both JSON file configuration and environment variable overrides.
"""

import copy
import json
import logging
import os
from pathlib import Path
from typing import Dict, Any, List

logger = logging.getLogger(__name__)

HINT_MISMATCH_POLICIES = ("reject", "ignore")
REDUCTION_TYPES = ("percentage", "static")
DIFFICULTIES = ("easy", "medium", "hard")


class EventConfig:
    """Configuration management for CTF events."""

    DEFAULT_CONFIG = {
        "ctf_name": "CTF Events",
        "scoring": {
            "hint_mismatch_policy": "reject",  # reject or ignore client hint claims that disagree
            "default_hint_reduction": 10,
            "default_hint_reduction_type": "percentage",
            "difficulty_points": {"easy": 50, "medium": 100, "hard": 150},
        },
        "features": {
            "audit_repeat_attempts": True,
            "leaderboard_enabled": True,
            "html_pages_enabled": True,
        },
        "ui": {
            "show_timestamps": True,
            "max_leaderboard_entries": 100,
        },
        "submission": {
            "max_answer_length": 1000,
        },
        "questions": {
            "products": ["Wiz Cloud", "Wiz Code", "Wiz Defend", "Wiz Sensor"],
        },
    }

    def __init__(
        self,
        config_path: str = "ctf_events.json",
    ) -> None:
        """Initialize configuration from file, environment variables, or defaults."""
        self.config_path = Path(config_path)
        self.config = self._load_config()
        self._apply_env_overrides()
        self._validate_config()

    def _load_config(self) -> Dict[str, Any]:
        """
        Load configuration from JSON file or create default.

        @return: Dictionary containing the loaded configuration
        """
        config = copy.deepcopy(self.DEFAULT_CONFIG)

        if not self.config_path.exists():
            self._create_default_config()
            return config

        try:
            with open(self.config_path, "r", encoding="utf-8") as f:
                loaded_config = json.load(f)
        except (json.JSONDecodeError, IOError) as e:
            logger.error("Error loading config from %s: %s", self.config_path, e)
            logger.warning("Using default configuration")
            return config

        # Merge with defaults to ensure all keys exist
        self._deep_merge(config, loaded_config)
        return config

    def _deep_merge(
        self,
        base_dict: Dict[str, Any],
        update_dict: Dict[str, Any],
    ) -> None:
        """
        Recursively merge dictionaries.

        @param base_dict: Base dictionary to merge into
        @param update_dict: Dictionary with updates to merge
        """
        for key, value in update_dict.items():
            if (
                key in base_dict
                and isinstance(base_dict[key], dict)
                and isinstance(value, dict)
            ):
                self._deep_merge(base_dict[key], value)
            else:
                base_dict[key] = value

    def _apply_env_overrides(self) -> None:
        """
        Apply environment variable overrides to configuration.

        Environment variables follow the pattern: SECTION_KEY (e.g., CTF_NAME, MAX_ANSWER_LENGTH)
        """
        env_mappings = {
            "CTF_NAME": ("ctf_name",),

            # Scoring configuration
            "HINT_MISMATCH_POLICY": ("scoring", "hint_mismatch_policy"),

            # Features
            "AUDIT_REPEAT_ATTEMPTS": ("features", "audit_repeat_attempts"),
            "LEADERBOARD_ENABLED": ("features", "leaderboard_enabled"),
            "HTML_PAGES_ENABLED": ("features", "html_pages_enabled"),

            # UI configuration
            "SHOW_TIMESTAMPS": ("ui", "show_timestamps"),
            "MAX_LEADERBOARD_ENTRIES": ("ui", "max_leaderboard_entries"),

            # Submission configuration
            "MAX_ANSWER_LENGTH": ("submission", "max_answer_length"),
        }

        for env_var, config_path in env_mappings.items():
            env_value = os.getenv(env_var)
            if env_value is not None:
                converted_value = self._convert_env_value(env_value)
                self._set_nested_config(config_path, converted_value)

    def _convert_env_value(self, value: str) -> Any:
        """
        Convert environment variable string to appropriate type.

        @param value: String value from environment variable
        @return: Converted value (bool, int, or string)
        """
        if value.lower() in ("true", "yes", "on"):
            return True
        elif value.lower() in ("false", "no", "off"):
            return False

        try:
            return int(value)
        except ValueError:
            pass

        return value

    def _set_nested_config(self, path: tuple, value: Any) -> None:
        """
        Set a nested configuration value using a path tuple.

        @param path: Tuple representing the nested path (e.g., ("scoring", "hint_mismatch_policy"))
        @param value: Value to set
        """
        current = self.config
        for key in path[:-1]:
            if key not in current:
                current[key] = {}
            current = current[key]
        current[path[-1]] = value

    def _create_default_config(self) -> None:
        """
        Create a default configuration file.

        Writes the default configuration to the configured file path.
        """
        try:
            with open(self.config_path, "w", encoding="utf-8") as f:
                json.dump(self.DEFAULT_CONFIG, f, indent=2)
            logger.info("Created default configuration file: %s", self.config_path)
        except IOError as e:
            logger.error("Could not create config file %s: %s", self.config_path, e)

    def _validate_config(self) -> None:
        """
        Validate configuration values.

        Checks configuration values for validity and sets defaults for invalid values.
        """
        scoring = self.config["scoring"]

        if scoring["hint_mismatch_policy"] not in HINT_MISMATCH_POLICIES:
            logger.warning("Invalid hint_mismatch_policy, using 'reject'")
            scoring["hint_mismatch_policy"] = "reject"

        if scoring["default_hint_reduction_type"] not in REDUCTION_TYPES:
            logger.warning("Invalid default_hint_reduction_type, using 'percentage'")
            scoring["default_hint_reduction_type"] = "percentage"

        reduction = scoring["default_hint_reduction"]
        if isinstance(reduction, bool) or not isinstance(reduction, int) or reduction < 0:
            logger.warning("Invalid default_hint_reduction, using 10")
            scoring["default_hint_reduction"] = 10

        difficulty_points = scoring["difficulty_points"]
        for difficulty, default_points in self.DEFAULT_CONFIG["scoring"]["difficulty_points"].items():
            points = difficulty_points.get(difficulty)
            if isinstance(points, bool) or not isinstance(points, int) or points <= 0:
                logger.warning(
                    "Invalid points for difficulty %s, using %d", difficulty, default_points
                )
                difficulty_points[difficulty] = default_points

        if self.config["submission"]["max_answer_length"] <= 0:
            logger.warning("Invalid max_answer_length, using 1000")
            self.config["submission"]["max_answer_length"] = 1000

        if self.config["ui"]["max_leaderboard_entries"] <= 0:
            logger.warning("Invalid max_leaderboard_entries, using 100")
            self.config["ui"]["max_leaderboard_entries"] = 100

        if not self.config["questions"]["products"]:
            logger.warning("Empty product list, using defaults")
            self.config["questions"]["products"] = list(
                self.DEFAULT_CONFIG["questions"]["products"]
            )

    def get(
        self,
        *keys: str,
    ) -> Any:
        """
        Get nested configuration value.

        @param keys: Variable arguments representing nested keys to traverse
        @return: Configuration value at the specified path, None if not found
        """
        value = self.config

        for key in keys:
            if isinstance(value, dict) and key in value:
                value = value[key]
            else:
                return None
        return value

    def is_feature_enabled(
        self,
        feature_name: str,
    ) -> bool:
        """
        Check if a feature is enabled.

        @param feature_name: Name of the feature to check
        @return: True if feature is enabled, False otherwise
        """
        return self.get("features", feature_name) is True

    def points_for_difficulty(self, difficulty: str) -> int:
        """
        Canonical point value for a difficulty level.

        @param difficulty: One of easy, medium, hard
        @return: Configured points for the difficulty
        """
        return self.get("scoring", "difficulty_points", difficulty)

    @property
    def products(self) -> List[str]:
        """Product tags a question may carry."""
        return self.get("questions", "products")

    def save_config(self) -> bool:
        """
        Save current configuration to file.

        @return: True if saved successfully, False on error
        """
        try:
            with open(self.config_path, "w", encoding="utf-8") as f:
                json.dump(self.config, f, indent=2)
            return True
        except IOError as e:
            logger.error("Could not save config file %s: %s", self.config_path, e)
            return False
