"""
Configuration management for subvols.

Handles loading and saving user configuration from:
- XDG config directory: ~/.config/subvols/config.json
- Fallback: ~/.subvols/config.json
"""

import json
import logging
from pathlib import Path
from typing import Dict, Any, Optional
from dataclasses import dataclass, asdict, field

from .sources.base import U32_MAX, U64_MAX

logger = logging.getLogger(__name__)

OUTPUT_FORMATS = ("text", "table", "json")


@dataclass
class SearchConfig:
    """Tree search settings."""
    page_size: int = 4096
    min_objectid: int = 0


@dataclass
class OutputConfig:
    """Listing output settings."""
    format: str = "text"
    color: bool = True


@dataclass
class CLIConfig:
    """CLI default options."""
    verbose: bool = False
    strict: bool = False


@dataclass
class SubvolsConfig:
    """Main subvols configuration."""
    search: SearchConfig = field(default_factory=SearchConfig)
    output: OutputConfig = field(default_factory=OutputConfig)
    cli: CLIConfig = field(default_factory=CLIConfig)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "search": asdict(self.search),
            "output": asdict(self.output),
            "cli": asdict(self.cli),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'SubvolsConfig':
        """Create from dictionary."""
        search_data = data.get("search", {})
        output_data = data.get("output", {})
        cli_data = data.get("cli", {})
        return cls(
            search=SearchConfig(**search_data),
            output=OutputConfig(**output_data),
            cli=CLIConfig(**cli_data),
        )


def get_config_path() -> Path:
    """
    Get configuration file path.

    Follows XDG Base Directory specification:
    1. ~/.config/subvols/config.json
    2. Fallback: ~/.subvols/config.json

    Returns:
        Path to config file
    """
    xdg_config_home = Path.home() / ".config"
    if xdg_config_home.exists():
        config_dir = xdg_config_home / "subvols"
    else:
        config_dir = Path.home() / ".subvols"

    return config_dir / "config.json"


def load_config() -> SubvolsConfig:
    """
    Load configuration from file.

    Returns:
        SubvolsConfig instance with loaded values or defaults
    """
    config_path = get_config_path()

    if not config_path.exists():
        return SubvolsConfig()

    try:
        with open(config_path, 'r') as f:
            data = json.load(f)
        return SubvolsConfig.from_dict(data)
    except (json.JSONDecodeError, OSError, TypeError) as e:
        logger.warning(f"Failed to load config from {config_path}: {e}; using defaults")
        return SubvolsConfig()


def save_config(config: SubvolsConfig) -> None:
    """
    Save configuration to file.

    Args:
        config: Configuration to save
    """
    config_path = get_config_path()
    config_path.parent.mkdir(parents=True, exist_ok=True)

    with open(config_path, 'w') as f:
        json.dump(config.to_dict(), f, indent=2)

    logger.debug(f"Configuration saved to {config_path}")


def ensure_config_exists() -> Path:
    """
    Ensure configuration file exists, creating with defaults if not.

    Returns:
        Path to config file
    """
    config_path = get_config_path()

    if not config_path.exists():
        save_config(SubvolsConfig())
        logger.info(f"Created default configuration at {config_path}")

    return config_path


def update_config(
    # Search settings
    search_page_size: Optional[int] = None,
    search_min_objectid: Optional[int] = None,
    # Output settings
    output_format: Optional[str] = None,
    output_color: Optional[bool] = None,
    # CLI settings
    cli_verbose: Optional[bool] = None,
    cli_strict: Optional[bool] = None,
) -> None:
    """
    Update configuration.

    Only updates provided values, leaving others unchanged.

    Raises:
        ValueError: If a value is out of range
    """
    config = load_config()

    if search_page_size is not None:
        if not 0 < search_page_size <= U32_MAX:
            raise ValueError(f"page size must be between 1 and {U32_MAX}, got {search_page_size}")
        config.search.page_size = search_page_size
    if search_min_objectid is not None:
        if not 0 <= search_min_objectid <= U64_MAX:
            raise ValueError(f"min objectid must be between 0 and {U64_MAX}, got {search_min_objectid}")
        config.search.min_objectid = search_min_objectid

    if output_format is not None:
        if output_format not in OUTPUT_FORMATS:
            raise ValueError(
                f"unknown output format '{output_format}', expected one of {', '.join(OUTPUT_FORMATS)}"
            )
        config.output.format = output_format
    if output_color is not None:
        config.output.color = output_color

    if cli_verbose is not None:
        config.cli.verbose = cli_verbose
    if cli_strict is not None:
        config.cli.strict = cli_strict

    save_config(config)
