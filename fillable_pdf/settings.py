import json
import logging
import os
from dataclasses import asdict, dataclass, fields
from typing import Optional, Tuple

logger = logging.getLogger(__name__)

CONFIG_FILE = os.path.join(
    os.path.expanduser("~"), ".fillable_pdf_creator_config.json"
)

LOG_FORMAT = "%(asctime)s - %(levelname)s - %(message)s"

# Interactive editor minimum field size (display units)
MIN_FIELD_WIDTH = 80.0
MIN_FIELD_HEIGHT = 22.0


@dataclass
class Settings:
    """Tunable constants shared by detection, merging and export"""

    render_scale: float = 1.25

    # Detection
    min_run_length: int = 8
    detect_min_width: float = 20.0
    detect_min_height: float = 14.0
    vertical_offset: float = -2.0  # negative lifts detected fields up
    detected_confidence: float = 0.6

    # Merge deduplication thresholds (display units)
    merge_max_dx: float = 10.0
    merge_max_dy: float = 10.0
    merge_max_dwidth: float = 15.0

    # Manually placed fields
    manual_field_width: float = 150.0
    manual_field_height: float = 24.0

    # Exported widget appearance
    text_color: Tuple[float, float, float] = (0.2, 0.2, 0.2)  # RGB 0-1
    fill_color: Tuple[float, float, float] = (0.95, 0.95, 0.95)  # RGB 0-1
    border_width: float = 0.0
    font_size: float = 10.0
    text_font: str = "helv"

    archive_name: str = "fillable-pdfs.zip"

    @classmethod
    def from_dict(cls, data: dict) -> "Settings":
        defaults = cls()
        values = {}
        for f in fields(cls):
            if f.name not in data:
                continue
            default = getattr(defaults, f.name)
            value = data[f.name]
            if isinstance(default, tuple):
                value = tuple(float(c) for c in value)
            else:
                value = type(default)(value)
            values[f.name] = value
        return cls(**values)

    def to_dict(self) -> dict:
        config = asdict(self)
        config["text_color"] = list(self.text_color)
        config["fill_color"] = list(self.fill_color)
        return config


def load_settings(path: Optional[str] = None) -> Settings:
    """Load settings from the config file, falling back to defaults"""
    path = path or CONFIG_FILE
    if not os.path.exists(path):
        return Settings()

    try:
        with open(path, "r") as f:
            config = json.load(f)
        return Settings.from_dict(config)
    except (OSError, ValueError, TypeError) as e:
        logger.warning("Error loading config %s: %s", path, e)
        return Settings()


def save_settings(settings: Settings, path: Optional[str] = None) -> None:
    """Save settings to the config file"""
    path = path or CONFIG_FILE
    try:
        with open(path, "w") as f:
            json.dump(settings.to_dict(), f, indent=2)
    except OSError as e:
        logger.warning("Error saving config %s: %s", path, e)


def configure_logging(level: int = logging.INFO) -> None:
    logging.basicConfig(level=level, format=LOG_FORMAT)
