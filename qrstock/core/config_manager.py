import os
import json
import logging
from typing import Dict, Any

logger = logging.getLogger(__name__)

DATA_DIR = os.path.join(os.getcwd(), "data")
CONFIG_FILE = os.path.join(DATA_DIR, "config.json")

DEFAULT_CONFIG: Dict[str, Any] = {
    # Camera
    'camera_index': 0,
    'frame_width': 1280,
    'frame_height': 720,
    'frame_interval': 0.1, # 10 fps
    'max_failed_reads': 30,

    # Scan policy
    'cooldown_seconds': 1.5,

    # Synchronized store: none | remote | local
    'sync_mode': 'none',
    'sync_url': None,
    'sync_collection': 'products',
    'sync_file': os.path.join(DATA_DIR, "products.json"),
    'sync_poll_interval': 2.0,
    'sync_timeout': 5.0,

    'log_level': 'INFO',
}


def load_config(path: str = None) -> Dict[str, Any]:
    """Returns DEFAULT_CONFIG overlaid with whatever the config file holds."""
    path = path or CONFIG_FILE
    config = dict(DEFAULT_CONFIG)
    if not os.path.exists(path):
        return config

    try:
        with open(path, 'r', encoding='utf-8') as f:
            stored = json.load(f)
        if isinstance(stored, dict):
            config.update(stored)
        else:
            logger.warning(f"Ignoring config file {path}: expected an object")
    except Exception as e:
        logger.error(f"Error loading config: {e}")

    return config


def save_config(config: Dict[str, Any], path: str = None):
    path = path or CONFIG_FILE
    try:
        os.makedirs(os.path.dirname(path), exist_ok=True)
        with open(path, 'w', encoding='utf-8') as f:
            json.dump(config, f, indent=2)
    except Exception as e:
        logger.error(f"Error saving config: {e}")


def get_cooldown_seconds(config: Dict[str, Any] = None) -> float:
    config = config or load_config()
    try:
        return max(0.0, float(config.get('cooldown_seconds', DEFAULT_CONFIG['cooldown_seconds'])))
    except (TypeError, ValueError):
        return DEFAULT_CONFIG['cooldown_seconds']


def get_frame_interval(config: Dict[str, Any] = None) -> float:
    config = config or load_config()
    try:
        return max(0.0, float(config.get('frame_interval', DEFAULT_CONFIG['frame_interval'])))
    except (TypeError, ValueError):
        return DEFAULT_CONFIG['frame_interval']
