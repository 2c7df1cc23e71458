import os
from pathlib import Path

APP_DIR_ENV = 'INFERENCE_GATEWAY_HOME'


def get_app_dir() -> Path:
    """Directory holding config.yaml and logs. `INFERENCE_GATEWAY_HOME` overrides ~/.inference-gateway."""
    override = os.getenv(APP_DIR_ENV)
    if override:
        return Path(override).expanduser()
    return Path.home() / '.inference-gateway'
