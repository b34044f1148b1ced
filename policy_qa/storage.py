# policy_qa/storage.py
"""JSON file persistence shared by the registries."""

import json
import logging
import os
from typing import Any, Optional

logger = logging.getLogger(__name__)


def storage_path(directory: Optional[str], filename: str) -> Optional[str]:

    if directory is None:
        return None

    return os.path.join(directory, filename)


def read_json(path: Optional[str], default: Any) -> Any:

    if not path or not os.path.exists(path):
        return default

    try:

        with open(path, "r") as f:
            return json.load(f)

    except (OSError, ValueError) as e:

        logger.error(
            "Storage file unreadable, using defaults",
            extra={"path": path, "error": str(e)},
        )

        return default


def write_json(path: Optional[str], data: Any):
    """Write through a temp file so readers never see a half-written file."""

    if not path:
        return

    directory = os.path.dirname(path)
    if directory:
        os.makedirs(directory, exist_ok=True)

    tmp_path = f"{path}.tmp"

    with open(tmp_path, "w") as f:
        json.dump(data, f, default=str)

    os.replace(tmp_path, path)
