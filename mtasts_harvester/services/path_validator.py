import logging
import uuid
from pathlib import Path
from typing import Union

logger = logging.getLogger(__name__)


def is_path_writable(path: Union[str, Path]) -> bool:
    """
    Check that a directory exists and accepts new files

    Creates a uniquely named check file inside the directory and removes it
    again. Never raises.

    Args:
        path: Directory to check

    Returns:
        True if the check file could be created and removed
    """
    directory = Path(path)

    if not directory.is_dir():
        logger.debug(f"Not a directory: {directory}")
        return False

    check_file = directory / f".write-check-{uuid.uuid4().hex}"

    try:
        with open(check_file, 'wb') as f:
            f.write(b"")
    except OSError as e:
        logger.debug(f"Write check failed in {directory}: {e}")
        return False

    try:
        check_file.unlink()
    except OSError as e:
        logger.warning(f"Could not remove check file {check_file}: {e}")
        return False

    return True
