import base64
import json
import logging

from dataclasses import asdict, is_dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Optional, Any
from uuid import UUID

import coloredlogs

LOG_FORMAT = '%(asctime)s [%(levelname).1s] %(name)s: %(message)s'
LOG_DATE_FORMAT = '%Y-%m-%d %H:%M:%S'


def b64dec(data: str, safe: bool = False) -> bytes:
    """
    Decodes Base64-encoded string to bytes.

    Args:
        data (str): Base64-encoded string.
        safe (bool): Use URL-safe decoding if True.

    Returns:
        bytes: Decoded byte data.
    """
    # Fix missing padding
    data = data + '=' * (-len(data) % 4)
    return base64.urlsafe_b64decode(data) if safe else base64.b64decode(data, validate=True)


def load_bytes(value: str) -> bytes:
    """
    Loads binary input given on the command line as a file path, hex or Base64.

    Each parser is tried in turn until one succeeds.

    Args:
        value (str): Path to a binary file, hex string or Base64 string.

    Returns:
        bytes: The decoded data.

    Raises:
        ValueError: If no parser accepts the input.
    """
    for parser in (lambda v: Path(v).read_bytes(), bytes.fromhex, b64dec):
        try:
            data = parser(value)
        except (ValueError, OSError):
            # Ignore failures and try next parser
            continue
        if data:
            return data
    raise ValueError(f'Could not import binary data from input: {value}')


def dumps(data: Any, beauty: bool = False) -> str:
    """
    Serializes parsed structures into JSON, handling binary, nested, and custom types.

    Args:
        data: The data to serialize. Dataclasses are converted field by field.
        beauty (bool): If True, formats JSON with indentation for readability.

    Returns:
        str: A JSON-formatted string.
    """

    def __string(value):
        # Convert parsed records into plain dictionaries first
        if is_dataclass(value) and not isinstance(value, type):
            return __string(asdict(value))

        # Recursively process lists and tuples
        elif isinstance(value, (list, tuple)):
            return [__string(v) for v in value]

        # Recursively process dictionaries
        elif isinstance(value, dict):
            return {str(__string(k)): __string(v) for k, v in value.items()}

        # Binary identifiers and keys are shown as hex, empty bytes as null
        elif isinstance(value, bytes):
            return value.hex() if value else None

        elif isinstance(value, Enum):
            return value.name

        # Convert known non-serializable types to string
        elif isinstance(value, (UUID, datetime, Path)):
            return str(value)

        # Return all other values unchanged
        return value

    # Perform final JSON serialization with optional pretty-printing
    return json.dumps(
        __string(data),
        indent=2 if beauty else None,
        separators=None if beauty else (',', ':')  # Compact output if not pretty
    )


def configure_logging(path: Optional[Path] = None, verbose: bool = False) -> Optional[Path]:
    """
    Sends log records to the console, and to a per-run file when a directory is given.

    The file always records debug output; the console follows `verbose`.

    Returns:
        Path or None: The log file, if one was opened.
    """
    level = logging.DEBUG if verbose else logging.INFO
    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(logging.DEBUG if path else level)

    file_path = None
    if path:
        path.mkdir(parents=True, exist_ok=True)
        file_path = (path / datetime.now().strftime('drmcore_%Y-%m-%d_%H-%M-%S.log')).resolve()
        file_handler = logging.FileHandler(file_path)
        file_handler.setFormatter(logging.Formatter(fmt=LOG_FORMAT, datefmt=LOG_DATE_FORMAT))
        root_logger.addHandler(file_handler)

    coloredlogs.install(level=level, logger=root_logger, fmt=LOG_FORMAT, datefmt=LOG_DATE_FORMAT)
    return file_path
