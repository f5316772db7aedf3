"""
structlog setup for durable transaction tooling.

Ledger values (keys, signatures, hashes, raw bytes) are rendered as base58
strings, and secret key material never reaches a log line. Output goes to
stderr so stdout stays free for transaction blobs.
"""

import logging
import sys
from enum import Enum
from typing import Any, List, Optional

import structlog
from solders.hash import Hash
from solders.keypair import Keypair as SoldersKeypair
from solders.pubkey import Pubkey
from solders.signature import Signature

from .config import settings
from .core.keys import Keypair, base58_encode


REDACTED = "[redacted]"
SECRET_FIELDS = frozenset({"secret_key", "seed", "keypair", "signer", "private_key"})


def _ledger_value(value: Any) -> Any:
    if isinstance(value, (Keypair, SoldersKeypair)):
        return REDACTED
    if isinstance(value, (Pubkey, Signature, Hash)):
        return str(value)
    if isinstance(value, (bytes, bytearray)):
        return base58_encode(bytes(value))
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (list, tuple)):
        return [_ledger_value(item) for item in value]
    return value


def redact_secrets(_logger: Any, _method: str, event_dict: dict) -> dict:
    for key in SECRET_FIELDS.intersection(event_dict):
        event_dict[key] = REDACTED
    return event_dict


def render_ledger_values(_logger: Any, _method: str, event_dict: dict) -> dict:
    for key, value in event_dict.items():
        event_dict[key] = _ledger_value(value)
    return event_dict


def _shared_processors() -> List[structlog.types.Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        redact_secrets,
        render_ledger_values,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.format_exc_info,
    ]


def setup_logging(log_level: Optional[str] = None, log_format: Optional[str] = None) -> None:
    """Route structlog and stdlib logging through one stderr handler.

    Args:
        log_level: Override log level (default: settings.log_level)
        log_format: ``json`` or ``console`` (default: settings.log_format)
    """
    level = getattr(logging, (log_level or settings.log_level).upper(), logging.INFO)
    fmt = (log_format or settings.log_format).lower()
    renderer = structlog.dev.ConsoleRenderer() if fmt == "console" else structlog.processors.JSONRenderer()

    shared = _shared_processors()
    structlog.configure(
        processors=[*shared, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=shared,
            processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
        )
    )

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    # RPC request lines would otherwise log every poll
    for name in ("httpcore", "httpx"):
        logging.getLogger(name).setLevel(logging.WARNING)
