"""
Client fingerprinting.

The fingerprint is a stable hash of the client's environment, sent when an
attempt starts and recomputed for the final submit so the collaborator can
flag an attempt that changed machines mid-test.
"""
import hashlib
import json
import platform
import sys
from dataclasses import asdict, dataclass
from datetime import datetime


@dataclass(frozen=True)
class ClientContext:
    user_agent: str
    timezone: str
    platform: str = ""


def current_client_context() -> ClientContext:
    """Describe the running process as a client."""
    tz_name = datetime.now().astimezone().tzname() or "UTC"
    return ClientContext(
        user_agent=f"python/{sys.version_info.major}.{sys.version_info.minor}",
        timezone=tz_name,
        platform=platform.platform(),
    )


def generate_client_fingerprint(context: ClientContext) -> str:
    """Hex SHA-256 over the context fields in a canonical order."""
    canonical = json.dumps(asdict(context), sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def current_fingerprint() -> str:
    return generate_client_fingerprint(current_client_context())
