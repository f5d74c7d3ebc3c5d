from __future__ import annotations

import secrets
import string
import uuid
from datetime import datetime

AGENT_CODE_PREFIX = "TA"
GROUP_REFERENCE_PREFIX = "GRP"


def new_id() -> str:
    return str(uuid.uuid4())


def format_agent_code(sequence: int) -> str:
    return f"{AGENT_CODE_PREFIX}{sequence:03d}"


def parse_agent_code_sequence(agent_code: str) -> int | None:
    suffix = agent_code[len(AGENT_CODE_PREFIX):] if agent_code.startswith(AGENT_CODE_PREFIX) else ""
    return int(suffix) if suffix.isdigit() else None


def normalize_agent_code(agent_code: str) -> str:
    return agent_code.strip().upper()


def format_confirmation_number(agent_code: str, sequence: int) -> str:
    prefix = agent_code if agent_code.startswith(AGENT_CODE_PREFIX) else f"{AGENT_CODE_PREFIX}{agent_code}"
    return f"{prefix}-{sequence % 10000:04d}"


def new_group_reference(now: datetime) -> str:
    suffix = "".join(secrets.choice(string.ascii_uppercase + string.digits) for _ in range(4))
    return f"{GROUP_REFERENCE_PREFIX}{now.strftime('%Y%m%d%H%M%S')}{suffix}"
