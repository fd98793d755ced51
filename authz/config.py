from dataclasses import dataclass
import os
from typing import Optional
from dotenv import load_dotenv

def _flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"

@dataclass
class Config:
    region: Optional[str]
    branch: str
    table_family: str
    log_path: str
    log_format: str
    log_level: str
    enforce_share_expiry: bool
    strict_subscriptions: bool
    ttl_override: Optional[int]

def load_config():
    load_dotenv(override=True)
    ttl = os.getenv("AUTHZ_TTL_OVERRIDE", "").strip()
    return Config(
        region=os.getenv("AWS_REGION") or None,
        branch=os.getenv("AMPLIFY_BRANCH", "sandbox") or "sandbox",
        table_family=os.getenv("AUTHZ_TABLE_FAMILY", "Checklist"),
        log_path=os.getenv("AUTHZ_LOG_PATH", ""),
        log_format=os.getenv("AUTHZ_LOG_FORMAT", "json").lower(),
        log_level=os.getenv("AUTHZ_LOG_LEVEL", "INFO").upper(),
        enforce_share_expiry=_flag("AUTHZ_ENFORCE_SHARE_EXPIRY", "true"),
        strict_subscriptions=_flag("AUTHZ_STRICT_SUBSCRIPTIONS", "false"),
        ttl_override=int(ttl) if ttl else None,
    )
