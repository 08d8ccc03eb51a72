import hashlib
import random
from datetime import date
from typing import Optional

CERT_ID_PREFIX = "VAX"


def hash_field(data: str) -> str:
    return hashlib.sha256(data.encode()).hexdigest()


def redact_email(email: Optional[str]) -> Optional[str]:
    """Short stable digest of an address, safe to put in logs."""
    if not email:
        return email
    return hash_field(email.strip().lower())[:12]


def new_cert_id(today: Optional[date] = None, rng: Optional[random.Random] = None) -> str:
    """Candidate certificate ID, e.g. VAX-20260118-004211. Not checked for uniqueness."""
    today = today or date.today()
    rng = rng or random
    return f"{CERT_ID_PREFIX}-{today:%Y%m%d}-{rng.randint(0, 999999):06d}"
