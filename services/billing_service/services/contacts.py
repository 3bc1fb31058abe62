"""Contact canonicalization used for identity matching.

Both helpers are total: anything that cannot be turned into a usable
contact comes back as None instead of raising.
"""

import re
from typing import Any, Optional

MIN_PHONE_DIGITS = 7

_NON_DIGITS = re.compile(r"\D")


def normalize_email(raw: Any) -> Optional[str]:
    """Trim and lowercase an email; None when it is not shaped like one."""
    if not isinstance(raw, str):
        return None
    email = raw.strip().lower()
    local, sep, domain = email.partition("@")
    if not sep or not local or not domain or "@" in domain or " " in email:
        return None
    return email


def normalize_phone(raw: Any) -> Optional[str]:
    """Keep digits only; fewer than MIN_PHONE_DIGITS digits is not a phone."""
    if isinstance(raw, bool) or not isinstance(raw, (str, int)):
        return None
    digits = _NON_DIGITS.sub("", str(raw))
    if len(digits) < MIN_PHONE_DIGITS:
        return None
    return digits
