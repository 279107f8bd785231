"""Secret masking for every console sink."""

from __future__ import annotations

import threading
from typing import Iterable

MASK = "****"


class Redactor:
    """Replaces every registered secret value with a mask."""

    def __init__(self, secrets: Iterable[str] = ()):
        self._secrets: set[str] = set()
        self._lock = threading.Lock()
        self.add(*secrets)

    def add(self, *secrets: str) -> None:
        with self._lock:
            for secret in secrets:
                if not secret:
                    continue
                self._secrets.add(secret)
                # output is redacted line by line, so each line of a
                # multi-line secret is masked on its own
                self._secrets.update(line for line in secret.splitlines() if line.strip())

    def redact(self, text: str) -> str:
        if not text or not self._secrets:
            return text
        with self._lock:
            # longest first so a secret containing another is masked whole
            ordered = sorted(self._secrets, key=len, reverse=True)
        for secret in ordered:
            if secret in text:
                text = text.replace(secret, MASK)
        return text
