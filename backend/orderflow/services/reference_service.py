# Overview: Service-layer reference generation for orders and invoices.

"""
Reference Generator - human-legible unique identifiers

FORMAT: PREFIX-YYYYMMDD-XXXXXXXX
- PREFIX:   uppercase letters per reference kind (ORD, INV, CN)
- YYYYMMDD: UTC creation date
- XXXXXXXX: 8 uppercase hex characters from the secrets module (32 bits)

UNIQUENESS: the random suffix makes collisions rare, the storage layer
enforces uniqueness, and assign() regenerates when the candidate is already
taken. After max_attempts collisions generation fails with
GenerationExhausted rather than looping forever.

Values that are already present on the entity are never overwritten.
"""

from __future__ import annotations

import re
import secrets
from typing import Callable, Mapping

from ..extensions import db
from ..validation import ValidationError
from orderflow.time_utils import utcnow
from .errors import GenerationExhausted


REFERENCE_PATTERN = re.compile(r"^[A-Z]+-\d{8}-[0-9A-F]{8}$")
PREFIX_PATTERN = re.compile(r"^[A-Z]+$")


def _random_suffix() -> str:
    return secrets.token_hex(4).upper()


class ReferenceGenerator:
    def __init__(
        self,
        prefixes: Mapping[str, str],
        *,
        max_attempts: int = 5,
        clock: Callable = utcnow,
        token_source: Callable[[], str] = _random_suffix,
    ):
        for kind, prefix in prefixes.items():
            if not PREFIX_PATTERN.match(prefix or ""):
                raise ValidationError(f"Reference prefix for {kind!r} must be uppercase letters, got {prefix!r}")
        if max_attempts < 1:
            raise ValidationError("max_attempts must be at least 1")
        self.prefixes = dict(prefixes)
        self.max_attempts = max_attempts
        self._clock = clock
        self._token_source = token_source

    def prefix_for(self, reference_kind: str) -> str:
        try:
            return self.prefixes[reference_kind]
        except KeyError:
            raise ValidationError(f"No reference prefix configured for {reference_kind!r}")

    def generate(self, prefix: str) -> str:
        if not PREFIX_PATTERN.match(prefix or ""):
            raise ValidationError(f"Reference prefix must be uppercase letters, got {prefix!r}")
        return f"{prefix}-{self._clock():%Y%m%d}-{self._token_source()}"

    def assign(self, entity, reference_kind: str, attribute: str) -> str:
        """
        Fill entity.<attribute> with a fresh unique reference if it is blank.

        The storage check runs with autoflush disabled: the entity is
        usually already pending in the session with the attribute unset.
        """
        current = getattr(entity, attribute)
        if current is not None and str(current).strip():
            return current

        column = getattr(type(entity), attribute)
        prefix = self.prefix_for(reference_kind)

        with db.session.no_autoflush:
            for _ in range(self.max_attempts):
                candidate = self.generate(prefix)
                taken = db.session.query(column).filter(column == candidate).first()
                if taken is None:
                    setattr(entity, attribute, candidate)
                    return candidate

        raise GenerationExhausted(
            f"Could not generate a unique {reference_kind} reference in {self.max_attempts} attempts",
            details={"reference_kind": reference_kind, "attempts": self.max_attempts},
        )

    def is_taken(self, model, attribute: str, value: str) -> bool:
        column = getattr(model, attribute)
        with db.session.no_autoflush:
            return db.session.query(column).filter(column == value).first() is not None
