"""
Column Mapping Layer.

Holds the operator's choice of source header for every canonical field and
decides whether the mapping is complete enough to submit.

Validation is pull-based: ``check()`` runs right before an action that needs
a complete mapping (submit, apply) and stores the message to show. Editing
the mapping only clears that message; it does not re-validate.
"""

from __future__ import annotations

from typing import Dict, Iterable, List, Mapping, Optional, Union

from recon_ingest.errors import ValidationError
from recon_ingest.logging_setup import get_logger
from recon_ingest.schema import REQUIRED_FIELDS, CanonicalField, canonical_lookup

logger = get_logger("column_mapping")

FieldRef = Union[CanonicalField, str]


def _resolve(field: FieldRef) -> CanonicalField:
    if isinstance(field, CanonicalField):
        return field
    cf = canonical_lookup(field)
    if cf is None:
        raise ValueError(
            f"Unknown canonical field {field!r}. "
            f"Must be one of: {', '.join(f.value for f in CanonicalField)}"
        )
    return cf


def _is_set(header: Optional[str]) -> bool:
    return bool(header and header.strip())


class ColumnMappingValidator:
    """Canonical field → selected header, constrained to the current headers.

    Parameters
    ----------
    headers:
        The mappable header names of the selected file.
    """

    def __init__(self, headers: Iterable[str] = ()) -> None:
        self._headers: List[str] = list(headers)
        self._mapping: Dict[CanonicalField, str] = {}
        self.error_message: Optional[str] = None

    # ------------------------------------------------------------------ #
    # Mutation
    # ------------------------------------------------------------------ #

    @property
    def headers(self) -> List[str]:
        return list(self._headers)

    def replace_headers(self, headers: Iterable[str]) -> None:
        """Adopt a new header set, unsetting selections it no longer offers."""
        self._headers = list(headers)
        for cf, header in list(self._mapping.items()):
            if header not in self._headers:
                logger.info("Unmapping %s: header %r is gone", cf.value, header)
                del self._mapping[cf]

    def set_mapping(self, field: FieldRef, header: Optional[str]) -> None:
        """Select *header* for *field*; ``None`` or ``""`` unsets it.

        Raises
        ------
        ValueError
            If *field* is not canonical or *header* is not offered by the
            current file.
        """
        cf = _resolve(field)
        if not header:
            self._mapping.pop(cf, None)
        elif header not in self._headers:
            raise ValueError(f"Column {header!r} is not present in the selected file")
        else:
            self._mapping[cf] = header
        logger.debug("Mapping %s → %r", cf.value, header or None)

        if self.error_message is not None:
            self.error_message = None

    def apply(self, mapping: Mapping[FieldRef, Optional[str]]) -> None:
        """Set several fields in one operator action."""
        for field, header in mapping.items():
            self.set_mapping(field, header)

    def clear(self) -> None:
        self._mapping.clear()
        self.error_message = None

    # ------------------------------------------------------------------ #
    # Queries
    # ------------------------------------------------------------------ #

    def get(self, field: FieldRef) -> Optional[str]:
        return self._mapping.get(_resolve(field))

    def missing_required_fields(self) -> List[str]:
        """Canonical names of required fields with no usable header."""
        return [
            cf.value for cf in REQUIRED_FIELDS
            if not _is_set(self._mapping.get(cf))
        ]

    def is_valid(self) -> bool:
        return not self.missing_required_fields()

    def validation_message(self) -> str:
        """Text naming the unmapped required columns, or ``""`` when valid."""
        missing = self.missing_required_fields()
        if not missing:
            return ""
        labels = [CanonicalField(name).label for name in missing]
        return f"Please map the following required columns: {' and '.join(labels)}"

    def check(self) -> bool:
        """Evaluate completeness now and remember the message to display."""
        message = self.validation_message()
        self.error_message = message or None
        if message:
            logger.warning("Mapping incomplete: %s", self.missing_required_fields())
        return not message

    def require_valid(self) -> None:
        """``check()`` that raises instead of returning ``False``.

        Raises
        ------
        ValidationError
            Carrying the missing canonical field names.
        """
        if not self.check():
            raise ValidationError(self.error_message or "", self.missing_required_fields())

    def as_payload(self) -> Dict[str, str]:
        """The mapping as sent to the backend: set fields only, wire names."""
        return {
            cf.value: self._mapping[cf]
            for cf in CanonicalField
            if cf in self._mapping
        }
