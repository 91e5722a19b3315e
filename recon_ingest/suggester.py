"""
Column Suggestion Layer.

Proposes which file header should feed each canonical field, so the operator
starts from a sensible mapping instead of four empty selects.

Matching runs in two layers, most trustworthy first:

1. **Synonyms**: the header is normalised (lowercase, punctuation stripped,
   whitespace collapsed) and looked up in a curated dictionary.
   Confidence 100.
2. **Fuzzy**: ``rapidfuzz`` token-sort similarity against every synonym.
   Scores below ``fuzzy_threshold`` are rejected; a runner-up header within
   ``fuzzy_ambiguity_delta`` marks the suggestion ambiguous.

Suggestions are only ever *returned*. Nothing here touches a
``ColumnMappingValidator``; the operator applies them explicitly.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

from rapidfuzz import fuzz, process

from recon_ingest.config import MappingConfig
from recon_ingest.logging_setup import get_logger
from recon_ingest.schema import CanonicalField, canonical_lookup

logger = get_logger("suggester")


# ---------------------------------------------------------------------------
# Built-in synonym dictionary
# ---------------------------------------------------------------------------
# Convention: key = normalised variant, value = canonical field.

_BUILTIN_SYNONYMS: Dict[str, CanonicalField] = {
    # --- Transaction ID ---
    "transaction id": CanonicalField.TRANSACTION_ID,
    "transactionid": CanonicalField.TRANSACTION_ID,
    "transaction": CanonicalField.TRANSACTION_ID,
    "transaction number": CanonicalField.TRANSACTION_ID,
    "transaction no": CanonicalField.TRANSACTION_ID,
    "txn id": CanonicalField.TRANSACTION_ID,
    "txnid": CanonicalField.TRANSACTION_ID,
    "txn": CanonicalField.TRANSACTION_ID,
    "txn no": CanonicalField.TRANSACTION_ID,
    "trans id": CanonicalField.TRANSACTION_ID,
    "tran id": CanonicalField.TRANSACTION_ID,
    "trx id": CanonicalField.TRANSACTION_ID,

    # --- Amount ---
    "amount": CanonicalField.AMOUNT,
    "amt": CanonicalField.AMOUNT,
    "transaction amount": CanonicalField.AMOUNT,
    "txn amount": CanonicalField.AMOUNT,
    "txn amt": CanonicalField.AMOUNT,
    "net amount": CanonicalField.AMOUNT,
    "gross amount": CanonicalField.AMOUNT,
    "total amount": CanonicalField.AMOUNT,
    "value": CanonicalField.AMOUNT,

    # --- Reference Number ---
    "reference number": CanonicalField.REFERENCE_NUMBER,
    "reference no": CanonicalField.REFERENCE_NUMBER,
    "referencenumber": CanonicalField.REFERENCE_NUMBER,
    "reference": CanonicalField.REFERENCE_NUMBER,
    "reference id": CanonicalField.REFERENCE_NUMBER,
    "ref": CanonicalField.REFERENCE_NUMBER,
    "ref no": CanonicalField.REFERENCE_NUMBER,
    "ref number": CanonicalField.REFERENCE_NUMBER,
    "ref id": CanonicalField.REFERENCE_NUMBER,
    "utr": CanonicalField.REFERENCE_NUMBER,
    "cheque number": CanonicalField.REFERENCE_NUMBER,

    # --- Date ---
    "date": CanonicalField.DATE,
    "transaction date": CanonicalField.DATE,
    "txn date": CanonicalField.DATE,
    "value date": CanonicalField.DATE,
    "posting date": CanonicalField.DATE,
    "post date": CanonicalField.DATE,
    "booking date": CanonicalField.DATE,
    "settlement date": CanonicalField.DATE,
}


@dataclass(frozen=True)
class ColumnSuggestion:
    """One proposed header for one canonical field."""

    field: CanonicalField
    header: str
    score: float  # 0–100
    method: str  # "synonym" | "fuzzy"
    is_ambiguous: bool = False

    def to_dict(self) -> dict:
        return {
            "field": self.field.value,
            "header": self.header,
            "score": round(self.score, 2),
            "method": self.method,
            "ambiguous": self.is_ambiguous,
        }


class ColumnSuggester:
    """Suggest a header per canonical field.

    Parameters
    ----------
    config:
        Fuzzy threshold and ambiguity delta.
    extra_synonyms:
        ``{variant: canonical field name}`` merged into the built-in
        dictionary.
    """

    _PUNCT_RE = re.compile(r"[^a-z0-9\s]")
    _SEPARATOR_RE = re.compile(r"[_\-./]+")
    _MULTI_SPACE_RE = re.compile(r"\s+")

    def __init__(
        self,
        config: Optional[MappingConfig] = None,
        extra_synonyms: Optional[Dict[str, str]] = None,
    ) -> None:
        self._config = config or MappingConfig()
        self._dict: Dict[str, CanonicalField] = dict(_BUILTIN_SYNONYMS)
        if extra_synonyms:
            for variant, name in extra_synonyms.items():
                self.add_synonym(variant, name)

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #

    def normalize(self, raw: str) -> str:
        """Return the comparable form of a header, e.g. ``"Txn_ID"`` → ``"txn id"``."""
        text = self._SEPARATOR_RE.sub(" ", raw.strip().lower())
        text = self._PUNCT_RE.sub("", text)
        return self._MULTI_SPACE_RE.sub(" ", text).strip()

    def add_synonym(self, variant: str, canonical: str) -> None:
        """Register a variant for a canonical field.

        Raises
        ------
        ValueError
            If ``canonical`` names no canonical field.
        """
        cf = canonical_lookup(canonical)
        if cf is None:
            raise ValueError(f"Unknown canonical field {canonical!r}")
        key = self.normalize(variant)
        if key in self._dict and self._dict[key] is not cf:
            logger.warning("Overwriting synonym %r: %s → %s", key, self._dict[key].value, cf.value)
        self._dict[key] = cf

    def classify(self, header: str) -> Optional[Tuple[CanonicalField, float, str]]:
        """Best canonical field for one header as ``(field, score, method)``."""
        norm = self.normalize(header)
        if not norm:
            return None

        cf = self._dict.get(norm)
        if cf is not None:
            logger.debug("Synonym hit: %r → %s", header, cf.value)
            return cf, 100.0, "synonym"

        best = process.extractOne(norm, list(self._dict), scorer=fuzz.token_sort_ratio)
        if best is None:
            return None
        variant, score, _ = best
        if score < self._config.fuzzy_threshold:
            logger.debug(
                "Fuzzy best for %r is %r (%.1f), below threshold %.1f",
                header, variant, score, self._config.fuzzy_threshold,
            )
            return None
        return self._dict[variant], float(score), "fuzzy"

    def suggest(self, headers: Sequence[str]) -> List[ColumnSuggestion]:
        """Propose at most one header per canonical field.

        A header is proposed for at most one field. Ties go to the header that
        appears first in the file.
        """
        candidates: Dict[CanonicalField, List[Tuple[float, str, str]]] = {}
        for header in headers:
            hit = self.classify(header)
            if hit is not None:
                cf, score, method = hit
                candidates.setdefault(cf, []).append((score, header, method))

        suggestions: List[ColumnSuggestion] = []
        for cf in CanonicalField:
            ranked = sorted(candidates.get(cf, []), key=lambda c: -c[0])
            if not ranked:
                continue
            score, header, method = ranked[0]
            ambiguous = (
                len(ranked) > 1
                and score - ranked[1][0] <= self._config.fuzzy_ambiguity_delta
            )
            if ambiguous:
                logger.warning(
                    "Ambiguous suggestion for %s: %r (%.1f) vs %r (%.1f)",
                    cf.value, header, score, ranked[1][1], ranked[1][0],
                )
            suggestions.append(ColumnSuggestion(cf, header, score, method, ambiguous))

        logger.info(
            "Suggested %d of %d fields from %d headers",
            len(suggestions), len(CanonicalField), len(headers),
        )
        return suggestions
