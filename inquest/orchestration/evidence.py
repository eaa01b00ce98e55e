"""
Evidence Validator: grades a candidate answer against collected proof.

Every claim in the answer must be backed by the kind of evidence it talks
about (code, runtime data, file content) and by the text the actions
actually returned. The validator never raises; claim extraction falls back
to a sentence heuristic when the oracle cannot help.
"""

from __future__ import annotations

import logging
import math
import re
from collections.abc import Iterable
from typing import TYPE_CHECKING

from .errors import OracleError
from .models import Action, Evidence, EvidenceKind, EvidenceValidation

if TYPE_CHECKING:
    from .oracle import DecisionOracle

logger = logging.getLogger(__name__)

VERIFIED_THRESHOLD = 80
CAN_ANSWER_THRESHOLD = 70
MAX_CLAIMS = 10
EVIDENCE_EXCERPT_CHARS = 2_000

# Tools whose successful output counts as evidence of a given kind
INFERRED_EVIDENCE: dict[str, EvidenceKind] = {
    "get_ui_layer_data": EvidenceKind.RUNTIME_DATA,
    "eval_expression": EvidenceKind.RUNTIME_DATA,
    "read_file": EvidenceKind.FILE_CONTENT,
    "grep_files": EvidenceKind.CODE,
}

_CODE_CLAIM = re.compile(r"[A-Z]\w+|function|method|handler|\.\w+\(")
_DATA_CLAIM = re.compile(r"\d+|items?|users?|data|count")
_FILE_CLAIM = re.compile(r"(\w+\.(?:component|script|style|variables)\.js)")
_DOTTED_IDENTIFIER = re.compile(r"[A-Z]\w+\.\w+")
_CLAIM_WORDS = ("function", "variable", "handler", "method")

# Query wording -> evidence the answer will need
_NEEDS_CODE = re.compile(r"tap|click|handler|function|method|code|script")
_NEEDS_DATA = re.compile(r"how many|count|list|show|display|data|items|users")
_NEEDS_FILES = re.compile(r"page|component|widget|style")
_NEEDS_NAVIGATION = re.compile(r"navigate|go to|open|route")
_NEEDS_PROPERTIES = re.compile(r"property|properties|attribute|style|value")


def infer_evidence(action: Action) -> list[Evidence]:
    """Evidence implied by a successful action of a known tool."""
    kind = INFERRED_EVIDENCE.get(action.name)
    if kind is None or not action.result or action.error:
        return []

    source = str(action.params.get("filePath") or action.params.get("path") or action.name)
    return [
        Evidence(
            kind=kind,
            source=source,
            content=action.result[:EVIDENCE_EXCERPT_CHARS],
            verified=True,
        )
    ]


def heuristic_claims(answer: str, limit: int = MAX_CLAIMS) -> list[str]:
    """Pick the sentences of an answer that state something checkable."""
    claims = []
    for sentence in re.split(r"[.!?]+", answer):
        sentence = sentence.strip()
        if len(sentence) <= 10 or "?" in sentence:
            continue
        lowered = sentence.lower()
        if lowered.startswith(("you can", "you should")):
            continue

        if (
            "(" in sentence
            or re.search(r"\d", sentence)
            or any(word in sentence for word in _CLAIM_WORDS)
            or _DOTTED_IDENTIFIER.search(sentence)
        ):
            claims.append(sentence)

    return claims[:limit]


class EvidenceBuckets:
    """Collected evidence split by kind."""

    def __init__(self, items: Iterable[Evidence] = ()):
        self.code: list[Evidence] = []
        self.runtime: list[Evidence] = []
        self.files: list[Evidence] = []
        for item in items:
            self.add(item)

    def add(self, item: Evidence) -> None:
        bucket = {
            EvidenceKind.CODE: self.code,
            EvidenceKind.RUNTIME_DATA: self.runtime,
            EvidenceKind.FILE_CONTENT: self.files,
        }[item.kind]
        if item not in bucket:
            bucket.append(item)

    @property
    def all(self) -> list[Evidence]:
        return [*self.code, *self.runtime, *self.files]

    def quality(self) -> int:
        """Score 0-100 for how complete and trustworthy the evidence is."""
        quality = 0
        if self.code:
            quality += 33
        if self.runtime:
            quality += 33
        if self.files:
            quality += 34

        items = self.all
        if len(items) >= 5:
            quality += 10
        if len(items) >= 10:
            quality += 10
        if items and all(item.verified for item in items):
            quality += 10

        return min(100, quality)


class EvidenceValidator:
    """
    Validates that an answer is backed by concrete evidence.

    Usage:
        validator = EvidenceValidator(oracle=oracle, seed=42)
        validation = await validator.validate(query, history, answer)
        if not validation.can_answer:
            ...
    """

    def __init__(
        self,
        oracle: DecisionOracle | None = None,
        seed: int = 42,
        verified_threshold: int = VERIFIED_THRESHOLD,
        can_answer_threshold: int = CAN_ANSWER_THRESHOLD,
        max_claims: int = MAX_CLAIMS,
    ):
        self.oracle = oracle
        self.seed = seed
        self.verified_threshold = verified_threshold
        self.can_answer_threshold = can_answer_threshold
        self.max_claims = max_claims

    async def validate(
        self,
        query: str,
        history: list[Action],
        answer: str,
        evidence: Iterable[Evidence] = (),
    ) -> EvidenceValidation:
        """
        Grade an answer.

        Args:
            query: The user's question
            history: Executed actions, in order
            answer: Candidate answer
            evidence: Evidence already tagged on logged steps

        Returns:
            EvidenceValidation with confidence, verdicts and gaps
        """
        claims = await self.extract_claims(query, answer)
        buckets = self.collect_evidence(history, evidence)
        logger.info(
            f"Validating {len(claims)} claims against {len(buckets.code)} code, "
            f"{len(buckets.runtime)} runtime, {len(buckets.files)} file evidence"
        )

        verified: list[str] = []
        unverified: list[str] = []
        gaps: list[str] = []
        for claim in claims:
            reason = self.check_claim(claim, buckets, history)
            if reason is None:
                verified.append(claim)
            else:
                unverified.append(claim)
                gaps.append(reason)

        rate = len(verified) / len(claims) * 100 if claims else 0.0
        confidence = round(rate * 0.7 + buckets.quality() * 0.3)
        confidence = max(0, min(100, confidence))

        missing = self.identify_missing_evidence(query, buckets)
        logger.info(f"Validation complete: {confidence}% confidence, {len(verified)}/{len(claims)} claims verified")

        return EvidenceValidation(
            verified=confidence >= self.verified_threshold,
            confidence=confidence,
            has_code_evidence=bool(buckets.code),
            has_runtime_data=bool(buckets.runtime),
            has_file_content=bool(buckets.files),
            missing_evidence=missing,
            can_answer=confidence >= self.can_answer_threshold,
            claims=claims,
            claims_verified=verified,
            claims_unverified=unverified,
            evidence_gaps=gaps,
        )

    async def extract_claims(self, query: str, answer: str) -> list[str]:
        """Ask the oracle for claims; use the sentence heuristic if that fails."""
        if self.oracle is not None:
            try:
                claims = await self.oracle.extract_claims(query, answer, seed=self.seed)
                return claims[: self.max_claims]
            except OracleError as e:
                logger.warning(f"Falling back to heuristic claim extraction: {e}")
        return heuristic_claims(answer, self.max_claims)

    @staticmethod
    def collect_evidence(history: list[Action], tagged: Iterable[Evidence] = ()) -> EvidenceBuckets:
        buckets = EvidenceBuckets(tagged)
        for action in history:
            for item in infer_evidence(action):
                buckets.add(item)
        return buckets

    @staticmethod
    def check_claim(claim: str, buckets: EvidenceBuckets, history: list[Action]) -> str | None:
        """Return None if the claim is supported, else the gap description."""
        if _CODE_CLAIM.search(claim) and not buckets.code:
            return f'Claim mentions code but no code evidence was collected: "{claim}"'

        if _DATA_CLAIM.search(claim) and not buckets.runtime:
            return f'Claim mentions data but no runtime data was collected: "{claim}"'

        file_ref = _FILE_CLAIM.search(claim)
        if file_ref:
            name = file_ref.group(1).lower()
            if not any(name in f.source.lower() or name in f.content.lower() for f in buckets.files):
                return f"Claim references file {file_ref.group(1)} but no files were read"

        terms = [t for t in claim.lower().split() if len(t) > 4]
        needed = math.ceil(len(terms) / 2)
        for action in history:
            result = (action.result or "").lower()
            if sum(1 for term in terms if term in result) >= needed:
                return None

        return f'No execution history supports this claim: "{claim}"'

    @staticmethod
    def identify_missing_evidence(query: str, buckets: EvidenceBuckets) -> list[str]:
        """Evidence categories the query calls for but nobody collected."""
        missing = []
        lowered = query.lower()

        if _NEEDS_CODE.search(lowered) and not buckets.code:
            missing.append("Code evidence (event handlers, functions, scripts)")
        if _NEEDS_DATA.search(lowered) and not buckets.runtime:
            missing.append("Runtime data (actual data values, counts, items)")
        if _NEEDS_FILES.search(lowered) and not buckets.files:
            missing.append("File content (component.js, script.js, variables.js)")
        if _NEEDS_NAVIGATION.search(lowered) and not any("script" in f.source for f in buckets.files):
            missing.append("Navigation code (script.js or component.js with navigation logic)")
        if _NEEDS_PROPERTIES.search(lowered) and not buckets.runtime:
            missing.append("Widget properties or styles (get_widget_properties_styles)")

        return missing
