"""
Deletion classifiers and the engine that runs them.

A classifier looks at one item's transition (previous fingerprint, current
fingerprint) and either reports a typed detection or nothing. Classifiers are
stateless and independent: one raising does not stop the others.

Key design decisions:
- Priority is fixed: Full-message > Attachment-only > Partial-edit
- First non-empty result wins; later classifiers are not consulted
- A disabled type removes its classifier from the active list entirely
- The current fingerprint always becomes the new baseline, fired or not
"""

from __future__ import annotations

import difflib
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Sequence

from .config import DeletionType, DetectionConfig, FilterConfig
from .fingerprint import DeletionRecord, Fingerprint, utcnow
from .source import MessageStoreReader
from .store import FingerprintStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DetectionResult:
    type: DeletionType
    recovered_content: str | None = None
    recovered_attachments: tuple[str, ...] = ()
    details: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ClassifierContext:
    """Settings a classifier may consult. Never mutated during a run."""

    detection: DetectionConfig


class Classifier(ABC):
    """
    Base class for deletion classifiers.

    Subclasses declare a name and the classification types they can emit,
    and implement detect().
    """

    name: str = ""
    priority: int = 100
    supported_types: frozenset[DeletionType] = frozenset()

    @abstractmethod
    def detect(
        self,
        item_id: int,
        previous: Fingerprint | None,
        current: Fingerprint | None,
        context: ClassifierContext,
    ) -> DetectionResult | None:
        """
        Classify one transition.

        Args:
            item_id: The item being classified
            previous: Stored baseline, or None if never seen
            current: Live fingerprint, or None if the item vanished
            context: Detection settings

        Returns:
            A detection, or None when this classifier does not apply
        """
        ...


class FullMessageClassifier(Classifier):
    """The whole message is gone, or its text was replaced outright."""

    name = "full-message"
    priority = 1
    supported_types = frozenset({DeletionType.FULL_MESSAGE})

    def detect(self, item_id, previous, current, context):
        if previous is None or previous.tombstone:
            return None

        if current is None:
            reason = "vanished"
        elif self._is_full_replacement(previous, current, context.detection.full_replacement):
            reason = "content_replaced"
        else:
            return None

        return DetectionResult(
            type=DeletionType.FULL_MESSAGE,
            recovered_content=previous.content,
            recovered_attachments=previous.attachment_hashes,
            details={"reason": reason},
        )

    @staticmethod
    def _is_full_replacement(previous: Fingerprint, current: Fingerprint, mode: str) -> bool:
        if previous.content_hash == current.content_hash:
            return False
        if mode == "any":
            return True
        if mode == "blanked":
            return bool(previous.content) and not current.content
        return False


class AttachmentOnlyClassifier(Classifier):
    """Text unchanged, but attachments were removed."""

    name = "attachment-only"
    priority = 2
    supported_types = frozenset({DeletionType.ATTACHMENT_ONLY})

    def detect(self, item_id, previous, current, context):
        if previous is None or previous.tombstone or current is None:
            return None
        if previous.content_hash != current.content_hash:
            return None

        remaining = set(current.attachment_hashes)
        removed = tuple(h for h in previous.attachment_hashes if h not in remaining)
        if not removed:
            return None

        return DetectionResult(
            type=DeletionType.ATTACHMENT_ONLY,
            recovered_attachments=removed,
            details={
                "removed_count": len(removed),
                "remaining_count": len(current.attachment_hashes),
            },
        )


class PartialEditClassifier(Classifier):
    """
    Text changed while the item is still present.

    Conservative by default: reports that the content changed and nothing
    else. With recover_edit_content, also reports the previous text and the
    segments the edit removed.
    """

    name = "partial-edit"
    priority = 3
    supported_types = frozenset({DeletionType.PARTIAL_EDIT})

    def detect(self, item_id, previous, current, context):
        if not context.detection.track_edits:
            return None
        if previous is None or previous.tombstone or current is None:
            return None
        if previous.content_hash == current.content_hash:
            return None

        details: dict[str, Any] = {"previous_hash": previous.content_hash, "current_hash": current.content_hash}
        recovered = None
        if context.detection.recover_edit_content:
            recovered = previous.content
            details["removed_segments"] = removed_segments(previous.content or "", current.content or "")

        return DetectionResult(type=DeletionType.PARTIAL_EDIT, recovered_content=recovered, details=details)


def removed_segments(before: str, after: str) -> list[str]:
    """Text runs present in ``before`` that the edit deleted or replaced."""
    matcher = difflib.SequenceMatcher(a=before, b=after, autojunk=False)
    return [before[i1:i2] for tag, i1, i2, _, _ in matcher.get_opcodes() if tag in ("delete", "replace")]


DEFAULT_CLASSIFIERS: tuple[type[Classifier], ...] = (
    FullMessageClassifier,
    AttachmentOnlyClassifier,
    PartialEditClassifier,
)


def active_classifiers(
    allowed: Sequence[DeletionType],
    classifiers: Sequence[Classifier] | None = None,
) -> list[Classifier]:
    """Classifiers whose types intersect the allow-list, in priority order."""
    pool = list(classifiers) if classifiers is not None else [cls() for cls in DEFAULT_CLASSIFIERS]
    allowed_set = set(allowed)
    return sorted((c for c in pool if c.supported_types & allowed_set), key=lambda c: c.priority)


# -----------------------------------------------------------------------------
# Engine
# -----------------------------------------------------------------------------


class ClassifierEngine:
    """
    Runs the active classifiers over a batch of changed ids.

    process() reads baselines from the store, resolves live fingerprints
    through the reader, classifies, then commits records and new baselines
    in one transaction. Records come back with journal ids assigned; nothing
    is dispatched from here.
    """

    def __init__(
        self,
        store: FingerprintStore,
        reader: MessageStoreReader,
        detection: DetectionConfig,
        filters: FilterConfig | None = None,
        classifiers: Sequence[Classifier] | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.reader = reader
        self.context = ClassifierContext(detection=detection)
        self.filters = filters or FilterConfig()
        self.classifiers = active_classifiers(detection.types, classifiers)
        self._clock = clock

        logger.info("Active classifiers: %s", ", ".join(c.name for c in self.classifiers) or "(none)")

    def classify(
        self,
        item_id: int,
        previous: Fingerprint | None,
        current: Fingerprint | None,
    ) -> tuple[Classifier, DetectionResult] | None:
        """First non-empty result in priority order; a failing classifier counts as no result."""
        for classifier in self.classifiers:
            try:
                result = classifier.detect(item_id, previous, current, self.context)
            except Exception as e:
                logger.warning("Classifier %s failed on item %d: %s", classifier.name, item_id, e)
                continue
            if result is not None:
                return classifier, result
        return None

    def process(self, ids: Sequence[int]) -> list[DeletionRecord]:
        """
        Classify a batch and persist the outcome.

        Raises:
            Exception: from the reader or the store; nothing is committed then
        """
        ids = list(dict.fromkeys(ids))
        if not ids:
            return []

        now = self._clock()
        currents = self.reader.resolve_fingerprints(ids)

        records: list[DeletionRecord] = []
        baselines: list[Fingerprint] = []

        for item_id in ids:
            previous = self.store.get_fingerprint(item_id)
            current = currents.get(item_id)

            subject = current or previous
            if subject is None:
                # Never seen and not resolvable: nothing to track
                continue
            if not self.filters.matches(subject.sender_identity, subject.conversation_id):
                logger.debug("Item %d excluded by filters", item_id)
                continue

            hit = self.classify(item_id, previous, current)
            if hit is not None:
                classifier, result = hit
                records.append(
                    DeletionRecord(
                        item_id=item_id,
                        origin_fingerprint=previous if previous is not None else current,
                        deletion_timestamp=now,
                        classification=result.type.value,
                        recovered_content=result.recovered_content,
                        recovered_attachments=result.recovered_attachments,
                        details={"classifier": classifier.name, **result.details},
                    )
                )
            else:
                logger.debug("Item %d: no classifier fired", item_id)

            if current is not None:
                baselines.append(current)
            elif previous is not None and not previous.tombstone:
                baselines.append(previous.as_tombstone(now))

        return self.store.commit_batch(records, baselines)
