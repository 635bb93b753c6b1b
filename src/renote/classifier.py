"""Label-driven classification of release items into sections.

Each item lands in exactly one section. The label table comes from
configuration (see renote.config.LabelRule); this module only applies it:
- Collect every rule whose label the item carries
- Keep the rules with the lowest precedence number
- One section left -> that section; several -> AmbiguousLabelError
- No rule at all -> default_section if configured, else UnclassifiedError

Classification problems never abort a run. classify_all() sets the affected
items aside in a triage list and carries on with the rest.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Iterable
from dataclasses import dataclass, field

from renote.config import ClassificationConfig, LabelRule
from renote.errors import AmbiguousLabelError, ClassificationError, UnclassifiedError
from renote.logging_config import get_logger
from renote.schemas import REQUIRED_SECTIONS, ReleaseItem, Section

logger = get_logger(__name__)


@dataclass
class ClassificationResult:
    """Outcome of classifying a batch of items.

    Attributes:
        classified: (item, section) pairs, in input order
        issues: Items that need manual triage, with the reason
    """

    classified: list[tuple[ReleaseItem, Section]] = field(default_factory=list)
    issues: list[ClassificationError] = field(default_factory=list)

    @property
    def triage_items(self) -> list[ReleaseItem]:
        return [issue.item for issue in self.issues]


class Classifier:
    """Applies a label -> section table with precedence.

    Usage:
        classifier = Classifier(config.classification)
        section = classifier.classify(item)
    """

    def __init__(self, config: ClassificationConfig) -> None:
        self._default = config.default_section
        self._rules: dict[str, list[LabelRule]] = defaultdict(list)
        for rule in config.rules:
            self._rules[rule.label.casefold()].append(rule)

    def matching_rules(self, item: ReleaseItem) -> list[LabelRule]:
        return [
            rule
            for label in sorted(item.labels)
            for rule in self._rules.get(label.casefold(), [])
        ]

    def classify(self, item: ReleaseItem) -> Section:
        """Return the single section the item belongs to.

        Raises:
            AmbiguousLabelError: Best-precedence rules disagree on the section
            UnclassifiedError: No rule matches and there is no default
        """
        rules = self.matching_rules(item)
        if not rules:
            if self._default is not None:
                return self._default
            raise UnclassifiedError(item)

        best = min(rule.precedence for rule in rules)
        winners = {rule.section for rule in rules if rule.precedence == best}
        if len(winners) > 1:
            ordered = [s for s in REQUIRED_SECTIONS if s in winners]
            raise AmbiguousLabelError(item, ordered)
        return winners.pop()

    def classify_all(self, items: Iterable[ReleaseItem]) -> ClassificationResult:
        result = ClassificationResult()
        for item in items:
            try:
                section = self.classify(item)
            except ClassificationError as exc:
                logger.warning(
                    "classification_issue",
                    item=item.id,
                    labels=sorted(item.labels),
                    reason=str(exc),
                )
                result.issues.append(exc)
                continue
            result.classified.append((item, section))

        logger.info(
            "classification_complete",
            classified=len(result.classified),
            triage=len(result.issues),
        )
        return result
