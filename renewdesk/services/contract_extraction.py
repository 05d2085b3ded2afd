"""
Extraction strategy chain: ordered registry of template recognisers.

Selection rule: the first strategy (in priority order) whose applies() check
returns True is used exclusively. Results are never merged across
strategies. When nothing applies, a NONE sentinel with confidence 0 is
returned; low-confidence results are expected to be corrected by a human.

New vendor templates are added by registering another object that satisfies
ExtractionStrategy; existing strategies are never modified.
"""

import re
from typing import Iterable, Optional, Protocol

import structlog

from renewdesk.services.extraction_strategies import DEFAULT_STRATEGIES, ExtractionResult

logger = structlog.get_logger()

NONE_STRATEGY = "NONE"
MANUAL_STRATEGY = "MANUAL"
RAW_TEXT_LIMIT = 2000

_HORIZONTAL_WS_RE = re.compile(r"[^\S\n]+")


class ExtractionStrategy(Protocol):
    name: str

    def applies(self, text: str) -> bool: ...

    def extract(self, text: str) -> ExtractionResult: ...


def normalize_text(text: Optional[str]) -> str:
    """Collapse horizontal whitespace per line and drop blank lines.

    Line breaks are kept: several patterns use them as field terminators.
    """
    lines = (_HORIZONTAL_WS_RE.sub(" ", line).strip() for line in (text or "").splitlines())
    return "\n".join(line for line in lines if line)


def none_result(raw_text: Optional[str] = None) -> ExtractionResult:
    return ExtractionResult(strategy=NONE_STRATEGY, confidence=0.0, raw_text=raw_text)


class ExtractionStrategyChain:
    def __init__(self, strategies: Iterable[ExtractionStrategy] = ()):
        self._strategies: list[ExtractionStrategy] = []
        for strategy in strategies:
            self.register(strategy)

    @property
    def names(self) -> list[str]:
        return [s.name for s in self._strategies]

    def register(self, strategy: ExtractionStrategy, before: Optional[str] = None) -> None:
        """Add a strategy at the end, or just ahead of the strategy named `before`."""
        if strategy.name in self.names:
            raise ValueError(f"Extraction strategy '{strategy.name}' is already registered")
        if strategy.name in (NONE_STRATEGY, MANUAL_STRATEGY):
            raise ValueError(f"'{strategy.name}' is a reserved strategy name")
        if before is None:
            self._strategies.append(strategy)
            return
        try:
            index = self.names.index(before)
        except ValueError:
            raise ValueError(f"Unknown extraction strategy '{before}'") from None
        self._strategies.insert(index, strategy)

    def extract(self, text: Optional[str]) -> ExtractionResult:
        normalized = normalize_text(text)
        for strategy in self._strategies:
            if strategy.applies(normalized):
                result = strategy.extract(normalized)
                result.raw_text = normalized[:RAW_TEXT_LIMIT]
                logger.info(
                    "extraction_strategy_selected",
                    strategy=strategy.name,
                    confidence=result.confidence,
                )
                return result

        logger.info("extraction_no_strategy_matched", characters=len(normalized))
        return none_result(normalized[:RAW_TEXT_LIMIT])


def build_default_chain() -> ExtractionStrategyChain:
    return ExtractionStrategyChain(DEFAULT_STRATEGIES)


extraction_chain = build_default_chain()
