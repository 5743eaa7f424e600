"""
State Machine Parser
====================
Deterministic state machine that segments an ordered Block sequence into
multiple-choice Questions, keyed on question-start and option markers.

The parser is a fold: `step(state, block) -> state`, starting from a fresh
SegmenterState for every `parse()` call, so parsing the same blocks twice
yields identical output.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, Optional

from .image_mapper import ImageRegistry, resolve_target
from .lexer import OptionMarker, PlainText, QuestionStart, tokenize
from .models import (
    OPTION_LETTERS,
    Block,
    BlockType,
    OptionlessPolicy,
    Question,
    Target,
)

logger = logging.getLogger(__name__)


class ParserState(Enum):
    """Segmenter states."""
    SEEKING_QUESTION = "SEEKING_QUESTION"
    IN_QUESTION_BODY = "IN_QUESTION_BODY"
    IN_OPTION = "IN_OPTION"


# ─── Accumulators ─────────────────────────────────────────────────────────────


@dataclass
class QuestionDraft:
    """A question under construction."""
    number: int
    lines: list[str] = field(default_factory=list)
    options: dict[str, str] = field(default_factory=dict)
    images: ImageRegistry = field(default_factory=ImageRegistry)
    # Group index of the last text appended per target
    last_group: dict[Target, int] = field(default_factory=dict)

    def append_text(self, target: Target, text: str, group: int):
        """
        Append text to a field. Text from the same group joins with a space,
        text from a new group starts a new line.
        """
        text = text.strip()
        if not text:
            return

        same_line = self.last_group.get(target) == group
        self.last_group[target] = group

        if target is Target.QUESTION:
            if same_line and self.lines:
                self.lines[-1] = f"{self.lines[-1]} {text}"
            else:
                self.lines.append(text)
            return

        letter = target.letter
        existing = self.options.get(letter, "")
        if not existing:
            self.options[letter] = text
        else:
            separator = " " if same_line else "\n"
            self.options[letter] = f"{existing}{separator}{text}"

    def add_image(self, block: Block, target: Target):
        if self.images.add(block.image, target) and target.letter:
            # An image alone is enough for the option to exist
            self.options.setdefault(target.letter, "")

    def build(self) -> Question:
        return Question(
            number=self.number,
            text=tuple(self.lines),
            options={k: self.options[k] for k in OPTION_LETTERS if k in self.options},
            images=tuple(self.images.images),
        )


@dataclass
class SegmenterState:
    """Everything the fold threads from one block to the next."""
    phase: ParserState = ParserState.SEEKING_QUESTION
    draft: Optional[QuestionDraft] = None
    active_letter: Optional[str] = None
    # Per-line context, reset whenever the group index changes
    group: Optional[int] = None
    line_marker: Optional[str] = None
    line_has_text: bool = False
    line_is_question_start: bool = False
    # Output
    questions: list[Question] = field(default_factory=list)
    orphan_images: int = 0
    discarded: int = 0

    @property
    def active_target(self) -> Target:
        if self.phase == ParserState.IN_OPTION:
            return Target.for_letter(self.active_letter)
        return Target.QUESTION


# ─── Parser ───────────────────────────────────────────────────────────────────


class StateMachineParser:
    """
    Finite state machine that transforms ordered Blocks into Questions.

    Transitions per text block:
        question-start  → finalize current question, IN_QUESTION_BODY
        option marker   → IN_OPTION(letter), once per marker on the line
        plain text      → append to the active target
    Image blocks never change state; they attach to the resolved target.
    """

    def __init__(
        self,
        optionless_policy: OptionlessPolicy = OptionlessPolicy.KEEP,
        allow_decimal_starts: bool = False,
    ):
        self.optionless_policy = OptionlessPolicy(optionless_policy)
        self.allow_decimal_starts = allow_decimal_starts
        self.last_state: Optional[SegmenterState] = None

    def parse(self, blocks: Iterable[Block]) -> list[Question]:
        """Parse blocks into finalized questions."""
        state = SegmenterState()
        for block in blocks:
            state = self.step(state, block)
        state = self.finish(state)

        self.last_state = state
        logger.info(
            f"Segmented {len(state.questions)} questions "
            f"({state.discarded} discarded, {state.orphan_images} orphan images)"
        )
        return list(state.questions)

    def step(self, state: SegmenterState, block: Block) -> SegmenterState:
        """Consume one block."""
        if block.group_index != state.group:
            state.group = block.group_index
            state.line_marker = None
            state.line_has_text = False
            state.line_is_question_start = False

        if block.type == BlockType.IMAGE:
            self._assign_image(state, block)
            return state

        at_line_start = not state.line_has_text
        state.line_has_text = True

        if state.line_is_question_start:
            # Rest of a question-start line stays in the question body
            state.draft.append_text(Target.QUESTION, block.text, block.group_index)
            return state

        for token in tokenize(
            block.text,
            at_line_start=at_line_start,
            allow_decimals=self.allow_decimal_starts,
        ):
            if isinstance(token, QuestionStart):
                self._start_new_question(state, token, block)
            elif state.draft is None:
                logger.debug(f"Skipping pre-amble text: {block.text[:60]!r}")
                break
            elif isinstance(token, OptionMarker):
                self._start_new_option(state, token, block)
            elif isinstance(token, PlainText):
                state.draft.append_text(state.active_target, token.text, block.group_index)
        return state

    def finish(self, state: SegmenterState) -> SegmenterState:
        """Finalize the in-progress question at end of input."""
        if state.draft is not None:
            self._finalize_question(state)
        state.phase = ParserState.SEEKING_QUESTION
        return state

    def _start_new_question(self, state: SegmenterState, token: QuestionStart, block: Block):
        if state.draft is not None:
            self._finalize_question(state)

        logger.debug(f"Detected question {token.number} at block {block.sequence_index}")
        state.draft = QuestionDraft(number=token.number)
        state.phase = ParserState.IN_QUESTION_BODY
        state.active_letter = None
        state.line_marker = None
        state.line_is_question_start = True
        if token.remainder:
            state.draft.append_text(Target.QUESTION, token.remainder, block.group_index)

    def _start_new_option(self, state: SegmenterState, token: OptionMarker, block: Block):
        state.phase = ParserState.IN_OPTION
        state.active_letter = token.letter
        state.line_marker = token.letter
        if token.text:
            state.draft.append_text(
                Target.for_letter(token.letter), token.text, block.group_index
            )

    def _assign_image(self, state: SegmenterState, block: Block):
        if state.draft is None:
            state.orphan_images += 1
            logger.debug(f"Skipping orphan image at block {block.sequence_index}")
            return

        if state.line_is_question_start:
            target = Target.QUESTION
        else:
            target = resolve_target(state.line_marker, state.active_letter)
        state.draft.add_image(block, target)

    def _finalize_question(self, state: SegmenterState):
        question = state.draft.build()
        state.draft = None
        state.active_letter = None

        if question.is_empty:
            state.discarded += 1
            logger.debug(f"Discarding empty question {question.number}")
            return

        if not question.options:
            if self.optionless_policy == OptionlessPolicy.DISCARD or (
                self.optionless_policy == OptionlessPolicy.KEEP_WITH_IMAGES
                and not question.images
            ):
                state.discarded += 1
                logger.debug(
                    f"Discarding question {question.number} without options "
                    f"(policy: {self.optionless_policy.value})"
                )
                return

        state.questions.append(question)


def segment(
    blocks: Iterable[Block],
    optionless_policy: OptionlessPolicy = OptionlessPolicy.KEEP,
    allow_decimal_starts: bool = False,
) -> list[Question]:
    """Convenience wrapper around StateMachineParser.parse()."""
    return StateMachineParser(optionless_policy, allow_decimal_starts).parse(blocks)
