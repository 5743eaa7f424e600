"""
Validation Engine
=================
Post-extraction validation and reporting.

After segmenting a document, generates a report:
    - Total Questions
    - Complete Questions (text + all four options)
    - Missing Question Numbers (gaps in sequence)
    - Duplicate Question Numbers
    - Questions Missing Text
    - Questions With Incomplete Options
    - Orphan / Skipped Images
    - Anomaly breakdown by type

Never silently ignores failures.
"""

from __future__ import annotations

import logging
from collections import Counter
from typing import Optional

from .models import (
    OPTION_LETTERS,
    Anomaly,
    AnomalyType,
    ExtractionReport,
    Question,
    SheetLayout,
)

logger = logging.getLogger(__name__)


class ValidationEngine:
    """
    Validates extracted questions and produces a report.
    """

    def validate(
        self,
        questions: list[Question],
        orphan_images: int = 0,
        layout: Optional[SheetLayout] = None,
    ) -> ExtractionReport:
        """
        Run full validation on extracted questions.

        Args:
            questions: Finalized questions, in output order.
            orphan_images: Images seen before the first question.
            layout: Computed layout, for images that failed to decode.

        Returns:
            ExtractionReport with all detected issues.
        """
        report = ExtractionReport(orphan_images=orphan_images)

        if orphan_images:
            report.anomalies.append(Anomaly(
                type=AnomalyType.ORPHAN_IMAGE,
                message=f"{orphan_images} image(s) appear before the first question",
            ))

        if not questions:
            logger.warning("No questions to validate")
            return report

        report.total_questions = len(questions)

        numbers = [q.number for q in questions if q.number is not None]
        number_counts = Counter(numbers)
        report.duplicate_question_numbers = sorted(
            num for num, count in number_counts.items() if count > 1
        )
        if numbers:
            expected = set(range(min(numbers), max(numbers) + 1))
            report.missing_question_numbers = sorted(expected - set(numbers))

        images_by_target: Counter = Counter()

        for index, q in enumerate(questions):
            for qi in q.images:
                images_by_target[qi.target.value] += 1

            if not q.has_text:
                report.questions_missing_text.append(index)
                report.anomalies.append(Anomaly(
                    type=AnomalyType.MISSING_QUESTION_TEXT,
                    question_index=index,
                    message="Question has no text content",
                    context={"number": q.number},
                ))

            missing = [letter for letter in OPTION_LETTERS if letter not in q.options]
            if len(missing) == len(OPTION_LETTERS):
                report.questions_with_incomplete_options.append(index)
                report.anomalies.append(Anomaly(
                    type=AnomalyType.MISSING_OPTIONS,
                    question_index=index,
                    message="Question has no options",
                    context={"number": q.number},
                ))
            elif missing:
                report.questions_with_incomplete_options.append(index)
                report.anomalies.append(Anomaly(
                    type=AnomalyType.INCOMPLETE_OPTIONS,
                    question_index=index,
                    message=f"Missing option(s): {', '.join(missing)}",
                    context={"number": q.number, "missing": missing},
                ))

            if q.has_text and not missing:
                report.complete_questions += 1

        for num in report.duplicate_question_numbers:
            report.anomalies.append(Anomaly(
                type=AnomalyType.DUPLICATE_QUESTION_NUMBER,
                message=f"Question number {num} appears {number_counts[num]} times",
                context={"number": num},
            ))

        if layout is not None:
            for row in layout.rows:
                for cell in row.cells:
                    for digest in cell.skipped_images:
                        report.skipped_images.append(digest)
                        report.anomalies.append(Anomaly(
                            type=AnomalyType.UNDECODABLE_IMAGE,
                            question_index=row.row_index,
                            message=f"Image {digest[:12]} could not be decoded",
                            context={"column": cell.column},
                        ))

        report.images_by_target = dict(sorted(images_by_target.items()))

        self._log_summary(report)
        return report

    def _log_summary(self, report: ExtractionReport):
        logger.info("=" * 60)
        logger.info("EXTRACTION REPORT")
        logger.info("=" * 60)
        logger.info(f"Total Questions: {report.total_questions}")
        logger.info(
            f"Complete Questions: {report.complete_questions} "
            f"({report.completeness_rate}%)"
        )
        logger.info(f"Missing Question Numbers: {len(report.missing_question_numbers)}")
        logger.info(f"Duplicate Question Numbers: {len(report.duplicate_question_numbers)}")
        logger.info(f"Questions Missing Text: {len(report.questions_missing_text)}")
        logger.info(
            f"Questions With Incomplete Options: "
            f"{len(report.questions_with_incomplete_options)}"
        )
        logger.info(f"Orphan Images: {report.orphan_images}")
        logger.info(f"Skipped Images: {len(report.skipped_images)}")

        if report.anomaly_breakdown:
            logger.info("Anomaly Breakdown:")
            for anomaly_type, count in sorted(report.anomaly_breakdown.items()):
                logger.info(f"  • {anomaly_type}: {count}")

        logger.info("=" * 60)
