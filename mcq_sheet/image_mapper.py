"""
Image Mapper
============
Decides which field of the current question an image belongs to.

Association is causal: only the marker context seen so far is consulted,
never later blocks.
"""

from __future__ import annotations

import logging
from typing import Optional

from .models import ImageRef, QuestionImage, Target

logger = logging.getLogger(__name__)


def resolve_target(
    line_marker: Optional[str],
    active_letter: Optional[str],
) -> Target:
    """
    Resolve the target for an image.

    Args:
        line_marker: Letter of the last option marker opened on the line the
            image sits on, if any.
        active_letter: Letter of the last option opened anywhere in the
            current question, if any.
    """
    if line_marker:
        return Target.for_letter(line_marker)
    return Target.for_letter(active_letter)


class ImageRegistry:
    """
    Ordered, de-duplicated list of a question's images.

    Identity is the digest of the decoded bytes, so the same picture reached
    twice through overlapping traversal is recorded once.
    """

    def __init__(self):
        self.images: list[QuestionImage] = []
        self._seen: set[str] = set()

    def add(self, image: ImageRef, target: Target) -> bool:
        if image.digest in self._seen:
            logger.debug(f"Ignoring duplicate image {image.digest[:12]} for {target.value}")
            return False
        self._seen.add(image.digest)
        self.images.append(QuestionImage(image=image, target=target))
        return True

    def __len__(self) -> int:
        return len(self.images)
