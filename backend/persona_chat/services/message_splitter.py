from __future__ import annotations

import re

SENTENCE_PATTERN = re.compile(r"[^。！？.!?]*[。！？.!?]+|[^。！？.!?]+")
COMMA_SPLIT_PATTERN = re.compile(r"(?<=[，,])")
# A packed message keeps growing while it stays under this many characters.
PACK_LIMIT = 30


def split_message(text: str, min_count: int = 6, max_count: int = 10) -> list[str]:
    """Split one reply into short chat bubbles.

    Joining the result gives back ``text`` exactly; nothing is trimmed or
    rewritten. Non-empty input always yields at least one bubble and never
    more than ``max_count``.
    """

    if not text:
        return []
    if not text.strip():
        return [text]
    max_count = max(1, max_count)

    segments = SENTENCE_PATTERN.findall(text)
    if len(segments) < min_count:
        segments = [part for segment in segments for part in COMMA_SPLIT_PATTERN.split(segment) if part]
    segments = _attach_blank_segments(segments)

    packed: list[str] = []
    current = ""
    for segment in segments:
        if current and len(current) + len(segment) >= PACK_LIMIT:
            packed.append(current)
            current = segment
        else:
            current += segment
    if current:
        packed.append(current)

    while len(packed) > max_count:
        index = min(range(len(packed) - 1), key=lambda i: len(packed[i]) + len(packed[i + 1]))
        packed[index : index + 2] = [packed[index] + packed[index + 1]]
    return packed


def _attach_blank_segments(segments: list[str]) -> list[str]:
    merged: list[str] = []
    for segment in segments:
        if not segment.strip() and merged:
            merged[-1] += segment
        elif merged and not merged[-1].strip():
            merged[-1] += segment
        else:
            merged.append(segment)
    return merged
