"""
Recent Entry Buffer
===================

Bounded memory of recently logged telemetry lines, used to keep a
telemetry loop that repeats the same values every cycle from flooding
the log.
"""

from typing import List

from telecap.config.defaults import MAX_RECENT_ENTRIES

CAPTION_DELIMITER = ":"


def caption_of(text: str):
    """Caption of a log line (text before the first ':'), or None if it has none."""
    caption, delimiter, _ = text.partition(CAPTION_DELIMITER)
    return caption if delimiter else None


class RecentEntryBuffer:
    """
    Ordered list of the most recent distinct log lines, oldest first.

    - an exact repeat is moved to the end instead of being stored twice
    - a new value under an existing caption replaces the first entry
      with that caption, so a value bouncing back and forth is logged
      each time it changes
    - the oldest entry is evicted once capacity is exceeded
    """

    def __init__(self, capacity: int = MAX_RECENT_ENTRIES):
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self.capacity = capacity
        self._entries: List[str] = []

    def record(self, text: str) -> bool:
        """Record a line. Returns False when it was an exact repeat."""
        if text in self._entries:
            self._entries.remove(text)
            self._entries.append(text)
            return False

        caption = caption_of(text)
        if caption is not None:
            for index, entry in enumerate(self._entries):
                if caption_of(entry) == caption:
                    del self._entries[index]
                    break

        self._entries.append(text)
        if len(self._entries) > self.capacity:
            del self._entries[0]
        return True

    def entries(self) -> List[str]:
        return list(self._entries)

    def clear(self):
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, text: str) -> bool:
        return text in self._entries
