"""
Ordered transcript assembly from out-of-order chunk completions
"""

from typing import Dict, List

from ent_scribe.models.domain import Fatal, Text, TranscriptFragment, TranscriptionOutcome


class TranscriptAssembler:
    """Keeps one fragment per sequence number and derives the transcript from sequence order.

    Fragment text is stripped on append, so the join always has single spaces.
    Empty and Ignorable outcomes hold their slot with empty text. Fatal outcomes
    leave a gap. Appending the same sequence twice keeps the first fragment.
    """

    def __init__(self):
        self._fragments: Dict[int, TranscriptFragment] = {}

    def append(self, sequence: int, outcome: TranscriptionOutcome) -> bool:
        """Returns True when a fragment was stored."""
        if isinstance(outcome, Fatal) or sequence in self._fragments:
            return False
        text = outcome.content.strip() if isinstance(outcome, Text) else ""
        self._fragments[sequence] = TranscriptFragment(sequence=sequence, text=text)
        return True

    @property
    def fragments(self) -> List[TranscriptFragment]:
        return [self._fragments[seq] for seq in sorted(self._fragments)]

    def __len__(self) -> int:
        return len(self._fragments)

    def live_text(self) -> str:
        return " ".join(f.text for f in self.fragments if f.text)

    def final_text(self) -> str:
        return self.live_text().strip()
