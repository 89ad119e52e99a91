"""
Transcript Models
=================
What the Live Run Monitor publishes while it walks a run.

    TranscriptEntry  : one ordered piece of the rendered transcript
                       (stage header, job header or log text)
    LogFragment      : append-only slice of one job's log
    TranscriptBuffer : per-job fragment history for a whole session
"""
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict

EntryKind = Literal["stage_header", "job_header", "log_text"]


class TranscriptEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: EntryKind
    text: str
    job_id: Optional[str] = None


class LogFragment(BaseModel):
    model_config = ConfigDict(frozen=True)

    job_id: str
    text: str
    sequence: int


class TranscriptBuffer:
    """
    Accumulates LogFragments per job across polling passes.

    Every pass re-reads the full job log from the service. ``absorb``
    records only the part not seen before, so concatenating a job's
    fragments in sequence order reproduces the latest log text.
    If the service returns text that does not extend what was already
    seen (log rotated or truncated), the job's history restarts from the
    whole new text and ``rewritten`` is flagged for that job.
    """

    def __init__(self) -> None:
        self._fragments: Dict[str, List[LogFragment]] = {}
        self._seen: Dict[str, str] = {}
        self._sequence = 0
        self.rewritten: set[str] = set()

    def absorb(self, job_id: str, text: str) -> Optional[LogFragment]:
        seen = self._seen.get(job_id, "")
        if text == seen:
            return None
        if text.startswith(seen):
            delta = text[len(seen):]
        else:
            self.rewritten.add(job_id)
            self._fragments.pop(job_id, None)
            delta = text
        self._sequence += 1
        fragment = LogFragment(job_id=job_id, text=delta, sequence=self._sequence)
        self._fragments.setdefault(job_id, []).append(fragment)
        self._seen[job_id] = text
        return fragment

    def fragments(self, job_id: str) -> List[LogFragment]:
        return list(self._fragments.get(job_id, []))

    def text(self, job_id: str) -> str:
        return self._seen.get(job_id, "")
