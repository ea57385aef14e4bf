"""Transcript input produced by the narrative engine."""

from typing import Optional

from pydantic import BaseModel


class TranscriptEntry(BaseModel):
    """One turn of a closed session transcript."""

    turn_id: Optional[str] = None
    scene_id: Optional[str] = None
    speaker: Optional[str] = None
    text: str = ""
    timestamp: Optional[str] = None
    metadata: dict = {}
