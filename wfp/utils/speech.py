"""Speech-to-text consumer.

The connection itself (token minting, WebSocket lifecycle) lives outside the
planner. This module only reads the decoded event stream and forwards final
transcripts into the session's input draft.
"""

import json
import sys
from typing import AsyncIterable, Callable


class TranscriptBuffer:
    """Track stream readiness and collect finalized transcript segments.

    Events are Deepgram-shaped dicts (or their JSON text):
      {"type": "ready"}
      {"type": "error", "message": "..."}
      {"channel": {"alternatives": [{"transcript": "..."}]}, "is_final": true}
    Interim results are ignored.
    """

    def __init__(self, on_final: Callable[[str], None] | None = None):
        self.on_final = on_final
        self.ready = False
        self.error: str | None = None
        self.segments: list[str] = []

    def feed(self, event) -> str | None:
        """Consume one event; return the final transcript text it carried, if any."""
        if isinstance(event, (str, bytes)):
            try:
                event = json.loads(event)
            except ValueError:
                print(f"[WFP] Ignoring undecodable speech event: {event[:80]!r}", file=sys.stderr)
                return None
        if not isinstance(event, dict):
            return None

        kind = event.get("type")
        if kind == "ready":
            self.ready = True
            return None
        if kind == "error":
            self.error = event.get("message") or "Speech stream error"
            print(f"[WFP] Speech stream error: {self.error}", file=sys.stderr)
            return None

        alternatives = (event.get("channel") or {}).get("alternatives") or []
        if not alternatives or not event.get("is_final"):
            return None
        transcript = (alternatives[0].get("transcript") or "").strip()
        if not transcript:
            return None

        self.segments.append(transcript)
        if self.on_final is not None:
            self.on_final(transcript)
        return transcript

    @property
    def text(self) -> str:
        return " ".join(self.segments)


async def pump_transcripts(stream: AsyncIterable, orchestrator) -> TranscriptBuffer:
    """Feed every event of ``stream`` into a buffer wired to the orchestrator's input draft."""
    buffer = TranscriptBuffer(on_final=orchestrator.append_transcript)
    async for event in stream:
        buffer.feed(event)
        if buffer.error:
            break
    return buffer
