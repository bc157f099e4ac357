"""Tests for the speech transcript consumer."""

import asyncio
import json

from wfp.utils.speech import TranscriptBuffer, pump_transcripts


def _final(text, is_final=True):
    return {"channel": {"alternatives": [{"transcript": text}]}, "is_final": is_final}


class TestTranscriptBuffer:
    def test_ready_event(self):
        buffer = TranscriptBuffer()
        buffer.feed({"type": "ready"})
        assert buffer.ready is True

    def test_interim_results_are_ignored(self):
        buffer = TranscriptBuffer()
        assert buffer.feed(_final("approve inv", is_final=False)) is None
        assert buffer.segments == []

    def test_final_segments_are_joined(self):
        seen = []
        buffer = TranscriptBuffer(on_final=seen.append)

        buffer.feed(json.dumps(_final("Approve invoices")))
        buffer.feed(_final("over five thousand dollars"))

        assert seen == ["Approve invoices", "over five thousand dollars"]
        assert buffer.text == "Approve invoices over five thousand dollars"

    def test_error_event(self):
        buffer = TranscriptBuffer()
        buffer.feed({"type": "error", "message": "token expired"})
        assert buffer.error == "token expired"

    def test_garbage_is_ignored(self):
        buffer = TranscriptBuffer()
        assert buffer.feed("not json") is None
        assert buffer.feed(_final("   ")) is None


class FakeOrchestrator:
    def __init__(self):
        self.drafts = []

    def append_transcript(self, text):
        self.drafts.append(text)


def test_pump_stops_at_stream_error():
    async def stream():
        yield {"type": "ready"}
        yield _final("hello")
        yield {"type": "error", "message": "socket closed"}
        yield _final("never delivered")

    orchestrator = FakeOrchestrator()
    buffer = asyncio.run(pump_transcripts(stream(), orchestrator))

    assert orchestrator.drafts == ["hello"]
    assert buffer.error == "socket closed"


def test_invalid_utf8_bytes_are_ignored():
    buffer = TranscriptBuffer()
    assert buffer.feed(b"\x80\x81 not utf-8") is None
    assert buffer.error is None
