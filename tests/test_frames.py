from ingestion.schema import ChunkEvent
from translation.frames import DONE_FRAME, FrameDecoder, encode_frame


def test_encode_frame():
    assert encode_frame(ChunkEvent(content="שמע")) == 'data: {"type": "chunk", "content": "שמע"}\n\n'
    assert encode_frame({"type": "error", "error": "x"}) == 'data: {"type": "error", "error": "x"}\n\n'
    assert DONE_FRAME == "data: [DONE]\n\n"


def test_split_frames_are_reassembled():
    decoder = FrameDecoder()
    frame = encode_frame(ChunkEvent(content="In the evening"))

    assert decoder.feed(frame[:10]) == []
    assert decoder.feed(frame[10:]) == [{"type": "chunk", "content": "In the evening"}]


def test_malformed_frames_are_skipped_and_counted():
    decoder = FrameDecoder()
    text = (
        ": OPENROUTER PROCESSING\n\n"
        'data: {"type": "chunk", "content": "a"}\n\n'
        "data: {not json\n\n"
        "data: [1, 2]\n\n"
        'data: {"type": "chunk", "content": "b"}\n\n'
    )

    payloads = decoder.feed(text)

    assert [p["content"] for p in payloads] == ["a", "b"]
    assert decoder.malformed_frames == 2
    assert not decoder.done


def test_done_marker():
    decoder = FrameDecoder()
    assert decoder.feed(DONE_FRAME) == []
    assert decoder.done


def test_flush_decodes_unterminated_frame():
    decoder = FrameDecoder()
    decoder.feed('data: {"type": "chunk", "content": "tail"}')
    assert decoder.flush() == [{"type": "chunk", "content": "tail"}]
    assert decoder.buffer == ""


def test_nothing_after_done_is_decoded():
    decoder = FrameDecoder()
    text = (
        encode_frame(ChunkEvent(content="a"))
        + DONE_FRAME
        + encode_frame(ChunkEvent(content="late"))
        + 'data: {"type": "chunk", "con'
    )

    assert decoder.feed(text) == [{"type": "chunk", "content": "a"}]
    assert decoder.done
    assert decoder.feed(encode_frame(ChunkEvent(content="later"))) == []
    assert decoder.buffer == ""
    assert decoder.flush() == []
