import threading

import pytest

from droneprov.errors import UnknownStepError
from droneprov.streamer import JSONFileStreamer, JSONLinesWriter, JSONLogger, MultiStreamer, read_records, split_lines


def test_streamer_creates_log_file_per_pipeline(tmp_path, state):
    streamer = JSONFileStreamer("abc123", tmp_path / "logs")
    try:
        assert streamer.log_file == tmp_path / "logs" / "abc123.log"
        assert streamer.log_file.exists()
    finally:
        streamer.close()


@pytest.mark.parametrize("payload", [b"a\nb\nc\n", b"a\nb\nc", "a\nb\nc\n"])
def test_write_produces_one_record_per_line(tmp_path, state, payload):
    streamer = JSONFileStreamer("run", tmp_path)
    writer = streamer.stream(state, "test")

    assert writer.write(payload) == len(payload)
    writer.close()
    streamer.close()

    records = read_records(streamer.log_file)
    assert [r["line"] for r in records] == ["a", "b", "c"]
    assert [r["pos"] for r in records] == [1, 2, 3]
    assert {r["stepNumber"] for r in records} == {2}
    assert {r["stepName"] for r in records} == {"test"}


def test_line_ordinals_continue_across_writes_and_are_per_step(tmp_path, state):
    streamer = JSONFileStreamer("run", tmp_path)
    build = streamer.stream(state, "build")
    test = streamer.stream(state, "test")

    build.write(b"one\n")
    test.write(b"first\n")
    build.write(b"two\nthree\n")
    streamer.close()

    records = read_records(streamer.log_file)
    assert [(r["stepName"], r["pos"]) for r in records] == [
        ("build", 1),
        ("test", 1),
        ("build", 2),
        ("build", 3),
    ]


def test_streams_are_labelled_in_request_order(tmp_path, state):
    streamer = JSONFileStreamer("run", tmp_path)
    first = streamer.stream(state, "build")
    second = streamer.stream(state, "test")
    streamer.close()

    assert (first.stream_id, second.stream_id) == (1, 2)
    assert streamer.col.curr() == 2


def test_unknown_step_is_rejected(tmp_path, state):
    streamer = JSONFileStreamer("run", tmp_path)
    with pytest.raises(UnknownStepError):
        streamer.stream(state, "deploy")
    streamer.close()


def test_failed_append_surfaces_to_writer(tmp_path, state):
    streamer = JSONFileStreamer("run", tmp_path)
    writer = streamer.stream(state, "build")
    streamer.close()

    with pytest.raises(OSError):
        writer.write(b"lost\n")


def test_open_fails_when_store_cannot_be_created(tmp_path):
    blocker = tmp_path / "file"
    blocker.write_text("not a directory")

    with pytest.raises(OSError):
        JSONLinesWriter(blocker / "run.log").open()


def test_split_lines_strips_carriage_returns():
    assert split_lines(b"a\r\nb\r\n") == ["a", "b"]
    assert split_lines("") == [""]


def test_multi_streamer_fans_out(tmp_path, state):
    left = JSONFileStreamer("left", tmp_path)
    right = JSONFileStreamer("right", tmp_path)

    writer = MultiStreamer(left, right).stream(state, "build")
    writer.write("hello\n")
    writer.close()
    left.close()
    right.close()

    assert [r["line"] for r in read_records(left.log_file)] == ["hello"]
    assert [r["line"] for r in read_records(right.log_file)] == ["hello"]


def test_concurrent_loggers_share_one_store(tmp_path):
    store = JSONLinesWriter(tmp_path / "run.log")
    store.open()
    names = [f"step{i}" for i in range(6)]
    chunks, lines_per_chunk = 50, 4

    def run(number, name):
        logger = JSONLogger(store, number, name)
        for c in range(chunks):
            logger.write("".join(f"{name}-{c}-{n}\n" for n in range(lines_per_chunk)))

    threads = [threading.Thread(target=run, args=(i + 1, n)) for i, n in enumerate(names)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    store.close()

    records = read_records(store.path)
    assert len(records) == len(names) * chunks * lines_per_chunk
    for name in names:
        mine = [r for r in records if r["stepName"] == name]
        assert [r["pos"] for r in mine] == list(range(1, chunks * lines_per_chunk + 1))
        assert mine[-1]["line"] == f"{name}-{chunks - 1}-{lines_per_chunk - 1}"


class _FailingStore:
    def __init__(self, fail_at):
        self.fail_at = fail_at
        self.calls = 0
        self.records = []

    def add(self, record):
        self.calls += 1
        if self.calls == self.fail_at:
            raise OSError("disk full")
        self.records.append(record)


def test_failed_append_keeps_earlier_lines_and_drops_the_rest():
    store = _FailingStore(fail_at=3)
    logger = JSONLogger(store, 1, "build")

    with pytest.raises(OSError, match="disk full"):
        logger.write(b"a\nb\nc\nd\ne\n")

    assert [r["line"] for r in store.records] == ["a", "b"]
    assert store.calls == 3


@pytest.mark.parametrize("payload, consumed", [(b"caf\xc3\xa9\n", 6), ("café\n", 6)])
def test_write_reports_bytes_consumed(tmp_path, payload, consumed):
    store = JSONLinesWriter(tmp_path / "run.log")
    store.open()
    try:
        assert JSONLogger(store, 1, "build").write(payload) == consumed
    finally:
        store.close()
