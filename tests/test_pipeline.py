"""
End-to-end tests of the DiffScribe pipeline against a fake backend.
"""

import asyncio
import re

import pytest

from diffscribe.aggregator import PLACEHOLDER_SUMMARY
from diffscribe.ai_backends.base import TransientError
from diffscribe.core import DiffScribe, DiffScribeError
from diffscribe.diff.splitter import MalformedDiffError
from diffscribe.summarizer import BINARY_SUMMARY

BINARY_DIFF = "\n".join([
    "diff --git a/assets/logo.png b/assets/logo.png",
    "index 1b2c3d4..5e6f7a8 100644",
    "Binary files a/assets/logo.png and b/assets/logo.png differ",
    "",
])


def three_hunk_diff(path="src/big.py"):
    lines = [
        f"diff --git a/{path} b/{path}",
        "index 83db48f..bf269f4 100644",
        f"--- a/{path}",
        f"+++ b/{path}",
    ]
    for n, start in enumerate((10, 50, 90)):
        lines.append(f"@@ -{start},1 +{start},2 @@")
        lines.append(f" context line {n} " + "." * 40)
        lines.append(f"+added line {n} " + "#" * 60)
    return "\n".join(lines) + "\n"


def part_reply(prompt):
    match = re.search(r"part (\d+) of (\d+)", prompt)
    return f"Part {match.group(1)}." if match else "Whole file."


@pytest.mark.asyncio
async def test_single_small_file(fake_backend, make_config, char_tokenizer, make_file_diff):
    backend = fake_backend(replies=["Switch to JSON logging."])
    scribe = DiffScribe(make_config(), backend, char_tokenizer)
    diff = make_file_diff("src/app.py", added=["import json"], removed=["import sys"], context=["import os"])

    message = await scribe.run(diff)

    assert len(backend.calls) == 1
    assert message.text == "Update src/app.py\n\n[src/app.py] Switch to JSON logging."
    assert message.stats.lines_added == 1
    assert message.stats.lines_removed == 1


@pytest.mark.asyncio
async def test_oversized_file_becomes_three_chunks(fake_backend, make_config, char_tokenizer):
    diff = three_hunk_diff()
    backend = fake_backend(handler=part_reply)
    scribe = DiffScribe(make_config(max_tokens_per_request=160), backend, char_tokenizer)

    records, chunks = scribe.prepare(diff)
    message = await scribe.run(diff)

    assert len(records) == 1
    assert len(chunks) == 3
    assert len(backend.calls) == 3
    assert message.body[0].summary_text == "Part 1.\nPart 2.\nPart 3."


@pytest.mark.asyncio
async def test_binary_file_needs_no_request(fake_backend, make_config, char_tokenizer):
    backend = fake_backend()
    scribe = DiffScribe(make_config(), backend, char_tokenizer)

    message = await scribe.run(BINARY_DIFF)

    assert backend.calls == []
    assert message.body[0].summary_text == BINARY_SUMMARY
    assert not message.body[0].failed


@pytest.mark.asyncio
async def test_remote_outage_still_produces_message(fake_backend, make_config, char_tokenizer, make_file_diff):
    backend = fake_backend(handler=lambda prompt: TransientError("HTTP 503", 503))
    config = make_config(max_retry_attempts=3, generate_title=True, generate_summary=True, run_deadline=5.0)
    scribe = DiffScribe(config, backend, char_tokenizer)
    diff = make_file_diff("a.py", added=["x = 1"]) + make_file_diff("b.py", added=["y = 2"])

    message = await asyncio.wait_for(scribe.run(diff), timeout=5.0)

    assert len(backend.calls) == 6
    assert [f.path for f in message.body] == ["a.py", "b.py"]
    assert all(f.failed for f in message.body)
    assert message.title == "Update 2 files"
    assert message.text.count(PLACEHOLDER_SUMMARY) == 2


@pytest.mark.asyncio
async def test_run_deadline_bounds_slow_backend(fake_backend, make_config, char_tokenizer, make_file_diff):
    backend = fake_backend(delay=5.0)
    config = make_config(run_deadline=0.2, request_timeout=10.0, generate_title=True)
    scribe = DiffScribe(config, backend, char_tokenizer)

    message = await asyncio.wait_for(scribe.run(make_file_diff("slow.py", added=["pass"])), timeout=3.0)

    assert message.body[0].failed
    assert message.title == "Update slow.py"


@pytest.mark.asyncio
async def test_order_follows_diff_under_shuffled_completion(fake_backend, make_config, char_tokenizer, make_file_diff):
    paths = [f"pkg/mod{i}.py" for i in range(6)]
    diff = "".join(make_file_diff(p, added=[f"value = {i}"]) for i, p in enumerate(paths))

    def delay(prompt):
        # Earlier files finish last
        for i, p in enumerate(paths):
            if p in prompt:
                return (len(paths) - i) * 0.01
        return 0

    def reply(prompt):
        return next(f"Change {p}." for p in paths if p in prompt)

    backend = fake_backend(handler=reply, delay=delay)
    scribe = DiffScribe(make_config(worker_pool_size=6), backend, char_tokenizer)

    message = await scribe.run(diff)

    assert [f.path for f in message.body] == paths
    assert [f.summary_text for f in message.body] == [f"Change {p}." for p in paths]


@pytest.mark.asyncio
async def test_idempotent_for_deterministic_backend(fake_backend, make_config, char_tokenizer):
    diff = three_hunk_diff() + BINARY_DIFF
    scribe = DiffScribe(make_config(max_tokens_per_request=160), fake_backend(handler=part_reply), char_tokenizer)

    first = await scribe.run(diff)
    second = await scribe.run(diff)

    assert first == second


@pytest.mark.asyncio
async def test_empty_diff_is_an_error(fake_backend, make_config, char_tokenizer):
    scribe = DiffScribe(make_config(), fake_backend(), char_tokenizer)

    with pytest.raises(DiffScribeError):
        await scribe.run("")


@pytest.mark.asyncio
async def test_malformed_diff_is_an_error(fake_backend, make_config, char_tokenizer):
    backend = fake_backend()
    scribe = DiffScribe(make_config(), backend, char_tokenizer)

    with pytest.raises(MalformedDiffError):
        await scribe.run("hello\nworld\n")
    assert backend.calls == []


@pytest.mark.asyncio
async def test_cancelling_run_cancels_in_flight_requests(fake_backend, make_config, char_tokenizer, make_file_diff):
    backend = fake_backend(delay=30.0)
    config = make_config(worker_pool_size=2, request_timeout=60.0, run_deadline=60.0)
    scribe = DiffScribe(config, backend, char_tokenizer)
    diff = "".join(make_file_diff(f"pkg/mod{i}.py", added=["pass"]) for i in range(4))

    task = asyncio.create_task(scribe.run(diff))
    for _ in range(200):
        if backend.in_flight == 2:
            break
        await asyncio.sleep(0.01)
    assert backend.in_flight == 2

    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await asyncio.wait_for(task, timeout=1.0)

    assert backend.in_flight == 0
    assert len(backend.calls) == 2
