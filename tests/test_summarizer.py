"""Tests for the Summarizer and payload extraction."""

import pytest

from chronicler.errors import ConfigError, GenerationError
from chronicler.settings import ASSISTANT_PREFILL
from chronicler.summarization.summarizer import (
    PLACEHOLDER_PREFIX,
    GenerationRequest,
    RequestStatus,
    Summarizer,
    SummaryTemplate,
    extract_summary,
    format_floor_passages,
    format_record_passages,
)
from chronicler.summarization.summary_cache import SummaryRecord, SummaryType
from conftest import ScriptedLLM


class TestExtractSummary:
    """Test pulling the delimited payload out of a reply."""

    def test_extracts_payload(self):
        reply = "<minor_summary>\n  The hero leaves town.  \n</minor_summary>"
        assert extract_summary(reply, SummaryTemplate.MINOR) == "The hero leaves town."

    def test_multiline_payload(self):
        reply = "<daily_digest>line one\nline two</daily_digest>"
        assert extract_summary(reply, SummaryTemplate.DIGEST) == "line one\nline two"

    def test_wrong_tag(self):
        assert extract_summary("<minor_summary>x</minor_summary>", SummaryTemplate.DIGEST) is None

    def test_missing_tag(self):
        assert extract_summary("Here is the summary: x", SummaryTemplate.MINOR) is None

    def test_empty_payload(self):
        assert extract_summary("<minor_summary>   </minor_summary>", SummaryTemplate.MINOR) is None

    def test_ignores_tags_quoted_in_reasoning(self):
        reply = (
            "I should write <minor_summary>draft</minor_summary> here</thinking>\n"
            "<minor_summary>Final</minor_summary>"
        )
        assert extract_summary(reply, SummaryTemplate.MINOR) == "Final"

    def test_template_tags(self):
        assert SummaryTemplate.MINOR.tag == "minor_summary"
        assert SummaryTemplate.MINOR_MERGE.tag == "merged_summary"
        assert SummaryTemplate.DIGEST.tag == "daily_digest"
        assert SummaryTemplate.MERGE_LEGACY.tag == "major_summary"


class TestFormatting:
    def test_floor_passages(self):
        text = format_floor_passages([(12, "a"), (13, "b")])
        assert text == "[Floor 12]\na\n\n[Floor 13]\nb"

    def test_record_passages_sorted_and_labelled(self):
        records = [
            SummaryRecord(SummaryType.MINOR, (7, 8), "merged"),
            SummaryRecord(SummaryType.MINOR, (5,), "single"),
        ]
        assert format_record_passages(records) == "[Floor 5]\nsingle\n\n[Floors 7-8]\nmerged"


class TestGenerationRequest:
    """Test the request lifecycle."""

    def test_lifecycle(self):
        request = GenerationRequest(SummaryTemplate.MINOR, "prompt")
        assert request.status == RequestStatus.PENDING
        request.start()
        assert request.status == RequestStatus.GENERATING
        request.succeed("done")
        assert request.status == RequestStatus.SUCCEEDED
        assert request.content == "done"

    def test_cannot_start_twice(self):
        request = GenerationRequest(SummaryTemplate.MINOR, "prompt")
        request.start()
        with pytest.raises(RuntimeError):
            request.start()

    def test_fail_records_error(self):
        request = GenerationRequest(SummaryTemplate.DIGEST, "prompt")
        request.start()
        request.fail("boom")
        assert request.status == RequestStatus.FAILED
        assert request.error == "boom"


class TestSummarizerGenerate:
    """Test collaborator calls and failure handling."""

    @pytest.mark.asyncio
    async def test_summarize_turn(self, summarizer, llm):
        result = await summarizer.summarize_turn(5, "The knight draws her sword.")

        assert result == "Summary #1"
        call = llm.calls[0]
        assert "floor 5" in call["user"]
        assert "The knight draws her sword." in call["user"]
        assert call["prefill"] == ASSISTANT_PREFILL

    @pytest.mark.asyncio
    async def test_reply_with_orphan_reasoning(self):
        llm = ScriptedLLM(["short plan</thinking><minor_summary>Clean</minor_summary>"])
        assert await Summarizer(primary=llm).summarize_turn(1, "x") == "Clean"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("reply", ["__ERROR__", "__STOPPED__", "  __ERROR__\n", None])
    async def test_sentinel_reply_raises(self, reply):
        summarizer = Summarizer(primary=ScriptedLLM([reply]))
        with pytest.raises(GenerationError) as excinfo:
            await summarizer.summarize_turn(1, "x")
        assert excinfo.value.template == "minor"
        assert excinfo.value.request.status == RequestStatus.FAILED
        assert excinfo.value.request.error == f"collaborator returned {reply!r}"

    @pytest.mark.asyncio
    async def test_missing_payload_raises(self):
        summarizer = Summarizer(primary=ScriptedLLM(["Sure! The hero leaves."]))
        with pytest.raises(GenerationError) as excinfo:
            await summarizer.summarize_turn(1, "x")
        assert excinfo.value.raw_reply == "Sure! The hero leaves."
        assert excinfo.value.request.error == "no delimited payload"
        assert "floor 1" in excinfo.value.request.prompt

    @pytest.mark.asyncio
    async def test_transport_error_wrapped(self):
        summarizer = Summarizer(primary=ScriptedLLM([ConnectionError("network down")]))
        with pytest.raises(GenerationError) as excinfo:
            await summarizer.summarize_turn(1, "x")
        assert isinstance(excinfo.value.__cause__, ConnectionError)
        assert excinfo.value.request.status == RequestStatus.FAILED
        assert excinfo.value.request.error == "network down"

    @pytest.mark.asyncio
    async def test_last_request_tracks_success(self, summarizer):
        await summarizer.summarize_day("2024-01-01", [SummaryRecord(SummaryType.MINOR, (1,), "a")])

        request = summarizer.last_request
        assert request.template == SummaryTemplate.DIGEST
        assert request.status == RequestStatus.SUCCEEDED
        assert request.content == "Summary #1"
        assert request.metadata["calendar_key"] == "2024-01-01"

    @pytest.mark.asyncio
    async def test_assistant_channel_gets_no_prefill(self):
        primary = ScriptedLLM()
        assistant = ScriptedLLM()
        summarizer = Summarizer(primary=primary, assistant=assistant, use_assistant_channel=True)

        await summarizer.summarize_turn(2, "x")

        assert primary.call_count == 0
        assert assistant.calls[0]["prefill"] is None

    @pytest.mark.asyncio
    async def test_missing_selected_channel_raises_config_error(self):
        summarizer = Summarizer(primary=ScriptedLLM(), use_assistant_channel=True)
        assert not summarizer.available
        with pytest.raises(ConfigError):
            await summarizer.summarize_turn(1, "x")

    @pytest.mark.asyncio
    async def test_missing_primary_raises_config_error(self):
        summarizer = Summarizer(assistant=ScriptedLLM())
        with pytest.raises(ConfigError):
            await summarizer.summarize_turn(1, "x")

    @pytest.mark.asyncio
    async def test_offline_placeholder(self):
        summarizer = Summarizer()
        assert summarizer.offline
        assert summarizer.available

        result = await summarizer.summarize_turn(3, "The  dragon\nsleeps.")

        assert result.startswith(PLACEHOLDER_PREFIX)
        assert "floor=3" in result
        assert result.endswith("The dragon sleeps.")

    @pytest.mark.asyncio
    async def test_offline_placeholder_is_deterministic(self):
        summarizer = Summarizer()
        first = await summarizer.summarize_day("2024-01-01", [SummaryRecord(SummaryType.MINOR, (1,), "a")])
        second = await summarizer.summarize_day("2024-01-01", [SummaryRecord(SummaryType.MINOR, (1,), "a")])
        assert first == second


class TestSummarizerEntryPoints:
    """Test the run, day and merge templates."""

    @pytest.mark.asyncio
    async def test_summarize_run(self, summarizer, llm):
        result = await summarizer.summarize_run([(12, "a"), (13, "b"), (14, "c")])

        assert result == "Summary #1"
        prompt = llm.calls[0]["user"]
        assert "floors 12 to 14" in prompt
        assert "[Floor 13]\nb" in prompt
        assert "<merged_summary>" in prompt

    @pytest.mark.asyncio
    async def test_summarize_day(self, summarizer, llm):
        minors = [SummaryRecord(SummaryType.MINOR, (5,), "one"), SummaryRecord(SummaryType.MINOR, (6,), "two")]
        await summarizer.summarize_day("2024-02-03", minors)

        prompt = llm.calls[0]["user"]
        assert "2024-02-03" in prompt
        assert "[Floor 5]\none" in prompt

    @pytest.mark.asyncio
    async def test_merge_summaries(self, summarizer, llm):
        minors = [SummaryRecord(SummaryType.MINOR, (3, 4), "a"), SummaryRecord(SummaryType.MINOR, (6,), "b")]
        await summarizer.merge_summaries(minors)

        assert "floors 3 to 6" in llm.calls[0]["user"]
        assert "<major_summary>" in llm.calls[0]["user"]

    @pytest.mark.asyncio
    async def test_empty_inputs_rejected(self, summarizer):
        with pytest.raises(ValueError):
            await summarizer.summarize_run([])
        with pytest.raises(ValueError):
            await summarizer.summarize_day("d", [])
        with pytest.raises(ValueError):
            await summarizer.merge_summaries([])
