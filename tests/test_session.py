import asyncio
import json
from datetime import datetime

import pytest

from bitext.aligner import FAILED_TRANSLATION
from bitext.errors import (
    BitextError,
    ErrorCategory,
    MalformedDocumentError,
    ProviderConfigurationError,
    ProviderError,
    TranslationInProgressError,
)
from bitext.providers import EchoTranslationProvider, ProviderResult, TranslationProvider
from bitext.session import DocumentSession, TaskState, derive_output_name
from bitext.structures import FormatKind


NOW = datetime(2024, 5, 17, 9, 30, 5)


class ScriptedProvider(TranslationProvider):
    """Returns a canned result and remembers the requests it saw."""

    name = "scripted"

    def __init__(self, result):
        super().__init__()
        self.result = result
        self.requests = []

    async def complete(self, *, system_prompt, text):
        self.requests.append((system_prompt, text))
        if isinstance(self.result, Exception):
            raise self.result
        return self.result


class BlockingProvider(TranslationProvider):
    name = "blocking"

    def __init__(self):
        super().__init__()
        self.started = asyncio.Event()
        self.release = asyncio.Event()

    async def complete(self, *, system_prompt, text):
        self.started.set()
        await self.release.wait()
        return ProviderResult(ok=True, text=text.upper())


def _json_session():
    session = DocumentSession()
    session.load(
        FormatKind.KEY_VALUE,
        b'{"a": "Hello", "b": "Goodbye", "c": "Thanks"}',
        b'{"a": "Bonjour"}',
        source_name="messages.json",
    )
    return session


def test_load_translate_edit_and_export_json():
    session = _json_session()
    session.select([2, 0])
    provider = ScriptedProvider(ProviderResult(ok=True, text="Salut\nMerci"))

    report = asyncio.run(session.translate(provider, target_language="French"))

    system_prompt, payload = provider.requests[0]
    assert "French" in system_prompt
    assert payload == "Hello\nThanks"
    assert report.applied == [0, 2]

    session.edit(1, "Au revoir")
    result = session.export(now=NOW)

    assert result.filename == "messages_20240517-093005.json"
    assert json.loads(result.data) == {"a": "Salut", "b": "Au revoir", "c": "Merci"}
    assert session.dirty == {0, 1, 2}
    assert result.warnings == []


def test_loading_a_new_file_discards_previous_state():
    session = _json_session()
    session.select([1])
    session.edit(0, "changed")

    session.load(FormatKind.KEY_VALUE, b'{"z": "Zed"}', source_name="other.json")

    assert [s.key for s in session.segments] == ["z"]
    assert session.selection == set()
    assert session.dirty == set()
    assert session.source_name == "other.json"


def test_switch_format_clears_the_document():
    session = _json_session()
    session.switch_format(FormatKind.SUBTITLE_CUE)

    assert session.kind is FormatKind.SUBTITLE_CUE
    assert session.segments == []
    with pytest.raises(BitextError):
        session.export()


def test_parse_failure_is_recorded_and_leaves_session_empty():
    session = _json_session()

    with pytest.raises(MalformedDocumentError):
        session.load(FormatKind.KEY_VALUE, b"{oops")

    assert session.segments == []
    assert session.messages[-1].category is ErrorCategory.PARSE
    assert "JSON" in session.messages[-1].message


def test_provider_failure_raises_with_status_and_clears_loading():
    session = _json_session()
    provider = ScriptedProvider(
        ProviderResult(ok=False, error_message="Rate limited", status=429)
    )

    with pytest.raises(ProviderError) as excinfo:
        asyncio.run(session.translate(provider, target_language="fr"))

    assert excinfo.value.status == 429
    assert "Rate limited" in str(excinfo.value)
    assert session.loading is False
    assert session.state is TaskState.IDLE
    assert session.messages[-1].category is ErrorCategory.PROVIDER
    assert [s.translation for s in session.segments] == ["Bonjour", "", ""]


def test_provider_exception_is_reported_as_failure():
    session = _json_session()
    provider = ScriptedProvider(ConnectionError("socket closed"))

    with pytest.raises(ProviderError, match="socket closed"):
        asyncio.run(session.translate(provider, target_language="fr"))

    assert session.loading is False
    assert session.last_result.ok is False


def test_second_translation_is_refused_while_one_is_in_flight():
    session = _json_session()
    provider = BlockingProvider()

    async def scenario():
        first = asyncio.ensure_future(session.translate(provider, target_language="fr"))
        await provider.started.wait()
        assert session.loading is True
        assert session.state is TaskState.IN_FLIGHT
        with pytest.raises(TranslationInProgressError):
            await session.translate(provider, target_language="fr")
        provider.release.set()
        return await first

    report = asyncio.run(scenario())

    assert report.applied == [0, 1, 2]
    assert [s.translation for s in session.segments] == ["HELLO", "GOODBYE", "THANKS"]
    assert session.loading is False


def test_missing_target_language_is_rejected_before_sending():
    session = _json_session()
    provider = ScriptedProvider(ProviderResult(ok=True, text="x"))

    with pytest.raises(ProviderConfigurationError):
        asyncio.run(session.translate(provider, target_language="  "))

    assert provider.requests == []
    assert session.messages[-1].category is ErrorCategory.ARGUMENT


def test_translate_requires_a_loaded_document():
    with pytest.raises(BitextError):
        asyncio.run(
            DocumentSession().translate(EchoTranslationProvider(), target_language="fr")
        )


def test_short_reply_is_recorded_as_alignment_message():
    session = _json_session()
    provider = ScriptedProvider(ProviderResult(ok=True, text="Salut"))

    report = asyncio.run(session.translate(provider, target_language="fr"))

    assert report.failed == [1, 2]
    assert session.segments[2].translation == FAILED_TRANSLATION
    assert session.messages[-1].category is ErrorCategory.ALIGNMENT


def test_toggle_and_select_validate_rows():
    session = _json_session()

    assert session.toggle(2) is True
    assert session.toggle(0) is True
    assert session.toggle(2) is False
    assert session.selected_indices == [0]

    with pytest.raises(IndexError):
        session.select([5])
    with pytest.raises(IndexError):
        session.edit(3, "nope")

    session.clear_selection()
    assert session.selected_indices == []


def test_filter_matches_case_insensitively():
    session = _json_session()

    assert [index for index, _ in session.filter(original="good")] == [1]
    assert [index for index, _ in session.filter(translation="BONJOUR")] == [0]
    assert [index for index, _ in session.filter(key="a", original="hello")] == [0]
    assert len(session.filter()) == 3


def test_xliff_export_reuses_the_source_filename(xliff_bytes):
    session = DocumentSession()
    session.load(
        FormatKind.LOCALIZATION_INTERCHANGE, xliff_bytes, source_name="messages.xlf"
    )
    session.edit(1, 'Cliquez <x id="1"/> pour enregistrer')

    result = session.export(now=NOW)

    assert result.filename == "messages.xlf"
    assert b"pour enregistrer" in result.data
    assert result.warnings == []


def test_vtt_export_reports_lossiness(vtt_bytes):
    session = DocumentSession()
    session.load(FormatKind.SUBTITLE_CUE, vtt_bytes, source_name="talk.vtt")

    result = session.export(now=NOW)

    assert result.filename == "talk_20240517-093005.vtt"
    assert len(result.warnings) == 1
    assert session.messages[-1].category is ErrorCategory.SERIALIZATION


def test_derive_output_name_prefers_existing_target():
    kind = FormatKind.KEY_VALUE
    assert derive_output_name("en.json", kind, "fr.json", now=NOW) == "fr.json"
    assert derive_output_name("en.json", kind, "/tmp/x/FR.JSON", now=NOW) == "FR.JSON"
    assert (
        derive_output_name("en.json", kind, "fr.txt", now=NOW)
        == "en_20240517-093005.json"
    )
    assert derive_output_name(None, kind, now=NOW) == "translated_20240517-093005.json"


def test_untouched_segments_still_serialize():
    session = DocumentSession()
    document = session.load(FormatKind.KEY_VALUE, b'{"a":"Hello","b":"World"}')
    assert [(s.key, s.original, s.translation) for s in document.segments] == [
        ("a", "Hello", ""),
        ("b", "World", ""),
    ]

    session.edit(1, "Monde")

    assert json.loads(session.export(now=NOW).data) == {"a": "", "b": "Monde"}


def test_echo_translation_keeps_empty_values_in_place():
    session = DocumentSession()
    session.load(FormatKind.KEY_VALUE, b'{"a": "", "b": "Hello", "c": "World"}')

    report = asyncio.run(
        session.translate(EchoTranslationProvider(), target_language="fr")
    )

    assert [(s.key, s.translation) for s in session.segments] == [
        ("a", ""),
        ("b", "Hello"),
        ("c", "World"),
    ]
    assert not report.shortfall
