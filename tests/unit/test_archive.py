"""
Unit Tests for export / import of session archives

Tests the JSON round-trip and the fallbacks applied to incomplete files.
"""

import json
from datetime import datetime, timezone

import pytest

from argos.analysis import parse_analysis
from argos.archive import ArchiveError, build_export_payload, dumps_archive, load_archive
from argos.models import Message, SessionConfig, SocraticMode, Transcript


@pytest.fixture
def transcript():
    return Transcript(
        [
            Message(role="user", text="Bonjour Argos, je suis Alice.", timestamp=1000, opening=True),
            Message(role="model", text="Phase: 0\nQuelle intention ?", timestamp=1500, phase=0),
            Message(role="user", text="Qu'est-ce que la justice ?", timestamp=2000, response_time_ms=500),
            Message(
                role="model",
                text="Phase: 1\nDéfinis.\nExigence: Définir\nContrôle: Définition circulaire",
                timestamp=2600,
                phase=1,
                strategy="clarification",
                requirement="Définir",
                failure_condition="Définition circulaire",
            ),
        ]
    )


class TestArchiveRoundTrip:
    """Test suite for build_export_payload / load_archive."""

    def test_round_trip_preserves_session(self, alice_config, transcript):
        payload = build_export_payload(alice_config, transcript, "Recherche web uniquement")
        imported = load_archive(dumps_archive(payload))

        assert imported.config == alice_config
        assert imported.transcript == transcript
        assert imported.declaration == "Recherche web uniquement"
        assert imported.analysis is None

    def test_double_round_trip_is_stable(self, transcript):
        config = SessionConfig("Zoé", "Liberté", SocraticMode.CRITIC)
        exported_at = datetime(2026, 10, 19, tzinfo=timezone.utc)

        first = build_export_payload(config, transcript, "", exported_at=exported_at)
        imported = load_archive(dumps_archive(first))
        second = build_export_payload(
            imported.config, imported.transcript, imported.declaration, exported_at=exported_at
        )

        assert first == second

    def test_analysis_is_carried(self, alice_config, transcript, make_analysis):
        analysis = parse_analysis(make_analysis())
        payload = build_export_payload(alice_config, transcript, "aucun", analysis=analysis)
        imported = load_archive(dumps_archive(payload))

        assert imported.analysis == analysis

    def test_export_shape(self, alice_config, transcript):
        payload = build_export_payload(alice_config, transcript, "aucun")

        assert set(payload) == {"metadata", "transcript", "aiDeclaration"}
        assert payload["metadata"]["student"] == "Alice"
        assert payload["metadata"]["topic"] == "Justice"
        assert payload["metadata"]["mode"] == "TUTOR"
        assert "date" in payload["metadata"]
        assert payload["transcript"][2]["responseTimeMs"] == 500
        assert payload["transcript"][3]["failureCondition"] == "Définition circulaire"
        assert "strategy" not in payload["transcript"][1]

    def test_non_ascii_is_kept_readable(self, alice_config, transcript):
        text = dumps_archive(build_export_payload(alice_config, transcript, "équité"))
        assert "équité" in text


class TestArchiveImport:
    """Test suite for the import fallbacks and rejections."""

    def test_empty_transcript_without_metadata_uses_defaults(self):
        imported = load_archive(json.dumps({"transcript": []}))

        assert imported.config.student_name == "Apprenant"
        assert imported.config.topic == "Sujet importé"
        assert imported.config.mode == SocraticMode.TUTOR
        assert len(imported.transcript) == 0
        assert imported.declaration == ""

    def test_unknown_mode_falls_back_to_tutor(self):
        imported = load_archive(json.dumps({"metadata": {"mode": "ORACLE"}, "transcript": []}))
        assert imported.config.mode == SocraticMode.TUTOR

    def test_bytes_with_bom_are_accepted(self):
        raw = "\ufeff" + json.dumps({"metadata": {"student": "Léa"}, "transcript": []})
        imported = load_archive(raw.encode("utf-8"))
        assert imported.config.student_name == "Léa"

    def test_missing_ids_and_timestamps_are_filled(self):
        imported = load_archive(json.dumps({"transcript": [{"role": "user", "text": "Salut"}]}))
        message = imported.transcript.messages[0]

        assert message.id
        assert message.timestamp == 0

    @pytest.mark.parametrize(
        "raw",
        [
            "{pas du json",
            json.dumps([1, 2, 3]),
            json.dumps({"metadata": {"student": "Alice"}}),
            json.dumps({"transcript": "texte"}),
            json.dumps({"transcript": [{"role": "narrator", "text": "?"}]}),
            json.dumps({"transcript": [{"role": "user"}]}),
        ],
    )
    def test_invalid_archives_are_rejected(self, raw):
        with pytest.raises(ArchiveError):
            load_archive(raw)

    @pytest.mark.parametrize("timestamp", ["1e400", "-1e400", '"demain"'])
    def test_out_of_range_timestamp_falls_back_to_zero(self, timestamp):
        raw = '{"transcript": [{"role": "user", "text": "a", "timestamp": %s}]}' % timestamp
        imported = load_archive(raw)
        assert imported.transcript.messages[0].timestamp == 0

    def test_overflowing_score_drops_analysis(self, make_analysis):
        payload = json.dumps({"transcript": [], "analysis": make_analysis(reasoningScore=1)})
        payload = payload.replace('"reasoningScore": 1', '"reasoningScore": 1e400')

        imported = load_archive(payload)

        assert imported.analysis is None

    @pytest.mark.parametrize("phase", [9, -1, "1e400"])
    def test_out_of_range_phase_is_dropped(self, phase):
        raw = '{"transcript": [{"role": "model", "text": "a", "phase": %s}]}' % phase
        imported = load_archive(raw)
        assert imported.transcript.messages[0].phase is None

    def test_invalid_analysis_block_is_dropped(self):
        imported = load_archive(json.dumps({"transcript": [], "analysis": {"summary": "incomplet"}}))
        assert imported.analysis is None
