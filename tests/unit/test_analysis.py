"""
Unit Tests for the end-of-session analysis

Tests payload validation and the retry behaviour of ReportGenerator.
"""

import asyncio

import pytest

from argos.analysis import ReportGenerator, dump_analysis, parse_analysis
from argos.openai_service import AnalysisShapeError, OpenAIServiceError
from argos.session import AppMode


class TestParseAnalysis:
    """Test suite for parse_analysis."""

    def test_valid_payload(self, make_analysis):
        analysis = parse_analysis(make_analysis())

        assert analysis.summary.startswith("Le raisonnement")
        assert analysis.scores == {
            "reasoning": 55,
            "clarity": 60,
            "skepticism": 40,
            "process": 45,
            "reflection": 50,
        }
        assert analysis.global_score == 50
        assert analysis.argument_map.claim == "La justice est l'égalité de traitement"
        assert analysis.pivotal_moments[0].impact == "positive"

    def test_missing_fields_are_rejected(self, make_analysis):
        payload = make_analysis()
        del payload["clarityScore"]
        with pytest.raises(AnalysisShapeError, match="clarityScore"):
            parse_analysis(payload)

    def test_non_object_is_rejected(self):
        with pytest.raises(AnalysisShapeError):
            parse_analysis(["pas", "un", "objet"])

    def test_scores_are_clamped(self, make_analysis):
        analysis = parse_analysis(make_analysis(reasoningScore=140, clarityScore=-5, processScore="72.4"))

        assert analysis.scores["reasoning"] == 100
        assert analysis.scores["clarity"] == 0
        assert analysis.scores["process"] == 72

    @pytest.mark.parametrize("score", ["élevé", True, None, float("inf"), float("nan"), 1e400])
    def test_non_numeric_score_is_rejected(self, make_analysis, score):
        with pytest.raises(AnalysisShapeError):
            parse_analysis(make_analysis(skepticismScore=score))

    def test_argument_map_without_claim_is_dropped(self, make_analysis):
        analysis = parse_analysis(make_analysis(argumentMap={"claim": "", "definitions": []}))
        assert analysis.argument_map is None

    def test_unknown_impact_becomes_neutral(self, make_analysis):
        moments = [{"quote": "Pourquoi ?", "analysis": "", "impact": "décisif", "whyItMatters": ""}]
        analysis = parse_analysis(make_analysis(pivotalMoments=moments))
        assert analysis.pivotal_moments[0].impact == "neutral"

    def test_dump_uses_wire_names(self, make_analysis):
        dumped = dump_analysis(parse_analysis(make_analysis()))
        assert dumped["reasoningScore"] == 55
        assert dumped["pivotalMoments"][0]["whyItMatters"] == "Ouvre la discussion sur les critères"


class TestReportGenerator:
    """Test suite for ReportGenerator."""

    @pytest.fixture
    def report_state(self, chat_state):
        chat_state.finish("Recherche web")
        return chat_state

    @pytest.mark.asyncio
    async def test_successful_analysis_is_stored(self, report_state, gateway, make_analysis):
        gateway.analyses = [make_analysis()]
        generator = ReportGenerator(gateway)

        analysis = await generator.run(report_state)

        assert analysis is not None
        assert report_state.analysis == analysis
        assert report_state.analysis_loading is False
        assert gateway.analysis_calls[0]["topic"] == "Justice"
        assert gateway.analysis_calls[0]["declaration"] == "Recherche web"

    @pytest.mark.asyncio
    async def test_failure_then_success_yields_one_analysis(self, report_state, gateway, make_analysis):
        gateway.analyses = [OpenAIServiceError("timeout"), make_analysis()]
        generator = ReportGenerator(gateway)

        assert await generator.run(report_state) is None
        assert report_state.analysis is None
        assert report_state.analysis_error_kind == "gateway"
        assert report_state.mode == AppMode.REPORT

        assert await generator.run(report_state) is not None
        assert report_state.analysis is not None
        assert report_state.analysis_error is None
        assert len(gateway.analysis_calls) == 2

    @pytest.mark.asyncio
    async def test_unparsable_result_is_a_shape_failure(self, report_state, gateway, make_analysis):
        broken = make_analysis()
        del broken["summary"]
        gateway.analyses = [broken, AnalysisShapeError("not JSON")]
        generator = ReportGenerator(gateway)

        await generator.run(report_state)
        assert report_state.analysis_error_kind == "shape"
        assert len(gateway.analysis_calls) == 1

        await generator.run(report_state)
        assert report_state.analysis_error_kind == "shape"
        assert len(gateway.analysis_calls) == 2
        assert report_state.analysis is None

    @pytest.mark.asyncio
    async def test_concurrent_run_is_ignored(self, report_state, gateway, make_analysis):
        release = asyncio.Event()
        original = gateway.generate_analysis

        async def slow_analysis(**kwargs):
            await release.wait()
            return await original(**kwargs)

        gateway.generate_analysis = slow_analysis
        gateway.analyses = [make_analysis()]
        generator = ReportGenerator(gateway)

        first = asyncio.create_task(generator.run(report_state))
        await asyncio.sleep(0)
        assert generator.busy
        assert await generator.run(report_state) is None

        release.set()
        assert await first is not None
        assert len(gateway.analysis_calls) == 1

    @pytest.mark.asyncio
    async def test_run_outside_report_is_rejected(self, chat_state, gateway):
        from argos.session import InvalidTransitionError

        with pytest.raises(InvalidTransitionError):
            await ReportGenerator(gateway).run(chat_state)
