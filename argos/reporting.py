from __future__ import annotations

import re
from datetime import datetime, timezone
from pathlib import Path

from .archive import build_export_payload, dumps_archive
from .constants import PROTOCOL_PHASES, SCORE_DISPLAY, SCORE_KEYS
from .models import AnalysisData, ReportArtifacts, SessionConfig, SocraticMode
from .session import SessionStateMachine


IMPACT_MARKERS = {
    "positive": "+",
    "negative": "-",
    "neutral": "=",
}


class ReportBuilder:
    def __init__(self, exports_dir: Path) -> None:
        self.exports_dir = exports_dir

    @staticmethod
    def _mode_display(mode: SocraticMode) -> str:
        if mode == SocraticMode.TUTOR:
            return "Socratique"
        return "Critique"

    @staticmethod
    def _score_bar(score: int, width: int = 10) -> str:
        filled = round(min(max(score, 0), 100) / 100 * width)
        return "█" * filled + "░" * (width - filled)

    @staticmethod
    def _safe_name(name: str) -> str:
        cleaned = re.sub(r"[^\w\-]+", "_", name.strip(), flags=re.UNICODE).strip("_")
        return cleaned or "Apprenant"

    @staticmethod
    def phase_label(phase: int) -> str:
        if 0 <= phase < len(PROTOCOL_PHASES):
            return PROTOCOL_PHASES[phase]
        return str(phase)

    def build_markdown(
        self,
        config: SessionConfig,
        analysis: AnalysisData,
        declaration: str,
        generated_at: datetime | None = None,
    ) -> str:
        generated_at = generated_at or datetime.now(timezone.utc)

        lines: list[str] = []
        lines.append("## Audit de Pensée Critique ARGOS")
        lines.append("")
        lines.append(f"**Apprenant·e :** {config.student_name}")
        lines.append(f"**Sujet :** {config.topic}")
        lines.append(f"**Mode :** {self._mode_display(config.mode)}")
        lines.append(f"**Date :** {generated_at.strftime('%d/%m/%Y')}")
        lines.append("")

        lines.append("### Synthèse de la trace cognitive")
        lines.append(analysis.summary)
        lines.append("")

        lines.append("### Profil de compétences")
        for key in SCORE_KEYS:
            score = analysis.scores.get(key, 0)
            lines.append(f"- {SCORE_DISPLAY.get(key, key)} : {self._score_bar(score)} {score}")
        lines.append(f"**Score global :** {analysis.global_score}%")
        lines.append("")

        lines.append("### Forces de raisonnement")
        if analysis.key_strengths:
            for item in analysis.key_strengths:
                lines.append(f"- {item}")
        else:
            lines.append("- Aucune force saillante relevée.")
        lines.append("")

        lines.append("### Pistes de progrès")
        if analysis.weaknesses:
            for item in analysis.weaknesses:
                lines.append(f"→ {item}")
        else:
            lines.append("→ Aucune piste relevée.")
        lines.append("")

        if analysis.argument_map is not None:
            amap = analysis.argument_map
            lines.append("### Carte argumentative")
            lines.append(f"**Thèse :** {amap.claim}")
            for title, items in (
                ("Définitions", amap.definitions),
                ("Présupposés", amap.assumptions),
                ("Preuves", amap.evidence),
                ("Objections", amap.objections),
                ("Réfutations", amap.rebuttals),
            ):
                if items:
                    lines.append(f"**{title} :** " + " ; ".join(items))
            if amap.falsifier:
                lines.append(f"**Falsificateur :** {amap.falsifier}")
            lines.append("")

        if analysis.pivotal_moments:
            lines.append("### Moments pivots")
            for moment in analysis.pivotal_moments:
                marker = IMPACT_MARKERS.get(moment.impact, "=")
                lines.append(f"[{marker}] « {moment.quote} »")
                if moment.analysis:
                    lines.append(f"    {moment.analysis}")
                if moment.why_it_matters:
                    lines.append(f"    Pourquoi c'est important : {moment.why_it_matters}")
            lines.append("")

        lines.append("### Honnêteté intellectuelle")
        if analysis.ai_usage_analysis:
            lines.append(analysis.ai_usage_analysis)
        lines.append(f"_Journal de bord de l'apprenant·e :_ \"{declaration}\"")

        return "\n".join(lines).strip()

    def _write(self, filename: str, content: str) -> Path:
        self.exports_dir.mkdir(parents=True, exist_ok=True)
        export_path = self.exports_dir / filename
        with export_path.open("w", encoding="utf-8") as f:
            f.write(content)
        return export_path

    def export_progress(self, state: SessionStateMachine) -> Path:
        config = state.require_config()
        exported_at = datetime.now(timezone.utc)
        payload = build_export_payload(
            config=config,
            transcript=state.transcript,
            declaration=state.declaration,
            exported_at=exported_at,
        )
        filename = f"Progression_{self._safe_name(config.student_name)}_{exported_at.strftime('%Y-%m-%d')}.json"
        return self._write(filename, dumps_archive(payload))

    def export_report(self, state: SessionStateMachine) -> ReportArtifacts:
        config = state.require_config()
        generated_at = datetime.now(timezone.utc)
        payload = build_export_payload(
            config=config,
            transcript=state.transcript,
            declaration=state.declaration,
            analysis=state.analysis,
            exported_at=generated_at,
        )

        markdown = ""
        if state.analysis is not None:
            markdown = self.build_markdown(config, state.analysis, state.declaration, generated_at)

        export_path = self._write(
            f"Audit_Argos_{self._safe_name(config.student_name)}.json",
            dumps_archive(payload),
        )

        return ReportArtifacts(
            payload=payload,
            markdown=markdown,
            export_path=str(export_path),
        )
