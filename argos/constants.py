from __future__ import annotations

TUTOR_NAME = "ARGOS"

PROTOCOL_PHASES = [
    "Ouverture",
    "Clarification",
    "Mécanisme",
    "Vérification",
    "Stress-test",
]

STRATEGIES = [
    "clarification",
    "test_necessite",
    "contre_exemple",
    "prediction",
    "falsifiabilite",
    "mecanisme_causal",
    "changement_cadre",
    "compression",
    "concession_controlee",
]

STRATEGY_DISPLAY = {
    "clarification": "Clarification des termes",
    "test_necessite": "Test de nécessité",
    "contre_exemple": "Contre-exemple",
    "prediction": "Prédiction",
    "falsifiabilite": "Falsifiabilité",
    "mecanisme_causal": "Mécanisme causal",
    "changement_cadre": "Changement de cadre",
    "compression": "Compression",
    "concession_controlee": "Concession contrôlée",
}

# Strategy rotation starts once this many tutor replies exist.
STRATEGY_MIN_REPLIES = 2

SCORE_KEYS = [
    "reasoning",
    "clarity",
    "skepticism",
    "process",
    "reflection",
]

SCORE_DISPLAY = {
    "reasoning": "Logique",
    "clarity": "Clarté",
    "skepticism": "Scepticisme",
    "process": "Processus",
    "reflection": "Réflexivité",
}

CRITICAL_THINKING_CRITERIA = [
    "Mise en question des prémisses et présupposés",
    "Qualité et hiérarchisation des preuves (Force probante)",
    "Identification et dépassement des biais cognitifs",
    "Capacité de décentrement et d'empathie intellectuelle",
    "Cohérence logique globale et rigueur argumentative",
    "Honnêteté intellectuelle et transparence du processus",
]

IMPACTS = ["positive", "negative", "neutral"]

DEFAULT_STUDENT_NAME = "Apprenant"
DEFAULT_TOPIC = "Sujet importé"
DEFAULT_DECLARATION = "Aucun usage déclaré."
