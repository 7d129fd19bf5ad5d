"""HTTP layer: pipeline, normalizer, responder, stages and the app factory.

Manifesto:
    Cross-cutting request handling (CORS, envelope init, body decoding,
    error normalization) lives here so handlers stay focused on business
    logic.

Tags:
    envelope-api, api, pipeline, starlette

Doc-Types:
    api-reference
"""

from envelope_api.api.app import EnvelopeServer, build_pipeline, create_app
from envelope_api.api.normalizer import ErrorNormalizer
from envelope_api.api.pipeline import OutcomeKind, Pipeline, Stage, StageOutcome
from envelope_api.api.responder import TerminalResponder
from envelope_api.api.settings import Settings, get_settings

__all__ = [
    "EnvelopeServer",
    "ErrorNormalizer",
    "OutcomeKind",
    "Pipeline",
    "Settings",
    "Stage",
    "StageOutcome",
    "TerminalResponder",
    "build_pipeline",
    "create_app",
    "get_settings",
]
