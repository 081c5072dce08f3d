import json
import logging
import time
from typing import Any, Dict, List, Protocol, Sequence

from openai import OpenAI, OpenAIError
from pydantic import ValidationError

from callaudit.config import settings
from callaudit.errors import AnalysisError
from callaudit.schemas.audit_schemas import AnalysisResult, AuditEntry
from callaudit.services.audio_service import transcribe_audio
from callaudit.utils.logging_config import log_execution_time

logger = logging.getLogger(__name__)


class AnalysisService(Protocol):
    """What the rest of the system needs from a call analysis backend."""

    def analyze(self, audio: bytes, mime_type: str, file_name: str) -> AnalysisResult: ...

    def summarize(self, results: Sequence[AnalysisResult]) -> str: ...

    def coaching_plan(self, agent_email: str, results: Sequence[AnalysisResult]) -> str: ...

    def root_cause_analysis(self, parameter: str, results: Sequence[AnalysisResult]) -> str: ...

    def call_of_the_week(self, entries: Sequence[AuditEntry]) -> str: ...

    def rebuttal(self, objection: str) -> str: ...


ANALYSIS_SCHEMA = (
    "{\n"
    '  "callDuration": int (seconds),\n'
    '  "detectedLanguages": string,\n'
    '  "agentName": string ("Not Mentioned" if the agent never introduced themselves),\n'
    '  "isRescheduleCase": bool,\n'
    '  "rescheduleSummary": string ("Not Applicable" unless a reschedule call),\n'
    '  "overallScore": {"score": int (0-10), "summary": string},\n'
    '  "detailedScores": [{"parameter": string, "score": int (0-10), "justification": string}, ...],\n'
    '  "propertiesDiscussed": [{\n'
    '    "propertyIdentifier": string,\n'
    '    "details": [{"detail": string, "mentioned": bool, "value": string}, ...],\n'
    '    "timelineEvents": {"propertyIntroduction": int|null, "detailsSharingStart": int|null,\n'
    '                       "siteVisitDiscussionStart": int|null, "slotConfirmation": int|null,\n'
    '                       "objectionRaised": int|null},\n'
    '    "detailsSharedConfirmation": {"mentioned": bool, "method": string},\n'
    '    "mandatePointsDelivery": {"flow": "Interactive" | "Monologue" | "Not Applicable", "summary": string},\n'
    '    "siteVisitScheduled": {"mentioned": bool, "status": string, "slotConfirmation": string,\n'
    '                           "rescheduleRedFlag": bool, "redFlagReason": string,\n'
    '                           "virtualVisitOffered": bool,\n'
    '                           "visitConductedBy": {"person": string, "frmDetailsProvided": bool,\n'
    '                                                "preVisitCallInstructionGiven": bool},\n'
    '                           "urgencyCreation": {"attempted": bool, "summary": string}},\n'
    '    "rebuttalHandling": {"attempted": bool, "summary": string, "effectiveness": string, "approach": string}\n'
    "  }, ...],\n"
    '  "buyerRequirementsGathered": {"attempted": bool, "summary": string},\n'
    '  "crossPitchAttempted": {"attempted": bool, "summary": string},\n'
    '  "callDynamics": {"energyLevel": {"score": int, "summary": string},\n'
    '                   "communicationStyle": string, "engagementSummary": string},\n'
    '  "callMoments": {"positivePoints": [string, ...],\n'
    '                  "areasForImprovement": [{"area": string, "coachingTip": string}, ...]},\n'
    '  "brokerBehaviorAnalysis": {"score": int (1-10), "summary": string},\n'
    '  "visitLikelihood": {"score": int (0-100), "justification": string}\n'
    "}"
)

ANALYSIS_INSTRUCTIONS = (
    "You are a strict, meticulous call quality analyst for a real estate company. "
    "You receive the transcript of a call between a Relationship Manager (RM) and a "
    "potential property buyer. Score it against the rules below and return ONLY valid "
    "JSON (no markdown), in English, matching this schema:\n"
    f"{ANALYSIS_SCHEMA}\n\n"
    "Rules, applied to EACH property discussed:\n"
    "1. Details confirmation: 'Full (WhatsApp, Email, SMS)' if the agent says details are "
    "shared on all three channels, 'Partial' if only some, otherwise 'Not Mentioned'.\n"
    "2. Mandate details: society properties need BHK, Society Name, Quoted price, "
    "Built-up area and Floor; standalone houses need BHK, Locality, Quoted price, "
    "Built-up area (or plot area) and Floor. Any miss caps 'Direct Lead Pitch & Info "
    "Sharing' at 4. Reschedule-only calls are exempt.\n"
    "3. Site visit: the slot must name the date AND day. A seller-led visit must be "
    "stated; an FRM-led visit needs the FRM name, number and an instruction to call one "
    "hour before.\n"
    "4. Red flags: set rescheduleRedFlag with the reason if the agent proactively "
    "suggests rescheduling. Set status to 'Force Scheduled' if the slot was pushed "
    "without consent. Set virtualVisitOffered if a virtual visit is mentioned or offered.\n\n"
    "Scoring: 'Greeting & Opening' requires the agent name and company, otherwise 1-3. "
    "No attempt at requirements or scheduling scores 1 on that parameter. "
    "9-10 excellent, 7-8 good, 5-6 average, 1-4 poor. Two-way dialogue scores high on "
    "'Conversation Flow & Engagement', monologues low. "
    "Broker behaviour runs from 1 (traditional broker) to 10 (consultative). "
    "Always include timelineEvents, using null for unknown offsets."
)

PLAIN_TEXT = "Do not output JSON or markdown. Use plain text with clear headings and '-' bullets."

SUMMARY_INSTRUCTIONS = (
    "You are a performance analyst and sales coach. Synthesize the call quality reports "
    "you are given into one concise summary with these sections: Executive Summary, "
    "Common Strengths (2-3 bullets), Persistent Areas for Improvement (2-3 bullets), "
    "Actionable Coaching Plan (3 recommendations), and optionally a Standout Call. "
    + PLAIN_TEXT
)

COACHING_INSTRUCTIONS = (
    "You are a sales coach. From the call reports of one Relationship Manager, write a "
    "weekly coaching plan with: Performance Overview, Weekly Focus Area (one parameter), "
    "three Actionable Coaching Tips, one Role-Play Scenario with a buyer prompt and an "
    "agent goal, and 2-3 Key Phrases to Practice. Keep the tone constructive. "
    + PLAIN_TEXT
)

ROOT_CAUSE_INSTRUCTIONS = (
    "You are a sales performance analyst. The team scores poorly on one parameter. "
    "Using the low-scoring call reports provided, identify the underlying root cause "
    "rather than restating the symptom, support it with 2-3 anonymised patterns from "
    "the data, and recommend one high-impact fix a manager can implement. Write it as "
    "a short memo. " + PLAIN_TEXT
)

CALL_OF_THE_WEEK_INSTRUCTIONS = (
    "You are the Head of Quality. Review these high-scoring calls and nominate one as "
    "the Call of the Week, a training example for the whole team. Judge on teachable "
    "moments, not score alone. Answer with 'Agent:', 'Call Date:' and 'Overall Score:' "
    "lines followed by a Justification paragraph. Do not mention the call id. "
    + PLAIN_TEXT
)

REBUTTAL_INSTRUCTIONS = (
    "You are a real estate sales coach for the residential resale market. For the "
    "buyer objection given, write three distinct consultative rebuttal strategies. "
    "For each give a Strategy Name, a short Explanation of the principle behind it, "
    "and a Sample Script an agent can use directly. Keep the tone empathetic and "
    "never high-pressure. " + PLAIN_TEXT
)


class LLMClient:
    """
    OpenAI-backed call analysis.

    Audio is transcribed first, then scored with a JSON-mode chat
    completion validated through AnalysisResult. Every failure surfaces as
    AnalysisError; there is no neutral fallback score.
    """

    def __init__(self, model: str | None = None, client: OpenAI | None = None):
        self.client = client or OpenAI(api_key=settings.openai_api_key)
        self.model = model or settings.openai_model

    def _chat(self, system_msg: str, user_msg: str, json_mode: bool = False) -> str:
        kwargs: Dict[str, Any] = {}
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}
        try:
            response = self.client.chat.completions.create(
                model=self.model,
                max_tokens=settings.openai_max_tokens,
                messages=[
                    {"role": "system", "content": system_msg},
                    {"role": "user", "content": user_msg},
                ],
                **kwargs,
            )
        except OpenAIError as e:
            logger.warning(f"OpenAI API error: {e}")
            raise AnalysisError(f"The analysis service is unavailable: {e}") from e

        content = response.choices[0].message.content
        if not content:
            raise AnalysisError("The analysis service returned an empty response.")
        return content

    @log_execution_time("callaudit.analysis")
    def analyze(self, audio: bytes, mime_type: str, file_name: str) -> AnalysisResult:
        started = time.perf_counter()
        try:
            transcript = transcribe_audio(self.client, audio, file_name)
        except OpenAIError as e:
            logger.warning(f"Transcription failed for {file_name}: {e}")
            raise AnalysisError(f"Could not transcribe {file_name}: {e}") from e

        content = self._chat(
            ANALYSIS_INSTRUCTIONS,
            f"Analyze this call ({mime_type}).\n\nTranscript:\n{transcript}",
            json_mode=True,
        )
        try:
            payload = json.loads(content)
            if not isinstance(payload, dict):
                raise AnalysisError("The analysis response was not a JSON object.")
            payload["analysisDuration"] = round(time.perf_counter() - started)
            return AnalysisResult.model_validate(payload)
        except json.JSONDecodeError as e:
            raise AnalysisError(f"The analysis response was not valid JSON: {e}") from e
        except ValidationError as e:
            raise AnalysisError(f"The analysis response did not match the audit schema: {e}") from e

    def summarize(self, results: Sequence[AnalysisResult]) -> str:
        payload = [
            {
                "agentName": r.agent_name,
                "overallScore": r.overall_score.to_json_dict(),
                "detailedScores": [s.to_json_dict() for s in r.detailed_scores],
                "callMoments": r.call_moments.to_json_dict(),
                "brokerBehaviorAnalysis": r.broker_behavior_analysis.to_json_dict(),
            }
            for r in results
        ]
        return self._chat(
            SUMMARY_INSTRUCTIONS,
            f"Summarize these {len(results)} call analysis reports:\n{json.dumps(payload)}",
        )

    def coaching_plan(self, agent_email: str, results: Sequence[AnalysisResult]) -> str:
        payload = [
            {
                "overallScore": r.overall_score.to_json_dict(),
                "detailedScores": [{"parameter": s.parameter, "score": s.score} for s in r.detailed_scores],
                "areasForImprovement": [a.area for a in r.call_moments.areas_for_improvement],
            }
            for r in results
        ]
        return self._chat(
            COACHING_INSTRUCTIONS,
            f"Weekly coaching plan for {agent_email}, based on their last {len(results)} "
            f"audited calls:\n{json.dumps(payload, indent=2)}",
        )

    def root_cause_analysis(self, parameter: str, results: Sequence[AnalysisResult]) -> str:
        payload = [
            {
                "overallScore": r.overall_score.score,
                "parameterScore": r.score_for(parameter),
                "positivePoints": r.call_moments.positive_points,
                "areasForImprovement": [a.to_json_dict() for a in r.call_moments.areas_for_improvement],
            }
            for r in results
        ]
        return self._chat(
            ROOT_CAUSE_INSTRUCTIONS,
            f'Root cause analysis for "{parameter}". Low-scoring calls:\n{json.dumps(payload, indent=2)}',
        )

    def call_of_the_week(self, entries: Sequence[AuditEntry]) -> str:
        payload: List[Dict[str, Any]] = []
        for entry in entries:
            properties = entry.analysis.properties_discussed
            rebuttal = properties[0].rebuttal_handling if properties else None
            payload.append({
                "id": entry.id,
                "agentEmail": entry.agent_email,
                "callDate": entry.call_stamp or entry.timestamp,
                "overallScore": entry.analysis.overall_score.to_json_dict(),
                "positivePoints": entry.analysis.call_moments.positive_points,
                "rebuttalSummary": rebuttal.summary if rebuttal else None,
            })
        return self._chat(
            CALL_OF_THE_WEEK_INSTRUCTIONS,
            f"Candidate calls:\n{json.dumps(payload, indent=2)}",
        )

    def rebuttal(self, objection: str) -> str:
        return self._chat(REBUTTAL_INSTRUCTIONS, f'The buyer\'s objection is: "{objection}"')
