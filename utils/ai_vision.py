"""Gemini vision tasks: drafting a complaint from a photo and verifying a fix."""
import json
import re
from typing import Any, Dict

from flask import current_app
from google import genai
from google.genai import types

from models import COMPLAINT_CATEGORIES, DEPARTMENTS
from utils.ai_markdown_formatter import markdown_to_plaintext


CATEGORY_DEPARTMENTS: dict[str, str] = {
    "Pothole": "Public Works",
    "Broken Streetlight": "Public Works",
    "Trash": "Sanitation",
    "Graffiti": "Community Services",
    "Other": "General Administration",
}

FALLBACK_DEPARTMENT = "General Administration"


class AIVisionError(Exception):
    """Raised when Gemini cannot return a valid result."""


class DraftGenerationError(AIVisionError):
    """The drafting task failed; no partial draft is available."""


class VerificationError(AIVisionError):
    """The resolution check failed to produce a verdict."""


def department_for_category(category: str | None) -> str:
    """Department responsible for a category; unknown or missing goes to administration."""
    return CATEGORY_DEPARTMENTS.get(category or "", FALLBACK_DEPARTMENT)


def _first_json_block(text: str) -> str:
    """Extract the first JSON object block from free-form text."""
    start = text.find("{")
    end = text.rfind("}")
    if start != -1 and end != -1 and end > start:
        return text[start : end + 1]
    return text


def _safe_json_loads(raw_text: str) -> Dict[str, Any]:
    """Parse JSON robustly, tolerating leading/trailing noise or code fences."""
    cleaned = raw_text.strip()
    cleaned = re.sub(r"^```[a-zA-Z0-9_-]*", "", cleaned).strip()
    cleaned = re.sub(r"```$", "", cleaned).strip()
    try:
        payload = json.loads(cleaned)
    except json.JSONDecodeError:
        payload = json.loads(_first_json_block(cleaned))
    if not isinstance(payload, dict):
        raise ValueError("Expected a JSON object")
    return payload


def _pick(payload: Dict[str, Any], *keys: str) -> Any:
    for key in keys:
        if key in payload:
            return payload[key]
    return None


def _coerce_bool(value: Any) -> bool | None:
    if isinstance(value, bool):
        return value
    if not isinstance(value, (str, int)):
        return None
    if value in {"true", "True", "TRUE", "1", 1}:
        return True
    if value in {"false", "False", "FALSE", "0", 0}:
        return False
    return None


def _match_choice(value: Any, choices: tuple[str, ...]) -> str | None:
    if value is None:
        return None
    normalized = str(value).strip().lower()
    for choice in choices:
        if choice.lower() == normalized:
            return choice
    return None


def build_draft_prompt(location_description: str) -> str:
    categories = ", ".join(COMPLAINT_CATEGORIES)
    departments = ", ".join(DEPARTMENTS)
    return (
        "You are a highly accurate AI assistant that helps users generate complaint drafts from images of issues. "
        "Your primary goal is precision.\n\n"
        "You will receive a photo of the issue and a description of the location where the issue was photographed.\n\n"
        "Based on the image and location description, generate a concise but descriptive draft complaint.\n\n"
        f"Also, categorize the complaint into one of the following categories: {categories}. "
        "Be strict in your categorization. If you are not confident, choose 'Other'.\n\n"
        "Finally, assign a department responsible for handling the complaint from the following list: "
        f"{departments}. Follow these rules STRICTLY:\n"
        "- Potholes and Broken Streetlights MUST be 'Public Works'.\n"
        "- Trash and illegal dumping MUST be 'Sanitation'.\n"
        "- Graffiti MUST be 'Community Services'.\n"
        "- For any other issue, or if the issue is ambiguous, you MUST assign 'General Administration'.\n\n"
        "Do not deviate from these department assignments.\n\n"
        "Return strict JSON only, no markdown, with exactly these fields: "
        "complaint_draft (string), category (one of the categories above), department (one of the departments above). "
        "Example JSON: "
        "{\"complaint_draft\": \"There is a large pothole in the right lane near the bus stop that is forcing cars to swerve.\", "
        "\"category\": \"Pothole\", \"department\": \"Public Works\"}\n\n"
        f"Location Description: {location_description}"
    )


def build_verification_prompt(issue_description: str) -> str:
    return (
        "You are a quality assurance inspector for a municipal complaint system. "
        "Your task is to determine if a reported issue has been correctly resolved by comparing two images.\n\n"
        "You will be given:\n"
        "1. An \"Original Photo\" showing the reported problem.\n"
        "2. A \"Resolution Photo\" showing the work that was done.\n"
        "3. A description of the original issue.\n\n"
        "Your job is to make a strict judgment:\n"
        "- Does the \"Resolution Photo\" clearly and unambiguously show that the specific problem from the "
        "\"Original Photo\" and description has been fixed?\n"
        "- For example, if the issue was a pothole, is the pothole filled in the resolution photo? "
        "If the issue was trash, is the trash gone?\n"
        "- If the resolution photo is blurry, shows a completely different location, or does not address the "
        "original problem, you must mark it as not resolved.\n\n"
        "Based on your analysis, set 'is_resolved_correctly' to true or false and provide a brief 'reasoning' "
        "for your decision. Return strict JSON only: "
        "{\"is_resolved_correctly\": false, \"reasoning\": \"The pothole is still visible in the resolution photo.\"}\n\n"
        f"Original Issue Description: {issue_description}"
    )


class ComplaintAssistant:
    """Thin client for the two delegated model judgments."""

    def __init__(self, api_key: str, model_name: str, client=None):
        self.api_key = api_key
        self.model_name = model_name
        self._client = client

    @classmethod
    def from_config(cls, config) -> "ComplaintAssistant":
        return cls(
            api_key=config.get("GEMINI_API_KEY") or "",
            model_name=config.get("GEMINI_VISION_MODEL") or "gemini-2.5-flash-lite",
        )

    def _get_client(self, error_cls: type[AIVisionError]):
        if self._client is None:
            if not self.api_key:
                raise error_cls("GEMINI_API_KEY is not configured")
            self._client = genai.Client(api_key=self.api_key)
        return self._client

    def _generate_json(self, contents: list, error_cls: type[AIVisionError]) -> Dict[str, Any]:
        client = self._get_client(error_cls)
        try:
            response = client.models.generate_content(
                model=self.model_name,
                contents=contents,
                config=types.GenerateContentConfig(response_mime_type="application/json"),
            )
        except Exception as exc:  # pragma: no cover - relies on remote service
            current_app.logger.exception("Gemini request failed", extra={"model": self.model_name})
            raise error_cls("Gemini request failed") from exc

        raw_text = (getattr(response, "text", None) or "").strip()
        if not raw_text and getattr(response, "candidates", None):
            parts = response.candidates[0].content.parts or []
            raw_text = "".join(getattr(p, "text", "") or "" for p in parts).strip()
        if not raw_text:
            raise error_cls("Gemini returned an empty response")

        try:
            return _safe_json_loads(raw_text)
        except ValueError as exc:
            raise error_cls("Gemini returned non-JSON output") from exc

    def draft_complaint(self, image_bytes: bytes, mime_type: str, location_description: str) -> Dict[str, str]:
        """Draft complaint text, a category, and the category's department from a photo."""
        current_app.logger.info(
            "Dispatching complaint drafting",
            extra={"model": self.model_name, "mime_type": mime_type},
        )
        payload = self._generate_json(
            [
                types.Part.from_bytes(data=image_bytes, mime_type=mime_type),
                types.Part.from_text(text=build_draft_prompt(location_description)),
            ],
            DraftGenerationError,
        )

        draft = _pick(payload, "complaint_draft", "complaintDraft")
        draft_text = markdown_to_plaintext(str(draft)) if draft is not None else ""
        if not draft_text:
            raise DraftGenerationError("Gemini did not return a complaint draft")

        category = _match_choice(_pick(payload, "category"), COMPLAINT_CATEGORIES)
        if not category:
            raise DraftGenerationError("Gemini returned an unknown category")

        department = _match_choice(_pick(payload, "department"), DEPARTMENTS)
        if not department:
            raise DraftGenerationError("Gemini returned an unknown department")

        expected = department_for_category(category)
        if department != expected:
            current_app.logger.warning(
                "Model department disagrees with category mapping",
                extra={"category": category, "model_department": department, "department": expected},
            )
        return {"complaint_draft": draft_text, "category": category, "department": expected}

    def verify_resolution(
        self,
        original_bytes: bytes,
        original_mime: str,
        resolution_bytes: bytes,
        resolution_mime: str,
        issue_description: str,
    ) -> Dict[str, Any]:
        """Judge whether the resolution photo shows the original problem fixed."""
        current_app.logger.info("Dispatching resolution verification", extra={"model": self.model_name})
        payload = self._generate_json(
            [
                types.Part.from_text(text="Original Photo:"),
                types.Part.from_bytes(data=original_bytes, mime_type=original_mime),
                types.Part.from_text(text="Resolution Photo:"),
                types.Part.from_bytes(data=resolution_bytes, mime_type=resolution_mime),
                types.Part.from_text(text=build_verification_prompt(issue_description)),
            ],
            VerificationError,
        )

        verdict = _coerce_bool(_pick(payload, "is_resolved_correctly", "isResolvedCorrectly"))
        if verdict is None:
            raise VerificationError("Gemini did not return a resolution verdict")
        reasoning = str(_pick(payload, "reasoning") or "").strip()
        if not verdict and not reasoning:
            raise VerificationError("Gemini rejected the resolution without reasoning")
        return {"is_resolved_correctly": verdict, "reasoning": reasoning}
