"""
AI tour analyzer -- asks a local LLM (Ollama /api/generate) to spot tour links.

How it works:
1. The page HTML is cut to a fixed character budget (token + latency bound)
2. The prompt asks for a single JSON object and nothing else
3. The raw completion is scanned for the first decodable {...} object, because
   models still wrap JSON in prose or ```json fences
4. Every found_tours entry is validated on its own; bad entries are dropped,
   good ones survive

The model is a hint, not a source of truth: every candidate it returns still
goes through the link validator, and URL-embedded coordinates win over the
coordinates the model claims.

analyze() never raises. Unreachable service, timeout, non-2xx or unparseable
output all produce an empty TourAnalysisResult with a short diagnostic in
`analysis`, so a dead inference box cannot abort a batch.
"""
import json
import logging
from dataclasses import dataclass
from typing import Optional, Union

import httpx
from pydantic import ValidationError

from campustour.tours.coordinates import extract_coordinates
from campustour.tours.models import (
    BestCandidate,
    Coordinates,
    FoundTourCandidate,
    LinkCandidate,
    TourAnalysisResult,
)
from campustour.tours.providers import detect_provider

logger = logging.getLogger("campustour.tours")

_DECODER = json.JSONDecoder()

_PROMPT_TEMPLATE = (
    'TASK: find links to virtual campus tours of the university "{name}" in the HTML below.\n'
    "\n"
    "HTML (first {budget} characters):\n"
    "{html}\n"
    "\n"
    "LOOK FOR THESE LINK TYPES (in href and src attributes):\n"
    '1. Google Maps Street View: URL contains "google.com/maps" or "maps.google"; may be an iframe.\n'
    '2. Yandex Panoramas: URL contains "yandex.com/maps", "yandex.kz/maps" or "yandex.ru/maps"; '
    '"l=pano" marks a panorama.\n'
    '3. 2GIS: URL contains "2gis.kz" or "2gis.com".\n'
    "\n"
    'Pay attention to nearby text such as "tour", "campus", "panorama", "тур", "кампус", '
    '"панорама", "карта", "экскурсия".\n'
    "Copy URLs exactly as they appear. Give coordinates only if they are in the URL.\n"
    "\n"
    "RETURN ONLY JSON, no markdown, no commentary:\n"
    "{{\n"
    '  "found_tours": [\n'
    "    {{\n"
    '      "provider": "google" | "yandex" | "2gis",\n'
    '      "url": "full URL",\n'
    '      "latitude": number or null,\n'
    '      "longitude": number or null,\n'
    '      "address": "address if present" or null,\n'
    '      "confidence": 100 | 90 | 75 | 50,\n'
    '      "reason": "why this is a campus tour"\n'
    "    }}\n"
    "  ],\n"
    '  "best_candidate": {{"provider": "...", "url": "...", "reason": "..."}} or null,\n'
    '  "analysis": "one or two sentences"\n'
    "}}"
)


@dataclass(frozen=True)
class Parsed:
    data: dict


@dataclass(frozen=True)
class Malformed:
    raw_text: str
    reason: str


ParseResult = Union[Parsed, Malformed]


def parse_model_response(text: Optional[str]) -> ParseResult:
    """
    Pull the first JSON object out of free-form model output.

    Each "{" is tried in turn with a raw decode, so prose or fences before
    the object and braces in trailing prose are both tolerated. Returns
    Parsed(dict) for the first object that decodes, Malformed(raw_text,
    reason) otherwise. Never raises.
    """
    if not text or not isinstance(text, str):
        return Malformed(raw_text=text or "", reason="empty response")
    start = text.find("{")
    if start < 0:
        return Malformed(raw_text=text, reason="no JSON object found")

    error: Optional[json.JSONDecodeError] = None
    while start >= 0:
        try:
            data, _ = _DECODER.raw_decode(text, start)
        except json.JSONDecodeError as e:
            error = error or e
            start = text.find("{", start + 1)
            continue
        return Parsed(data=data)
    return Malformed(raw_text=text, reason=f"invalid JSON: {error.msg}")


def result_from_payload(data: dict) -> TourAnalysisResult:
    """Build a TourAnalysisResult, dropping individual entries that fail validation."""
    raw_tours = data.get("found_tours")
    tours: list[FoundTourCandidate] = []
    if isinstance(raw_tours, list):
        for item in raw_tours:
            if not isinstance(item, dict):
                continue
            try:
                tours.append(FoundTourCandidate.model_validate(item))
            except ValidationError:
                logger.debug(f"Dropping AI candidate: {item!r:.200}")

    best = None
    if isinstance(data.get("best_candidate"), dict):
        try:
            best = BestCandidate.model_validate(data["best_candidate"])
        except ValidationError:
            best = None

    analysis = data.get("analysis")
    return TourAnalysisResult(
        found_tours=tours,
        best_candidate=best,
        analysis=analysis if isinstance(analysis, str) and analysis else "Analysis complete",
    )


def build_prompt(html: str, university_name: str, budget: int) -> str:
    return _PROMPT_TEMPLATE.format(name=university_name, budget=budget, html=html[:budget])


def _empty(analysis: str) -> TourAnalysisResult:
    return TourAnalysisResult(found_tours=[], best_candidate=None, analysis=analysis)


class TourAnalyzer:
    def __init__(
        self,
        base_url: str,
        model: str,
        *,
        timeout: float = 120.0,
        excerpt_chars: int = 15000,
        temperature: float = 0.1,
        max_tokens: int = 2000,
    ):
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.timeout = timeout
        self.excerpt_chars = excerpt_chars
        self.temperature = temperature
        self.max_tokens = max_tokens

    def check_availability(self) -> bool:
        """Ping the inference service once. False on any error."""
        try:
            with httpx.Client(timeout=5.0) as client:
                response = client.get(f"{self.base_url}/api/tags")
        except (httpx.HTTPError, httpx.InvalidURL):
            return False
        return response.is_success

    def analyze(self, html: str, university_name: str) -> TourAnalysisResult:
        """Ask the model for tour links in html. Returns an empty result on any failure."""
        payload = {
            "model": self.model,
            "prompt": build_prompt(html or "", university_name, self.excerpt_chars),
            "stream": False,
            "options": {
                "temperature": self.temperature,
                "num_predict": self.max_tokens,
            },
        }
        try:
            with httpx.Client(timeout=self.timeout) as client:
                response = client.post(f"{self.base_url}/api/generate", json=payload)
        except httpx.TimeoutException:
            logger.warning(f"AI analysis timed out for {university_name}")
            return _empty(f"AI analysis failed: timed out after {self.timeout:.0f}s")
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            logger.warning(f"AI analysis request failed for {university_name}: {e}")
            return _empty(f"AI analysis failed: {type(e).__name__}: {e}")

        if not response.is_success:
            logger.warning(f"Inference service returned HTTP {response.status_code}")
            return _empty(f"AI analysis failed: HTTP {response.status_code}")

        try:
            body = response.json()
        except ValueError:
            return _empty("AI analysis failed: response envelope is not JSON")
        text = body.get("response") if isinstance(body, dict) else None

        parsed = parse_model_response(text)
        if isinstance(parsed, Malformed):
            logger.warning(f"Unparseable AI response for {university_name}: {parsed.reason}")
            return _empty(f"Unparseable AI response ({parsed.reason}): {parsed.raw_text[:200]}")
        return result_from_payload(parsed.data)

    def extract_coordinates_from_url(self, url: str) -> Optional[Coordinates]:
        """Secondary coordinate path for model-returned URLs; same table and axis order as the extractor."""
        return extract_coordinates(url)

    def to_candidates(self, result: TourAnalysisResult) -> list[LinkCandidate]:
        """
        Turn advisory AI findings into link candidates.

        The URL host overrides the model's provider label when it identifies a
        map page, and URL-embedded coordinates override the model's numbers.
        """
        candidates = []
        for tour in result.found_tours:
            if not tour.url:
                continue
            provider = detect_provider(tour.url) or tour.provider
            coords = self.extract_coordinates_from_url(tour.url)
            if coords:
                lat, lng = coords.lat, coords.lng
            else:
                lat, lng = tour.latitude, tour.longitude
            candidates.append(LinkCandidate(
                url=tour.url,
                provider=provider,
                latitude=lat,
                longitude=lng,
                address=tour.address,
                origin="ai",
            ))
        return candidates
