import logging
import re

import requests

from config import GEMINI_API_KEY, GEMINI_MODEL
from errors import ExternalServiceError, ValidationError

logger = logging.getLogger(__name__)

GEMINI_URL = "https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent"


def generate_text(prompt: str, api_key: str = None, model: str = None, timeout: int = 15) -> str:
    """Return the first candidate's text from Gemini or raise ExternalServiceError."""
    api_key = api_key or GEMINI_API_KEY
    if not api_key:
        raise ExternalServiceError("Suggestions are unavailable: GEMINI_API_KEY is not set.")
    url = GEMINI_URL.format(model=model or GEMINI_MODEL)
    body = {"contents": [{"role": "user", "parts": [{"text": prompt}]}]}
    try:
        r = requests.post(url, params={"key": api_key}, json=body, timeout=timeout)
        r.raise_for_status()
        data = r.json()
        return data["candidates"][0]["content"]["parts"][0]["text"]
    except (requests.RequestException, ValueError, KeyError, IndexError, TypeError) as e:
        logger.warning("Text generation failed: %s", e)
        raise ExternalServiceError("Could not get a suggestion. Please try again later.") from e


def extract_first_number(text: str):
    """Return the first integer in `text`, or None."""
    m = re.search(r"\d+", text or "")
    return int(m.group()) if m else None


def suggest_price(origin: str, destination: str, start_time: str = "", **kwargs) -> int:
    if not origin or not destination:
        raise ValidationError("Enter 'From' and 'To' locations to get a price suggestion.")
    prompt = (
        f'Suggest a fair price per seat for a carpool ride from "{origin}" to "{destination}" '
        f'starting at "{start_time}". Consider typical carpool costs for this distance and time. '
        "Provide only the numeric price, without currency symbols or extra text."
    )
    price = extract_first_number(generate_text(prompt, **kwargs))
    if not price or price <= 0:
        raise ExternalServiceError("Could not get a valid price suggestion. Try again.")
    return price


def refine_request(origin: str, destination: str, preferred_time: str, max_price, **kwargs) -> str:
    if not origin or not destination or not preferred_time or not max_price:
        raise ValidationError(
            "Fill in 'From', 'To', 'Preferred Time' and 'Max Price' to get refinement suggestions."
        )
    prompt = (
        f'I am a rider looking for a carpool. My request details are: From "{origin}", '
        f'To "{destination}", Preferred Time "{preferred_time}", Max Price "{max_price}". '
        "Suggest ways to refine my ride request to increase the chances of finding a match. "
        "Include alternative nearby pickup/dropoff points or slightly flexible times. "
        "Keep the suggestion concise and actionable."
    )
    return generate_text(prompt, **kwargs)
