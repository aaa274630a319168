"""
openai_handler.py
-----------------
Clinical text suggestions (symptom analysis, prescription drafts) through the
OpenAI chat API. Every failure degrades to a placeholder or an empty list.
"""

import asyncio
import json
import logging
from openai import OpenAI

from config import load_clean_config

logger = logging.getLogger(__name__)

config = load_clean_config()

UNAVAILABLE_MESSAGE = "Service IA indisponible."
MODEL = config["OPENAI_MODEL"]


def build_client(settings):
    """OpenAI client for the configured key, or None when it cannot be created."""
    try:
        return OpenAI(api_key=settings.get("OPENAI_API_KEY"))
    except Exception as e:
        logger.error(f"Failed to initialize OpenAI client: {e}")
        return None


# Initialize OpenAI client
client = build_client(config)


async def analyze_symptoms(symptoms: str, patient_history=None, openai_client=None) -> str:
    """
    Asks the model for diagnostic hypotheses, recommended exams and a care plan.
    Returns Markdown text, or UNAVAILABLE_MESSAGE on any failure.
    """
    active_client = openai_client or client
    if not active_client:
        logger.error("OpenAI client not initialized. Cannot analyze symptoms.")
        return UNAVAILABLE_MESSAGE
    if not (symptoms or "").strip():
        return UNAVAILABLE_MESSAGE

    history = ", ".join(patient_history or []) or "Aucun"
    prompt = f"""
Tu es un expert médical de haut niveau au Maroc.
Analyse les symptômes : {symptoms}
Antécédents : {history}

Réponds en Markdown :
1. 3 hypothèses de diagnostics.
2. Examens recommandés.
3. Conduite à tenir.
"""
    try:
        response = await asyncio.to_thread(
            active_client.chat.completions.create,
            model=MODEL,
            messages=[{"role": "user", "content": prompt}],
            temperature=0.2,
        )
        content = response.choices[0].message.content
        return content or "Impossible de générer l'analyse."
    except Exception as e:
        logger.error(f"Error during OpenAI symptom analysis: {e}", exc_info=True)
        return UNAVAILABLE_MESSAGE


async def suggest_prescription(diagnosis: str, openai_client=None) -> list:
    """Suggests medications (INN + dosage) for a diagnosis. Returns [] on any failure."""
    active_client = openai_client or client
    if not active_client or not (diagnosis or "").strip():
        return []

    prompt_messages = [
        {"role": "system", "content": (
            "Tu assistes un médecin généraliste. Réponds UNIQUEMENT avec un objet JSON "
            "de la forme {\"medications\": [\"DCI - posologie\", ...]}."
        )},
        {"role": "user", "content": f"Suggère une liste de médicaments (DCI + Posologie) pour : \"{diagnosis}\"."},
    ]
    content = None
    try:
        response = await asyncio.to_thread(
            active_client.chat.completions.create,
            model=MODEL,
            messages=prompt_messages,
            temperature=0.1,
            response_format={"type": "json_object"},
        )
        content = response.choices[0].message.content
        payload = json.loads(content or "{}")
    except json.JSONDecodeError as json_err:
        logger.error(f"Failed to parse prescription suggestion: {json_err}. Content: {content}")
        return []
    except Exception as e:
        logger.error(f"Error during OpenAI prescription suggestion: {e}", exc_info=True)
        return []

    medications = payload.get("medications") if isinstance(payload, dict) else payload
    if not isinstance(medications, list):
        logger.warning(f"Prescription suggestion lacks a medications list: {content}")
        return []
    return [str(m).strip() for m in medications if str(m).strip()]
