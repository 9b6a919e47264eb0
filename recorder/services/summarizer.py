import logging
import re
from ..config import get_settings
from ..models import SummaryMode
import httpx

logger = logging.getLogger(__name__)
settings = get_settings()

SUMMARY_PROMPTS = {
    SummaryMode.SHORT: (
        "You are an expert meeting notes assistant. Produce a SHORT summary: "
        "1) Executive Summary (at most 5 bullets), "
        "2) Key Decisions (bullets), "
        "3) Action Items (bullets: owner, task, due date). "
        "Be concise and factual."
    ),
    SummaryMode.DETAILED: (
        "You are an expert meeting notes assistant. Produce a DETAILED summary: "
        "1) Executive Summary (one paragraph), "
        "2) Discussion by topic with the arguments raised, "
        "3) Key Decisions (bullets), "
        "4) Action Items as a table with columns: Owner, Task, Due Date, Priority. "
        "Use names/dates from the transcript when available."
    ),
}

async def _ollama_complete(system: str, prompt: str) -> str:
    async with httpx.AsyncClient(timeout=120) as client:
        r = await client.post(
            f"{settings.ollama_base}/api/generate",
            json={"model": settings.ollama_model, "system": system, "prompt": prompt, "stream": False},
        )
        r.raise_for_status()
        return r.json().get("response", "")

async def _openai_complete(system: str, prompt: str) -> str:
    from openai import AsyncOpenAI
    client = AsyncOpenAI(api_key=settings.openai_key)
    r = await client.chat.completions.create(
        model=settings.openai_model,
        messages=[
            {"role": "system", "content": system},
            {"role": "user", "content": prompt},
        ],
        temperature=0.2,
    )
    return r.choices[0].message.content

async def summarize(transcript: str, title: str, mode: SummaryMode = SummaryMode.SHORT) -> str:
    system = SUMMARY_PROMPTS[mode]
    prompt = f"Meeting Title: {title}\n\nTranscript (verbatim; may be imperfect):\n{transcript}\n\nGenerate the required sections."
    try:
        if settings.llm_provider == "ollama":
            text = await _ollama_complete(system, prompt)
        else:
            text = await _openai_complete(system, prompt)
    except Exception:
        logger.exception("LLM error; returning minimal fallback")
        text = minimal_fallback_summary(title, transcript, mode) + "\n\n(Note: LLM error; fallback used.)"
    return text

def minimal_fallback_summary(title: str, transcript: str, mode: SummaryMode = SummaryMode.SHORT) -> str:
    # naive fallback: first few sentences
    sentences = [s.strip() for s in re.split(r'(?<=[.!?])\s+', (transcript or "").strip()) if s.strip()]
    limit = 5 if mode == SummaryMode.SHORT else 12
    bullets = "\n".join(f"- {s}" for s in sentences[:limit]) or "- (insufficient transcript)"
    return f"""# Meeting Notes: {title}

## Executive Summary
{bullets}

## Key Decisions
- (no explicit decisions detected)

## Action Items
- (none detected)
"""
