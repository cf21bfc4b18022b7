# core/research.py
from __future__ import annotations

import logging
import re
from typing import List, Optional, Protocol, Tuple

from timemachine.core.config import TimeMachineConfig
from timemachine.core.schemas import FactRecord
from timemachine.errors import NoFactsExtracted

logger = logging.getLogger(__name__)

MIN_FACT_CHARS = 10
FALLBACK_PROMPT_CHARS = 200


class TextGenerator(Protocol):
    async def generate_text(self, *, system: str, prompt: str, search: bool = True) -> str: ...


# ---------------------------------------------------------------------
# Prompts
# ---------------------------------------------------------------------
def build_system_prompt(max_facts: int, language: str = "German") -> str:
    return f"""You are a historical archivist and at the same time an expert in prompts for image AI.

Research the given date and place using Google Search. Produce exactly {max_facts} historical facts.

For EACH fact you must deliver EXACTLY two parts:

FACT: A readable, historically accurate text in {language} (2-3 sentences, vivid and concrete).

PROMPT: An extremely detailed image description in English, optimized for an image AI. Describe:
- camera angle and shot type (e.g. "cinematic wide shot", "close-up portrait")
- lighting mood (e.g. "golden hour lighting", "dramatic chiaroscuro")
- historically accurate clothing and architecture of the period
- atmosphere and mood (e.g. "tense atmosphere", "joyful celebration")
- art style (e.g. "oil painting style", "vintage photograph", "35mm film grain")
- NO text, watermarks or captions in the image

Follow this format STRICTLY. Exactly {max_facts} facts, no more, no less.
Every PROMPT must work on its own without further context.

Format example:
FACT: Am 9. November 1989 öffnete sich die Mauer an der Bornholmer Straße...
PROMPT: Cinematic wide shot of the Berlin Wall opening at night, November 1989, emotional crowds pushing through checkpoint, grainy 35mm film style, yellowish sodium street lamps casting warm pools of light, authentic late-1980s clothing with denim jackets and scarves, concrete wall with graffiti, atmosphere of overwhelming joy and disbelief, photojournalistic composition"""


def build_user_prompt(date: str, location: str, max_facts: int) -> str:
    return (
        f"Date: {date}\nPlace: {location}\n\n"
        f"Research this date and this place and produce {max_facts} historical facts in the required format."
    )


def fallback_prompt(fact: str) -> str:
    """Generic illustration prompt for a block that came back without PROMPT:."""
    return (
        f"Historical illustration depicting: {fact[:FALLBACK_PROMPT_CHARS]}. "
        "Style: detailed oil painting, historically accurate architecture and clothing, "
        "dramatic lighting, cinematic composition, no text or watermarks"
    )


# ---------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------
_BLOCK_SPLIT_RE = re.compile(r"(?=FACT:)", re.IGNORECASE)
_FACT_RE = re.compile(r"FACT:\s*(.+?)(?=PROMPT:|$)", re.IGNORECASE | re.DOTALL)
_PROMPT_RE = re.compile(r"PROMPT:\s*(.+?)$", re.IGNORECASE | re.DOTALL)


def _parse_block(block: str) -> Optional[Tuple[str, str]]:
    fact_m = _FACT_RE.search(block)
    if not fact_m:
        return None
    fact = fact_m.group(1).strip()
    if len(fact) <= MIN_FACT_CHARS:
        return None

    prompt_m = _PROMPT_RE.search(block)
    prompt = prompt_m.group(1).strip() if prompt_m else ""
    if not prompt:
        logger.debug("Fallback prompt for: %s", fact[:50])
        prompt = fallback_prompt(fact)
    return fact, prompt


def parse_facts(text: str, max_facts: int) -> List[FactRecord]:
    facts: List[FactRecord] = []
    for block in _BLOCK_SPLIT_RE.split(text or ""):
        parsed = _parse_block(block)
        if parsed is None:
            continue
        fact, prompt = parsed
        facts.append(FactRecord(id=len(facts) + 1, fact=fact, image_prompt=prompt))
        if len(facts) >= max_facts:
            break
    return facts


# ---------------------------------------------------------------------
# Stage entry
# ---------------------------------------------------------------------
async def research(
    client: TextGenerator,
    *,
    date: str,
    location: str,
    cfg: Optional[TimeMachineConfig] = None,
) -> List[FactRecord]:
    """
    One grounded text request, parsed into at most cfg.max_facts records with
    ids 1..n. Upstream errors propagate unchanged (already classified by the
    client); an unusable answer raises NoFactsExtracted.
    """
    cfg = cfg or TimeMachineConfig()
    logger.debug("Research: sending request for %r / %r", date, location)

    text = await client.generate_text(
        system=build_system_prompt(cfg.max_facts, cfg.narration_language),
        prompt=build_user_prompt(date, location, cfg.max_facts),
        search=True,
    )
    if not text:
        raise NoFactsExtracted("No answer from the research model.")

    facts = parse_facts(text, cfg.max_facts)
    logger.debug("Research: parsed %d facts", len(facts))
    if not facts:
        raise NoFactsExtracted("Could not extract any historical facts.")
    return facts
