# config/ai_prompts.py
"""
Prompt templates sent to the vision model.

Placeholders use the ``{{name}}`` form and are filled by
:func:`fill_prompt_template`; unknown placeholders are left untouched.
"""

import re
from typing import Any, Dict

IMAGE_ANALYSIS_PROMPT = """Analyse this photo of beer bottles or cans step by step.

STEP 1 - LABEL READING
Read ONLY what is clearly visible on each label: beer name, brewery name,
alcohol content, volume, style, year, city or country, ingredients.

STEP 2 - SPELLING VARIANTS
Artistic fonts often use stylised letters (a reversed N read as M, A drawn as
Lambda). For every brewery name produce a short list of search queries with
plausible spelling variants (m/n swaps, accents removed, lower case).

STEP 3 - CONFIDENCE
Rate how legible each label is from 0.0 (barely visible) to 1.0 (clear print).

RULES
- Never invent data. If a field is not readable, return null.
- Never generate URLs, addresses or e-mails that are not printed on the label.
- Do not rely on prior knowledge about breweries.

Known breweries in the catalogue (use the exact spelling when the label matches): {{known_breweries}}

Reply with JSON only, using exactly this structure:
{
  "success": true,
  "message": "short description",
  "imageQuality": "good|average|poor",
  "brewery": {
    "name": "brewery name as printed",
    "website": null,
    "email": null,
    "address": null,
    "searchQueries": ["variant 1", "variant 2"]
  },
  "bottles": [
    {
      "name": "beer name as printed",
      "breweryName": "brewery name as printed",
      "style": "beer style or null",
      "abv": 5.0,
      "ibu": null,
      "volume": "33 cl",
      "description": null,
      "ingredients": null,
      "confidence": 0.9
    }
  ]
}

If no beer is visible reply with {"success": false, "message": "reason", "bottles": []}.
"""

_PLACEHOLDER = re.compile(r'\{\{\s*(\w+)\s*\}\}')


def fill_prompt_template(template: str, data: Dict[str, Any]) -> str:
    """Replace ``{{key}}`` placeholders with values from ``data``"""
    def _replace(match):
        key = match.group(1)
        if key not in data:
            return match.group(0)
        value = data[key]
        if isinstance(value, (list, tuple)):
            return ', '.join(str(item) for item in value) or 'none'
        return '' if value is None else str(value)

    return _PLACEHOLDER.sub(_replace, template)
