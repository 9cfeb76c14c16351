"""
Stock Intel — Verdict Synthesizer
───────────────────────────────────
The one LLM call per stock. Registered as the `synthesize_verdict`
capability (source class: llm) so it goes through the executor like any
other provider: rate limited, timed out, classified, retried.

Input contract  (args):
    entity_id   str
    context     JSON string built by build_context()

Output contract (SynthesizerOutput):
    score 0-100 · thesis_summary · risks_summary ·
    timing_signal ∈ {accumulate, wait, avoid} · alert_flag · alert_reason
"""

import asyncio
import json
import logging
import re
from typing import Any, Dict, Optional

from anthropic import Anthropic

from analysis_engine.tools.errors import AuthFailedError, ParseError
from analysis_engine.tools.payloads import TIMING_SIGNALS, SynthesizerOutput

log = logging.getLogger("ae.synthesizer")

_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$", re.MULTILINE)


# ── Context ───────────────────────────────────────────────────

def build_context(entity_id: str, name: Optional[str], inputs: Dict[str, Dict[str, Any]],
                  missing: Optional[list] = None) -> str:
    """
    Serialize gathered inputs into the synthesizer's context argument.
    Keys are sorted so arrival order never changes the prompt.
    """
    return json.dumps({
        "entity_id": entity_id,
        "name":      name,
        "inputs":    inputs,
        "missing":   sorted(missing or []),
    }, sort_keys=True, default=str)


def _section(title: str, body: Optional[str]) -> str:
    return f"## {title}\n{body}\n\n" if body else f"## {title}: Not available\n\n"


def build_prompt(context: Dict[str, Any]) -> str:
    inputs = context.get("inputs", {})
    name = context.get("name")
    header = context["entity_id"] + (f" - {name}" if name else "")

    def dump(key: str) -> Optional[str]:
        item = inputs.get(key)
        if not item or item.get("data") is None:
            return None
        fetched = item.get("fetched_at")
        note = f"(fetched {fetched})\n" if fetched else ""
        return note + json.dumps(item["data"], indent=2, default=str)[:4000]

    prompt = f"You are evaluating a single stock for investment potential.\n\n## Stock: {header}\n\n"
    prompt += _section("Recent Financials (VERIFIED)", dump("fundamentals"))
    prompt += _section("Research Filings (VERIFIED)", dump("filings"))
    prompt += _section("Technicals", dump("technicals"))
    prompt += _section("News (headlines are often sensationalised — verify)", dump("news"))
    prompt += _section("Forum Thesis (retail OPINIONS, not facts)", dump("thesis"))
    prompt += _section("Reddit Sentiment (contrarian indicator only)", dump("sentiment"))
    prompt += _section("Previous Verdicts", dump("prior_verdicts"))
    if context.get("missing"):
        prompt += (f"NOTE: these inputs could not be gathered: {', '.join(context['missing'])}. "
                   f"Be conservative where they matter.\n\n")

    prompt += """---

You are advising a LONG-TERM value investor (3-5 year horizon) who buys quality
businesses during temporary weakness and only sells when the core thesis is
permanently broken.

Separate THESIS-BREAKING news (fraud, governance failure, obsolescence,
unsustainable debt) from THESIS-TESTING news (regulatory headwinds, cyclical
downturns, temporary margin pressure, sector selloffs). The second kind is often
an opportunity, especially with RSI oversold.

## Output Format (JSON only, no markdown):

{
  "opportunity_score": 0-100,
  "thesis_summary": "2-3 sentence summary of the investment case",
  "risks_summary": "Key risks in 1-2 sentences",
  "timing_signal": "accumulate" | "wait" | "avoid",
  "news_alert": true | false,
  "news_alert_reason": "Only if news_alert is true: THESIS-BREAKING or THESIS-TESTING, and why"
}

Scoring guide: 80-100 strong thesis + fear-driven entry; 70-79 solid thesis,
reasonable valuation; 60-69 good thesis, poor timing; 40-59 unclear thesis;
0-39 thesis-breaking issues."""
    return prompt


# ── Output ────────────────────────────────────────────────────

def parse_output(text: str) -> SynthesizerOutput:
    cleaned = _FENCE_RE.sub("", text.strip()).strip()
    try:
        data = json.loads(cleaned)
    except ValueError as e:
        raise ParseError(f"Synthesizer returned non-JSON output: {e}")
    if not isinstance(data, dict):
        raise ParseError("Synthesizer output is not a JSON object")

    try:
        score = int(round(float(data.get("opportunity_score", 50))))
    except (TypeError, ValueError):
        score = 50
    timing = str(data.get("timing_signal", "wait")).lower()
    alert = bool(data.get("news_alert", False))

    return SynthesizerOutput(
        score          = max(0, min(100, score)),
        thesis_summary = data.get("thesis_summary") or "No summary available",
        risks_summary  = data.get("risks_summary") or "No risks identified",
        timing_signal  = timing if timing in TIMING_SIGNALS else "wait",
        alert_flag     = alert,
        alert_reason   = (data.get("news_alert_reason") or None) if alert else None,
        raw            = text,
    )


# ── Handler ───────────────────────────────────────────────────

class AnthropicSynthesizer:
    """synthesize_verdict handler backed by Claude."""

    def __init__(self, api_key: str, model: str, max_tokens: int = 1200):
        self.model      = model
        self.max_tokens = max_tokens
        self._client    = Anthropic(api_key=api_key) if api_key else None

    async def __call__(self, args: dict, config: dict) -> SynthesizerOutput:
        if self._client is None:
            raise AuthFailedError("Synthesis disabled — set ANTHROPIC_API_KEY")
        try:
            context = json.loads(args["context"])
        except ValueError as e:
            raise ParseError(f"Context is not valid JSON: {e}")

        prompt = build_prompt(context)
        model = config.get("model", self.model)
        max_tokens = int(config.get("max_tokens", self.max_tokens))

        loop = asyncio.get_running_loop()
        response = await loop.run_in_executor(None, lambda: self._client.messages.create(
            model=model,
            max_tokens=max_tokens,
            messages=[{"role": "user", "content": prompt}],
        ))
        text = "".join(getattr(block, "text", "") for block in response.content).strip()
        out = parse_output(text)
        log.debug(f"{args['entity_id']}: score={out.score} timing={out.timing_signal}")
        return out
