import json
import math

from google import genai
from google.genai import types
from loguru import logger

from tradeflow.backend.core.errors import ResolutionError
from tradeflow.backend.interaction.intent_resolver import IntentResolver, ResolutionRequest, ResolutionResponse

"""
Interaction Layer - Gemini Intent Resolver.

Uses Gemini to extract structured trade data from commands the deterministic
tiers could not handle. The plugin schema is embedded in the prompt and the
model is asked for JSON only; the engine validates whatever comes back.
"""

DEFAULT_MODEL = "gemini-2.5-flash-lite"
DEFAULT_CONFIDENCE = 0.85


def build_prompt(request: ResolutionRequest) -> str:
    schema = request.plugin_schema or {}
    fields = json.dumps(schema.get("fields", {}), indent=2)
    examples = "\n".join(f"- {example}" for example in schema.get("examples", []))
    context = json.dumps(request.context, default=str) if request.context else "{}"

    return f"""
    You convert natural-language trading commands into structured data.

    TASK:
    {schema.get("description", "Extract the trading intent.")}

    FIELDS (JSON):
    {fields}

    EXAMPLES:
    {examples}

    CONTEXT:
    {context}

    USER INPUT:
    "{request.text}"

    RULES:
    1. Only return a single JSON object. No conversation.
    2. Tickers are 1-5 uppercase letters (e.g. AAPL).
    3. Use amount -1 to mean "the whole position".
    4. Add a "confidence" number between 0 and 1 for how sure you are.
    5. If the input is not a trading command, return {{"confidence": 0}}.
    """


def clean_json(text: str) -> dict:
    # Remove markdown code blocks if present
    clean_response = text.replace("```json", "").replace("```", "").strip()
    data = json.loads(clean_response)
    if not isinstance(data, dict):
        raise ValueError("expected a JSON object")
    return data


class GeminiIntentResolver(IntentResolver):
    """
    IntentResolver backed by google-genai.

    Args:
        api_key (str): Gemini API key. Without one the resolver reports
            unhealthy and every resolve() raises ResolutionError.
        default_model (str): Model used when the request names none.
        costs (dict): {model_name: (cost_in, cost_out)} per 1k tokens.
        client: Optional pre-built genai.Client (used by tests).
    """

    def __init__(self, api_key: str = "", default_model: str = DEFAULT_MODEL, costs: dict | None = None, client=None):
        self.default_model = default_model
        self.costs = costs or {}
        self.client = client

        if self.client is None and api_key:
            try:
                self.client = genai.Client(api_key=api_key)
                logger.info("Gemini (google-genai) client initialized successfully.")
            except Exception as e:
                logger.error(f"Failed to initialize Gemini client: {e}")
        elif self.client is None:
            logger.warning("GEMINI_API_KEY not found in settings. Model resolution will be disabled.")

    async def resolve(self, request: ResolutionRequest) -> ResolutionResponse:
        if not self.client:
            raise ResolutionError("Gemini client is not configured")

        model = request.model or self.default_model
        prompt = build_prompt(request)

        try:
            response = await self.client.aio.models.generate_content(
                model=model,
                contents=prompt,
                config=types.GenerateContentConfig(temperature=0.1, response_mime_type="application/json"),
            )
        except Exception as e:
            logger.error(f"Gemini resolution failed: {e}")
            raise ResolutionError(f"Gemini request failed: {e}") from e

        try:
            data = clean_json(response.text or "")
        except (ValueError, TypeError) as e:
            logger.error(f"Gemini returned unparseable output: {e}")
            raise ResolutionError("Gemini returned malformed JSON") from e

        raw_confidence = data.pop("confidence", DEFAULT_CONFIDENCE)
        try:
            confidence = min(1.0, max(0.0, float(raw_confidence)))
        except (TypeError, ValueError):
            confidence = DEFAULT_CONFIDENCE

        usage = getattr(response, "usage_metadata", None)
        tokens_in = getattr(usage, "prompt_token_count", None) or math.ceil(len(prompt) / 4)
        tokens_out = getattr(usage, "candidates_token_count", None) or math.ceil(len(response.text or "") / 4)

        logger.info(f"Gemini resolved '{request.text}' with {model} (confidence={confidence:.2f})")
        return ResolutionResponse(
            data=data,
            confidence=confidence,
            model=model,
            tokens_in=tokens_in,
            tokens_out=tokens_out,
        )

    async def health(self) -> bool:
        if not self.client:
            return False
        await self.client.aio.models.get(model=self.default_model)
        return True

    def cost_per_k_tokens(self) -> dict[str, float]:
        cost_in, cost_out = self.costs.get(self.default_model, (0.0, 0.0))
        return {"in": cost_in, "out": cost_out}
