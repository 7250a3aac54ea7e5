"""
Donation recommender worker app.

Runs once per task inside the enclave:

1. read the input document (``$IEXEC_IN/iexec_in.txt``, stdin when absent)
2. resolve the model API key from the injected secrets
3. ask the model for up to three recommendations and validate them
4. write ``$IEXEC_OUT/computed.json``

Whatever happens, a result document is written: the marketplace only accepts
a task that produced one. The exit code tells success (0) from failure (1).

Usage (local testing):
    echo '{"userAddress": "0xabc", "allNFTs": [{"tokenId": "1", "name": "A", "totalDonations": "0"}]}' \\
        | IEXEC_IN=/tmp/none IEXEC_OUT=/tmp/out IEXEC_SCRT_OPENAI_API_KEY=sk-... \\
          python -m workloads.donation_recommender
"""

import json
import logging
import os
import sys
from typing import Optional

from pydantic import ValidationError

from donation_core.config import (
    CREDENTIAL_ENV,
    INPUT_FILE_NAME,
    OUTPUT_FILE_NAME,
    WorkerSettings,
    get_worker_settings,
)
from donation_core.decorators import AppImage, worker_app
from donation_core.errors import CredentialError, InputError, ModelError, WorkerError
from donation_core.runtime import RecommendationResult, RunContext, TaskRequest
from donation_core.validation import MAX_RECOMMENDATIONS, normalize_recommendations
from workloads.llm import OpenAIChatClient
from workloads.utils import Timer, load_json, save_json


logger = logging.getLogger(__name__)

APP_NAME = "donation-recommender"

DEFAULT_CATEGORY = "General"
DEFAULT_DESCRIPTION = "No description"
NEW_USER_LINE = "This is a new user with no donation history."

SYSTEM_PROMPT = (
    "You are an expert AI assistant specializing in personalized NFT donation "
    "recommendations. Always respond with valid JSON only."
)

RESPONSE_FORMAT = """{
  "recommendations": [
    {
      "nftId": "string",
      "reason": "string (2-3 sentences max)",
      "confidence": number
    }
  ]
}"""


def read_input(context: RunContext) -> TaskRequest:
    """Load the input document, falling back to stdin when the file is absent."""
    input_file = context.input_dir / INPUT_FILE_NAME
    try:
        if input_file.exists():
            document = load_json(input_file)
        elif context.stdin is not None:
            logger.info("No %s, reading from stdin for local testing", input_file)
            document = json.loads(context.stdin.read())
        else:
            raise InputError(f"Failed to read input: {input_file} does not exist")
    except (OSError, ValueError) as exc:
        raise InputError(f"Failed to read input: {exc}") from exc
    return parse_request(document)


def parse_request(document) -> TaskRequest:
    if not isinstance(document, dict):
        raise InputError("Input document must be a JSON object")
    if not document.get("userAddress"):
        raise InputError("userAddress is required in input")
    if not document.get("allNFTs"):
        raise InputError("allNFTs array is required and must not be empty")

    if document.get("donationHistory") is None:
        document = {**document, "donationHistory": []}
    try:
        return TaskRequest.model_validate(document)
    except ValidationError as exc:
        raise InputError(f"Invalid input document: {exc}") from exc


def get_api_key(context: RunContext) -> str:
    api_key = context.secrets.get(CREDENTIAL_ENV)
    if not api_key:
        raise CredentialError(f"{CREDENTIAL_ENV} not found in enclave secrets")
    return api_key


def build_prompt(request: TaskRequest) -> str:
    """Render the user prompt. Pure function of the request."""
    has_history = bool(request.donation_history)
    lines = [
        "You are an AI assistant helping users discover meaningful NFT donation opportunities.",
        "",
        f"User Wallet: {request.requester_address}",
        "",
    ]

    if has_history:
        lines.append("This user has previously donated to the following NFTs:")
        for entry in request.donation_history:
            lines.append(
                f'- "{entry.item_name}" (ID: {entry.item_id}): {entry.amount} ETH'
                f" - Category: {entry.category or DEFAULT_CATEGORY}"
            )
    else:
        lines.append(NEW_USER_LINE)
    lines.append("")

    lines.append("Available NFTs for donation:")
    for item in request.catalog:
        lines.append(
            f'- ID: {item.item_id}, Name: "{item.name}",'
            f" Category: {item.category or DEFAULT_CATEGORY},"
            f" Description: {item.description or DEFAULT_DESCRIPTION},"
            f" Total Received: {item.total_received} ETH"
        )

    basis = "the user's donation history and interests" if has_history else "the available opportunities"
    count = min(MAX_RECOMMENDATIONS, len(request.catalog))
    lines.extend([
        "",
        f"Based on {basis}, recommend the top {count} NFTs they should consider donating to.",
        "Only recommend IDs from the list above.",
        "",
        "For each recommendation:",
        "1. Explain WHY this NFT is a good match",
        "2. Provide a confidence score (0-100)",
        "3. Consider donation patterns, categories, impact potential, and social good",
        "",
        "Response format (valid JSON only):",
        RESPONSE_FORMAT,
    ])
    return "\n".join(lines)


def generate(request: TaskRequest, model) -> RecommendationResult:
    """Ask the model and validate its answer against the catalog."""
    prompt = build_prompt(request)
    with Timer("model call"):
        raw = model.complete_json(SYSTEM_PROMPT, prompt)

    try:
        document = json.loads(raw)
    except ValueError as exc:
        raise ModelError("Model returned invalid JSON") from exc
    if not isinstance(document, dict) or "recommendations" not in document:
        raise ModelError("Invalid response format from model")

    try:
        recommendations = normalize_recommendations(
            document["recommendations"],
            known_ids=set(request.item_ids()),
        )
    except ValueError as exc:
        raise ModelError(str(exc)) from exc
    return RecommendationResult(recommendations=recommendations)


def _run(context: RunContext, model, settings: WorkerSettings) -> RecommendationResult:
    request = read_input(context)
    logger.info("User: %s", request.requester_address)
    logger.info("Donation history entries: %d", len(request.donation_history))
    logger.info("Available NFTs: %d", len(request.catalog))

    api_key = get_api_key(context)
    if model is not None:
        return generate(request, model)

    with OpenAIChatClient(
        api_key,
        model=settings.model,
        base_url=settings.base_url,
        temperature=settings.temperature,
        max_tokens=settings.max_tokens,
        timeout_s=settings.timeout_s,
    ) as client:
        return generate(request, client)


def emit(context: RunContext, result: RecommendationResult, echo: bool = False) -> int:
    """Write the result document and return the process exit code."""
    output_file = context.output_dir / OUTPUT_FILE_NAME
    try:
        save_json(output_file, result.to_document())
    except OSError as exc:
        logger.error("Failed to write output to %s: %s", output_file, exc)
        return 1
    logger.info("Output written to %s", output_file)

    if echo:
        print(result.to_json())
    return 1 if result.error else 0


@worker_app(name=APP_NAME, image=AppImage(docker_image="donation-recommender:latest"))
def recommend(
    context: RunContext,
    model=None,
    settings: Optional[WorkerSettings] = None,
    echo: bool = False,
) -> int:
    """
    Run the recommender once and always leave a result document behind.

    Args:
        context: Execution context with input/output dirs and secrets
        model: Object with a ``complete_json(system, prompt)`` method; an
            OpenAI client built from the settings when omitted
        settings: Worker settings, read from the environment when omitted
        echo: Also print the compact document on stdout

    Returns:
        0 on success, 1 on failure
    """
    logger.info("=== Donation recommender worker, task %s ===", context.task_id)
    try:
        result = _run(context, model, settings or get_worker_settings())
        logger.info("Generated %d recommendations", len(result.recommendations))
    except WorkerError as exc:
        logger.error("Execution failed: %s", exc)
        result = RecommendationResult.failure(str(exc))
    except Exception as exc:  # a result document is still owed to the marketplace
        logger.exception("Execution failed unexpectedly")
        result = RecommendationResult.failure(f"Unexpected error: {exc}")
    return emit(context, result, echo=echo)


def main() -> None:
    logging.basicConfig(
        level=logging.INFO,
        stream=sys.stderr,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    settings = get_worker_settings()
    context = RunContext(
        task_id=os.environ.get("IEXEC_TASK_ID", "local"),
        input_dir=settings.input_dir,
        output_dir=settings.output_dir,
        secrets={k: v for k, v in os.environ.items() if k.startswith("IEXEC_SCRT_")},
        stdin=sys.stdin,
    )
    sys.exit(recommend(context, settings=settings, echo=True))


if __name__ == "__main__":
    main()
