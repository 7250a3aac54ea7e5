import io
import json
import logging
import zipfile
from typing import Collection, Optional

from donation_core.config import OUTPUT_FILE_NAME
from donation_core.errors import ResultFormatError
from donation_core.runtime import BaseMarketplace, RecommendationResult
from donation_core.validation import parse_result_document


logger = logging.getLogger(__name__)


def _unpack(payload: bytes) -> bytes:
    """Result proxies ship a zip of the output directory; plain JSON passes through."""
    if not zipfile.is_zipfile(io.BytesIO(payload)):
        return payload
    try:
        with zipfile.ZipFile(io.BytesIO(payload)) as archive:
            names = [n for n in archive.namelist() if n.rsplit("/", 1)[-1] == OUTPUT_FILE_NAME]
            if not names:
                raise ResultFormatError(f"Result archive has no {OUTPUT_FILE_NAME}")
            return archive.read(names[0])
    except zipfile.BadZipFile as exc:
        raise ResultFormatError(f"Corrupt result archive: {exc}") from exc


def decode_result(payload: bytes, known_ids: Optional[Collection[str]] = None) -> RecommendationResult:
    """Decode and validate a raw result payload."""
    try:
        text = _unpack(payload).decode("utf-8")
        document = json.loads(text)
    except UnicodeDecodeError as exc:
        raise ResultFormatError("Result is not valid UTF-8") from exc
    except ValueError as exc:
        raise ResultFormatError(f"Result is not valid JSON: {exc}") from exc

    try:
        return parse_result_document(document, known_ids)
    except ValueError as exc:
        raise ResultFormatError(str(exc)) from exc


class ResultFetcher:
    """Retrieves and re-validates the result of a completed task."""

    def __init__(self, marketplace: BaseMarketplace):
        self.marketplace = marketplace

    def fetch(self, task_id: str, known_ids: Optional[Collection[str]] = None) -> RecommendationResult:
        payload = self.marketplace.fetch_results(task_id)
        logger.info("Fetched %d bytes of result for task %s", len(payload), task_id)
        return decode_result(payload, known_ids)
