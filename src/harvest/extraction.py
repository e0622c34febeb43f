"""
Structured extraction with degrade-to-raw fallback.

Each PageBatch becomes one chat completion request asking for a JSON array of
profile objects. Requests run concurrently; when any of them fails, records are
degraded to DegradedRecord according to the configured BatchFailurePolicy.
"""

import asyncio
import json
import logging
import re
from typing import List, Optional, Sequence, Union

from openai import AsyncOpenAI, OpenAIError
from pydantic import ValidationError

from .config import BatchFailurePolicy, HarvestConfig
from .errors import ExtractionParseError, ExtractionServiceError
from .events import ProgressEmitter
from .models import DegradedRecord, PageBatch, Phase, ProfileRecord

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are a helpful assistant that extracts specific information from search result "
    "profile cards. Always respond with valid JSON array."
)

USER_PROMPT_TEMPLATE = (
    "Extract information from these profile cards ({count} cards). For each card, create an "
    "object with these fields: name, headline, location, currentCompany, profilePhotoUrl, "
    "profileUrl. Return ONLY a JSON array of these objects, one per card, in the same order "
    "as the cards. Do not include any other text or explanation. Profile Cards HTML: {cards}"
)

_CODE_FENCE = re.compile(r"^```(?:json)?\s*\n?|\n?```\s*$")

BatchRecords = List[Union[ProfileRecord, DegradedRecord]]


def build_messages(fragments: Sequence[str]) -> List[dict]:
    """Chat messages for one batch."""
    return [
        {"role": "system", "content": SYSTEM_PROMPT},
        {
            "role": "user",
            "content": USER_PROMPT_TEMPLATE.format(count=len(fragments), cards=json.dumps(list(fragments))),
        },
    ]


def parse_records(content: str, expected: Optional[int] = None) -> List[ProfileRecord]:
    """
    Parse a service response into profile records.

    Plain JSON is tried first, then JSON wrapped in a markdown code fence.

    Args:
        content: Raw message content
        expected: Number of fragments sent; a different item count is an error

    Raises:
        ExtractionParseError: Not JSON, not an array of objects, or wrong length
    """
    text = (content or "").strip()
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        try:
            data = json.loads(_CODE_FENCE.sub("", text))
        except json.JSONDecodeError as e:
            raise ExtractionParseError(f"Response is not valid JSON: {e}") from e

    if not isinstance(data, list):
        raise ExtractionParseError(f"Expected a JSON array, got {type(data).__name__}")

    try:
        records = [ProfileRecord.model_validate(item) for item in data]
    except ValidationError as e:
        raise ExtractionParseError(f"Response items are not profile objects: {e.error_count()} error(s)") from e

    if expected is not None and len(records) != expected:
        raise ExtractionParseError(f"Expected {expected} records, got {len(records)}")
    return records


def degrade(fragments: Sequence[str]) -> List[DegradedRecord]:
    return [DegradedRecord(raw_fragment=fragment) for fragment in fragments]


class StructuredExtractionEngine:
    """Turns page batches into structured records via the OpenAI chat API."""

    def __init__(
        self,
        config: HarvestConfig,
        emitter: ProgressEmitter,
        client: Optional[AsyncOpenAI] = None,
    ):
        """
        Args:
            config: Model name, API key, timeout and failure policy
            emitter: Progress channel
            client: Pre-built async client (created lazily from config otherwise)
        """
        self.config = config
        self.emitter = emitter
        self._client = client

    def _get_client(self) -> AsyncOpenAI:
        """Get or initialize the OpenAI client."""
        if self._client is None:
            if not self.config.openai_api_key:
                raise ExtractionServiceError("OPENAI_API_KEY environment variable is required")
            self._client = AsyncOpenAI(
                api_key=self.config.openai_api_key,
                timeout=self.config.extraction_timeout_s,
            )
        return self._client

    async def transform(self, batches: Sequence[PageBatch]) -> BatchRecords:
        """
        Convert all batches, preserving batch order.

        Never raises for service or parse failures: those degrade records
        according to ``config.batch_failure_policy``.
        """
        if not any(len(batch) for batch in batches):
            return []

        self.emitter.emit(Phase.EXTRACTING, "Starting parallel processing of pages")
        outcomes = await asyncio.gather(
            *(self._process_batch(index, batch) for index, batch in enumerate(batches)),
            return_exceptions=True,
        )

        failures = []
        for index, outcome in enumerate(outcomes):
            if isinstance(outcome, Exception):
                failures.append(index)
            elif isinstance(outcome, BaseException):
                raise outcome

        if not failures:
            self.emitter.emit(Phase.EXTRACTING, "All pages processed successfully.")
            return [record for records in outcomes for record in records]

        first_error = outcomes[failures[0]]
        if self.config.batch_failure_policy == BatchFailurePolicy.ALL_OR_NOTHING:
            self.emitter.emit(Phase.ERROR, "OpenAI error processing pages", error=str(first_error))
            return [record for batch in batches for record in degrade(batch.fragments)]

        self.emitter.emit(
            Phase.ERROR,
            f"OpenAI error processing {len(failures)} of {len(batches)} pages; degrading those pages only",
            error=str(first_error),
        )
        results: BatchRecords = []
        for index, batch in enumerate(batches):
            if index in failures:
                results.extend(degrade(batch.fragments))
            else:
                results.extend(outcomes[index])
        return results

    async def _process_batch(self, index: int, batch: PageBatch) -> List[ProfileRecord]:
        if not len(batch):
            return []
        try:
            content = await self._request(batch.fragments)
            records = parse_records(content, expected=len(batch))
        except Exception as e:
            if not isinstance(e, ExtractionServiceError):
                logger.error(f"Unexpected error processing page {index + 1}: {e}", exc_info=True)
            self.emitter.emit(Phase.ERROR, f"Failed to process page {index + 1}", error=str(e))
            raise

        self.emitter.emit(Phase.EXTRACTING, f"Successfully processed page {index + 1}")
        return records

    async def _request(self, fragments: Sequence[str]) -> str:
        client = self._get_client()
        try:
            response = await client.chat.completions.create(
                model=self.config.openai_model,
                messages=build_messages(fragments),
            )
        except OpenAIError as e:
            raise ExtractionServiceError(f"OpenAI API Error: {e}") from e

        if not response.choices or not response.choices[0].message.content:
            raise ExtractionServiceError("OpenAI API returned an empty response")
        return response.choices[0].message.content
