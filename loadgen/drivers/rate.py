"""
Rate-driven modify and search jobs (synchronous form).

Every worker picks a random record number in ``[first, last]`` for each
operation. Modifies replace the attributes produced by the template with
freshly generated values; searches look the record up by key.
"""

from __future__ import annotations

import random
import time
from typing import Any, Dict, Optional

from loadgen.config import Settings
from loadgen.control.signals import Clock
from loadgen.domain.errors import ConfigurationError
from loadgen.domain.models import JobConfig, OperationKind, RateOptions
from loadgen.drivers.base import ChannelFactory, SyncOperationLoop, ThreadedLoadJob
from loadgen.operations.abstract import ModifyRequest, OperationRequest, SearchRequest
from loadgen.templating.expander import RecordGenerator
from loadgen.templating.template import compile_template


def build_request_factory(
    config: JobConfig, operation: OperationKind, generator: Optional[RecordGenerator]
):
    """Return ``make(rng) -> OperationRequest`` for random records in range."""

    def make(rng: random.Random) -> OperationRequest:
        number = rng.randint(config.first_record_number, config.last_record_number)
        key = config.record_key(number)
        if operation is OperationKind.SEARCH:
            return SearchRequest(key)
        return ModifyRequest(key, generator.generate(rng, number, key))

    return make


def build_generator(config: JobConfig, operation: OperationKind) -> Optional[RecordGenerator]:
    if operation is not OperationKind.MODIFY:
        return None
    if not config.template_lines:
        raise ConfigurationError("Modify operations require a template of replacement values")
    return RecordGenerator(compile_template(config.template_lines), config.first_record_number)


class RateJob(ThreadedLoadJob):
    description: str = "Rate-limited modifies or searches of random records in a range."

    def __init__(
        self,
        config: JobConfig,
        channel_factory: ChannelFactory,
        options: Optional[RateOptions] = None,
        settings: Optional[Settings] = None,
        clock: Clock = time.monotonic,
    ) -> None:
        super().__init__(config, channel_factory, settings, clock)
        self.options = options or RateOptions()
        self.operation = self.options.operation
        self.name = f"{self.operation.value}_rate"
        self.categorize_response_times = self.options.categorize_response_times
        self._make_request = build_request_factory(
            config, self.operation, build_generator(config, self.operation)
        )

    def run_worker(self, index: int, loop: SyncOperationLoop, rng: random.Random) -> None:
        operation = self.operation.value
        while not loop.stop.should_stop():
            if loop.acquire():
                continue
            started = loop.clock()
            loop.perform(operation, lambda: self._make_request(rng))
            if loop.pace(started):
                break

    def extra(self) -> Dict[str, Any]:
        return {
            "operation": self.operation.value,
            "record_range": [self.config.first_record_number, self.config.last_record_number],
        }


__all__ = ["RateJob", "build_generator", "build_request_factory"]
