"""
Two-phase add/delete job.

Phase one adds every record in ``[first, last]`` (generated from the template)
with the records handed out to workers by a shared allocator. Once every
worker has finished adding, the last one to finish waits out the optional
settle delay and rewinds the allocator; phase two then deletes the same range.
In alternate mode each record is deleted right after it was added and there
is no second phase.
"""

from __future__ import annotations

import random
import time
from typing import Any, Dict, Optional

from loadgen.config import Settings
from loadgen.control.coordination import PhaseBarrier, RecordNumberAllocator
from loadgen.control.signals import Clock, StopSignal
from loadgen.domain.errors import ConfigurationError
from loadgen.domain.models import AddDeleteOptions, JobConfig
from loadgen.drivers.base import ChannelFactory, SyncOperationLoop, ThreadedLoadJob
from loadgen.operations.abstract import AddRequest, DeleteRequest
from loadgen.templating.expander import RecordGenerator
from loadgen.templating.template import compile_template
from loadgen.utils.logging import get_logger

log = get_logger(__name__)


class AddDeleteJob(ThreadedLoadJob):
    name: str = "add_delete"
    description: str = "Add templated records over a number range, then delete them."

    def __init__(
        self,
        config: JobConfig,
        channel_factory: ChannelFactory,
        options: Optional[AddDeleteOptions] = None,
        settings: Optional[Settings] = None,
        clock: Clock = time.monotonic,
    ) -> None:
        super().__init__(config, channel_factory, settings, clock)
        self.options = options or AddDeleteOptions()
        self.generator: Optional[RecordGenerator] = None
        if self.options.perform_adds:
            if not config.template_lines:
                raise ConfigurationError("Adding records requires a template")
            self.generator = RecordGenerator(
                compile_template(config.template_lines), config.first_record_number
            )
        self.allocator: Optional[RecordNumberAllocator] = None
        self.barrier: Optional[PhaseBarrier] = None
        self._stop: Optional[StopSignal] = None
        self._transitions = 0

    @property
    def two_phase(self) -> bool:
        opts = self.options
        return opts.perform_adds and opts.perform_deletes and not opts.alternate

    def prepare(self, stop: StopSignal) -> None:
        self.allocator = RecordNumberAllocator(
            self.config.first_record_number, self.config.last_record_number
        )
        self.barrier = PhaseBarrier(self.config.threads)
        self._stop = stop
        self._transitions = 0

    def run_worker(self, index: int, loop: SyncOperationLoop, rng: random.Random) -> None:
        if self.options.perform_adds:
            try:
                self._add_phase(loop, rng)
            finally:
                if self.two_phase:
                    self.barrier.arrive_and_wait(self._between_phases, loop.stop)
        if self.options.perform_deletes and not self.options.alternate:
            self._delete_phase(loop)

    def _between_phases(self) -> None:
        self._transitions += 1
        log.info(
            f"[PHASE] {self.name}: adds complete, starting deletes",
            extra={"job": self.name, "settle_ms": self.options.time_between_phases_ms},
        )
        if self.options.time_between_phases_ms > 0:
            self._stop.wait(self.options.time_between_phases_ms / 1000.0)
        self.allocator.reset()

    def _add_phase(self, loop: SyncOperationLoop, rng: random.Random) -> None:
        while not loop.stop.should_stop():
            if loop.acquire():
                continue
            number = self.allocator.next()
            if number is None:
                break
            key = self.config.record_key(number)
            started = loop.clock()
            outcome = loop.perform(
                "add", lambda: AddRequest(key, self.generator.generate(rng, number, key))
            )
            if loop.pace(started):
                break
            if self.options.alternate and outcome is not None:
                if loop.acquire():
                    break
                started = loop.clock()
                loop.perform("delete", lambda: DeleteRequest(key))
                if loop.pace(started):
                    break

    def _delete_phase(self, loop: SyncOperationLoop) -> None:
        while not loop.stop.should_stop():
            if loop.acquire():
                continue
            number = self.allocator.next()
            if number is None:
                break
            key = self.config.record_key(number)
            started = loop.clock()
            loop.perform("delete", lambda: DeleteRequest(key))
            if loop.pace(started):
                break

    def extra(self) -> Dict[str, Any]:
        return {
            "record_range": [self.config.first_record_number, self.config.last_record_number],
            "alternate": self.options.alternate,
            "phase_transitions": self._transitions,
        }


__all__ = ["AddDeleteJob"]
