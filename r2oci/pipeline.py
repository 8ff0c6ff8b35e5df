"""Convert an image to an OCI layout and upload it to object storage

The pipeline goes through the following states:

    INIT -> MATERIALIZING -> WALKING -> UPLOADING -> FINALIZING -> DONE

Any error before UPLOADING is fatal and ends in FATAL_ERROR,
failed uploads are collected in the PipelineResult.
"""
import asyncio
import enum
import logging
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable

from r2oci.config import PipelineOptions, R2Config
from r2oci.errors import (
    Cancelled,
    ConfigError,
    IntegrityError,
    PipelineFailed,
    R2OCIError,
    UploadError,
)
from r2oci.oci.layout import OciLayout
from r2oci.skopeo import Converter, ImageReference, SkopeoConverter, materialize
from r2oci.storage import ObjectStore, R2Store
from r2oci.upload import Outcome, Uploader, UploadTask

logger = logging.getLogger(__name__)


class State(enum.Enum):
    INIT = "init"
    MATERIALIZING = "materializing"
    WALKING = "walking"
    UPLOADING = "uploading"
    FINALIZING = "finalizing"
    DONE = "done"
    FATAL_ERROR = "fatal_error"
    CANCELLED = "cancelled"


@dataclass(frozen=True, slots=True)
class TaskFailure:
    task: UploadTask
    error: R2OCIError

    @property
    def kind(self) -> str:
        return type(self.error).__name__

    def __str__(self):
        return f"{self.task.digest} ({self.kind}: {self.error})"


@dataclass(slots=True)
class PipelineResult:
    uploaded_count: int = 0
    skipped_count: int = 0
    failures: list[TaskFailure] = field(default_factory=list)

    @property
    def total(self) -> int:
        return self.uploaded_count + self.skipped_count + len(self.failures)

    @property
    def ok(self) -> bool:
        return not self.failures

    def raise_for_failures(self):
        """Raise PipelineFailed if any upload failed"""
        if self.failures:
            raise PipelineFailed(self)


class Pipeline:
    """Uploads container images to a single destination store.

    Either `config` or `store` is required, `store` takes precedence.
    """

    def __init__(
        self,
        config: R2Config | None = None,
        options: PipelineOptions | None = None,
        converter: Converter | None = None,
        store: ObjectStore | None = None,
    ):
        self.options = options or PipelineOptions()
        if store is None:
            if config is None:
                raise ConfigError("No storage configuration provided")
            store = R2Store(config)
        if converter is None:
            converter = SkopeoConverter(
                binary=self.options.skopeo,
                all_platforms=self.options.all_platforms,
                extra_args=self.options.extra_args,
                timeout=self.options.convert_timeout,
            )
        self.converter = converter
        self.uploader = Uploader(
            store,
            max_attempts=self.options.max_attempts,
            backoff_seconds=self.options.backoff_seconds,
            verify_digests=self.options.verify_digests,
        )
        self.state = State.INIT

    def _enter(self, state: State):
        logger.debug("%s -> %s", self.state.value, state.value)
        self.state = state

    async def run(
        self,
        image: ImageReference,
        cancel: asyncio.Event | None = None,
        timeout: float | None = None,
    ) -> PipelineResult:
        """Run the pipeline for `image`

        Setting `cancel` or exceeding `timeout` (seconds) stops new uploads
        from starting and raises Cancelled once in-flight uploads are done.
        """
        loop = asyncio.get_running_loop()
        deadline = None if timeout is None else loop.time() + timeout

        def cancelled() -> bool:
            if cancel is not None and cancel.is_set():
                return True
            return deadline is not None and loop.time() >= deadline

        self.state = State.INIT
        logger.info("Uploading %s", image)
        try:
            with tempfile.TemporaryDirectory(
                prefix="r2oci-", dir=self.options.work_dir
            ) as tmp_dir:
                self._enter(State.MATERIALIZING)
                if cancelled():
                    raise Cancelled(f"Cancelled before converting {image}")
                conversion = asyncio.ensure_future(
                    asyncio.to_thread(
                        materialize,
                        image,
                        Path(tmp_dir) / "layout",
                        self.converter,
                        self.options.transport,
                    )
                )
                try:
                    root = await asyncio.shield(conversion)
                except asyncio.CancelledError:
                    # The converter thread keeps writing to tmp_dir until it returns
                    logger.info("Waiting for the conversion of %s to stop", image)
                    await asyncio.wait([conversion])
                    if not conversion.cancelled() and conversion.exception():
                        logger.debug("Conversion failed: %s", conversion.exception())
                    raise

                self._enter(State.WALKING)
                if cancelled():
                    raise Cancelled(f"Cancelled after converting {image}")
                tasks = OciLayout(root).walk(
                    image.tag, key_prefix=self.options.key_prefix
                )

                self._enter(State.UPLOADING)
                result, complete = await self._upload_all(tasks, cancelled)
                self._enter(State.FINALIZING)
                if not complete:
                    raise Cancelled(
                        f"Cancelled with {len(tasks) - result.total} uploads pending",
                        result=result,
                    )
        except (Cancelled, asyncio.CancelledError):
            self._enter(State.CANCELLED)
            raise
        except R2OCIError:
            self._enter(State.FATAL_ERROR)
            raise

        self._enter(State.DONE)
        logger.info(
            "Done with %s: %d uploaded, %d skipped, %d failed",
            image,
            result.uploaded_count,
            result.skipped_count,
            len(result.failures),
        )
        return result

    async def _upload_all(
        self, tasks: list[UploadTask], cancelled: Callable[[], bool]
    ) -> tuple[PipelineResult, bool]:
        """Upload `tasks` with a fixed number of workers

        Returns the result and whether every task was started.
        """
        outcomes: list[Outcome | R2OCIError | None] = [None] * len(tasks)
        pending = iter(enumerate(tasks))

        async def worker():
            for i, task in pending:
                if cancelled():
                    return
                try:
                    outcomes[i] = await self.uploader.upload(task)
                except (UploadError, IntegrityError) as e:
                    logger.error("Failed to upload %s: %s", task, e)
                    outcomes[i] = e
                except Exception as e:
                    logger.exception("Unexpected error uploading %s", task)
                    error = UploadError(f"Failed to upload {task.digest}: {e!r}")
                    error.__cause__ = e
                    outcomes[i] = error

        workers = min(self.options.concurrency, len(tasks))
        async with asyncio.TaskGroup() as group:
            for _ in range(workers):
                group.create_task(worker())

        result = PipelineResult()
        for task, outcome in zip(tasks, outcomes):
            if outcome is Outcome.UPLOADED:
                result.uploaded_count += 1
            elif outcome is Outcome.SKIPPED:
                result.skipped_count += 1
            elif isinstance(outcome, R2OCIError):
                result.failures.append(TaskFailure(task=task, error=outcome))
        return result, all(outcome is not None for outcome in outcomes)


def run(
    image: str,
    tag: str = "latest",
    *,
    config: R2Config | None = None,
    options: PipelineOptions | None = None,
    check: bool = True,
) -> PipelineResult:
    """Upload `image`:`tag` to R2

    The configuration is read from the environment when `config` is not given.
    With `check` set, PipelineFailed is raised when any upload failed.
    """
    if config is None:
        config = R2Config.from_env()
    pipeline = Pipeline(config=config, options=options)
    result = asyncio.run(pipeline.run(ImageReference(name=image, tag=tag)))
    if check:
        result.raise_for_failures()
    return result
