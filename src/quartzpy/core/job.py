"""Job definitions and job instantiation.

A JobDetail is the persisted description of a unit of work. The job body
itself is user code: either a Job subclass or a plain callable, resolved
by a JobFactory from the detail's ``job_type``.
"""

import importlib
import inspect
import logging
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, Callable

from pydantic import BaseModel, Field

from quartzpy.core.errors import SchedulerError
from quartzpy.core.key import Key

if TYPE_CHECKING:
    from quartzpy.core.context import JobExecutionContext

logger = logging.getLogger(__name__)


class JobDetail(BaseModel):
    """Persisted description of a job.

    Attributes:
        key: Unique identity of the job.
        job_type: Registered job name or ``module:Class`` import path.
        description: Human readable description.
        durable: Keep the job when no trigger references it any more.
        job_data: Values merged into every execution context.
    """

    key: Key = Field(..., description="Unique identity of the job")
    job_type: str = Field(..., description="Registered job name or import path")
    description: str | None = Field(default=None, description="Job description")
    durable: bool = Field(default=False, description="Survive with zero triggers")
    job_data: dict[str, Any] = Field(default_factory=dict, description="Job data map")


class Job(ABC):
    """Base class for job bodies.

    Example:
        class SendReport(Job):
            def execute(self, context):
                context.result = build_report(context.merged_job_data["day"])
    """

    @abstractmethod
    def execute(self, context: "JobExecutionContext") -> None:
        """Run the job.

        Args:
            context: Execution context of the current firing.
        """


JobHandler = Callable[["JobExecutionContext"], Any]


class _CallableJob(Job):
    """Adapter running a plain function as a job."""

    def __init__(self, handler: JobHandler) -> None:
        self._handler = handler

    def execute(self, context: "JobExecutionContext") -> None:
        result = self._handler(context)
        if result is not None:
            context.result = result


def job_type_name(job_class: type) -> str:
    """Import path of a job class in ``module:QualName`` form."""
    return f"{job_class.__module__}:{job_class.__qualname__}"


class JobFactory(ABC):
    """Produces runnable job instances from job details."""

    @abstractmethod
    def new_job(self, job_detail: JobDetail) -> Job:
        """Create the job instance for one firing.

        Raises:
            SchedulerError: If the job cannot be instantiated.
        """


class SimpleJobFactory(JobFactory):
    """Job factory backed by a registry with import-path fallback.

    Example:
        factory = SimpleJobFactory()

        @factory.register("cleanup")
        def cleanup(context):
            ...

        job = factory.new_job(JobDetail(key=Key("c"), job_type="cleanup"))
    """

    def __init__(self) -> None:
        self._registry: dict[str, type[Job] | JobHandler] = {}

    def register(
        self,
        name: str | None = None,
    ) -> Callable[[type[Job] | JobHandler], type[Job] | JobHandler]:
        """Decorator to register a Job subclass or a handler function.

        Args:
            name: Registry name. Defaults to the object's import path.

        Returns:
            Decorator function.
        """
        def decorator(target):
            job_name = name or job_type_name(target)
            self._registry[job_name] = target
            logger.debug(f"Registered job type: {job_name}")
            return target

        return decorator

    def add(self, name: str, target: type[Job] | JobHandler) -> None:
        """Register a job type without the decorator syntax."""
        self._registry[name] = target

    def new_job(self, job_detail: JobDetail) -> Job:
        target = self._registry.get(job_detail.job_type)
        if target is None:
            target = self._import(job_detail.job_type)

        try:
            if inspect.isclass(target):
                if not issubclass(target, Job):
                    raise SchedulerError(f"Job type '{job_detail.job_type}' is not a Job subclass")
                return target()
            if callable(target):
                return _CallableJob(target)
        except SchedulerError:
            raise
        except Exception as e:
            raise SchedulerError(f"Problem instantiating job '{job_detail.key}': {e}") from e

        raise SchedulerError(f"Job type '{job_detail.job_type}' is not callable")

    def _import(self, path: str) -> Any:
        module_name, sep, attr_path = path.partition(":")
        if not sep:
            module_name, _, attr_path = path.rpartition(".")
        if not module_name or not attr_path:
            raise SchedulerError(f"Unknown job type: {path}")

        try:
            target: Any = importlib.import_module(module_name)
            for attr in attr_path.split("."):
                target = getattr(target, attr)
        except (ImportError, AttributeError) as e:
            raise SchedulerError(f"Unknown job type: {path}") from e
        return target
