"""Execution of one fired trigger.

The run shell resolves the job and calendar of a firing, waits for the
scheduled fire time, runs the job (again, if it asks to be refired) and
reports the outcome to the job store. Failures are contained: a job that
cannot be resolved or instantiated puts its triggers in the ERROR state,
and an exception raised by the job body is captured in the context.
"""

import logging
import time
from typing import TYPE_CHECKING

from quartzpy.core.context import CompletedExecutionInstruction, JobExecutionContext
from quartzpy.core.errors import JobExecutionError, SchedulerError
from quartzpy.core.job import JobDetail
from quartzpy.scheduler.events import SchedulerEvent
from quartzpy.triggers import FiredTrigger

if TYPE_CHECKING:
    from quartzpy.scheduler.scheduler import Scheduler

logger = logging.getLogger(__name__)

_STORE_FINALIZED = (
    CompletedExecutionInstruction.SET_TRIGGER_COMPLETE,
    CompletedExecutionInstruction.SET_ALL_JOB_TRIGGERS_COMPLETE,
)


class JobRunShell:
    """Runs the job of a single FiredTrigger.

    Example:
        for fired in store.triggers_fired(acquired):
            JobRunShell(scheduler, fired).run()

    Args:
        scheduler: Scheduler providing the store, job factory and events.
        fired_trigger: The firing to execute.
    """

    def __init__(self, scheduler: "Scheduler", fired_trigger: FiredTrigger) -> None:
        self._scheduler = scheduler
        self._fired = fired_trigger

    def run(self) -> CompletedExecutionInstruction | None:
        """Execute the firing and complete it in the job store.

        A shutdown that interrupts the wait for the scheduled fire time
        releases the firing back to the job store without running the job.

        Returns:
            The instruction reported to the job store, None if the firing
            was released.
        """
        scheduler = self._scheduler
        store = scheduler.store
        fired = self._fired
        trigger = fired.trigger

        job_detail = store.retrieve_job(trigger.job_key)
        if job_detail is None:
            return self._fail(f"Job ({trigger.job_key}) of trigger {trigger.key} not found", None)

        calendar = None
        if trigger.calendar_name:
            calendar = store.retrieve_calendar(trigger.calendar_name)
            if calendar is None:
                return self._fail(
                    f"Calendar '{trigger.calendar_name}' of trigger {trigger.key} not found",
                    None,
                )

        try:
            job = scheduler.job_factory.new_job(job_detail)
        except SchedulerError as e:
            return self._fail(f"Problem instantiating job ({job_detail.key}): {e}", None)

        context = JobExecutionContext(
            scheduler=scheduler,
            fired_trigger=fired,
            job_detail=job_detail,
            calendar=calendar,
        )

        scheduled = fired.scheduled_fire_time
        if scheduled is not None:
            wait = (scheduled - scheduler.now()).total_seconds()
            if wait > scheduler.max_fire_wait:
                fired.error_message = (
                    f"Sleep time is too long: {wait:.0f}s until {scheduled.isoformat()}, "
                    f"maximum is {scheduler.max_fire_wait:.0f}s"
                )
                logger.error(f"Trigger {trigger.key}: {fired.error_message}")
                return self._complete(job_detail, CompletedExecutionInstruction.SET_TRIGGER_ERROR)
            if wait > 0:
                logger.debug(f"Waiting {wait:.2f}s for trigger {trigger.key}")
                scheduler.sleep(wait)
                if scheduler.is_shutdown and scheduler.now() < scheduled:
                    logger.info(f"Scheduler shut down before trigger {trigger.key} was due, releasing the firing")
                    store.release_fired_trigger(fired)
                    return None

        events = scheduler.events
        while True:
            if events.dispatch(SchedulerEvent.TRIGGER_FIRED, trigger=trigger, context=context):
                logger.info(f"Execution of job {job_detail.key} vetoed for trigger {trigger.key}")
                events.dispatch(SchedulerEvent.JOB_EXECUTION_VETOED, context=context)
                instruction = trigger.execution_complete(context)
                return self._complete(job_detail, instruction)

            events.dispatch(SchedulerEvent.JOB_TO_BE_EXECUTED, context=context)
            context.clear_instruction()
            self._execute(job, context)
            events.dispatch(SchedulerEvent.JOB_WAS_EXECUTED, context=context, exception=context.exception)

            instruction = trigger.execution_complete(context)
            events.dispatch(
                SchedulerEvent.TRIGGER_COMPLETE,
                trigger=trigger,
                context=context,
                instruction=instruction,
            )

            if instruction != CompletedExecutionInstruction.RE_EXECUTE_JOB:
                return self._complete(job_detail, instruction)

            context.increment_refire_count()
            logger.info(f"Refiring job {job_detail.key} (refire count {context.refire_count})")

    def _execute(self, job, context: JobExecutionContext) -> None:
        job_key = context.job_detail.key
        context.exception = None
        start = time.monotonic()
        try:
            logger.debug(f"Executing job {job_key}")
            job.execute(context)
        except JobExecutionError as e:
            logger.warning(f"Job {job_key} raised an execution error: {e}")
            context.exception = e
            if e.refire_immediately:
                context.set_refire_immediately()
            elif e.unschedule_firing_trigger:
                context.set_unschedule_firing_trigger()
            elif e.unschedule_all_triggers:
                context.set_unschedule_all_triggers()
        except Exception as e:
            logger.exception(f"Job {job_key} threw an unhandled exception")
            context.exception = e
        finally:
            context.job_run_time_ms = (time.monotonic() - start) * 1000

    def _complete(
        self,
        job_detail: JobDetail | None,
        instruction: CompletedExecutionInstruction,
    ) -> CompletedExecutionInstruction:
        self._scheduler.store.triggered_job_complete(self._fired, job_detail, instruction)
        # The store signals finalization itself when completing triggers
        if instruction not in _STORE_FINALIZED and not self._fired.trigger.may_fire_again():
            self._scheduler.events.dispatch(SchedulerEvent.TRIGGER_FINALIZED, trigger=self._fired.trigger)
        return instruction

    def _fail(self, message: str, job_detail: JobDetail | None) -> CompletedExecutionInstruction:
        """Put every trigger of the job in ERROR and complete the firing."""
        logger.error(message)
        self._fired.error_message = message
        self._scheduler.events.dispatch(
            SchedulerEvent.SCHEDULER_ERROR,
            message=message,
            trigger=self._fired.trigger,
        )
        return self._complete(job_detail, CompletedExecutionInstruction.SET_ALL_JOB_TRIGGERS_ERROR)
