"""Plan Executor - materializes approved plans as subtasks.

Modes:
- auto / plan-then-execute (after approval): every step at once
- step-by-step: one step per human approval, tracked by a cursor stored on
  the parent task's input

The cursor is advanced with compare-and-swap on ``Task.input_version`` so
two concurrent advances cannot lose an increment.
"""

import structlog

from atlas.config import Settings, get_settings
from atlas.core.events import EventChannel
from atlas.core.exceptions import ConcurrentUpdateError, ValidationError
from atlas.core.models import ActorType, ExecutionMode, ExecutionPlan, TaskStatus
from atlas.core.payloads import StoredPlan, dump_section, read_input
from atlas.database.models import Task
from atlas.database.repository import TaskRepository

logger = structlog.get_logger(__name__)


class PlanExecutor:
    """Creates subtasks for plans and tracks step-by-step progress.

    Every public method is one unit of work and commits the session.
    """

    def __init__(
        self,
        tasks: TaskRepository,
        actor_id: str,
        actor_type: ActorType = ActorType.USER,
        events: EventChannel | None = None,
        settings: Settings | None = None,
    ) -> None:
        """Initialize the executor.

        Args:
            tasks: Task repository
            actor_id: Who triggered execution (recorded on created tasks)
            actor_type: Actor kind for audit fields
            events: Optional event channel for observers
            settings: Settings (defaults to global settings)
        """
        self.tasks = tasks
        self.actor_id = actor_id
        self.actor_type = actor_type
        self.events = events
        self.settings = settings or get_settings()

    # ------------------------------------------------------------------
    # Materialization
    # ------------------------------------------------------------------

    def create_subtasks_from_plan(self, plan: ExecutionPlan | StoredPlan, parent: Task) -> list[str]:
        """Create one subtask per step, in order, and wire dependency edges.

        The first step and steps without a dependency start queued, the rest
        pending. A dependency index that does not point at an already created
        step is skipped.

        Returns:
            Created subtask ids, parallel to the step order
        """
        created_ids: list[str] = []
        total = len(plan.steps)

        for index, step in enumerate(plan.steps):
            has_dependency = step.depends_on_index is not None and step.depends_on_index >= 0
            status = TaskStatus.QUEUED if index == 0 or not has_dependency else TaskStatus.PENDING

            subtask = self._create_subtask(
                parent,
                step.title,
                f"{step.description}\n\n---\nPart of: {parent.title}",
                step.agent_id,
                status,
                note=f"Plan step {index + 1} of {total}",
            )
            created_ids.append(subtask.id)

            logger.info(
                "subtask_created",
                parent_task_id=parent.id,
                subtask_id=subtask.id,
                step=index + 1,
                total=total,
                agent_alias=step.agent_alias,
            )

            if not has_dependency:
                continue

            if step.depends_on_index < len(created_ids) - 1:
                depends_on_id = created_ids[step.depends_on_index]
                self.tasks.add_dependency(
                    subtask.id, depends_on_id, parent.account_id, created_by=self.actor_id
                )
                self._emit(
                    "dependency_created",
                    subtask.id,
                    parent.account_id,
                    depends_on_task_id=depends_on_id,
                )
            else:
                logger.warning(
                    "dependency_skipped",
                    subtask_id=subtask.id,
                    step=index + 1,
                    depends_on_index=step.depends_on_index,
                )

        self.tasks.session.commit()
        return created_ids

    def create_next_step(
        self, plan: ExecutionPlan | StoredPlan, step_index: int, parent: Task
    ) -> str | None:
        """Create the subtask for one step of a step-by-step plan.

        Returns:
            The subtask id, or None if step_index is past the end of the plan
        """
        total = len(plan.steps)
        if step_index < 0 or step_index >= total:
            return None

        step = plan.steps[step_index]
        subtask = self._create_subtask(
            parent,
            step.title,
            f"{step.description}\n\n---\nStep {step_index + 1} of {total} | Part of: {parent.title}",
            step.agent_id,
            TaskStatus.QUEUED,
            note=f"Plan step {step_index + 1} of {total} approved",
        )
        self.tasks.session.commit()

        logger.info(
            "step_by_step_subtask_created",
            parent_task_id=parent.id,
            subtask_id=subtask.id,
            step=step_index + 1,
            total=total,
        )
        return subtask.id

    def _create_subtask(
        self,
        parent: Task,
        title: str,
        description: str,
        agent_id: str,
        status: TaskStatus,
        note: str,
    ) -> Task:
        subtask = self.tasks.create(
            parent.account_id,
            title,
            status=status,
            changed_by=self.actor_id,
            changed_by_type=self.actor_type,
            note=note,
            description=description,
            priority=parent.priority,
            project_id=parent.project_id,
            parent_task_id=parent.id,
            source_task_id=parent.id,
            assigned_to=agent_id,
            assigned_to_type=ActorType.AGENT,
            auto_generated=True,
        )
        self._emit("task_created", subtask.id, parent.account_id, parent_task_id=parent.id)
        return subtask

    # ------------------------------------------------------------------
    # Plan storage
    # ------------------------------------------------------------------

    def store_plan_on_task(self, task_id: str, plan: ExecutionPlan) -> None:
        """Save the plan and a zeroed cursor onto the task's input.

        Other input keys are preserved.
        """
        stored = StoredPlan(
            steps=plan.steps,
            confidence=plan.confidence,
            execution_mode=plan.execution_mode,
            pattern_key=plan.pattern_key,
            reasoning=plan.reasoning,
        )

        def write(current: dict) -> dict:
            return {
                **current,
                "plan": dump_section(stored),
                "plan_pattern_key": plan.pattern_key,
                "plan_current_step": 0,
            }

        self._update_input(task_id, write)
        logger.info("plan_stored", task_id=task_id, pattern_key=plan.pattern_key, steps=len(plan.steps))

    @staticmethod
    def get_plan_from_task(task: Task) -> StoredPlan | None:
        return read_input(task.input).plan

    @staticmethod
    def get_plan_current_step(task: Task) -> int:
        return read_input(task.input).plan_current_step

    def advance_plan_step(self, task_id: str) -> int:
        """Increment the plan cursor.

        Returns:
            The new cursor value

        Raises:
            ConcurrentUpdateError: If every compare-and-swap attempt lost a race
        """
        result: dict = {}

        def write(current: dict) -> dict:
            step = int(current.get("plan_current_step") or 0) + 1
            result["step"] = step
            return {**current, "plan_current_step": step}

        self._update_input(task_id, write)
        logger.info("plan_step_advanced", task_id=task_id, current_step=result["step"])
        return result["step"]

    def _update_input(self, task_id: str, write) -> None:
        """Read-modify-write of Task.input guarded by input_version."""
        attempts = self.settings.plan_cursor_max_retries
        for attempt in range(1, attempts + 1):
            current, version = self.tasks.read_input(task_id)
            if self.tasks.compare_and_set_input(task_id, version, write(current)):
                self.tasks.session.commit()
                return
            self.tasks.session.rollback()
            logger.warning("task_input_conflict", task_id=task_id, attempt=attempt)

        raise ConcurrentUpdateError(
            f"Task {task_id} input changed concurrently {attempts} times; giving up"
        )

    # ------------------------------------------------------------------
    # Dispatch by execution mode
    # ------------------------------------------------------------------

    def start(self, plan: ExecutionPlan, parent: Task) -> list[str]:
        """Begin executing a fresh plan.

        auto materializes everything now. The approval modes store the plan
        and move the parent to review.

        Returns:
            Created subtask ids (empty while awaiting approval)
        """
        if plan.execution_mode == ExecutionMode.AUTO:
            self._mark_in_progress(parent, "Plan executing automatically")
            return self.create_subtasks_from_plan(plan, parent)

        self.store_plan_on_task(parent.id, plan)
        parent = self.tasks.get(parent.id)
        self.tasks.set_status(
            parent,
            TaskStatus.REVIEW,
            self.actor_id,
            self.actor_type,
            note=f"Plan awaiting approval ({plan.execution_mode.value})",
        )
        self.tasks.session.commit()
        self._emit(
            "task_status_changed",
            parent.id,
            parent.account_id,
            status=TaskStatus.REVIEW.value,
            execution_mode=plan.execution_mode.value,
        )
        return []

    def approve(self, parent: Task) -> list[str]:
        """Continue a stored plan after a human approval.

        plan-then-execute creates every step. step-by-step creates the step at
        the cursor and advances it.

        Returns:
            Created subtask ids; empty when a step-by-step plan is complete
        """
        plan = self.get_plan_from_task(parent)
        if plan is None:
            raise ValidationError(f"Task {parent.id} has no stored plan")

        if plan.execution_mode != ExecutionMode.STEP_BY_STEP:
            self._mark_in_progress(parent, "Plan approved")
            return self.create_subtasks_from_plan(plan, parent)

        step_index = self._claim_next_step(parent.id, len(plan.steps))
        if step_index is None:
            logger.info("step_by_step_plan_complete", task_id=parent.id, steps=len(plan.steps))
            return []

        try:
            # Commits the cursor claim together with the subtask
            subtask_id = self.create_next_step(plan, step_index, parent)
        except Exception:
            self.tasks.session.rollback()
            raise

        self._mark_in_progress(self.tasks.get(parent.id), f"Step {step_index + 1} approved")
        return [subtask_id]

    def _claim_next_step(self, task_id: str, total: int) -> int | None:
        """Move the cursor from k to k+1 and return k, or None when the plan is done.

        The claim is left uncommitted so the caller can create step k in the
        same transaction. Two approvals racing on a stale parent therefore
        claim different steps.
        """
        attempts = self.settings.plan_cursor_max_retries
        for attempt in range(1, attempts + 1):
            current, version = self.tasks.read_input(task_id)
            step_index = int(current.get("plan_current_step") or 0)
            if step_index >= total:
                return None
            claimed = {**current, "plan_current_step": step_index + 1}
            if self.tasks.compare_and_set_input(task_id, version, claimed):
                return step_index
            self.tasks.session.rollback()
            logger.warning("plan_step_claim_conflict", task_id=task_id, attempt=attempt)

        raise ConcurrentUpdateError(
            f"Task {task_id} plan cursor changed concurrently {attempts} times; giving up"
        )

    def _mark_in_progress(self, parent: Task, note: str) -> None:
        if parent.status == TaskStatus.IN_PROGRESS.value:
            return
        self.tasks.set_status(parent, TaskStatus.IN_PROGRESS, self.actor_id, self.actor_type, note=note)
        self.tasks.session.commit()
        self._emit(
            "task_status_changed", parent.id, parent.account_id, status=TaskStatus.IN_PROGRESS.value
        )

    def _emit(self, event_type: str, task_id: str, account_id: str, **data) -> None:
        if self.events is not None:
            self.events.emit(event_type, task_id, account_id, **data)
