"""In-memory task storage and conversation forking."""

from pathlib import Path

from cuid2 import cuid_wrapper

from toolgate.models.messages import Message
from toolgate.models.task import Task
from toolgate.services.context_manager import ConversationContext
from toolgate.services.version_control import VersionControl
from toolgate.utils.logging import get_logger

logger = get_logger(__name__)

cuid = cuid_wrapper()


class InMemoryTaskManager:
    """In-memory task manager."""

    def __init__(self, version_control: VersionControl | None = None):
        """Initialize task manager.

        Args:
            version_control: Integration shared by every created task; tasks
                default to no version control when omitted
        """
        self.tasks: dict[str, Task] = {}
        self.version_control = version_control

    def create_task(
        self,
        task_dir: Path,
        project_dir: Path | None = None,
        messages: list[Message] | None = None,
        task_id: str | None = None,
    ) -> Task:
        """Create and store a new task.

        Args:
            task_dir: Directory tool paths resolve against
            project_dir: Optional project root
            messages: Initial conversation
            task_id: Optional explicit id, a new CUID otherwise

        Returns:
            The new task
        """
        new_task_id = task_id or self._generate_task_id()
        if new_task_id in self.tasks:
            raise ValueError(f"Task {new_task_id} already exists")

        task = Task(
            task_id=new_task_id,
            task_dir=Path(task_dir),
            project_dir=project_dir,
            context=ConversationContext(new_task_id, messages),
        )
        if self.version_control is not None:
            task.version_control = self.version_control

        self.tasks[new_task_id] = task
        logger.info(f"Created task {new_task_id} in {task_dir} with {len(task.context)} messages")
        return task

    def get_task(self, task_id: str) -> Task | None:
        """Get existing task by ID."""
        return self.tasks.get(task_id)

    def delete_task(self, task_id: str) -> bool:
        """Delete a task, interrupting anything it still runs.

        Returns:
            True if task was deleted, False if not found
        """
        task = self.tasks.pop(task_id, None)
        if task is None:
            return False
        task.interrupt()
        return True

    def fork_task(self, task_id: str, target_id: str) -> Task:
        """Create a new task whose conversation is the source prefix ending at `target_id`.

        Raises:
            KeyError: If the source task does not exist
            MessageNotFoundError: If `target_id` matches nothing in the source
        """
        source = self.tasks.get(task_id)
        if source is None:
            raise KeyError(f"Task {task_id} not found")

        logger.info(f"Forking task {task_id} at {target_id}")
        messages = source.context.get_messages_up_to(target_id)
        return self.create_task(source.task_dir, source.project_dir, messages)

    def _generate_task_id(self) -> str:
        """Generate a new CUID-based task ID."""
        return cuid()

    def get_task_count(self) -> int:
        """Get current number of tasks."""
        return len(self.tasks)
