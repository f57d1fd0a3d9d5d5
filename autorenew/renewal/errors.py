class RenewalError(Exception):
    """Base class for renewal orchestration errors."""


class AccountNotFoundError(RenewalError):
    def __init__(self, system_id: str):
        super().__init__(f"Account {system_id} not found")
        self.system_id = system_id


class RenewalLockedError(RenewalError):
    """The account already has a renewal in flight or inside its release window."""

    def __init__(self, system_id: str):
        super().__init__(f"Account {system_id} is already being renewed")
        self.system_id = system_id


class TaskNotFoundError(RenewalError):
    def __init__(self, task_id: int):
        super().__init__(f"Renewal task {task_id} not found")
        self.task_id = task_id
