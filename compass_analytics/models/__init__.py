from compass_analytics.models.task import TaskRequest, TaskResponse
from compass_analytics.models.progress import ProgressSnapshot, ProgressUpdate, StageState

__all__ = ["TaskRequest", "TaskResponse", "ProgressSnapshot", "ProgressUpdate", "StageState"]
