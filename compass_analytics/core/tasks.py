"""Task execution shared by every ComputationBridge path.

``run_serialized_task`` is the single entry point: JSON request text in,
JSON response text out.  It is a module-level function so a process pool can
pickle it by reference, and the inline path calls the very same function, so
the two paths cannot diverge algorithmically.

Kernel exceptions are converted into an error response rather than raised;
the bridge decides whether to retry.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from pydantic import TypeAdapter

from compass_analytics.kernels.registry import kernel_for
from compass_analytics.models.task import TaskRequest, TaskResponse

logger = logging.getLogger(__name__)

_DATETIME = TypeAdapter(datetime)

# Params that cross the JSON boundary as strings and must be revived.
_DATETIME_PARAMS = frozenset({"as_of"})


def _revive_params(params: dict[str, Any]) -> dict[str, Any]:
    revived = dict(params)
    for name in _DATETIME_PARAMS & revived.keys():
        if revived[name] is not None:
            revived[name] = _DATETIME.validate_python(revived[name])
    return revived


def execute_request(request: TaskRequest) -> TaskResponse:
    """Run the kernel named by *request*; never raises for kernel failures."""
    spec = kernel_for(request.task_kind)
    try:
        result = spec.func(
            request.observations,
            request.configuration,
            **_revive_params(request.params),
        )
    except Exception as exc:
        logger.exception(
            "Kernel %s failed for subject %s", request.task_kind.value, request.observations.subject_id,
        )
        return TaskResponse(task_kind=request.task_kind, error_message=f"{type(exc).__name__}: {exc}")

    if not isinstance(result, spec.result_type):
        return TaskResponse(
            task_kind=request.task_kind,
            error_message=(
                f"Kernel {request.task_kind.value} returned {type(result).__name__}, "
                f"expected {spec.result_type.__name__}"
            ),
        )
    return TaskResponse(task_kind=request.task_kind, result=result)


def run_serialized_task(request_json: str) -> str:
    """Decode a TaskRequest, execute it, and encode the TaskResponse."""
    request = TaskRequest.model_validate_json(request_json)
    return execute_request(request).model_dump_json()


def decode_response(response_json: str) -> TaskResponse:
    return TaskResponse.model_validate_json(response_json)
