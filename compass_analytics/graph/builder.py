"""Graph builder — constructs the LangGraph predictive-insight topology.

Topology:

    START → assess_data
              ├── "end"      → END
              └── "forecast" → forecast_emotions → forecast_sensory
                               → assess_risk → compose_insights → END

The graph is compiled once per process and invoked many times.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Any

from langgraph.graph import END, START, StateGraph

from compass_analytics.graph.nodes import (
    assess_data,
    assess_risk,
    compose_insights,
    forecast_emotions,
    forecast_sensory,
    route_after_assessment,
)
from compass_analytics.graph.state import InsightState


@lru_cache(maxsize=1)
def build_insight_graph() -> Any:
    """Construct and compile the predictive-insight graph.

    Returns:
        A compiled LangGraph application.
    """
    graph = StateGraph(InsightState)

    # ── Register nodes ───────────────────────────────────────────────────
    graph.add_node("assess_data", assess_data)
    graph.add_node("forecast_emotions", forecast_emotions)
    graph.add_node("forecast_sensory", forecast_sensory)
    graph.add_node("assess_risk", assess_risk)
    graph.add_node("compose_insights", compose_insights)

    # ── Edges ────────────────────────────────────────────────────────────
    graph.add_edge(START, "assess_data")
    graph.add_conditional_edges(
        "assess_data",
        route_after_assessment,
        {
            "forecast": "forecast_emotions",
            "end": END,
        },
    )
    graph.add_edge("forecast_emotions", "forecast_sensory")
    graph.add_edge("forecast_sensory", "assess_risk")
    graph.add_edge("assess_risk", "compose_insights")
    graph.add_edge("compose_insights", END)

    return graph.compile()
