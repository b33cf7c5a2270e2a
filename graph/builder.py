"""Graph assembly — builds and compiles the two-pass TurnState graph."""

from functools import partial

from langgraph.graph import StateGraph, START, END

from graph.state import TurnState
from graph.router import route_after_first_pass
from graph.nodes import first_pass_node, execute_tools_node, second_pass_node


def build_turn_graph(model, executor, build_context, timeout: float):
    """
    Assemble the turn graph:
        START → first_pass ─(no tools)→ END
                          └(tools)→ execute_tools → second_pass → END
    No checkpointer: the chat session store is the durable record.
    """
    builder = StateGraph(TurnState)

    builder.add_node("first_pass", partial(first_pass_node, model=model, build_context=build_context, timeout=timeout))
    builder.add_node("execute_tools", partial(execute_tools_node, executor=executor))
    builder.add_node("second_pass", partial(second_pass_node, model=model, build_context=build_context, timeout=timeout))

    builder.add_edge(START, "first_pass")
    builder.add_conditional_edges("first_pass", route_after_first_pass, ["execute_tools", END])
    builder.add_edge("execute_tools", "second_pass")
    builder.add_edge("second_pass", END)

    return builder.compile()
