"""Flow orchestration for the Ask pipeline."""

from typing import Any, Dict, Optional

from pocketflow import Flow

from rbridge.nodes import (
    DescribeDataNode,
    ExecuteCodeNode,
    FormatResultsNode,
    GenerateCodeNode,
    GetInputNode,
    OutputResponseNode,
)


def create_ask_flow() -> Flow:
    """
    Create and return the Ask flow.
    """
    get_input = GetInputNode()
    describe_data = DescribeDataNode()
    generate_code = GenerateCodeNode(max_retries=3, wait=1)
    execute_code = ExecuteCodeNode()
    format_results = FormatResultsNode(max_retries=2, wait=1)
    output_response = OutputResponseNode()

    get_input >> describe_data
    describe_data >> generate_code
    generate_code >> execute_code
    execute_code >> format_results
    format_results >> output_response
    # Regenerate code when execution fails (see ExecuteCodeNode.post).
    execute_code - "retry" >> generate_code

    get_input - "output" >> output_response

    return Flow(start=get_input)


def run_ask(user_message: str, bridge, dataset_name: Optional[str] = None,
            uploaded_data: Optional[Dict[str, Any]] = None, chat_history: list = None) -> dict:
    """
    Run the Ask flow for one user request.

    Args:
        user_message: The user's analysis request
        bridge: The RBridge executing the generated code
        dataset_name: Catalog dataset bound to ``df`` (wins over uploaded_data)
        uploaded_data: ``{"data": RowTable, "name": str}`` from an upload
        chat_history: List of previous messages

    Returns:
        Dict with the response (message, code, output, plot, error) and the history
    """
    shared = {
        "user_message": user_message,
        "bridge": bridge,
        "dataset_name": dataset_name,
        "uploaded_data": uploaded_data,
        "chat_history": chat_history or [],
        "regenerations": 0,
        "response": {},
    }

    flow = create_ask_flow()
    flow.run(shared)

    return {
        "response": shared.get("response", {}),
        "chat_history": shared.get("chat_history", []),
    }
