"""Node definitions for the Ask pipeline (request -> generated R -> result)."""

import logging

from pocketflow import Node

from rbridge.call_llm import call_llm
from rbridge.parse_code import parse_code_block

logger = logging.getLogger(__name__)

CODE_SYSTEM_PROMPT = """You are an R code generator for statistical data analysis. Generate clean,
executable R code that:
- Works on the data frame `df`, which is already loaded. Never read files or redefine `df`.
- Prints every result you want the user to see (print(), cat(), summary()).
- Uses base R graphics or ggplot2 for plots. Draw at most one final plot; print ggplot objects explicitly.
- Loads extra packages with library(name) at the top of the script.
- Uses knitr::kable() when the user asks for a table or a report.

Return only R code, wrapped in ```r``` blocks."""


def _empty_response(message: str) -> dict:
    return {
        "message": message,
        "code": None,
        "output": None,
        "plot": None,
        "error": None,
    }


class GetInputNode(Node):
    """Receives the user request and initializes the processing context."""

    def prep(self, shared):
        return shared.get("user_message", "")

    def exec(self, user_message):
        return (user_message or "").strip()

    def post(self, shared, prep_res, exec_res):
        if not exec_res:
            shared["response"] = _empty_response("I didn't receive a request. What would you like to analyse?")
            return "output"
        shared["user_message"] = exec_res
        return "default"


class DescribeDataNode(Node):
    """Collects the shape and str() summary of the dataset bound to ``df``."""

    def prep(self, shared):
        return {
            "bridge": shared["bridge"],
            "dataset_name": shared.get("dataset_name"),
            "uploaded_data": shared.get("uploaded_data"),
        }

    def exec(self, prep_res):
        return prep_res["bridge"].describe_dataset(prep_res["dataset_name"], prep_res["uploaded_data"])

    def post(self, shared, prep_res, exec_res):
        shared["dataset"] = exec_res
        return "default"


class GenerateCodeNode(Node):
    """Asks the LLM for R code; on a regeneration, shows it the failed attempt."""

    def prep(self, shared):
        return {
            "message": shared["user_message"],
            "dataset": shared["dataset"],
            "previous_code": shared.get("generated_code"),
            "previous_error": shared.get("last_error"),
        }

    def exec(self, prep_res):
        dataset = prep_res["dataset"]
        prompt = f"""Write R code to answer this request: {prep_res["message"]}

The data frame `df` ({dataset.name}) has {dataset.row_count} rows and {dataset.column_count} columns.
Structure:
{dataset.summary_text}"""

        if prep_res["previous_error"]:
            prompt += f"""

Your previous attempt failed.
Code:
```r
{prep_res["previous_code"]}
```
Error: {prep_res["previous_error"]}

Fix the problem and return the complete corrected script."""

        response = call_llm(prompt=prompt, system_prompt=CODE_SYSTEM_PROMPT)
        code = parse_code_block(response)
        if not code:
            raise ValueError(f"No R code in LLM response: {response[:200]}")
        return code

    def post(self, shared, prep_res, exec_res):
        shared["generated_code"] = exec_res
        return "default"


class ExecuteCodeNode(Node):
    """Runs the generated code through the bridge."""

    def prep(self, shared):
        return {
            "bridge": shared["bridge"],
            "code": shared["generated_code"],
            "dataset_name": shared.get("dataset_name"),
            "uploaded_data": shared.get("uploaded_data"),
        }

    def exec(self, prep_res):
        return prep_res["bridge"].run(prep_res["code"], prep_res["dataset_name"], prep_res["uploaded_data"])

    def post(self, shared, prep_res, exec_res):
        shared["execution_result"] = exec_res
        if exec_res.success:
            return "default"

        settings = shared["bridge"].settings
        regenerations = shared.get("regenerations", 0)
        if settings.retry_on_error and regenerations < settings.max_regenerations:
            shared["regenerations"] = regenerations + 1
            shared["last_error"] = exec_res.error.message
            logger.info(f"[ASK] Execution failed ({exec_res.error.kind.value}); "
                        f"regenerating code ({regenerations + 1}/{settings.max_regenerations})")
            return "retry"
        return "default"


class FormatResultsNode(Node):
    """Turns the execution result into the user-facing answer."""

    def prep(self, shared):
        return {
            "user_message": shared["user_message"],
            "code": shared["generated_code"],
            "result": shared["execution_result"],
        }

    def exec(self, prep_res):
        result = prep_res["result"]
        if not result.success:
            return f"I encountered an error while running the code: {result.error.message}"

        output = result.output_text.strip()
        if not output:
            return "The code ran successfully." + (" See the plot below." if result.plot else "")

        prompt = f"""The user asked: {prep_res["user_message"]}

The following R code was executed:
```r
{prep_res["code"]}
```

And produced this output:
{output[:4000]}

Answer the user's request from these results in 1-3 sentences. Be specific about the numbers."""
        return call_llm(prompt)

    def exec_fallback(self, prep_res, exc):
        logger.warning(f"[ASK] Could not summarize results: {exc}")
        return "The code ran successfully."

    def post(self, shared, prep_res, exec_res):
        result = prep_res["result"]
        shared["response"] = {
            "message": exec_res,
            "code": prep_res["code"],
            "output": result.output_text or None,
            "plot": result.plot_data_url,
            "error": result.error.message if result.error else None,
        }
        return "default"


class OutputResponseNode(Node):
    """Finalizes the response and updates the conversation history."""

    def prep(self, shared):
        return {
            "user_message": shared.get("user_message", ""),
            "response": shared.get("response", {}),
        }

    def exec(self, prep_res):
        return prep_res

    def post(self, shared, prep_res, exec_res):
        history = shared.setdefault("chat_history", [])
        history.append({"role": "user", "content": exec_res["user_message"]})

        response = exec_res["response"]
        content = response.get("message", "")
        if response.get("code"):
            content += f"\n\n```r\n{response['code']}\n```"
        if response.get("output"):
            content += f"\n\nOutput:\n```\n{response['output']}\n```"
        history.append({"role": "assistant", "content": content})

        response["regenerations"] = shared.get("regenerations", 0)
        return None
