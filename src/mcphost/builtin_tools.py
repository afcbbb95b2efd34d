"""Local tools that let the model signal loop-control intent.

They run like any other tool; their results only tell the model what to
do next. The loop itself never looks at them.
"""

from mcphost.tools import LocalToolProvider, Tool


def task_complete():
    """Call this tool when the task given by the user is complete"""
    return {"status": "complete", "instruction": "Give the user your final answer now."}


def ask_question():
    """Ask a question to the user to get more info required to solve or clarify their problem."""
    return {
        "status": "waiting_for_user",
        "instruction": "Reply to the user with your question and wait for their answer.",
    }


EXIT_LOOP_TOOLS = [
    Tool(task_complete),
    Tool(ask_question),
]


def builtin_provider() -> LocalToolProvider:
    return LocalToolProvider("builtin", EXIT_LOOP_TOOLS)
