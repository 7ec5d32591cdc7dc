"""Tool names shared by executors, handlers and prompt contexts."""

# Barriers of the primary agent
FINAL_TOOL_NAME = "done"
ASK_USER_TOOL_NAME = "ask_user"

# Sub-agent requests and their result barriers
MAINTENANCE_TOOL_NAME = "maintenance"
MAINTENANCE_RESULT_TOOL_NAME = "maintenance_result"
CODER_TOOL_NAME = "coder"
CODE_RESULT_TOOL_NAME = "code_result"
PENTESTER_TOOL_NAME = "pentester"
HACK_RESULT_TOOL_NAME = "hack_result"
ADVICE_TOOL_NAME = "advice"
MEMORIST_TOOL_NAME = "memorist"
MEMORIST_RESULT_TOOL_NAME = "memorist_result"
SEARCH_TOOL_NAME = "search"
SEARCH_RESULT_TOOL_NAME = "search_result"
ENRICHER_RESULT_TOOL_NAME = "enricher_result"
REPORT_RESULT_TOOL_NAME = "report_result"

# Planning barriers
SUBTASK_LIST_TOOL_NAME = "subtask_list"
SUBTASK_PATCH_TOOL_NAME = "subtask_patch"

# Environment tools supplied by the host
TERMINAL_TOOL_NAME = "terminal"
FILE_TOOL_NAME = "file"
BROWSER_TOOL_NAME = "browser"

# Tools whose long results are summarized before they reach the chain
SUMMARIZABLE_TOOL_NAMES = frozenset({TERMINAL_TOOL_NAME, BROWSER_TOOL_NAME})

TOOL_PLACEHOLDER = (
    "Always use your function calling functionality, instead of returning a text result."
)
